"""
Pytest configuration for story verification tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked
- medium: Database fixtures, API TestClient, filesystem ops
- slow: External APIs, real LLM operations

Run tiers:
- pytest                          # Fast + Medium (default)
- pytest -m fast                  # Fast only
- pytest -m slow                  # Slow only
- pytest --override-ini="addopts=" -v   # Full suite (all tiers)

Note: Unmarked tests are auto-assigned to 'fast' tier. To add a new test:
- No marker needed for fast (unit) tests
- Add @pytest.mark.medium for tests that touch the filesystem heavily
- Add @pytest.mark.slow for real OpenAI / Postgres tests
- Tests marked @pytest.mark.integration (without tier) default to 'medium'

API Key Safety:
- Fast/medium tests force-set a fake OPENAI_API_KEY to prevent accidental API calls
- Only slow tests (and full suite) preserve real API keys from environment
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """
    Automatically assign tier markers to unmarked tests.

    Tests are fast by default unless explicitly marked as medium or slow.
    Tests marked with @pytest.mark.integration (but no tier) are assigned
    to 'medium'.
    """
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        # Don't assign a tier to skipped tests
        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings."""
    markexpr = getattr(config.option, 'markexpr', '') or ''

    # Real API keys are ONLY allowed when slow tests are being run:
    # 1. Running slow tests explicitly: -m slow
    # 2. Running full suite: --override-ini="addopts=" (markexpr empty)
    includes_slow_tests = (
        not markexpr or
        (
            'slow' in markexpr and
            'not slow' not in markexpr
        )
    )

    if includes_slow_tests:
        os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key-for-testing")
    else:
        # Force-set fake key for fast/medium tests to guard against mock failures
        os.environ["OPENAI_API_KEY"] = "sk-test-fake-key-for-testing"

    # Model and strategy are read from the environment; pin them for tests
    os.environ.pop("STORY_EVAL_MODEL", None)
    os.environ.pop("STORY_CACHE_INVALIDATION_STRATEGY", None)


# =============================================================================
# Session-Scoped Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path (session-scoped for efficiency)."""
    return PROJECT_ROOT


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def checkout(tmp_path):
    """A small repository checkout for a password reset feature."""
    root = tmp_path / "repo"
    (root / "src" / "auth").mkdir(parents=True)
    (root / "src" / "auth" / "reset.ts").write_text(
        "\n".join(
            [
                "import { sendEmail } from '../mail'",
                "",
                "export async function requestPasswordReset(email: string) {",
                "  const token = createResetToken(email)",
                "  await sendEmail(email, 'Reset your password', token)",
                "  return { ok: true }",
                "}",
                "",
                "export function createResetToken(email: string) {",
                "  return `${email}:${Date.now()}`",
                "}",
            ]
        )
        + "\n"
    )
    (root / "src" / "mail.ts").write_text(
        "export async function sendEmail(to: string, subject: string, body: string) {\n"
        "  return fetch('/mail', { method: 'POST' })\n"
        "}\n"
    )
    (root / "README.md").write_text("# Demo app\n\nPassword reset via email.\n")
    return root
