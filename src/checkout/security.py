"""
Checkout Security Module

Path containment, sensitive-file filtering and secrets redaction for
everything that reads from a repository checkout (the file hasher and the
reviewer's search tools).

Evidence paths and tool arguments come from model output, so every path is
treated as untrusted until it resolves inside the checkout root.
"""

import fnmatch
import logging
import re
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Sensitive file patterns never surfaced to the reviewer
BLACKLIST_PATTERNS: List[str] = [
    ".env*",
    "*secrets*",
    "*credentials*",
    "*.pem",
    "*.key",
    "*.p12",
    "*.pfx",
    "*password*",
    "*.keystore",
    "*.jks",
    "*private*key*",
    ".aws/*",
    ".ssh/*",
]

# Noisy file patterns excluded from search (not secrets, just noise)
# Note: Uses simple substring/fnmatch patterns (not full glob ** syntax)
NOISE_EXCLUSION_PATTERNS: List[str] = [
    # Build outputs
    "*/build/*",
    "/build/",
    "*/dist/*",
    "/dist/",
    "*/.next/*",
    "*/__pycache__/*",
    "*.pyc",

    # Compiled/minified assets
    "*.min.js",
    "*.min.css",
    "*.bundle.js",
    "*.chunk.js",
    "*.map",

    # Dependencies
    "*/node_modules/*",
    "/node_modules/",
    "*/.venv/*",
    "*/venv/*",
    "/.git/",

    # Generated files
    "*.generated.ts",
    "*.d.ts",
    "*/coverage/*",
    "/coverage/",

    # Lock files
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "poetry.lock",
]

# Matches common secret assignment patterns:
#   - api_key = "sk-1234..."     (quoted)
#   - password: "secret123"      (YAML/JSON style, quoted)
#   - API_KEY=sk-1234567890      (unquoted, env var style)
REDACTION_REGEX = re.compile(
    r"(api[_-]?key|password|token|secret|auth[_-]?token|access[_-]?key|private[_-]?key)"
    r"\s*[=:]\s*"
    r"(?:"
    r"['\"]([^'\"]+)['\"]"
    r"|"
    r"([^\s;,\n\r]+)"
    r")",
    flags=re.IGNORECASE,
)


def resolve_checkout_path(root: Path, relative_path: str) -> Optional[Path]:
    """
    Resolve a repository-relative path inside a checkout root.

    Rejects empty paths, absolute paths and anything that escapes the root
    after resolution (e.g. "../../etc/passwd" or a symlink pointing out).

    Args:
        root: Checkout root directory
        relative_path: Path as it appears in an evidence reference

    Returns:
        The resolved absolute path, or None if the path is not allowed

    Example:
        >>> resolve_checkout_path(Path("/work/repo"), "src/app.py")
        PosixPath('/work/repo/src/app.py')
        >>> resolve_checkout_path(Path("/work/repo"), "../../etc/passwd") is None
        True
    """
    if not relative_path or not relative_path.strip():
        logger.warning("Path validation failed: empty or whitespace path")
        return None

    normalized = relative_path.replace("\\", "/")
    if normalized.startswith("/"):
        logger.warning("Path validation failed: absolute path '%s'", relative_path)
        return None

    try:
        base = root.resolve()
        resolved = (base / normalized).resolve()
    except (ValueError, TypeError, OSError) as e:
        logger.error("Path validation error for '%s': %s", relative_path, e)
        return None

    if not resolved.is_relative_to(base):
        logger.warning(
            "Path validation failed: '%s' resolves outside checkout %s",
            relative_path,
            base,
        )
        return None

    return resolved


def is_sensitive_file(filepath: str) -> bool:
    """
    Check if filepath matches sensitive file patterns.

    Example:
        >>> is_sensitive_file(".env")
        True
        >>> is_sensitive_file("src/app.py")
        False
    """
    normalized = filepath.replace("\\", "/")

    for pattern in BLACKLIST_PATTERNS:
        if fnmatch.fnmatch(normalized, pattern) or fnmatch.fnmatch(
            Path(normalized).name, pattern
        ):
            logger.debug("Sensitive file '%s' matches pattern '%s'", filepath, pattern)
            return True

    return False


def is_noise_file(filepath: str) -> bool:
    """
    Check if filepath matches noise exclusion patterns.

    Example:
        >>> is_noise_file("node_modules/react/index.js")
        True
        >>> is_noise_file("src/components/Button.tsx")
        False
    """
    normalized = filepath.replace("\\", "/")
    if not normalized.startswith("/"):
        normalized = "/" + normalized

    for pattern in NOISE_EXCLUSION_PATTERNS:
        if "*" in pattern:
            if fnmatch.fnmatch(normalized, pattern) or fnmatch.fnmatch(
                Path(normalized).name, pattern
            ):
                return True
        elif pattern in normalized:
            return True

    return False


def redact_secrets(content: str) -> str:
    """
    Redact potential secrets from code content before it reaches the model.

    Example:
        >>> redact_secrets('api_key = "sk-1234567890abcdef"')
        'api_key = "[REDACTED]"'
    """
    redaction_count = len(REDACTION_REGEX.findall(content))
    if redaction_count > 0:
        logger.info("Redacting %d potential secret(s) from content", redaction_count)

    return REDACTION_REGEX.sub(r'\1 = "[REDACTED]"', content)


def filter_search_candidates(
    files: List[str],
    include_noise_filter: bool = True,
) -> List[str]:
    """
    Drop sensitive and (optionally) noisy files from a candidate list.

    Example:
        >>> filter_search_candidates(["src/app.py", ".env", "build/bundle.js"])
        ['src/app.py']
    """
    filtered = [f for f in files if not is_sensitive_file(f)]
    if include_noise_filter:
        filtered = [f for f in filtered if not is_noise_file(f)]

    removed = len(files) - len(filtered)
    if removed > 0:
        logger.debug("Filtered %d of %d file(s) from search candidates", removed, len(files))

    return filtered
