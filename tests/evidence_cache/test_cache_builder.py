"""
Cache Builder Tests

Only pass/fail steps are cached, and an assertion is kept only if it has
evidence that hashed or a non-empty reason.
"""

import asyncio

import pytest

from src.checkout.file_hasher import FileHasher, FileHashError
from src.evidence_cache.builder import build_cache_data_from_evaluation
from src.evidence_cache.models import CacheData, EvaluatedAssertion, EvaluatedStep


class DictHasher(FileHasher):
    def __init__(self, hashes):
        self.hashes = hashes

    async def hash_file(self, path):
        if path not in self.hashes:
            raise FileHashError(path, "file does not exist")
        return self.hashes[path]


@pytest.fixture
def hasher():
    return DictHasher({"src/auth/reset.ts": "hash-reset", "src/mail.ts": "hash-mail"})


def step(conclusion, *assertions):
    return EvaluatedStep(conclusion=conclusion, assertions=list(assertions))


class TestStepSelection:
    @pytest.mark.asyncio
    async def test_omits_non_terminal_steps(self, hasher):
        steps = [
            step("pass", EvaluatedAssertion(evidence=["src/auth/reset.ts:10-40"])),
            step("error", EvaluatedAssertion(evidence=["src/mail.ts:1-3"])),
            step("fail", EvaluatedAssertion(reason="Reset emails are never sent")),
        ]

        data = await build_cache_data_from_evaluation(steps, hasher)

        assert set(data.steps) == {"0", "2"}
        assert data.steps["0"].conclusion.value == "pass"
        assert data.steps["2"].conclusion.value == "fail"

    @pytest.mark.asyncio
    async def test_step_identity_is_stored(self, hasher):
        steps = [EvaluatedStep(
            step_id="step-1-request-reset",
            description="User can request a password reset",
            conclusion="pass",
            assertions=[EvaluatedAssertion(evidence=["src/auth/reset.ts:10-40"])],
        )]

        data = await build_cache_data_from_evaluation(steps, hasher)

        stored = data.to_storage()["steps"]["0"]
        assert stored["stepId"] == "step-1-request-reset"
        assert stored["description"] == "User can request a password reset"

    @pytest.mark.asyncio
    async def test_blocked_and_not_implemented_are_not_cached(self, hasher):
        steps = [step("blocked"), step("not-implemented", EvaluatedAssertion(reason="Missing"))]

        data = await build_cache_data_from_evaluation(steps, hasher)

        assert data == CacheData()


class TestAssertionPersistence:
    @pytest.mark.asyncio
    async def test_evidence_is_hashed_per_file(self, hasher):
        steps = [step("pass", EvaluatedAssertion(
            evidence=["src/auth/reset.ts:10-40", "src/auth/reset.ts:1-2", "src/mail.ts"],
        ))]

        data = await build_cache_data_from_evaluation(steps, hasher)

        evidence = data.steps["0"].assertions["0"].evidence
        assert evidence["src/auth/reset.ts"].hash == "hash-reset"
        assert evidence["src/auth/reset.ts"].line_ranges == ["1-2", "10-40"]
        assert evidence["src/mail.ts"].line_ranges == []

    @pytest.mark.asyncio
    async def test_empty_assertion_is_never_written(self, hasher):
        steps = [step(
            "pass",
            EvaluatedAssertion(evidence=[], reason=""),
            EvaluatedAssertion(evidence=["src/mail.ts:1-3"]),
        )]

        data = await build_cache_data_from_evaluation(steps, hasher)

        assert list(data.steps["0"].assertions) == ["1"]

    @pytest.mark.asyncio
    async def test_reason_only_assertion_omits_evidence(self, hasher):
        steps = [step("fail", EvaluatedAssertion(reason="No rate limiting on reset requests"))]

        data = await build_cache_data_from_evaluation(steps, hasher)

        stored = data.to_storage()["steps"]["0"]["assertions"]["0"]
        assert stored == {"reason": "No rate limiting on reset requests"}

    @pytest.mark.asyncio
    async def test_hash_failure_drops_evidence_but_keeps_reason(self, hasher):
        steps = [step("pass", EvaluatedAssertion(
            evidence=["src/auth/reset.ts:10-40", "src/deleted.ts:1-2"],
            reason="Token is created before the email is sent",
        ))]

        data = await build_cache_data_from_evaluation(steps, hasher)

        assertion = data.steps["0"].assertions["0"]
        assert assertion.evidence is None
        assert assertion.reason == "Token is created before the email is sent"

    @pytest.mark.asyncio
    async def test_hash_failure_without_reason_drops_assertion(self, hasher):
        steps = [step("pass", EvaluatedAssertion(evidence=["src/deleted.ts:1-2"]))]

        data = await build_cache_data_from_evaluation(steps, hasher)

        assert data.steps["0"].assertions == {}

    @pytest.mark.asyncio
    async def test_assertions_in_a_step_hash_concurrently(self):
        in_flight = 0
        peak = 0

        class SlowHasher(FileHasher):
            async def hash_file(self, path):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return f"hash-{path}"

        steps = [step(
            "pass",
            EvaluatedAssertion(evidence=["a.ts:1-2"]),
            EvaluatedAssertion(evidence=["b.ts:1-2"]),
            EvaluatedAssertion(evidence=["c.ts:1-2"]),
        )]

        data = await build_cache_data_from_evaluation(steps, SlowHasher())

        assert len(data.steps["0"].assertions) == 3
        assert peak == 3
