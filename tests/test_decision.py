"""
Tests for the pure verification state machine
"""
from datetime import datetime, timezone as dt_timezone
from types import SimpleNamespace

from verification.decision import (
    ALREADY_USED, FIRST_VERIFICATION, INVALID, REPEAT_VERIFICATION, VALID, decide,
)
from verification.hashing import hash_value

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)
SECRET = 'ABCDEFGH2345'


def record(first_verified_at=None, secret=SECRET):
    return SimpleNamespace(secret_hash=hash_value(secret), first_verified_at=first_verified_at)


class TestDecide:

    def test_unknown_record_is_invalid(self):
        decision = decide(None, SECRET, NOW)
        assert decision.outcome == INVALID
        assert decision.mutation is None

    def test_wrong_secret_is_invalid(self):
        decision = decide(record(), 'ABCDEFGH2346', NOW)
        assert decision.outcome == INVALID
        assert decision.mutation is None

    def test_empty_secret_is_invalid(self):
        assert decide(record(), '', NOW).outcome == INVALID

    def test_first_verification(self):
        decision = decide(record(), SECRET, NOW)
        assert decision.outcome == VALID
        assert decision.is_valid
        assert decision.mutation.kind == FIRST_VERIFICATION
        assert decision.mutation.at == NOW
        assert not decision.report_available

    def test_repeat_verification(self):
        decision = decide(record(first_verified_at=NOW), SECRET, NOW)
        assert decision.outcome == ALREADY_USED
        assert decision.mutation.kind == REPEAT_VERIFICATION
        assert decision.report_available

    def test_never_proposes_suspected_counterfeit(self):
        outcomes = {
            decide(None, SECRET, NOW).outcome,
            decide(record(), 'WRONGSECRET2', NOW).outcome,
            decide(record(), SECRET, NOW).outcome,
            decide(record(first_verified_at=NOW), SECRET, NOW).outcome,
        }
        assert outcomes == {INVALID, VALID, ALREADY_USED}

    def test_decide_does_not_mutate_record(self):
        snapshot = record()
        decide(snapshot, SECRET, NOW)
        assert snapshot.first_verified_at is None

    def test_as_repeat_keeps_timestamp(self):
        downgraded = decide(record(), SECRET, NOW).as_repeat()
        assert downgraded.outcome == ALREADY_USED
        assert downgraded.mutation.kind == REPEAT_VERIFICATION
        assert downgraded.mutation.at == NOW
