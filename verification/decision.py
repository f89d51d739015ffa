"""
Verification state machine.

`decide()` is pure: it reads a code snapshot and a claimed secret and returns
the outcome plus the mutation to apply. Persistence lives on
ProductCode.objects.apply_decision; rendering lives in the channels.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from django.utils import timezone

from .hashing import hash_matches

VALID = 'valid'
INVALID = 'invalid'
ALREADY_USED = 'already_used'

FIRST_VERIFICATION = 'first_verification'
REPEAT_VERIFICATION = 'repeat_verification'


@dataclass(frozen=True)
class Mutation:
    kind: str
    at: datetime


@dataclass(frozen=True)
class Decision:
    outcome: str
    mutation: Optional[Mutation] = None

    @property
    def is_valid(self) -> bool:
        return self.outcome == VALID

    @property
    def report_available(self) -> bool:
        """A repeat claim always leaves the count above one"""
        return self.outcome == ALREADY_USED

    def as_repeat(self) -> 'Decision':
        """Downgrade after losing the first-verification race"""
        return Decision(
            outcome=ALREADY_USED,
            mutation=replace(self.mutation, kind=REPEAT_VERIFICATION),
        )


def decide(record, claimed_secret: str, now: datetime = None) -> Decision:
    """
    ✓ SECURITY: Adjudicate a claim against a code record.

    - unknown record or wrong secret -> invalid, no mutation
    - never verified -> valid, first verification
    - otherwise -> already_used, repeat verification

    Never proposes suspected_counterfeit; only counterfeit reports set it.
    """
    if record is None:
        return Decision(INVALID)

    if not hash_matches(claimed_secret or '', record.secret_hash):
        return Decision(INVALID)

    now = now or timezone.now()
    if record.first_verified_at is None:
        return Decision(VALID, Mutation(FIRST_VERIFICATION, now))
    return Decision(ALREADY_USED, Mutation(REPEAT_VERIFICATION, now))
