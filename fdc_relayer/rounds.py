"""
Voting round clock.

The DA layer indexes proofs by voting round id, so the submitting side and any
chain that recomputes a round from a block timestamp must use exactly the same
integer arithmetic.
"""

import operator
from dataclasses import dataclass

from .errors import InvalidInput

# Coston2 voting round timing
FIRST_VOTING_ROUND_START_TS = 1658430000
VOTING_EPOCH_DURATION_S = 90


def voting_round_id(
    timestamp: int,
    epoch_start: int = FIRST_VOTING_ROUND_START_TS,
    epoch_duration: int = VOTING_EPOCH_DURATION_S,
) -> int:
    """
    Map a unix timestamp to its voting round id.

    Floats are rejected: they would make the result depend on rounding.

    >>> voting_round_id(1658430270, 1658430000, 90)
    3
    """
    timestamp = operator.index(timestamp)
    epoch_start = operator.index(epoch_start)
    epoch_duration = operator.index(epoch_duration)
    if epoch_duration <= 0:
        raise InvalidInput(
            "Voting epoch duration must be positive",
            stage="round",
            expected="> 0",
            actual=epoch_duration,
        )
    return (timestamp - epoch_start) // epoch_duration


@dataclass(frozen=True)
class RoundClock:
    """Epoch timing of one FDC deployment."""

    epoch_start: int = FIRST_VOTING_ROUND_START_TS
    epoch_duration: int = VOTING_EPOCH_DURATION_S

    def round_for(self, timestamp: int) -> int:
        """Voting round containing `timestamp`."""
        return voting_round_id(timestamp, self.epoch_start, self.epoch_duration)

    def round_start(self, round_id: int) -> int:
        """First timestamp belonging to `round_id`."""
        return self.epoch_start + operator.index(round_id) * self.epoch_duration

    def round_end(self, round_id: int) -> int:
        """First timestamp after `round_id`."""
        return self.round_start(round_id + 1)
