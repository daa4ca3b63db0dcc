"""
Error taxonomy for the relay pipeline.

Every fatal condition carries the stage that failed, the expected and actual
values where they apply, and whether re-running the failed stage is safe.
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base class for relay pipeline failures."""

    stage: str = "relay"
    retry_safe: bool = False

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ):
        self.message = message
        if stage is not None:
            self.stage = stage
        self.expected = expected
        self.actual = actual
        super().__init__(message)

    def describe(self) -> str:
        """Operator-facing description of the failure."""
        lines = [f"[{self.stage}] {self.message}"]
        if self.expected is not None or self.actual is not None:
            lines.append(f"  Expected: {self.expected}")
            lines.append(f"  Got:      {self.actual}")
        lines.append(f"  Retry-safe: {'yes' if self.retry_safe else 'no'}")
        return "\n".join(lines)


class InvalidInput(RelayError):
    """Malformed hash or parameter. Never retried."""

    stage = "input"


class UpstreamRejected(RelayError):
    """The preparation service declined the request."""

    stage = "prepare"

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class InsufficientFunds(RelayError):
    """Signer cannot pay the attestation fee."""

    stage = "submit"

    def __init__(self, balance: int, fee: int):
        self.balance = balance
        self.fee = fee
        super().__init__(
            "Insufficient balance to pay the attestation fee",
            expected=f">= {fee} wei",
            actual=f"{balance} wei",
        )


class SubmissionReverted(RelayError):
    """A state-changing transaction reverted. Do not resubmit automatically."""

    stage = "submit"

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.tx_hash = tx_hash
        self.reason = reason
        if reason:
            message = f"{message}: {reason}"
        if tx_hash:
            message = f"{message} (tx {tx_hash})"
        super().__init__(message, stage=stage)


class AlreadyCredited(SubmissionReverted):
    """The destination contract rejected a replayed transaction hash."""

    stage = "credit"


class Unauthorized(SubmissionReverted):
    """The destination contract rejected the caller."""


class TimeoutExceeded(RelayError):
    """No proof before the deadline. Safe to re-poll with the same round and request."""

    stage = "poll"
    retry_safe = True

    def __init__(self, voting_round: int, elapsed: float, attempts: int):
        self.voting_round = voting_round
        self.elapsed = elapsed
        self.attempts = attempts
        super().__init__(
            f"Timed out after {int(elapsed)}s waiting for proof "
            f"(voting round {voting_round}, {attempts} attempts)"
        )


class MalformedProof(RelayError):
    """Proof payload does not match the expected schema."""

    stage = "assemble"


class MismatchError(RelayError):
    """Proof content differs from what was requested."""

    stage = "validate"

    def __init__(self, field: str, expected: Any, actual: Any):
        self.field = field
        super().__init__(f"{field} mismatch", expected=expected, actual=actual)


class VerificationFailed(RelayError):
    """On-chain verification predicate returned false."""

    stage = "verify"


class RootUnavailable(RelayError):
    """The consensus relay has no Merkle root for the round yet."""

    stage = "sync_root"
    retry_safe = True

    def __init__(self, voting_round: int):
        self.voting_round = voting_round
        super().__init__(
            f"Merkle root not available on Relay for round {voting_round}; "
            "the round may still be aggregating signatures"
        )


class StageFailed(RelayError):
    """A node or transport call raised before the stage could finish."""

    def __init__(self, message: str, *, stage: str, retry_safe: bool):
        self.retry_safe = retry_safe
        super().__init__(message, stage=stage)
