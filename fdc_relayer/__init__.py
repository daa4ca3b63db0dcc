"""
FDC Relayer

Proves that a transaction happened on a source chain through the Flare Data
Connector and relays it to an accounting contract that credits it once.

Two relay modes:
- direct: FdcVerification on Coston2, then a trusted relayer credits the deposit
- trustless: the round's Merkle root is synced to the destination, which
  verifies the proof itself

Usage:
    # Relay a deposit
    fdc-relayer relay 0x...txhash... --mode trustless

    # Restart polling after a timeout
    fdc-relayer resume 0x...txhash...

    # Voting round for a timestamp
    fdc-relayer round 1658430270
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .db import RelayDatabase
from .errors import (
    AlreadyCredited,
    InsufficientFunds,
    InvalidInput,
    MalformedProof,
    MismatchError,
    RelayError,
    RootUnavailable,
    StageFailed,
    SubmissionReverted,
    TimeoutExceeded,
    Unauthorized,
    UpstreamRejected,
    VerificationFailed,
)
from .hub import AttestationSubmitter
from .models import AttestationRequest, ProofEnvelope, RelayOutcome, SyncedRoot
from .pipeline import RelayPipeline, Stage, StageEvent
from .poller import BackoffPolicy, ProofPoller
from .proof import assemble, validate
from .rounds import RoundClock, voting_round_id
from .strategies import DirectRelayStrategy, TrustlessRelayStrategy
from .verifier import RequestBuilder

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "RelayDatabase",
    "RelayError",
    "InvalidInput",
    "UpstreamRejected",
    "InsufficientFunds",
    "SubmissionReverted",
    "AlreadyCredited",
    "Unauthorized",
    "TimeoutExceeded",
    "MalformedProof",
    "MismatchError",
    "VerificationFailed",
    "RootUnavailable",
    "StageFailed",
    "AttestationSubmitter",
    "AttestationRequest",
    "ProofEnvelope",
    "RelayOutcome",
    "SyncedRoot",
    "RelayPipeline",
    "Stage",
    "StageEvent",
    "BackoffPolicy",
    "ProofPoller",
    "assemble",
    "validate",
    "RoundClock",
    "voting_round_id",
    "DirectRelayStrategy",
    "TrustlessRelayStrategy",
    "RequestBuilder",
]
