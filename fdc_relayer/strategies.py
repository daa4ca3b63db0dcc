"""
Relay strategies: the final on-chain step.

Direct: verify on the FDC chain, then a trusted relayer credits the deposit.
Trustless: sync the round's Merkle root to the destination, which verifies
the proof itself.
"""

from typing import Optional, Protocol

import structlog

from .encoding import ZERO_HASH
from .errors import (
    AlreadyCredited,
    RootUnavailable,
    SubmissionReverted,
    Unauthorized,
    VerificationFailed,
)
from .evm import DestinationChainClient, SourceChainClient, SubmitResult
from .models import ProofEnvelope, RelayOutcome, SyncedRoot

logger = structlog.get_logger()

# Revert reasons of the accounting contracts
ALREADY_CREDITED_REASONS = ("Already processed", "Already credited")
UNAUTHORIZED_REASONS = ("Unauthorized",)
ROOT_NOT_SYNCED_REASON = "Root not synced"

RELAY_CONTRACT_NAME = "Relay"


def raise_for_revert(result: SubmitResult, action: str, stage: str) -> None:
    """Map an unsuccessful call to the matching SubmissionReverted subclass."""
    reason = result.error or ""
    if any(r in reason for r in ALREADY_CREDITED_REASONS):
        raise AlreadyCredited(
            f"{action} rejected a replayed transaction", tx_hash=result.tx_hash, reason=reason
        )
    if any(r in reason for r in UNAUTHORIZED_REASONS):
        raise Unauthorized(
            f"{action} rejected the caller", stage=stage, tx_hash=result.tx_hash, reason=reason
        )
    raise SubmissionReverted(
        f"{action} reverted", stage=stage, tx_hash=result.tx_hash, reason=reason or None
    )


class RelayStrategy(Protocol):
    """Final on-chain step of a relay."""

    mode: str

    async def execute(self, envelope: ProofEnvelope) -> RelayOutcome:
        ...


class FdcProofVerifier:
    """FdcVerification.verifyEVMTransaction on the FDC chain."""

    def __init__(self, source: SourceChainClient, verification_address: str):
        self.source = source
        self.verification_address = verification_address

    async def verify(self, envelope: ProofEnvelope) -> bool:
        """
        Run the on-chain verification predicate.

        Raises:
            VerificationFailed: Predicate returned false
        """
        verified = await self.source.verify_evm_transaction(
            self.verification_address, envelope.to_abi_tuple()
        )
        logger.info(
            "proof_verification",
            tx_hash=envelope.transaction_hash,
            voting_round=envelope.voting_round,
            verified=verified,
        )
        if not verified:
            raise VerificationFailed(
                "FdcVerification.verifyEVMTransaction returned false",
                expected=True,
                actual=False,
            )
        return verified


class DirectRelayStrategy:
    """
    Verify with FdcVerification on the FDC chain, then credit via the trusted
    accounting contract.
    """

    mode = "direct"

    def __init__(
        self,
        source: SourceChainClient,
        destination: DestinationChainClient,
        verification_address: str,
    ):
        self.verifier = FdcProofVerifier(source, verification_address)
        self.destination = destination

    async def execute(self, envelope: ProofEnvelope) -> RelayOutcome:
        await self.verifier.verify(envelope)

        body = envelope.response.response_body
        depositor = body.source_address
        prior = await self.destination.get_balance_of(depositor)

        result = await self.destination.credit_deposit(
            envelope.transaction_hash, depositor, body.value
        )
        if not result.success:
            raise_for_revert(result, "creditDeposit", stage="credit")

        new = await self.destination.get_balance_of(depositor)
        logger.info(
            "deposit_credited",
            mode=self.mode,
            tx_hash=result.tx_hash,
            depositor=depositor,
            prior_balance=prior,
            new_balance=new,
        )
        return RelayOutcome(
            verified=True,
            prior_balance=prior,
            new_balance=new,
            transaction_hash=result.tx_hash,
            mode=self.mode,
        )


class TrustlessRelayStrategy:
    """
    Mirror the round's Merkle root to the destination and let the accounting
    contract verify the proof against it.
    """

    mode = "trustless"

    def __init__(
        self,
        source: SourceChainClient,
        destination: DestinationChainClient,
        registry_address: str,
        protocol_id: int = 200,
        relay_address: Optional[str] = None,
    ):
        self.source = source
        self.destination = destination
        self.registry_address = registry_address
        self.protocol_id = protocol_id
        self._relay_address = relay_address

    async def relay_address(self) -> str:
        """Relay contract address, looked up in the registry once."""
        if self._relay_address is None:
            self._relay_address = await self.source.get_contract_address_by_name(
                self.registry_address, RELAY_CONTRACT_NAME
            )
            logger.info("relay_address_resolved", relay=self._relay_address)
        return self._relay_address

    async def ensure_root(self, voting_round: int) -> SyncedRoot:
        """
        Store the round's Merkle root on the destination unless already stored.

        Raises:
            RootUnavailable: Relay has no root for the round yet
            Unauthorized: Signer is not the contract's relayer
            SubmissionReverted: syncRoot reverted for another reason
        """
        existing = await self.destination.get_root(voting_round)
        if existing != ZERO_HASH:
            logger.info("root_already_synced", voting_round=voting_round, merkle_root=existing)
            return SyncedRoot(voting_round=voting_round, merkle_root=existing)

        relay = await self.relay_address()
        merkle_root = await self.source.get_merkle_root(relay, self.protocol_id, voting_round)
        if merkle_root == ZERO_HASH:
            raise RootUnavailable(voting_round)

        result = await self.destination.sync_root(voting_round, merkle_root)
        if not result.success:
            raise_for_revert(result, "syncRoot", stage="sync_root")

        logger.info(
            "root_synced",
            voting_round=voting_round,
            merkle_root=merkle_root,
            tx_hash=result.tx_hash,
        )
        return SyncedRoot(voting_round=voting_round, merkle_root=merkle_root, written=True)

    async def execute(self, envelope: ProofEnvelope) -> RelayOutcome:
        synced = await self.ensure_root(envelope.voting_round)

        prior = await self.destination.get_own_balance()
        result = await self.destination.verify_and_credit(
            envelope.proof_bytes(), envelope.response.to_abi_tuple()
        )
        if not result.success:
            raise_for_revert(result, "verifyAndCredit", stage="credit")

        new = await self.destination.get_own_balance()
        logger.info(
            "deposit_credited",
            mode=self.mode,
            tx_hash=result.tx_hash,
            prior_balance=prior,
            new_balance=new,
        )
        return RelayOutcome(
            verified=True,
            prior_balance=prior,
            new_balance=new,
            transaction_hash=result.tx_hash,
            mode=self.mode,
            synced_root=synced,
        )
