"""
Revert-reason probes against a deployed trustless accounting contract.

Each probe runs a call that must be rejected through eth_call and passes only
when the contract reverts with the specific reason that property implies.
A different revert reason, or no revert, is a failure.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from eth_account import Account
from web3 import Web3

from .encoding import ZERO_ADDRESS, ZERO_HASH, bytes_to_hex
from .evm import DestinationChainClient, EVMConfig
from .models import AttestationResponse, ProofEnvelope
from .strategies import ALREADY_CREDITED_REASONS, ROOT_NOT_SYNCED_REASON, UNAUTHORIZED_REASONS

logger = structlog.get_logger()

# Round far beyond any synced root
UNSYNCED_PROBE_ROUND = 999999


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe."""

    name: str
    passed: bool
    expected: tuple[str, ...]
    reason: Optional[str]

    def describe(self) -> str:
        verdict = "PASS" if self.passed else "FAIL"
        got = "no revert" if self.reason is None else f'"{self.reason}"'
        return f"{verdict} {self.name}: expected one of {list(self.expected)}, got {got}"


def _judge(name: str, expected: tuple[str, ...], reason: Optional[str]) -> ProbeResult:
    passed = reason is not None and any(e in reason for e in expected)
    log = logger.info if passed else logger.warning
    log("probe_result", probe=name, passed=passed, reason=reason)
    return ProbeResult(name=name, passed=passed, expected=expected, reason=reason)


def forged_response(voting_round: int = 0) -> AttestationResponse:
    """
    An all-zero response for a round with no synced root.
    """
    return AttestationResponse.model_validate(
        {
            "attestationType": ZERO_HASH,
            "sourceId": ZERO_HASH,
            "votingRound": voting_round,
            "lowestUsedTimestamp": 0,
            "requestBody": {
                "transactionHash": "0x" + "00" * 31 + "01",
                "requiredConfirmations": 1,
                "provideInput": True,
                "listEvents": True,
                "logIndices": [],
            },
            "responseBody": {
                "blockNumber": 0,
                "timestamp": 0,
                "sourceAddress": ZERO_ADDRESS,
                "isDeployment": False,
                "receivingAddress": ZERO_ADDRESS,
                "value": 0,
                "input": "0x",
                "status": 1,
                "events": [],
            },
        }
    )


async def probe_forged_proof(
    client: DestinationChainClient, voting_round: int = UNSYNCED_PROBE_ROUND
) -> ProbeResult:
    """A proof for a round without a stored root must be rejected as unsynced."""
    response = forged_response(voting_round)
    reason = await client.simulate_verify_and_credit([], response.to_abi_tuple())
    return _judge("forged_proof", (ROOT_NOT_SYNCED_REASON,), reason)


async def probe_replay_protection(
    client: DestinationChainClient, envelope: ProofEnvelope
) -> ProbeResult:
    """Re-submitting an already credited proof must be rejected as a replay."""
    reason = await client.simulate_verify_and_credit(
        envelope.proof_bytes(), envelope.response.to_abi_tuple()
    )
    return _judge("replay_protection", ALREADY_CREDITED_REASONS, reason)


async def probe_unauthorized_sync(
    client: DestinationChainClient, voting_round: int = UNSYNCED_PROBE_ROUND
) -> ProbeResult:
    """syncRoot from a fresh random account must be rejected as unauthorized."""
    stranger = DestinationChainClient(
        EVMConfig(
            rpc_url=client.config.rpc_url,
            chain_id=client.config.chain_id,
            private_key=bytes_to_hex(Account.create().key),
        ),
        client.accounting_address,
        w3=client.w3,
    )
    logger.info("probe_unauthorized_caller", address=stranger.address)
    fake_root = Web3.to_hex(Web3.keccak(text="fake"))
    reason = await stranger.simulate_sync_root(voting_round, fake_root)
    return _judge("unauthorized_sync", UNAUTHORIZED_REASONS, reason)
