"""
Shared fixtures: sample proof payloads and in-memory chain clients.
"""

from typing import Any, Optional

import pytest

from fdc_relayer.encoding import ZERO_HASH, to_bytes32_string
from fdc_relayer.evm import EVMConfig, SubmitResult

TX_HASH = "0x" + "ab" * 32
DEPOSITOR = "0x" + "11" * 20
RECEIVER = "0x" + "22" * 20
RELAYER = "0x" + "33" * 20
VALUE = 10**15
VOTING_ROUND = 1_004_567
MERKLE_ROOT = "0x" + "cd" * 32


def make_payload(
    tx_hash: str = TX_HASH,
    voting_round: int = VOTING_ROUND,
    status: Any = "1",
    source_id: str = "testETH",
    value: Any = str(VALUE),
    proof: Optional[list[str]] = None,
) -> dict[str, Any]:
    """DA-layer payload shaped like get-proof-round-id-bytes output."""
    return {
        "proof": proof if proof is not None else ["0x" + "01" * 32, "0x" + "02" * 32],
        "response": {
            "attestationType": to_bytes32_string("EVMTransaction"),
            "sourceId": to_bytes32_string(source_id),
            "votingRound": str(voting_round),
            "lowestUsedTimestamp": "1720000000",
            "requestBody": {
                "transactionHash": tx_hash,
                "requiredConfirmations": "1",
                "provideInput": True,
                "listEvents": True,
                "logIndices": [],
            },
            "responseBody": {
                "blockNumber": "6123456",
                "timestamp": "1720000012",
                "sourceAddress": DEPOSITOR,
                "isDeployment": False,
                "receivingAddress": RECEIVER,
                "value": value,
                "input": "0x",
                "status": status,
                "events": [
                    {
                        "logIndex": "0",
                        "emitterAddress": RECEIVER,
                        "topics": ["0x" + "ee" * 32],
                        "data": "0x",
                        "removed": False,
                    }
                ],
            },
        },
    }


@pytest.fixture
def payload() -> dict[str, Any]:
    return make_payload()


class FakeSourceChain:
    """FDC chain: fee config, hub, verification, registry and relay."""

    def __init__(
        self,
        fee: int = 10**17,
        balance: int = 10**18,
        block_timestamp: int = 1658430270,
        verified: bool = True,
        merkle_root: str = MERKLE_ROOT,
    ):
        self.fee = fee
        self.balance = balance
        self.block_timestamp = block_timestamp
        self.verified = verified
        self.merkle_root = merkle_root
        self.fee_error: Optional[Exception] = None
        self.hub_result = SubmitResult(success=True, tx_hash="0x" + "0f" * 32, block_number=42)
        self.requests: list[tuple[str, int]] = []
        self.registry_lookups = 0
        self.closed = False

    async def get_request_fee(self, fee_config_address: str, abi_encoded_request: str) -> int:
        if self.fee_error:
            raise self.fee_error
        return self.fee

    async def get_balance(self, address: Optional[str] = None) -> int:
        return self.balance

    async def request_attestation(
        self, hub_address: str, abi_encoded_request: str, fee: int
    ) -> SubmitResult:
        self.requests.append((abi_encoded_request, fee))
        return self.hub_result

    async def get_block_timestamp(self, block_number: int) -> int:
        return self.block_timestamp

    async def verify_evm_transaction(self, verification_address: str, proof: tuple) -> bool:
        return self.verified

    async def get_contract_address_by_name(self, registry_address: str, name: str) -> str:
        self.registry_lookups += 1
        return "0x" + "44" * 20

    async def get_merkle_root(self, relay_address: str, protocol_id: int, voting_round: int) -> str:
        return self.merkle_root

    async def close(self) -> None:
        self.closed = True


class FakeAccounting:
    """
    Accounting contract with both the trusted and the trustless interface.

    Replays are rejected with "Already processed", roots can only be synced by
    the relayer, and proofs are only accepted for synced rounds.
    """

    def __init__(self, relayer: str = RELAYER):
        self.relayer = relayer
        self.caller = relayer
        self.roots: dict[int, str] = {}
        self.balances: dict[str, int] = {}
        self.processed: set[str] = set()
        self.sync_writes = 0
        self.credit_writes = 0
        self.accounting_address = "0x" + "55" * 20
        self.config = EVMConfig(rpc_url="http://localhost:8545", chain_id=23295)
        self.w3 = None
        self.closed = False

    def _tx(self) -> str:
        return "0x" + f"{self.sync_writes + self.credit_writes:064x}"

    # Trusted interface

    async def get_balance_of(self, depositor: str) -> int:
        return self.balances.get(depositor.lower(), 0)

    async def simulate_credit_deposit(self, tx_hash: str, depositor: str, value: int) -> Optional[str]:
        if self.caller != self.relayer:
            return "Unauthorized"
        if tx_hash in self.processed:
            return "Already processed"
        return None

    async def credit_deposit(self, tx_hash: str, depositor: str, value: int) -> SubmitResult:
        reason = await self.simulate_credit_deposit(tx_hash, depositor, value)
        if reason:
            return SubmitResult(success=False, error=reason, simulated=True)
        self.processed.add(tx_hash)
        self.balances[depositor.lower()] = self.balances.get(depositor.lower(), 0) + value
        self.credit_writes += 1
        return SubmitResult(success=True, tx_hash=self._tx(), block_number=1)

    # Trustless interface

    async def get_own_balance(self) -> int:
        return self.balances.get(self.caller.lower(), 0)

    async def get_root(self, voting_round: int) -> str:
        return self.roots.get(voting_round, ZERO_HASH)

    async def simulate_sync_root(self, voting_round: int, merkle_root: str) -> Optional[str]:
        if self.caller != self.relayer:
            return "Unauthorized"
        return None

    async def sync_root(self, voting_round: int, merkle_root: str) -> SubmitResult:
        reason = await self.simulate_sync_root(voting_round, merkle_root)
        if reason:
            return SubmitResult(success=False, error=reason, simulated=True)
        self.roots[voting_round] = merkle_root
        self.sync_writes += 1
        return SubmitResult(success=True, tx_hash=self._tx(), block_number=1)

    async def simulate_verify_and_credit(self, proof: list[bytes], response: tuple) -> Optional[str]:
        voting_round = response[2]
        tx_hash = "0x" + response[4][0].hex()
        if voting_round not in self.roots:
            return "Root not synced"
        if tx_hash in self.processed:
            return "Already processed"
        return None

    async def verify_and_credit(self, proof: list[bytes], response: tuple) -> SubmitResult:
        reason = await self.simulate_verify_and_credit(proof, response)
        if reason:
            return SubmitResult(success=False, error=reason, simulated=True)
        tx_hash = "0x" + response[4][0].hex()
        value = response[5][5]
        self.processed.add(tx_hash)
        key = self.caller.lower()
        self.balances[key] = self.balances.get(key, 0) + value
        self.credit_writes += 1
        return SubmitResult(success=True, tx_hash=self._tx(), block_number=1)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def source() -> FakeSourceChain:
    return FakeSourceChain()


@pytest.fixture
def accounting() -> FakeAccounting:
    return FakeAccounting()
