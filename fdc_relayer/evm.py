"""
EVM utilities for the FDC (Coston2) and accounting (Sapphire) contracts.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from eth_account import Account
from pydantic import BaseModel
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError
from web3.types import TxReceipt

from .encoding import bytes_to_hex, hex_to_bytes

logger = structlog.get_logger()


class EVMConfig(BaseModel):
    """Configuration for EVM connection."""

    rpc_url: str = "http://localhost:8545"
    chain_id: Optional[int] = None
    private_key: str = ""


# Minimal ABIs for contracts we interact with

_REQUEST_BODY = {
    "name": "requestBody",
    "type": "tuple",
    "components": [
        {"name": "transactionHash", "type": "bytes32"},
        {"name": "requiredConfirmations", "type": "uint16"},
        {"name": "provideInput", "type": "bool"},
        {"name": "listEvents", "type": "bool"},
        {"name": "logIndices", "type": "uint32[]"},
    ],
}

_RESPONSE_BODY = {
    "name": "responseBody",
    "type": "tuple",
    "components": [
        {"name": "blockNumber", "type": "uint64"},
        {"name": "timestamp", "type": "uint64"},
        {"name": "sourceAddress", "type": "address"},
        {"name": "isDeployment", "type": "bool"},
        {"name": "receivingAddress", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "input", "type": "bytes"},
        {"name": "status", "type": "uint8"},
        {
            "name": "events",
            "type": "tuple[]",
            "components": [
                {"name": "logIndex", "type": "uint32"},
                {"name": "emitterAddress", "type": "address"},
                {"name": "topics", "type": "bytes32[]"},
                {"name": "data", "type": "bytes"},
                {"name": "removed", "type": "bool"},
            ],
        },
    ],
}

_RESPONSE_COMPONENTS = [
    {"name": "attestationType", "type": "bytes32"},
    {"name": "sourceId", "type": "bytes32"},
    {"name": "votingRound", "type": "uint64"},
    {"name": "lowestUsedTimestamp", "type": "uint64"},
    _REQUEST_BODY,
    _RESPONSE_BODY,
]

FDC_HUB_ABI = [
    {
        "inputs": [{"name": "_data", "type": "bytes"}],
        "name": "requestAttestation",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

FDC_FEE_CONFIG_ABI = [
    {
        "inputs": [{"name": "_data", "type": "bytes"}],
        "name": "getRequestFee",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

FDC_VERIFICATION_ABI = [
    {
        "inputs": [
            {
                "name": "_proof",
                "type": "tuple",
                "components": [
                    {"name": "merkleProof", "type": "bytes32[]"},
                    {"name": "data", "type": "tuple", "components": _RESPONSE_COMPONENTS},
                ],
            }
        ],
        "name": "verifyEVMTransaction",
        "outputs": [{"name": "_proved", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]

RELAY_ABI = [
    {
        "inputs": [
            {"name": "_protocolId", "type": "uint256"},
            {"name": "_votingRoundId", "type": "uint256"},
        ],
        "name": "merkleRoots",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
]

CONTRACT_REGISTRY_ABI = [
    {
        "inputs": [{"name": "_name", "type": "string"}],
        "name": "getContractAddressByName",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

TRUSTED_ACCOUNTING_ABI = [
    {
        "inputs": [
            {"name": "txHash", "type": "bytes32"},
            {"name": "depositor", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "creditDeposit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "depositor", "type": "address"}],
        "name": "getBalanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

TRUSTLESS_ACCOUNTING_ABI = [
    {
        "inputs": [
            {"name": "proof", "type": "bytes32[]"},
            {"name": "response", "type": "tuple", "components": _RESPONSE_COMPONENTS},
        ],
        "name": "verifyAndCredit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "votingRoundId", "type": "uint256"},
            {"name": "merkleRoot", "type": "bytes32"},
        ],
        "name": "syncRoot",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "uint256"}],
        "name": "roots",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

_REVERT_PREFIX = "execution reverted"


def revert_reason(error: ContractLogicError) -> str:
    """
    Extract the revert string from a contract logic error.

    >>> revert_reason(ContractLogicError("execution reverted: Already processed"))
    'Already processed'
    """
    message = error.message if getattr(error, "message", None) else str(error)
    if message.startswith(_REVERT_PREFIX):
        message = message[len(_REVERT_PREFIX):].lstrip(": ").strip()
    return message or "execution reverted"


@dataclass
class SubmitResult:
    """Result of a simulated-then-sent state-changing call."""

    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    # True when the revert was caught by the eth_call preflight and nothing was sent
    simulated: bool = False


class EVMClient:
    """
    Async EVM client for one chain and one signing key.
    """

    def __init__(self, config: EVMConfig, w3: Optional[AsyncWeb3] = None):
        self.config = config
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self.account = Account.from_key(config.private_key) if config.private_key else None

    @property
    def address(self) -> str:
        """Get account address."""
        if not self.account:
            raise ValueError("No private key configured")
        return self.account.address

    async def close(self) -> None:
        """Release the provider's HTTP session."""
        await self.w3.provider.disconnect()

    async def get_nonce(self) -> int:
        """Get next nonce for account."""
        return await self.w3.eth.get_transaction_count(self.address)

    async def get_gas_price(self) -> int:
        """Get current gas price."""
        return await self.w3.eth.gas_price

    async def get_chain_id(self) -> int:
        if self.config.chain_id is None:
            return await self.w3.eth.chain_id
        return self.config.chain_id

    async def get_balance(self, address: Optional[str] = None) -> int:
        """Native balance of `address` (defaults to the signer)."""
        return await self.w3.eth.get_balance(Web3.to_checksum_address(address or self.address))

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self.w3.eth.get_block(block_number)
        return int(block["timestamp"])

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def send_transaction(
        self,
        to: str,
        data: bytes,
        gas_limit: int = 500000,
        value: int = 0,
    ) -> TxReceipt:
        """
        Send a transaction and wait for receipt.
        """
        if not self.account:
            raise ValueError("No private key configured")

        nonce = await self.get_nonce()
        gas_price = await self.get_gas_price()

        tx = {
            "chainId": await self.get_chain_id(),
            "nonce": nonce,
            "to": Web3.to_checksum_address(to),
            "value": value,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "data": data,
        }

        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("tx_sent", tx_hash=Web3.to_hex(tx_hash), to=tx["to"], value=value)
        return await self.w3.eth.wait_for_transaction_receipt(tx_hash)

    async def simulate(
        self, contract: Any, fn_name: str, args: list[Any], value: int = 0
    ) -> Optional[str]:
        """
        Run a state-changing function through eth_call.

        Returns the revert reason, or None when the call would succeed.
        """
        fn = contract.get_function_by_name(fn_name)(*args)
        try:
            await fn.call({"from": self.address, "value": value})
        except ContractLogicError as e:
            return revert_reason(e)
        return None

    async def execute(
        self,
        contract: Any,
        fn_name: str,
        args: list[Any],
        gas_limit: int = 500000,
        value: int = 0,
    ) -> SubmitResult:
        """
        Simulate, then send a state-changing call.

        Reverts come back as an unsuccessful result rather than an exception.
        """
        reason = await self.simulate(contract, fn_name, args, value=value)
        if reason is not None:
            logger.warning("tx_simulation_reverted", function=fn_name, reason=reason)
            return SubmitResult(success=False, error=reason, simulated=True)

        data = contract.encode_abi(fn_name, args=args)
        receipt = await self.send_transaction(
            contract.address, hex_to_bytes(data), gas_limit=gas_limit, value=value
        )
        tx_hash = Web3.to_hex(receipt["transactionHash"])

        if receipt["status"] == 1:
            logger.info(
                "tx_confirmed",
                function=fn_name,
                tx_hash=tx_hash,
                gas_used=receipt["gasUsed"],
            )
            return SubmitResult(
                success=True,
                tx_hash=tx_hash,
                gas_used=receipt["gasUsed"],
                block_number=receipt["blockNumber"],
            )

        logger.error("tx_reverted", function=fn_name, tx_hash=tx_hash)
        return SubmitResult(
            success=False,
            tx_hash=tx_hash,
            error="Transaction reverted",
            gas_used=receipt["gasUsed"],
            block_number=receipt["blockNumber"],
        )


class SourceChainClient(EVMClient):
    """Client for the FDC contracts on the attestation chain."""

    async def get_request_fee(self, fee_config_address: str, abi_encoded_request: str) -> int:
        contract = self.contract(fee_config_address, FDC_FEE_CONFIG_ABI)
        return await contract.functions.getRequestFee(hex_to_bytes(abi_encoded_request)).call()

    async def request_attestation(
        self, hub_address: str, abi_encoded_request: str, fee: int
    ) -> SubmitResult:
        """Call FdcHub.requestAttestation() paying `fee`."""
        contract = self.contract(hub_address, FDC_HUB_ABI)
        return await self.execute(
            contract,
            "requestAttestation",
            [hex_to_bytes(abi_encoded_request)],
            value=fee,
        )

    async def verify_evm_transaction(self, verification_address: str, proof: tuple) -> bool:
        """Call FdcVerification.verifyEVMTransaction() with a (merkleProof, data) tuple."""
        contract = self.contract(verification_address, FDC_VERIFICATION_ABI)
        return bool(await contract.functions.verifyEVMTransaction(proof).call())

    async def get_contract_address_by_name(self, registry_address: str, name: str) -> str:
        contract = self.contract(registry_address, CONTRACT_REGISTRY_ABI)
        return await contract.functions.getContractAddressByName(name).call()

    async def get_merkle_root(self, relay_address: str, protocol_id: int, voting_round: int) -> str:
        """Relay.merkleRoots() as lowercase hex."""
        contract = self.contract(relay_address, RELAY_ABI)
        root = await contract.functions.merkleRoots(protocol_id, voting_round).call()
        return bytes_to_hex(root)


class DestinationChainClient(EVMClient):
    """Client for the accounting contract on the destination chain."""

    def __init__(
        self,
        config: EVMConfig,
        accounting_address: str,
        w3: Optional[AsyncWeb3] = None,
    ):
        super().__init__(config, w3)
        self.accounting_address = Web3.to_checksum_address(accounting_address)

    def trusted(self) -> Any:
        return self.contract(self.accounting_address, TRUSTED_ACCOUNTING_ABI)

    def trustless(self) -> Any:
        return self.contract(self.accounting_address, TRUSTLESS_ACCOUNTING_ABI)

    # Trusted relayer contract

    async def get_balance_of(self, depositor: str) -> int:
        return await self.trusted().functions.getBalanceOf(
            Web3.to_checksum_address(depositor)
        ).call()

    async def credit_deposit(self, tx_hash: str, depositor: str, value: int) -> SubmitResult:
        """Call creditDeposit(txHash, depositor, value)."""
        return await self.execute(
            self.trusted(),
            "creditDeposit",
            [hex_to_bytes(tx_hash), Web3.to_checksum_address(depositor), value],
        )

    # Trustless contract

    async def get_own_balance(self) -> int:
        """getBalance() as seen by the signer."""
        return await self.trustless().functions.getBalance().call({"from": self.address})

    async def get_root(self, voting_round: int) -> str:
        root = await self.trustless().functions.roots(voting_round).call()
        return bytes_to_hex(root)

    async def sync_root(self, voting_round: int, merkle_root: str) -> SubmitResult:
        return await self.execute(
            self.trustless(), "syncRoot", [voting_round, hex_to_bytes(merkle_root)]
        )

    async def simulate_sync_root(self, voting_round: int, merkle_root: str) -> Optional[str]:
        return await self.simulate(
            self.trustless(), "syncRoot", [voting_round, hex_to_bytes(merkle_root)]
        )

    async def verify_and_credit(self, proof: list[bytes], response: tuple) -> SubmitResult:
        """Call verifyAndCredit(proof, response)."""
        return await self.execute(
            self.trustless(), "verifyAndCredit", [proof, response], gas_limit=800000
        )

    async def simulate_verify_and_credit(
        self, proof: list[bytes], response: tuple
    ) -> Optional[str]:
        return await self.simulate(self.trustless(), "verifyAndCredit", [proof, response])

    async def simulate_credit_deposit(
        self, tx_hash: str, depositor: str, value: int
    ) -> Optional[str]:
        return await self.simulate(
            self.trusted(),
            "creditDeposit",
            [hex_to_bytes(tx_hash), Web3.to_checksum_address(depositor), value],
        )
