"""
Typed models for attestation requests, proofs and relay results.

Wire payloads use camelCase keys; the models expose snake_case attributes and
accept either form. Numeric fields are parsed into Python ints from JSON ints,
decimal strings or 0x-hex strings. Floats are rejected so large values can
never be truncated on the way in.
"""

import re
from dataclasses import dataclass
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .encoding import (
    ZERO_ADDRESS,
    hex_to_bytes,
    normalize_hex,
    to_bytes32_string,
    to_checksum,
)

TX_STATUS_SUCCESS = 1
TX_STATUS_REVERTED = 0

ATTESTATION_TYPE_EVM_TRANSACTION = "EVMTransaction"

_DECIMAL_RE = re.compile(r"^-?\d+$")


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        if _DECIMAL_RE.match(text):
            return int(text)
    raise ValueError(f"expected an integer or integer string, got {value!r}")


def _parse_bytes32(value: Any) -> str:
    text = normalize_hex(value)
    if len(text) != 66:
        raise ValueError(f"expected 32 bytes, got {(len(text) - 2) // 2}")
    return text


def _parse_data(value: Any) -> str:
    if value is None or value == "":
        return "0x"
    return normalize_hex(value)


def _parse_optional_address(value: Any) -> str:
    if value is None or value == "":
        return ZERO_ADDRESS
    return to_checksum(value)


def _parse_optional_bool(value: Any) -> Any:
    return False if value is None else value


def _parse_list(value: Any) -> Any:
    return () if value is None else value


UInt = Annotated[int, BeforeValidator(_parse_int), Field(ge=0)]
Bytes32 = Annotated[str, BeforeValidator(_parse_bytes32)]
HexData = Annotated[str, BeforeValidator(_parse_data)]
Address = Annotated[str, BeforeValidator(to_checksum)]
OptionalAddress = Annotated[str, BeforeValidator(_parse_optional_address)]
OptionalBool = Annotated[bool, BeforeValidator(_parse_optional_bool)]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ============================================================================
# Request
# ============================================================================


class RequestBody(_WireModel):
    """EVMTransaction request body."""

    transaction_hash: Bytes32
    required_confirmations: UInt
    provide_input: bool = True
    list_events: bool = True
    # Empty means "include all events"
    log_indices: Annotated[tuple[UInt, ...], BeforeValidator(_parse_list)] = ()

    def to_payload(self) -> dict[str, Any]:
        """Body as the preparation service expects it."""
        return {
            "transactionHash": self.transaction_hash,
            "requiredConfirmations": str(self.required_confirmations),
            "provideInput": self.provide_input,
            "listEvents": self.list_events,
            "logIndices": list(self.log_indices),
        }

    def to_abi_tuple(self) -> tuple:
        return (
            hex_to_bytes(self.transaction_hash),
            self.required_confirmations,
            self.provide_input,
            self.list_events,
            list(self.log_indices),
        )


class AttestationRequest(_WireModel):
    """Attestation request envelope. Immutable once built."""

    attestation_type: Bytes32
    source_id: Bytes32
    request_body: RequestBody

    @classmethod
    def evm_transaction(
        cls,
        transaction_hash: str,
        required_confirmations: int,
        source_id: str = "testETH",
        provide_input: bool = True,
        list_events: bool = True,
        log_indices: tuple[int, ...] = (),
    ) -> "AttestationRequest":
        """Build an EVMTransaction request from plain tags."""
        return cls(
            attestation_type=to_bytes32_string(ATTESTATION_TYPE_EVM_TRANSACTION),
            source_id=to_bytes32_string(source_id),
            request_body=RequestBody(
                transaction_hash=transaction_hash,
                required_confirmations=required_confirmations,
                provide_input=provide_input,
                list_events=list_events,
                log_indices=log_indices,
            ),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "attestationType": self.attestation_type,
            "sourceId": self.source_id,
            "requestBody": self.request_body.to_payload(),
        }


@dataclass(frozen=True)
class EncodedRequest:
    """A request together with the ABI encoding returned by the verifier."""

    request: AttestationRequest
    abi_encoded: str

    @property
    def transaction_hash(self) -> str:
        return self.request.request_body.transaction_hash


# ============================================================================
# Proof
# ============================================================================


class EventRecord(_WireModel):
    """Event emitted by the attested transaction."""

    log_index: UInt
    emitter_address: Address
    topics: tuple[Bytes32, ...] = ()
    data: HexData = "0x"
    removed: OptionalBool = False

    def to_abi_tuple(self) -> tuple:
        return (
            self.log_index,
            self.emitter_address,
            [hex_to_bytes(t) for t in self.topics],
            hex_to_bytes(self.data),
            self.removed,
        )


class ResponseBody(_WireModel):
    """Observed properties of the attested transaction."""

    block_number: UInt
    timestamp: UInt
    source_address: Address
    is_deployment: OptionalBool = False
    receiving_address: OptionalAddress = ZERO_ADDRESS
    value: UInt
    input: HexData = "0x"
    status: UInt
    events: Annotated[tuple[EventRecord, ...], BeforeValidator(_parse_list)] = ()

    def to_abi_tuple(self) -> tuple:
        return (
            self.block_number,
            self.timestamp,
            self.source_address,
            self.is_deployment,
            self.receiving_address,
            self.value,
            hex_to_bytes(self.input),
            self.status,
            [e.to_abi_tuple() for e in self.events],
        )


class AttestationResponse(_WireModel):
    """Attestation response as committed to the voting round's Merkle tree."""

    attestation_type: Bytes32
    source_id: Bytes32
    voting_round: UInt
    lowest_used_timestamp: UInt
    request_body: RequestBody
    response_body: ResponseBody

    def to_abi_tuple(self) -> tuple:
        return (
            hex_to_bytes(self.attestation_type),
            hex_to_bytes(self.source_id),
            self.voting_round,
            self.lowest_used_timestamp,
            self.request_body.to_abi_tuple(),
            self.response_body.to_abi_tuple(),
        )


class ProofEnvelope(_WireModel):
    """Merkle proof plus the attested response."""

    merkle_proof: Annotated[tuple[Bytes32, ...], BeforeValidator(_parse_list)] = Field(
        default=(), alias="proof"
    )
    response: AttestationResponse

    @property
    def transaction_hash(self) -> str:
        return self.response.request_body.transaction_hash

    @property
    def voting_round(self) -> int:
        return self.response.voting_round

    def proof_bytes(self) -> list[bytes]:
        return [hex_to_bytes(p) for p in self.merkle_proof]

    def to_abi_tuple(self) -> tuple:
        """`IEVMTransaction.Proof` struct: (merkleProof, data)."""
        return (self.proof_bytes(), self.response.to_abi_tuple())

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form using wire key names."""
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of submitting an attestation request to the FDC hub."""

    submission_tx_hash: str
    voting_round: int
    block_number: int
    block_timestamp: int
    fee: int
    fee_fallback: bool = False


@dataclass(frozen=True)
class SyncedRoot:
    """Merkle root stored on the destination chain for a voting round."""

    voting_round: int
    merkle_root: str
    written: bool = False


@dataclass(frozen=True)
class RelayOutcome:
    """Terminal result of the on-chain relay step."""

    verified: bool
    prior_balance: int
    new_balance: int
    transaction_hash: Optional[str]
    mode: str = ""
    synced_root: Optional[SyncedRoot] = None

    @property
    def credited(self) -> int:
        return self.new_balance - self.prior_balance
