"""
Tests for wire models.
"""

import pytest
from pydantic import ValidationError
from web3 import Web3

from fdc_relayer.encoding import ZERO_ADDRESS, to_bytes32_string
from fdc_relayer.models import (
    AttestationRequest,
    EventRecord,
    ProofEnvelope,
    RelayOutcome,
    RequestBody,
    ResponseBody,
)

from conftest import DEPOSITOR, TX_HASH, VALUE, make_payload


class TestAttestationRequest:
    """Tests for request construction."""

    def test_evm_transaction_defaults(self):
        request = AttestationRequest.evm_transaction(TX_HASH, 1)
        assert request.attestation_type == to_bytes32_string("EVMTransaction")
        assert request.source_id == to_bytes32_string("testETH")
        body = request.request_body
        assert body.provide_input is True
        assert body.list_events is True
        assert body.log_indices == ()

    def test_payload_uses_wire_names(self):
        payload = AttestationRequest.evm_transaction("0x" + "AB" * 32, 3).to_payload()
        assert payload["requestBody"] == {
            "transactionHash": TX_HASH,
            "requiredConfirmations": "3",
            "provideInput": True,
            "listEvents": True,
            "logIndices": [],
        }
        assert set(payload) == {"attestationType", "sourceId", "requestBody"}

    def test_request_is_immutable(self):
        request = AttestationRequest.evm_transaction(TX_HASH, 1)
        with pytest.raises(ValidationError):
            request.source_id = to_bytes32_string("BTC")


class TestNumericParsing:
    """Numeric fields accept ints, decimal strings and hex strings."""

    @pytest.mark.parametrize("raw,expected", [(5, 5), ("5", 5), ("0x05", 5), ("0X0a", 10)])
    def test_accepted_forms(self, raw, expected):
        body = RequestBody(transaction_hash=TX_HASH, required_confirmations=raw)
        assert body.required_confirmations == expected

    def test_float_rejected(self):
        with pytest.raises(ValidationError):
            RequestBody(transaction_hash=TX_HASH, required_confirmations=1.0)

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            RequestBody(transaction_hash=TX_HASH, required_confirmations=True)

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            RequestBody(transaction_hash=TX_HASH, required_confirmations=-1)

    def test_uint256_value_not_truncated(self):
        payload = make_payload(value=str(2**256 - 1))
        envelope = ProofEnvelope.model_validate(payload)
        assert envelope.response.response_body.value == 2**256 - 1


class TestResponseDefaults:
    """Absent optional fields get their zero values."""

    def test_optional_fields(self):
        body = ResponseBody.model_validate(
            {
                "blockNumber": 1,
                "timestamp": 2,
                "sourceAddress": DEPOSITOR,
                "receivingAddress": None,
                "value": 0,
                "input": None,
                "status": 1,
                "events": None,
            }
        )
        assert body.receiving_address == ZERO_ADDRESS
        assert body.input == "0x"
        assert body.is_deployment is False
        assert body.events == ()

    def test_event_removed_defaults_false(self):
        event = EventRecord.model_validate(
            {"logIndex": 0, "emitterAddress": DEPOSITOR, "topics": [], "removed": None}
        )
        assert event.removed is False
        assert event.data == "0x"


class TestProofEnvelope:
    """Tests for ProofEnvelope."""

    def test_request_body_round_trip(self, payload):
        envelope = ProofEnvelope.model_validate(payload)
        original = AttestationRequest.evm_transaction(TX_HASH, 1)
        assert envelope.response.request_body == original.request_body

    def test_addresses_checksummed(self, payload):
        envelope = ProofEnvelope.model_validate(payload)
        assert envelope.response.response_body.source_address == Web3.to_checksum_address(DEPOSITOR)

    def test_abi_tuple_layout(self, payload):
        envelope = ProofEnvelope.model_validate(payload)
        proof, response = envelope.to_abi_tuple()
        assert proof == [bytes([1]) * 32, bytes([2]) * 32]
        assert response[2] == envelope.voting_round
        assert response[4][0] == bytes.fromhex(TX_HASH[2:])
        assert response[5][5] == VALUE
        assert len(response[5][8]) == 1

    def test_to_dict_reparses_to_equal_envelope(self, payload):
        envelope = ProofEnvelope.model_validate(payload)
        assert ProofEnvelope.model_validate(envelope.to_dict()) == envelope
        assert "proof" in envelope.to_dict()


class TestRelayOutcome:
    def test_credited_is_delta(self):
        outcome = RelayOutcome(verified=True, prior_balance=5, new_balance=12, transaction_hash=None)
        assert outcome.credited == 7
