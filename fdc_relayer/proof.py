"""
Proof assembly and semantic validation.

Assembly checks shape; validation checks that the attested transaction is the
one that was requested. Neither checks the Merkle proof itself: that is the
verifying contract's job.
"""

from typing import Any, Optional

import structlog
from pydantic import ValidationError

from .encoding import normalize_tx_hash
from .errors import MalformedProof, MismatchError
from .models import TX_STATUS_SUCCESS, AttestationRequest, ProofEnvelope

logger = structlog.get_logger()


def assemble(raw: dict[str, Any]) -> ProofEnvelope:
    """
    Parse a DA-layer payload into a ProofEnvelope.

    Raises:
        MalformedProof: Missing fields, wrong types or unparsable numbers
    """
    try:
        return ProofEnvelope.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"])
        raise MalformedProof(
            f"Proof payload failed schema validation at {location}: {first['msg']}",
            expected="EVMTransaction proof schema",
            actual=f"{e.error_count()} error(s)",
        ) from e


def _check(field: str, expected: Any, actual: Any) -> None:
    if expected != actual:
        raise MismatchError(field, expected, actual)


def validate(
    envelope: ProofEnvelope,
    expected_tx_hash: str,
    expected_source_id: str,
    expected_status: int = TX_STATUS_SUCCESS,
    expected_request: Optional[AttestationRequest] = None,
) -> ProofEnvelope:
    """
    Check the proof describes the requested transaction.

    Fields are compared in a fixed order and the first mismatch is raised.
    `expected_source_id` is the bytes32 hex encoding of the source tag.

    Raises:
        MismatchError: Names the first field that differs
    """
    response = envelope.response
    _check("sourceId", expected_source_id.lower(), response.source_id)
    _check(
        "transactionHash",
        normalize_tx_hash(expected_tx_hash),
        response.request_body.transaction_hash,
    )
    _check("status", expected_status, response.response_body.status)

    if expected_request is not None:
        body = expected_request.request_body
        actual = response.request_body
        _check("attestationType", expected_request.attestation_type, response.attestation_type)
        _check("requiredConfirmations", body.required_confirmations, actual.required_confirmations)
        _check("provideInput", body.provide_input, actual.provide_input)
        _check("listEvents", body.list_events, actual.list_events)
        _check("logIndices", list(body.log_indices), list(actual.log_indices))

    logger.info(
        "proof_validated",
        tx_hash=response.request_body.transaction_hash,
        voting_round=response.voting_round,
        proof_nodes=len(envelope.merkle_proof),
    )
    return envelope
