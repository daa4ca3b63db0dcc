"""
Attestation request preparation via the FDC verifier service.
"""

from typing import Optional

import httpx
import structlog

from .encoding import normalize_tx_hash
from .errors import InvalidInput, UpstreamRejected
from .models import AttestationRequest, EncodedRequest

logger = structlog.get_logger()


class RequestBuilder:
    """
    Builds EVMTransaction attestation requests and obtains their ABI encoding.

    A failure here is fatal to the relay attempt and is never retried.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        source_id: str = "testETH",
        source_path: str = "eth",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.source_id = source_id
        self.source_path = source_path
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def prepare_url(self) -> str:
        return f"{self.base_url}/verifier/{self.source_path}/EVMTransaction/prepareRequest"

    def request_for(self, source_tx_hash: str, required_confirmations: int) -> AttestationRequest:
        """Validate inputs and build the (unencoded) request."""
        tx_hash = normalize_tx_hash(source_tx_hash)
        if isinstance(required_confirmations, bool) or not isinstance(required_confirmations, int):
            raise InvalidInput(
                "requiredConfirmations must be an integer", actual=required_confirmations
            )
        if required_confirmations < 0:
            raise InvalidInput(
                "requiredConfirmations must not be negative",
                expected=">= 0",
                actual=required_confirmations,
            )
        return AttestationRequest.evm_transaction(
            transaction_hash=tx_hash,
            required_confirmations=required_confirmations,
            source_id=self.source_id,
        )

    async def build(self, source_tx_hash: str, required_confirmations: int = 1) -> EncodedRequest:
        """
        Prepare an attestation request for a source-chain transaction.

        Raises:
            InvalidInput: Malformed transaction hash or confirmations
            UpstreamRejected: Verifier refused or returned no encoding
        """
        request = self.request_for(source_tx_hash, required_confirmations)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key

        try:
            response = await self.client.post(
                self.prepare_url, json=request.to_payload(), headers=headers
            )
        except httpx.HTTPError as e:
            raise UpstreamRejected(f"Verifier unreachable: {e}") from e

        if not response.is_success:
            raise UpstreamRejected(
                f"Verifier API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamRejected(
                f"Verifier returned a non-JSON body: {response.text}",
                status_code=response.status_code,
                body=response.text,
            ) from e

        encoded = data.get("abiEncodedRequest") if isinstance(data, dict) else None
        status = data.get("status") if isinstance(data, dict) else None
        if status == "INVALID" or not encoded:
            raise UpstreamRejected(
                f"Verifier rejected request: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(
            "attestation_request_prepared",
            tx_hash=request.request_body.transaction_hash,
            status=status,
            encoded_length=len(encoded),
        )
        return EncodedRequest(request=request, abi_encoded=encoded)

    async def close(self) -> None:
        await self.client.aclose()
