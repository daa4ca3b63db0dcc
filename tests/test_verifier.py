"""
Tests for the attestation request builder.
"""

import json

import httpx
import pytest

from fdc_relayer.encoding import to_bytes32_string
from fdc_relayer.errors import InvalidInput, UpstreamRejected
from fdc_relayer.verifier import RequestBuilder

from conftest import TX_HASH

VERIFIER_URL = "https://verifier.example/"
ENCODED = "0x" + "45564d" * 20


def make_builder(handler) -> RequestBuilder:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RequestBuilder(VERIFIER_URL, api_key="key", client=client)


class TestRequestBuilder:
    """Tests for RequestBuilder.build."""

    @pytest.mark.asyncio
    async def test_build_returns_encoded_request(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "VALID", "abiEncodedRequest": ENCODED})

        builder = make_builder(handler)
        encoded = await builder.build(TX_HASH, 1)

        assert encoded.abi_encoded == ENCODED
        assert encoded.transaction_hash == TX_HASH
        request = seen[0]
        assert str(request.url) == VERIFIER_URL + "verifier/eth/EVMTransaction/prepareRequest"
        assert request.headers["X-API-KEY"] == "key"
        body = json.loads(request.content)
        assert body["attestationType"] == to_bytes32_string("EVMTransaction")
        assert body["sourceId"] == to_bytes32_string("testETH")
        assert body["requestBody"]["requiredConfirmations"] == "1"
        await builder.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad_hash",
        ["", "0x1234", "ab" * 32, "0x" + "zz" * 32, "0x" + "ab" * 33],
    )
    async def test_malformed_hash_rejected_before_http(self, bad_hash):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(InvalidInput) as exc:
            await make_builder(handler).build(bad_hash, 1)
        assert exc.value.stage == "input"

    @pytest.mark.asyncio
    async def test_negative_confirmations_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(InvalidInput):
            await make_builder(handler).build(TX_HASH, -1)

    @pytest.mark.asyncio
    async def test_invalid_status_surfaces_service_text(self):
        text = '{"status":"INVALID","message":"transaction not found"}'

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=text, headers={"content-type": "application/json"})

        with pytest.raises(UpstreamRejected) as exc:
            await make_builder(handler).build(TX_HASH, 1)
        assert "transaction not found" in exc.value.message
        assert exc.value.body == text
        assert not exc.value.retry_safe

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="invalid api key")

        with pytest.raises(UpstreamRejected) as exc:
            await make_builder(handler).build(TX_HASH, 1)
        assert exc.value.status_code == 401
        assert "invalid api key" in exc.value.message

    @pytest.mark.asyncio
    async def test_missing_encoding(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "VALID"})

        with pytest.raises(UpstreamRejected):
            await make_builder(handler).build(TX_HASH, 1)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        with pytest.raises(UpstreamRejected) as exc:
            await make_builder(handler).build(TX_HASH, 1)
        assert "unreachable" in exc.value.message
