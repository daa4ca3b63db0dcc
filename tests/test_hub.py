"""
Tests for attestation submission.
"""

import pytest

from fdc_relayer.errors import InsufficientFunds, SubmissionReverted
from fdc_relayer.evm import SubmitResult
from fdc_relayer.hub import AttestationSubmitter
from fdc_relayer.models import AttestationRequest, EncodedRequest
from fdc_relayer.rounds import RoundClock

from conftest import TX_HASH, FakeSourceChain

DEFAULT_FEE = 5 * 10**17
ENCODED = EncodedRequest(
    request=AttestationRequest.evm_transaction(TX_HASH, 1),
    abi_encoded="0x" + "45" * 64,
)


def make_submitter(source: FakeSourceChain) -> AttestationSubmitter:
    return AttestationSubmitter(
        source,
        hub_address="0x" + "48" * 20,
        fee_config_address="0x" + "19" * 20,
        default_fee=DEFAULT_FEE,
        clock=RoundClock(1658430000, 90),
    )


class TestAttestationSubmitter:
    """Tests for AttestationSubmitter.submit."""

    @pytest.mark.asyncio
    async def test_submit_derives_round_from_block(self, source):
        result = await make_submitter(source).submit(ENCODED)

        assert result.voting_round == 3
        assert result.block_number == 42
        assert result.block_timestamp == 1658430270
        assert result.fee == source.fee
        assert not result.fee_fallback
        assert source.requests == [(ENCODED.abi_encoded, source.fee)]

    @pytest.mark.asyncio
    async def test_fee_query_failure_falls_back_to_default(self, source):
        source.fee_error = RuntimeError("execution reverted")

        result = await make_submitter(source).submit(ENCODED)

        assert result.fee == DEFAULT_FEE
        assert result.fee_fallback
        assert source.requests[0][1] == DEFAULT_FEE

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, source):
        source.balance = source.fee - 1

        with pytest.raises(InsufficientFunds) as exc:
            await make_submitter(source).submit(ENCODED)

        assert exc.value.balance == source.fee - 1
        assert exc.value.fee == source.fee
        assert source.requests == []

    @pytest.mark.asyncio
    async def test_supplied_balance_is_used(self, source):
        with pytest.raises(InsufficientFunds):
            await make_submitter(source).submit(ENCODED, signer_balance=0)

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, source):
        source.hub_result = SubmitResult(
            success=False, tx_hash="0x" + "0e" * 32, error="Transaction reverted"
        )

        with pytest.raises(SubmissionReverted) as exc:
            await make_submitter(source).submit(ENCODED)

        assert exc.value.tx_hash == "0x" + "0e" * 32
        assert exc.value.stage == "submit"
        assert not exc.value.retry_safe
