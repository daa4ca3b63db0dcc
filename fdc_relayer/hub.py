"""
Attestation request submission to the FDC hub.
"""

from typing import Optional

import structlog

from .errors import InsufficientFunds, SubmissionReverted
from .evm import SourceChainClient
from .models import EncodedRequest, SubmissionResult
from .rounds import RoundClock

logger = structlog.get_logger()


class AttestationSubmitter:
    """
    Pays the attestation fee and submits an encoded request.

    Submission is never retried: the fee may already have been spent.
    """

    def __init__(
        self,
        client: SourceChainClient,
        hub_address: str,
        fee_config_address: str,
        default_fee: int,
        clock: Optional[RoundClock] = None,
    ):
        self.client = client
        self.hub_address = hub_address
        self.fee_config_address = fee_config_address
        self.default_fee = default_fee
        self.clock = clock or RoundClock()

    async def quote_fee(self, abi_encoded_request: str) -> tuple[int, bool]:
        """
        Query the request fee.

        Returns (fee, fell_back). Any query failure falls back to the default.
        """
        try:
            fee = await self.client.get_request_fee(self.fee_config_address, abi_encoded_request)
        except Exception as e:
            logger.warning(
                "fee_quote_fallback",
                error=str(e),
                default_fee=self.default_fee,
            )
            return self.default_fee, True
        return int(fee), False

    async def submit(
        self,
        encoded: EncodedRequest,
        signer_balance: Optional[int] = None,
    ) -> SubmissionResult:
        """
        Submit the request and derive its voting round from the inclusion block.

        Raises:
            InsufficientFunds: Signer balance below the fee
            SubmissionReverted: Hub transaction did not succeed
        """
        fee, fell_back = await self.quote_fee(encoded.abi_encoded)

        balance = signer_balance if signer_balance is not None else await self.client.get_balance()
        if balance < fee:
            raise InsufficientFunds(balance, fee)

        result = await self.client.request_attestation(self.hub_address, encoded.abi_encoded, fee)
        if not result.success:
            raise SubmissionReverted(
                "Attestation request reverted",
                tx_hash=result.tx_hash,
                reason=result.error,
            )

        block_timestamp = await self.client.get_block_timestamp(result.block_number)
        voting_round = self.clock.round_for(block_timestamp)

        logger.info(
            "attestation_submitted",
            tx_hash=result.tx_hash,
            source_tx_hash=encoded.transaction_hash,
            block_number=result.block_number,
            voting_round=voting_round,
            fee=fee,
        )
        return SubmissionResult(
            submission_tx_hash=result.tx_hash,
            voting_round=voting_round,
            block_number=result.block_number,
            block_timestamp=block_timestamp,
            fee=fee,
            fee_fallback=fell_back,
        )
