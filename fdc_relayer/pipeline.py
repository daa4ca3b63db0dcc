"""
Relay pipeline: prepare, submit, poll, validate, relay.

One pipeline drives one deposit at a time. Every stage reports a StageEvent
to the optional `on_event` callback; failures propagate as RelayError
subclasses after a "failed" event has been emitted.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Optional

import structlog

from .config import RelayMode, Settings
from .db import STATUS_CREDITED, RelayAttempt, RelayDatabase
from .encoding import normalize_tx_hash
from .errors import InvalidInput, RelayError, StageFailed
from .evm import DestinationChainClient, EVMClient, EVMConfig, SourceChainClient
from .hub import AttestationSubmitter
from .models import AttestationRequest, ProofEnvelope, RelayOutcome
from .poller import ProofPoller
from .proof import assemble, validate
from .strategies import (
    DirectRelayStrategy,
    FdcProofVerifier,
    RelayStrategy,
    TrustlessRelayStrategy,
)
from .verifier import RequestBuilder

logger = structlog.get_logger()


class Stage(str, Enum):
    """Pipeline stages in execution order."""

    PREPARE = "prepare"
    SUBMIT = "submit"
    POLL = "poll"
    VALIDATE = "validate"
    VERIFY = "verify"
    RELAY = "relay"


@dataclass(frozen=True)
class StageEvent:
    """Progress notification for one stage."""

    stage: Stage
    status: str  # "started", "completed", "failed"
    detail: dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[[StageEvent], None]


def _already_credited(attempt: RelayAttempt, stage: str) -> InvalidInput:
    return InvalidInput(
        "Deposit already credited",
        stage=stage,
        expected="an uncredited attempt",
        actual=attempt.credit_tx_hash,
    )


def source_client(settings: Settings) -> SourceChainClient:
    return SourceChainClient(
        EVMConfig(
            rpc_url=settings.source_rpc_url,
            chain_id=settings.source_chain_id,
            private_key=settings.source_private_key or "",
        )
    )


def destination_client(settings: Settings) -> DestinationChainClient:
    if not settings.accounting_contract:
        raise InvalidInput(
            "Accounting contract address is not configured",
            stage="config",
            expected="ACCOUNTING_CONTRACT",
        )
    return DestinationChainClient(
        EVMConfig(
            rpc_url=settings.destination_rpc_url,
            chain_id=settings.destination_chain_id,
            private_key=settings.destination_private_key or "",
        ),
        settings.accounting_contract,
    )


def build_strategy(
    settings: Settings,
    mode: RelayMode,
    source: SourceChainClient,
    destination: DestinationChainClient,
) -> RelayStrategy:
    if mode == "direct":
        return DirectRelayStrategy(source, destination, settings.fdc_verification)
    return TrustlessRelayStrategy(
        source,
        destination,
        settings.contract_registry,
        protocol_id=settings.fdc_protocol_id,
        relay_address=settings.relay_contract,
    )


class RelayPipeline:
    """
    Drives one deposit from source transaction hash to credited balance.

    Use as an async context manager so HTTP sessions are released.
    """

    def __init__(
        self,
        builder: RequestBuilder,
        submitter: AttestationSubmitter,
        poller: ProofPoller,
        strategy: Optional[RelayStrategy] = None,
        proof_verifier: Optional[FdcProofVerifier] = None,
        required_confirmations: int = 1,
        expected_status: int = 1,
        store: Optional[RelayDatabase] = None,
        on_event: Optional[EventCallback] = None,
        clients: tuple[EVMClient, ...] = (),
    ):
        self.builder = builder
        self.submitter = submitter
        self.poller = poller
        self.strategy = strategy
        self.proof_verifier = proof_verifier
        self.required_confirmations = required_confirmations
        self.expected_status = expected_status
        self.store = store
        self.on_event = on_event
        self._clients = clients

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        mode: Optional[RelayMode] = None,
        store: Optional[RelayDatabase] = None,
        on_event: Optional[EventCallback] = None,
    ) -> "RelayPipeline":
        """
        Wire a pipeline from settings.

        With mode=None the pipeline can prepare, submit and prove but not relay.
        """
        missing = settings.missing_for(mode)
        if missing:
            raise InvalidInput(
                f"Missing required settings: {', '.join(missing)}",
                stage="config",
            )

        source = source_client(settings)
        clients: tuple[EVMClient, ...] = (source,)
        strategy = None
        if mode is not None:
            destination = destination_client(settings)
            clients = (source, destination)
            strategy = build_strategy(settings, mode, source, destination)

        return cls(
            builder=RequestBuilder(
                settings.verifier_base_url,
                api_key=settings.api_key,
                source_id=settings.source_id,
                source_path=settings.verifier_source_path,
                timeout=settings.http_timeout_seconds,
            ),
            submitter=AttestationSubmitter(
                source,
                settings.fdc_hub,
                settings.fdc_fee_config,
                settings.default_fee_wei,
                clock=settings.round_clock(),
            ),
            poller=ProofPoller(
                settings.da_layer_url,
                api_key=settings.api_key,
                policy=settings.backoff_policy(),
                request_timeout=settings.http_timeout_seconds,
            ),
            strategy=strategy,
            proof_verifier=FdcProofVerifier(source, settings.fdc_verification),
            required_confirmations=settings.required_confirmations,
            expected_status=settings.expected_status,
            store=store,
            on_event=on_event,
            clients=clients,
        )

    async def __aenter__(self) -> "RelayPipeline":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.builder.close()
        await self.poller.close()
        for client in self._clients:
            await client.close()

    def _emit(self, stage: Stage, status: str, **detail: Any) -> None:
        logger.info("stage", stage=stage.value, status=status, **detail)
        if self.on_event:
            self.on_event(StageEvent(stage=stage, status=status, detail=detail))

    @contextmanager
    def _stage(self, stage: Stage, tx_hash: Optional[str] = None, **detail: Any) -> Iterator[dict]:
        """
        Wrap one stage in started/completed/failed events.

        The body may add entries to the yielded dict; they are reported with
        the "completed" event.
        """
        self._emit(stage, "started", **detail)
        result: dict[str, Any] = {}
        try:
            yield result
        except RelayError as e:
            self._fail_stage(stage, tx_hash, e)
            raise
        except Exception as e:
            # A send may already be in flight once the hub submission started
            error = StageFailed(
                f"{type(e).__name__}: {e}",
                stage=stage.value,
                retry_safe=stage is not Stage.SUBMIT,
            )
            self._fail_stage(stage, tx_hash, error)
            raise error from e
        self._emit(stage, "completed", **result)

    def _fail_stage(self, stage: Stage, tx_hash: Optional[str], error: RelayError) -> None:
        self._emit(stage, "failed", error=error.message, retry_safe=error.retry_safe)
        if self.store and tx_hash:
            self.store.mark_failed(tx_hash, error.describe())

    async def relay(self, source_tx_hash: str, resubmit: bool = False) -> RelayOutcome:
        """
        Run every stage for one source transaction.

        A transaction with a recorded attempt is not attested again: credited
        attempts are refused and unfinished ones must go through `resume`,
        unless `resubmit` asks for a fresh (and again paid) attestation.

        Raises:
            RelayError: The first fatal stage failure
        """
        strategy = self._require_strategy()
        tx_hash = normalize_tx_hash(source_tx_hash)
        self._check_not_recorded(tx_hash, resubmit)

        with self._stage(Stage.PREPARE) as info:
            encoded = await self.builder.build(tx_hash, self.required_confirmations)
            info["encoded_length"] = len(encoded.abi_encoded)

        with self._stage(Stage.SUBMIT) as info:
            submission = await self.submitter.submit(encoded)
            info.update(
                tx_hash=submission.submission_tx_hash,
                voting_round=submission.voting_round,
                fee=submission.fee,
                fee_fallback=submission.fee_fallback,
            )

        if self.store:
            self.store.record_submission(
                tx_hash, strategy.mode, encoded.abi_encoded, submission, request=encoded.request
            )

        envelope = await self._collect_proof(
            encoded.request, encoded.abi_encoded, submission.voting_round
        )
        return await self._execute(strategy, envelope)

    async def prove(self, source_tx_hash: str) -> ProofEnvelope:
        """
        Attest, poll, validate and verify on the FDC chain, without crediting.
        """
        if self.proof_verifier is None:
            raise InvalidInput("No proof verifier configured", stage="config")
        tx_hash = normalize_tx_hash(source_tx_hash)

        with self._stage(Stage.PREPARE):
            encoded = await self.builder.build(tx_hash, self.required_confirmations)

        with self._stage(Stage.SUBMIT) as info:
            submission = await self.submitter.submit(encoded)
            info.update(
                tx_hash=submission.submission_tx_hash, voting_round=submission.voting_round
            )

        envelope = await self._collect_proof(
            encoded.request, encoded.abi_encoded, submission.voting_round, record=False
        )
        with self._stage(Stage.VERIFY):
            await self.proof_verifier.verify(envelope)
        return envelope

    async def resume(self, source_tx_hash: str) -> RelayOutcome:
        """
        Continue a recorded attempt from the poll phase.

        No new attestation request is submitted: the stored round and encoded
        request are reused, or the stored proof when polling already finished.
        """
        strategy = self._require_strategy()
        if self.store is None:
            raise InvalidInput("Resume requires a relay database", stage="config")
        tx_hash = normalize_tx_hash(source_tx_hash)

        attempt = self.store.get(tx_hash)
        if attempt is None:
            raise InvalidInput(
                "No recorded attempt for transaction", stage="resume", actual=tx_hash
            )
        if attempt.status == STATUS_CREDITED:
            raise _already_credited(attempt, stage="resume")

        logger.info(
            "attempt_resumed",
            source_tx_hash=tx_hash,
            voting_round=attempt.voting_round,
            status=attempt.status,
        )
        request = attempt.request() or self.builder.request_for(
            tx_hash, self.required_confirmations
        )
        stored = attempt.proof()
        if stored is not None:
            with self._stage(Stage.VALIDATE, tx_hash=tx_hash):
                envelope = validate(
                    assemble(stored),
                    tx_hash,
                    request.source_id,
                    self.expected_status,
                    expected_request=request,
                )
        else:
            envelope = await self._collect_proof(
                request, attempt.abi_encoded_request, attempt.voting_round
            )
        return await self._execute(strategy, envelope)

    async def _collect_proof(
        self,
        request: AttestationRequest,
        abi_encoded: str,
        voting_round: int,
        record: bool = True,
    ) -> ProofEnvelope:
        tx_hash = request.request_body.transaction_hash
        store_hash = tx_hash if record else None

        with self._stage(Stage.POLL, tx_hash=store_hash, voting_round=voting_round) as info:
            raw = await self.poller.poll(voting_round, abi_encoded)
            info["attempts"] = self.poller.attempts

        with self._stage(Stage.VALIDATE, tx_hash=store_hash):
            envelope = validate(
                assemble(raw),
                tx_hash,
                request.source_id,
                self.expected_status,
                expected_request=request,
            )

        if self.store and record:
            self.store.mark_proved(tx_hash, envelope.to_dict())
        return envelope

    async def _execute(self, strategy: RelayStrategy, envelope: ProofEnvelope) -> RelayOutcome:
        tx_hash = envelope.transaction_hash
        with self._stage(Stage.RELAY, tx_hash=tx_hash, mode=strategy.mode) as info:
            outcome = await strategy.execute(envelope)
            info.update(
                tx_hash=outcome.transaction_hash,
                prior_balance=outcome.prior_balance,
                new_balance=outcome.new_balance,
            )

        if self.store:
            self.store.mark_credited(tx_hash, outcome.transaction_hash)
        return outcome

    def _check_not_recorded(self, tx_hash: str, resubmit: bool) -> None:
        if self.store is None:
            return
        attempt = self.store.get(tx_hash)
        if attempt is None:
            return
        if attempt.status == STATUS_CREDITED:
            raise _already_credited(attempt, stage="prepare")
        if not resubmit:
            raise InvalidInput(
                "Attestation already submitted for transaction; use resume to continue it",
                stage="prepare",
                expected="no recorded attempt",
                actual=f"{attempt.status} (voting round {attempt.voting_round})",
            )
        logger.warning(
            "attempt_resubmitted",
            source_tx_hash=tx_hash,
            voting_round=attempt.voting_round,
            status=attempt.status,
        )

    def _require_strategy(self) -> RelayStrategy:
        if self.strategy is None:
            raise InvalidInput("No relay strategy configured", stage="config")
        return self.strategy
