"""
CLI for the FDC relayer.
"""

import asyncio
import json
import time
from enum import Enum
from pathlib import Path
from typing import Any, Coroutine, NoReturn, Optional, TypeVar

import structlog
import typer
from dotenv import load_dotenv

from .config import get_settings
from .db import RelayDatabase
from .errors import InvalidInput, RelayError, StageFailed
from .pipeline import RelayPipeline, StageEvent, destination_client, source_client
from .probes import probe_forged_proof, probe_replay_protection, probe_unauthorized_sync
from .proof import assemble
from .strategies import TrustlessRelayStrategy

logger = structlog.get_logger()

T = TypeVar("T")

app = typer.Typer(
    name="fdc-relayer",
    help="Relay source-chain transactions to a destination contract via the Flare Data Connector",
    add_completion=False,
)


class Mode(str, Enum):
    direct = "direct"
    trustless = "trustless"


def configure_logging(json_logs: bool = False) -> None:
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ]
    )


def _print_event(event: StageEvent) -> None:
    detail = " ".join(f"{k}={v}" for k, v in event.detail.items())
    typer.echo(f"[{event.stage.value}] {event.status} {detail}".rstrip())


def _fail(error: RelayError) -> NoReturn:
    typer.echo(error.describe(), err=True)
    raise typer.Exit(1)


def _run(coro: Coroutine[Any, Any, T], stage: str, retry_safe: bool = True) -> T:
    """Run a command coroutine, reporting any failure with its stage."""
    try:
        return asyncio.run(coro)
    except RelayError as e:
        _fail(e)
    except Exception as e:
        logger.error("command_failed", stage=stage, error=str(e), exc_info=True)
        _fail(StageFailed(f"{type(e).__name__}: {e}", stage=stage, retry_safe=retry_safe))


@app.callback()
def _root(
    json_logs: Optional[bool] = typer.Option(
        None, "--json-logs/--console-logs", help="Render logs as JSON"
    ),
) -> None:
    settings = get_settings()
    configure_logging(settings.log_json if json_logs is None else json_logs)


@app.command()
def relay(
    tx_hash: str = typer.Argument(..., help="Source-chain transaction hash"),
    mode: Optional[Mode] = typer.Option(None, "--mode", "-m", help="Relay strategy"),
    resubmit: bool = typer.Option(
        False, "--resubmit", help="Pay for a new attestation even if one was already submitted"
    ),
) -> None:
    """
    Attest a source transaction and credit it on the destination chain.

    Example:
        fdc-relayer relay 0xabc...txhash... --mode trustless
    """
    settings = get_settings()
    relay_mode = mode.value if mode else settings.relay_mode

    async def _relay() -> None:
        store = RelayDatabase(settings.database_url)
        try:
            async with RelayPipeline.from_settings(
                settings, relay_mode, store=store, on_event=_print_event
            ) as pipeline:
                outcome = await pipeline.relay(tx_hash, resubmit=resubmit)
        finally:
            store.close()

        typer.echo("\nDeposit credited!")
        typer.echo(f"  Mode: {outcome.mode}")
        typer.echo(f"  Tx: {outcome.transaction_hash}")
        typer.echo(f"  Balance: {outcome.prior_balance} -> {outcome.new_balance}")
        if outcome.synced_root:
            written = "synced" if outcome.synced_root.written else "already present"
            typer.echo(f"  Root (round {outcome.synced_root.voting_round}): {written}")

    _run(_relay(), "relay", retry_safe=False)


@app.command()
def prove(
    tx_hash: str = typer.Argument(..., help="Source-chain transaction hash"),
    output_file: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output file for proof JSON"
    ),
) -> None:
    """
    Attest a source transaction and verify the proof on the FDC chain, without crediting.
    """
    settings = get_settings()

    async def _prove() -> None:
        async with RelayPipeline.from_settings(settings, on_event=_print_event) as pipeline:
            envelope = await pipeline.prove(tx_hash)

        body = envelope.response.response_body
        typer.echo("\nProof verified on-chain!")
        typer.echo(f"  Voting round: {envelope.voting_round}")
        typer.echo(f"  From: {body.source_address}")
        typer.echo(f"  To: {body.receiving_address}")
        typer.echo(f"  Value: {body.value} wei")
        typer.echo(f"  Merkle proof depth: {len(envelope.merkle_proof)}")

        proof_json = json.dumps(envelope.to_dict(), indent=2)
        if output_file:
            output_file.write_text(proof_json)
            typer.echo(f"\nProof saved to {output_file}")

    _run(_prove(), "prove")


@app.command()
def resume(
    tx_hash: str = typer.Argument(..., help="Source-chain transaction hash of a recorded attempt"),
    mode: Optional[Mode] = typer.Option(None, "--mode", "-m", help="Relay strategy"),
) -> None:
    """
    Continue a recorded attempt from the poll phase without resubmitting.
    """
    settings = get_settings()

    async def _resume() -> None:
        store = RelayDatabase(settings.database_url)
        try:
            attempt = store.get(tx_hash.lower())
            relay_mode = mode.value if mode else (attempt.mode if attempt else settings.relay_mode)
            async with RelayPipeline.from_settings(
                settings, relay_mode, store=store, on_event=_print_event
            ) as pipeline:
                outcome = await pipeline.resume(tx_hash)
        finally:
            store.close()

        typer.echo("\nDeposit credited!")
        typer.echo(f"  Tx: {outcome.transaction_hash}")
        typer.echo(f"  Balance: {outcome.prior_balance} -> {outcome.new_balance}")

    _run(_resume(), "resume")


@app.command("sync-root")
def sync_root(
    voting_round: int = typer.Argument(..., help="Voting round id"),
) -> None:
    """
    Copy a round's Merkle root from the Relay contract to the accounting contract.
    """
    settings = get_settings()

    async def _sync() -> None:
        missing = settings.missing_for("trustless")
        if missing:
            raise InvalidInput(f"Missing required settings: {', '.join(missing)}", stage="config")
        source = source_client(settings)
        destination = destination_client(settings)
        try:
            strategy = TrustlessRelayStrategy(
                source,
                destination,
                settings.contract_registry,
                protocol_id=settings.fdc_protocol_id,
                relay_address=settings.relay_contract,
            )
            synced = await strategy.ensure_root(voting_round)
        finally:
            await source.close()
            await destination.close()

        status = "synced" if synced.written else "already present"
        typer.echo(f"Round {synced.voting_round}: {synced.merkle_root} ({status})")

    _run(_sync(), "sync_root")


@app.command("round")
def round_(
    timestamp: Optional[int] = typer.Argument(None, help="Unix timestamp (default: now)"),
) -> None:
    """
    Show the voting round for a timestamp.
    """
    settings = get_settings()
    clock = settings.round_clock()
    ts = int(time.time()) if timestamp is None else timestamp
    try:
        round_id = clock.round_for(ts)
    except RelayError as e:
        _fail(e)
    typer.echo(f"Voting round: {round_id}")
    typer.echo(f"  Starts: {clock.round_start(round_id)}")
    typer.echo(f"  Ends: {clock.round_end(round_id)}")


@app.command()
def probe(
    tx_hash: Optional[str] = typer.Option(
        None, "--tx", help="Credited source transaction to replay (uses the stored proof)"
    ),
) -> None:
    """
    Check the accounting contract rejects forged proofs, replays and unauthorized root syncs.
    """
    settings = get_settings()

    async def _probe() -> bool:
        missing = settings.missing_for("trustless")
        if missing:
            raise InvalidInput(f"Missing required settings: {', '.join(missing)}", stage="config")

        envelope = None
        if tx_hash:
            store = RelayDatabase(settings.database_url)
            try:
                attempt = store.get(tx_hash.lower())
            finally:
                store.close()
            stored = attempt.proof() if attempt else None
            if stored is None:
                raise InvalidInput("No stored proof for transaction", stage="probe", actual=tx_hash)
            envelope = assemble(stored)

        destination = destination_client(settings)
        try:
            results = [
                await probe_forged_proof(destination),
                await probe_unauthorized_sync(destination),
            ]
            if envelope is not None:
                results.append(await probe_replay_protection(destination, envelope))
        finally:
            await destination.close()

        for result in results:
            typer.echo(result.describe())
        passed = sum(r.passed for r in results)
        typer.echo(f"\nResults: {passed}/{len(results)} passed")
        return passed == len(results)

    ok = _run(_probe(), "probe")
    if not ok:
        raise typer.Exit(1)


@app.command()
def attempts(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """
    List recorded relay attempts.
    """
    settings = get_settings()
    store = RelayDatabase(settings.database_url)
    try:
        rows = store.list_attempts(status)
    finally:
        store.close()

    if not rows:
        typer.echo("No attempts recorded.")
        return

    for row in rows:
        typer.echo(f"  {row.source_tx_hash}")
        typer.echo(f"    Mode: {row.mode}  Round: {row.voting_round}  Status: {row.status}")
        if row.credit_tx_hash:
            typer.echo(f"    Credit tx: {row.credit_tx_hash}")
        if row.error:
            typer.echo(f"    Error: {row.error.splitlines()[0]}")


@app.command()
def version() -> None:
    """Show the relayer version."""
    from fdc_relayer import __version__
    typer.echo(f"fdc-relayer v{__version__}")


def main() -> None:
    """Entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
