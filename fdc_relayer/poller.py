"""
Proof availability poller.

Proof unavailability is the expected steady state until the voting round
finalizes, so transient failures are counted as "not ready" and only the
deadline is fatal.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional

import httpx
import structlog

from .errors import TimeoutExceeded

logger = structlog.get_logger()

PROOF_PATH = "api/v0/fdc/get-proof-round-id-bytes"


class PollState(str, Enum):
    """Poller lifecycle."""

    WAITING_FOR_ROUND_CLOSE = "waiting_for_round_close"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Timing of the poll loop, in seconds.

    The initial wait approximates one voting epoch: no proof can exist before
    the round closes.
    """

    initial_wait: float = 95.0
    first_delay: float = 10.0
    multiplier: float = 1.5
    max_delay: float = 30.0
    deadline: float = 600.0

    def delays(self) -> Iterator[float]:
        """Delays between consecutive attempts: 10, 15, 22.5, 30, 30, ..."""
        delay = self.first_delay
        while True:
            yield delay
            delay = min(delay * self.multiplier, self.max_delay)

    def cumulative_wait(self, not_ready: int) -> float:
        """Total time slept after `not_ready` consecutive not-ready responses."""
        total = self.initial_wait
        delays = self.delays()
        for _ in range(not_ready):
            total += next(delays)
        return total


StateObserver = Callable[[PollState, dict[str, Any]], None]


class ProofPoller:
    """
    Polls the DA layer until a proof for (round, request) is available.

    `sleep` and `clock` are injectable so tests can run the loop on a fake
    timeline.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        policy: Optional[BackoffPolicy] = None,
        request_timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_state: Optional[StateObserver] = None,
    ):
        self.url = base_url.rstrip("/") + "/" + PROOF_PATH
        self.api_key = api_key
        self.policy = policy or BackoffPolicy()
        self.request_timeout = request_timeout
        self.client = client or httpx.AsyncClient(timeout=request_timeout)
        self._sleep = sleep
        self._clock = clock
        self._on_state = on_state
        self.state = PollState.WAITING_FOR_ROUND_CLOSE
        self.attempts = 0

    def _transition(self, state: PollState, **detail: Any) -> None:
        self.state = state
        logger.debug("poll_state", state=state.value, **detail)
        if self._on_state:
            self._on_state(state, detail)

    async def _fetch(
        self, voting_round: int, abi_encoded_request: str, timeout: float
    ) -> Optional[dict[str, Any]]:
        """One attempt. Returns the payload or None when not ready."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        try:
            response = await self.client.post(
                self.url,
                json={"votingRoundId": voting_round, "requestBytes": abi_encoded_request},
                headers=headers,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            logger.info("proof_poll_network_error", attempt=self.attempts, error=str(e))
            return None

        if not response.is_success:
            logger.info(
                "proof_not_ready",
                attempt=self.attempts,
                status_code=response.status_code,
            )
            return None

        try:
            data = response.json()
        except ValueError:
            logger.info("proof_poll_invalid_json", attempt=self.attempts)
            return None

        if (
            isinstance(data, dict)
            and isinstance(data.get("proof"), list)
            and isinstance(data.get("response"), dict)
            and data["response"]
        ):
            return data

        logger.info("proof_not_ready", attempt=self.attempts, status_code=response.status_code)
        return None

    async def poll(
        self,
        voting_round: int,
        abi_encoded_request: str,
        deadline: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Wait for the round to close, then poll with capped exponential backoff.

        Args:
            voting_round: Round the request was submitted in
            abi_encoded_request: Exactly the bytes submitted to the hub
            deadline: Seconds from now; defaults to the policy deadline

        Returns:
            Raw `{"proof": [...], "response": {...}}` payload

        Raises:
            TimeoutExceeded: Deadline passed before a proof was returned
        """
        limit = self.policy.deadline if deadline is None else deadline
        start = self._clock()
        self.attempts = 0

        def elapsed() -> float:
            return self._clock() - start

        self._transition(
            PollState.WAITING_FOR_ROUND_CLOSE,
            voting_round=voting_round,
            wait=self.policy.initial_wait,
        )
        await self._sleep(min(self.policy.initial_wait, limit))

        self._transition(PollState.POLLING, voting_round=voting_round)
        delays = self.policy.delays()

        while True:
            remaining = limit - elapsed()
            if remaining <= 0:
                self._transition(PollState.FAILED, voting_round=voting_round, attempts=self.attempts)
                raise TimeoutExceeded(voting_round, elapsed(), self.attempts)

            self.attempts += 1
            data = await self._fetch(
                voting_round, abi_encoded_request, min(self.request_timeout, remaining)
            )
            if data is not None:
                logger.info(
                    "proof_available",
                    voting_round=voting_round,
                    attempts=self.attempts,
                    elapsed=int(elapsed()),
                    proof_nodes=len(data["proof"]),
                )
                self._transition(PollState.DONE, voting_round=voting_round, attempts=self.attempts)
                return data

            delay = next(delays)
            remaining = limit - elapsed()
            logger.info(
                "proof_retry_scheduled",
                voting_round=voting_round,
                attempt=self.attempts,
                elapsed=int(elapsed()),
                delay=delay,
            )
            await self._sleep(max(0.0, min(delay, remaining)))

    async def close(self) -> None:
        await self.client.aclose()
