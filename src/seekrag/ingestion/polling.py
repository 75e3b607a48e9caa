"""Status polling with bounded backoff for uploaded documents."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_before_delay,
    stop_any,
    stop_when_event_set,
    wait_exponential,
)

from seekrag.auth import BearerCredential, require_credential
from seekrag.config import Settings
from seekrag.errors import OperationCancelled, OperationTimeout
from seekrag.ingestion.service import DocumentIngestionClient
from seekrag.metrics.observability import get_logger
from seekrag.models import DocumentStatusSnapshot

StatusCallback = Callable[[DocumentStatusSnapshot], None]


@dataclass(frozen=True)
class BackoffPolicy:
    """Delays between polls: non-decreasing, capped, with an overall budget."""

    initial_delay: float = 3.0
    interval: float = 5.0
    factor: float = 1.5
    max_interval: float = 30.0
    max_wait: float = 300.0

    def __post_init__(self) -> None:
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        if self.interval < 0 or self.initial_delay < 0 or self.max_wait < 0:
            raise ValueError("delays must be non-negative")
        if self.max_interval < self.interval:
            raise ValueError("max_interval must be >= interval")

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            initial_delay=settings.poll_initial_delay_seconds,
            interval=settings.poll_interval_seconds,
            factor=settings.poll_backoff_factor,
            max_interval=settings.poll_max_interval_seconds,
            max_wait=settings.poll_max_wait_seconds,
        )

    def wait_strategy(self) -> wait_exponential:
        return wait_exponential(
            multiplier=self.interval,
            exp_base=self.factor,
            min=self.interval,
            max=self.max_interval,
        )


class StatusPoller:
    """Polls one document until it reaches a terminal status.

    ``cancel()`` stops scheduling further polls; the document keeps its last
    observed status. Errors raised by ``poll_status`` propagate unchanged.
    """

    def __init__(self, client: DocumentIngestionClient, policy: BackoffPolicy | None = None) -> None:
        self._client = client
        self._policy = policy or BackoffPolicy()
        self._cancelled = asyncio.Event()
        self._last: DocumentStatusSnapshot | None = None
        self._logger = get_logger("polling")

    @property
    def last_snapshot(self) -> DocumentStatusSnapshot | None:
        return self._last

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _poll_once(
        self,
        document_id: str,
        credential: BearerCredential,
        on_update: StatusCallback | None,
    ) -> DocumentStatusSnapshot | None:
        if self._cancelled.is_set():
            return self._last
        snapshot = await self._client.poll_status(document_id, credential)
        self._last = snapshot
        if on_update is not None:
            on_update(snapshot)
        return snapshot

    async def wait_until_terminal(
        self,
        document_id: str,
        auth: BearerCredential | str | None,
        on_update: StatusCallback | None = None,
    ) -> DocumentStatusSnapshot:
        credential = require_credential(auth)
        policy = self._policy
        await self._sleep(policy.initial_delay)
        retrying = AsyncRetrying(
            sleep=self._sleep,
            wait=policy.wait_strategy(),
            stop=stop_any(
                stop_before_delay(max(policy.max_wait - policy.initial_delay, 0.0)),
                stop_when_event_set(self._cancelled),
            ),
            retry=retry_if_result(lambda snapshot: snapshot is None or not snapshot.status.is_terminal),
        )
        try:
            snapshot = await retrying(self._poll_once, document_id, credential, on_update)
        except RetryError as exc:
            if self._cancelled.is_set():
                if self._last is None:
                    raise OperationCancelled(f"Polling cancelled for document {document_id}") from exc
                self._logger.info("poll.cancelled", document_id=document_id, status=self._last.status.value)
                return self._last
            self._logger.warning("poll.timeout", document_id=document_id, max_wait=policy.max_wait)
            raise OperationTimeout(
                f"Document {document_id} did not reach a terminal status within {policy.max_wait}s"
            ) from exc
        self._logger.info("poll.terminal", document_id=document_id, status=snapshot.status.value)
        return snapshot
