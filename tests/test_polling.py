"""Tests for the document status poller and its backoff policy."""

from __future__ import annotations

import time

import pytest

from conftest import AUTH
from seekrag.errors import OperationCancelled, OperationTimeout, UpstreamFailure
from seekrag.ingestion import BackoffPolicy, StatusPoller
from seekrag.models import DocumentPayload, DocumentStatus

FAST = BackoffPolicy(initial_delay=0.0, interval=0.01, factor=2.0, max_interval=0.02, max_wait=2.0)


async def _uploaded(ingestion) -> str:
    handle = await ingestion.upload(DocumentPayload(filename="notes.txt", content=b"hello"), AUTH)
    await ingestion.wait_submitted(handle.id)
    return handle.id


class RecordingPoller(StatusPoller):
    """Records requested delays instead of waiting them out."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.delays: list[float] = []

    async def _sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


async def test_backoff_schedule_is_non_decreasing_and_capped(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(document_id, *["processing"] * 8, "ready")
    policy = BackoffPolicy(initial_delay=3.0, interval=5.0, factor=1.5, max_interval=30.0, max_wait=300.0)
    poller = RecordingPoller(ingestion, policy)

    snapshot = await poller.wait_until_terminal(document_id, AUTH)

    assert snapshot.status is DocumentStatus.READY
    initial, *waits = poller.delays
    assert initial == 3.0
    assert len(waits) == 8
    assert waits[0] == 5.0
    assert waits == sorted(waits)
    assert max(waits) == 30.0


async def test_constant_interval_when_factor_is_one(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(document_id, "processing", "processing", "processing", "ready")
    policy = BackoffPolicy(initial_delay=0.0, interval=5.0, factor=1.0, max_interval=5.0, max_wait=300.0)
    poller = RecordingPoller(ingestion, policy)

    await poller.wait_until_terminal(document_id, AUTH)

    assert poller.delays == [0.0, 5.0, 5.0, 5.0]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"factor": 0.5},
        {"interval": -1.0},
        {"interval": 10.0, "max_interval": 5.0},
    ],
)
def test_invalid_policy_is_rejected(kwargs):
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)


def test_policy_from_settings(settings):
    policy = BackoffPolicy.from_settings(settings)
    assert policy.initial_delay == settings.poll_initial_delay_seconds
    assert policy.interval == settings.poll_interval_seconds
    assert policy.max_interval == settings.poll_max_interval_seconds


async def test_polls_until_ready_and_reports_each_update(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(
        document_id,
        "processing",
        "processing",
        "processing",
        {"status": "ready", "name": "notes.txt", "size": 5},
    )
    updates = []

    snapshot = await StatusPoller(ingestion, FAST).wait_until_terminal(document_id, AUTH, on_update=updates.append)

    assert snapshot.status is DocumentStatus.READY
    assert [update.status for update in updates] == [DocumentStatus.PROCESSING] * 3 + [DocumentStatus.READY]
    assert len(knowledge_service.requests_to("GET", "/external/documents/")) == 4


async def test_error_status_is_terminal(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(document_id, "processing", {"status": "error", "error": "unsupported format"})

    snapshot = await StatusPoller(ingestion, FAST).wait_until_terminal(document_id, AUTH)

    assert snapshot.status is DocumentStatus.ERROR
    assert snapshot.error_detail == "unsupported format"


async def test_gives_up_after_max_wait(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(document_id, "processing")
    policy = BackoffPolicy(initial_delay=0.0, interval=0.01, factor=1.0, max_interval=0.01, max_wait=0.1)

    with pytest.raises(OperationTimeout):
        await StatusPoller(ingestion, policy).wait_until_terminal(document_id, AUTH)
    assert ingestion.get(document_id).status is DocumentStatus.PROCESSING


async def test_cancel_keeps_last_observed_status(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(document_id, "processing")
    poller = StatusPoller(ingestion, FAST)

    def stop_after_two(snapshot):
        if len(knowledge_service.requests_to("GET", "/external/documents/")) == 2:
            poller.cancel()

    snapshot = await poller.wait_until_terminal(document_id, AUTH, on_update=stop_after_two)

    assert poller.cancelled
    assert snapshot.status is DocumentStatus.PROCESSING
    assert snapshot is poller.last_snapshot
    assert len(knowledge_service.requests_to("GET", "/external/documents/")) == 2


async def test_cancel_before_first_poll(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    poller = StatusPoller(ingestion, FAST)
    poller.cancel()

    with pytest.raises(OperationCancelled):
        await poller.wait_until_terminal(document_id, AUTH)
    assert knowledge_service.requests_to("GET", "/external/documents/") == []


async def test_poll_errors_propagate(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.poll_error_status = 503

    with pytest.raises(UpstreamFailure) as excinfo:
        await StatusPoller(ingestion, FAST).wait_until_terminal(document_id, AUTH)
    assert excinfo.value.status_code == 503


async def test_polling_stops_before_exceeding_max_wait(ingestion, knowledge_service):
    document_id = await _uploaded(ingestion)
    knowledge_service.script(document_id, "processing")
    policy = BackoffPolicy(initial_delay=0.0, interval=0.2, factor=1.0, max_interval=0.2, max_wait=0.5)

    started = time.monotonic()
    with pytest.raises(OperationTimeout):
        await StatusPoller(ingestion, policy).wait_until_terminal(document_id, AUTH)
    elapsed = time.monotonic() - started

    assert elapsed < policy.max_wait
    assert len(knowledge_service.requests_to("GET", "/external/documents/")) <= 3
