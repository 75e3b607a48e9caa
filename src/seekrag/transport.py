"""HTTP plumbing shared by the ingestion and query clients."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import httpx

from seekrag.config import Settings
from seekrag.errors import OperationTimeout, UpstreamFailure


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    timeout = httpx.Timeout(settings.request_timeout_seconds, read=settings.stream_timeout_seconds)
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


@contextmanager
def upstream_errors() -> Iterator[None]:
    """Map transport-level httpx failures onto the client error kinds."""

    try:
        yield
    except httpx.TimeoutException as exc:
        raise OperationTimeout(f"Knowledge service timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise UpstreamFailure(502, str(exc) or exc.__class__.__name__) from exc


def raise_for_upstream(response: httpx.Response) -> None:
    """Relay a non-success response verbatim. The body must already be read."""

    if response.is_error:
        raise UpstreamFailure(response.status_code, response.text)
