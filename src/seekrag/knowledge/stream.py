"""Parsing of the knowledge service's server-sent event stream."""

from __future__ import annotations

import json
from typing import Any, AsyncIterable, AsyncIterator

from seekrag.metrics.observability import ClientMetrics, get_logger
from seekrag.models import KnowledgeResponse, KnowledgeSeed

EVENT_TAGS = ("searching", "seeds", "final")

_logger = get_logger("stream")


def decode_event(data: Any) -> KnowledgeResponse | None:
    """Build a ``KnowledgeResponse`` from a decoded JSON payload, or None if unusable."""

    if not isinstance(data, dict) or data.get("tag") not in EVENT_TAGS:
        ClientMetrics.observe_anomaly("unknown_event")
        _logger.warning("stream.unknown_event", payload=repr(data)[:200])
        return None
    tag = data["tag"]
    content = data.get("content")
    if tag == "seeds":
        items = content if isinstance(content, list) else []
        content = tuple(KnowledgeSeed.from_dict(item) for item in items if isinstance(item, dict))
    elif tag == "final":
        content = "" if content is None else content if isinstance(content, str) else json.dumps(content)
    return KnowledgeResponse(tag=tag, content=content)


def parse_block(block: str) -> KnowledgeResponse | None:
    data_lines: list[str] = []
    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name != "data":
            continue
        data_lines.append(value[1:] if value.startswith(" ") else value)
    if not data_lines:
        return None
    raw = "\n".join(data_lines).strip()
    if not raw or raw == "[DONE]":
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        ClientMetrics.observe_anomaly("malformed_event")
        _logger.warning("stream.malformed_event", data=raw[:200])
        return None
    return decode_event(payload)


def _split_blocks(buffer: str) -> tuple[list[str], str]:
    *blocks, rest = buffer.replace("\r\n", "\n").split("\n\n")
    return blocks, rest


async def iter_events(chunks: AsyncIterable[str]) -> AsyncIterator[KnowledgeResponse]:
    """Yield events from decoded text chunks; blocks may span chunk boundaries."""

    buffer = ""
    async for chunk in chunks:
        blocks, buffer = _split_blocks(buffer + chunk)
        for block in blocks:
            event = parse_block(block)
            if event is not None:
                yield event
    if buffer.strip():
        event = parse_block(buffer)
        if event is not None:
            yield event


def encode_event(event: KnowledgeResponse) -> bytes:
    content = event.content
    if event.tag == "seeds":
        content = [seed.to_dict() for seed in event.seeds]
    return f"data: {json.dumps({'tag': event.tag, 'content': content}, ensure_ascii=False)}\n\n".encode("utf-8")
