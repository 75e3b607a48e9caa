"""Tests for server-sent event parsing."""

from __future__ import annotations

import json

import pytest

from conftest import seed, sse
from seekrag.knowledge import encode_event, iter_events, parse_block
from seekrag.knowledge.stream import decode_event
from seekrag.models import KnowledgeResponse, KnowledgeSeed


async def _chunks(*parts: str):
    for part in parts:
        yield part


async def _collect(*parts: str) -> list[KnowledgeResponse]:
    return [event async for event in iter_events(_chunks(*parts))]


def test_parse_block_reads_data_line():
    event = parse_block('data: {"tag": "searching", "content": ""}')
    assert event is not None
    assert event.tag == "searching"


def test_parse_block_decodes_seeds():
    event = parse_block("data: " + json.dumps({"tag": "seeds", "content": [seed("a", 1)]}))

    assert event.tag == "seeds"
    assert event.seeds == (KnowledgeSeed.from_dict(seed("a", 1)),)
    assert event.seeds[0].source_title == "Source a"


def test_parse_block_joins_multiline_data():
    block = 'data: {"tag": "final",\ndata:  "content": "two lines"}'
    event = parse_block(block)
    assert event.text == "two lines"


@pytest.mark.parametrize(
    "block",
    [
        "",
        ": keep-alive",
        "event: ping",
        "data: [DONE]",
        "data: {not json",
        'data: {"tag": "thinking", "content": ""}',
        'data: ["tag", "final"]',
    ],
)
def test_parse_block_skips_unusable_blocks(block):
    assert parse_block(block) is None


def test_parse_block_ignores_other_fields():
    event = parse_block('id: 7\nevent: message\ndata: {"tag": "final", "content": "done"}')
    assert event.text == "done"


def test_decode_final_with_non_string_content():
    event = decode_event({"tag": "final", "content": {"answer": 42}})
    assert event.text == '{"answer": 42}'


async def test_iter_events_handles_split_chunks():
    body = sse(
        {"tag": "searching", "content": ""},
        {"tag": "seeds", "content": [seed("a", 0), seed("b", 1)]},
        {"tag": "final", "content": "answer"},
    ).decode("utf-8")
    parts = [body[index : index + 7] for index in range(0, len(body), 7)]

    events = await _collect(*parts)

    assert [event.tag for event in events] == ["searching", "seeds", "final"]
    assert [item.id for item in events[1].seeds] == ["a", "b"]
    assert events[2].text == "answer"


async def test_iter_events_normalises_crlf_and_flushes_tail():
    events = await _collect(
        'data: {"tag": "searching", "content": ""}\r\n\r\n',
        'data: {"tag": "final", "content": "tail"}',
    )
    assert [event.tag for event in events] == ["searching", "final"]


async def test_iter_events_skips_malformed_events_in_place():
    events = await _collect(
        "data: {broken\n\n",
        ": comment\n\n",
        'data: {"tag": "mystery", "content": 1}\n\n',
        'data: {"tag": "final", "content": "still here"}\n\n',
        "data: [DONE]\n\n",
    )
    assert [event.text for event in events] == ["still here"]


def test_encode_event_produces_parseable_block():
    original = KnowledgeResponse(tag="seeds", content=(KnowledgeSeed.from_dict(seed("x", 3)),))

    encoded = encode_event(original).decode("utf-8")

    assert encoded.startswith("data: ")
    assert encoded.endswith("\n\n")
    assert parse_block(encoded.strip()).seeds == original.seeds
