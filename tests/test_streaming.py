"""
Tests for the simulated streaming emitter.
"""

import json

import pytest

from sunny.streaming import (
    DONE_MARKER,
    StreamEvent,
    StreamEventType,
    chunk_text,
    emit_events,
    format_sse,
)


async def _collect(*args, **kwargs):
    return [event async for event in emit_events(*args, **kwargs)]


class TestChunkText:
    def test_chunks_of_twelve(self):
        text = "a" * 30
        assert [len(c) for c in chunk_text(text)] == [12, 12, 6]

    def test_empty(self):
        assert chunk_text("") == []

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            chunk_text("abc", 0)


class TestStreamEvent:
    def test_payloads(self):
        assert StreamEvent(StreamEventType.TEXT, "hi").to_payload() == '{"text": "hi"}'
        assert json.loads(StreamEvent(StreamEventType.TOOL_STATUS, "Checking inventory...").to_payload()) == {
            "toolStatus": "Checking inventory..."
        }
        assert StreamEvent(StreamEventType.DONE).to_payload() == DONE_MARKER

    def test_format_sse(self):
        assert format_sse(StreamEvent(StreamEventType.DONE)) == "data: [DONE]\n\n"


class TestEmitEvents:
    @pytest.mark.asyncio
    async def test_order_status_then_text_then_done(self):
        events = await _collect(
            "Your Aspen chain is now $12.50 per inch.",
            ["Checking inventory...", "Updating price..."],
            delay=0,
        )
        kinds = [e.type for e in events]
        assert kinds[:2] == [StreamEventType.TOOL_STATUS] * 2
        assert kinds[-1] == StreamEventType.DONE
        assert all(k == StreamEventType.TEXT for k in kinds[2:-1])

    @pytest.mark.asyncio
    async def test_text_reconstructs_final_text(self):
        text = "Hello there! Here is a longer answer with unicode: café ✨"
        events = await _collect(text, delay=0)
        joined = "".join(e.data for e in events if e.type == StreamEventType.TEXT)
        assert joined == text

    @pytest.mark.asyncio
    async def test_sleeps_after_each_text_chunk_only(self):
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        await _collect("x" * 25, ["Working..."], delay=0.015, sleep=fake_sleep)
        assert slept == [0.015, 0.015, 0.015]

    @pytest.mark.asyncio
    async def test_empty_text_still_ends(self):
        events = await _collect("", [], delay=0)
        assert [e.type for e in events] == [StreamEventType.DONE]
