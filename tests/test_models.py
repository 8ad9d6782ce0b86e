"""
Tests for Sunny data models: messages, envelopes and completion responses.
"""

import json

from sunny.models import (
    CompletionResponse,
    ConversationMessage,
    EnvelopeKind,
    KnowledgeFragment,
    LoopResult,
    Role,
    ToolDefinition,
    ToolInvocation,
    ToolResultEnvelope,
)

# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------


class TestConversationMessage:
    def test_text_content(self):
        msg = ConversationMessage(role=Role.USER, content="hello")
        assert msg.text == "hello"
        assert msg.to_dict() == {"role": "user", "content": "hello"}

    def test_block_content_joins_text_blocks(self):
        msg = ConversationMessage(
            role=Role.ASSISTANT,
            content=[
                {"type": "text", "text": "Checking "},
                {"type": "tool_use", "id": "t1", "name": "check_inventory", "input": {}},
                {"type": "text", "text": "now."},
            ],
        )
        assert msg.text == "Checking now."

    def test_from_dict(self):
        msg = ConversationMessage.from_dict({"role": "assistant", "content": "hi"})
        assert msg.role == Role.ASSISTANT
        assert msg.content == "hi"


# ---------------------------------------------------------------------------
# Tool result envelopes
# ---------------------------------------------------------------------------


class TestToolResultEnvelope:
    def test_ok_defaults_to_success(self):
        env = ToolResultEnvelope.ok()
        assert env.kind == EnvelopeKind.OK
        assert env.result == {"success": True}
        assert not env.is_error

    def test_error_is_the_only_error_variant(self):
        assert ToolResultEnvelope.error("boom").is_error
        assert not ToolResultEnvelope.pending({"action": "x"}).is_error
        assert not ToolResultEnvelope.clarify("Which?", []).is_error

    def test_pending_shape(self):
        env = ToolResultEnvelope.pending({"action": "update_price"})
        assert env.kind == EnvelopeKind.PENDING_CONFIRMATION
        assert env.result == {
            "pending_confirmation": True,
            "preview": {"action": "update_price"},
        }

    def test_clarify_shape(self):
        matches = [{"id": "1", "name": "Aspen"}, {"id": "2", "name": "Aspen Rose"}]
        env = ToolResultEnvelope.clarify("Multiple items match", matches)
        assert env.result["needs_clarification"] is True
        assert env.result["matches"] == matches

    def test_to_wire(self):
        assert ToolResultEnvelope.error("nope").to_wire() == {
            "result": {"error": "nope"},
            "isError": True,
        }

    def test_tool_result_block(self):
        block = ToolResultEnvelope.ok({"total": 3}).to_tool_result_block("toolu_1")
        assert block["type"] == "tool_result"
        assert block["tool_use_id"] == "toolu_1"
        assert block["is_error"] is False
        assert json.loads(block["content"]) == {"total": 3}


# ---------------------------------------------------------------------------
# Completion responses
# ---------------------------------------------------------------------------


class TestCompletionResponse:
    def test_from_dict_and_accessors(self):
        resp = CompletionResponse.from_dict(
            {
                "stop_reason": "tool_use",
                "content": [
                    {"type": "text", "text": "Let me look."},
                    {"type": "tool_use", "id": "a", "name": "list_events", "input": {}},
                    {"type": "tool_use", "id": "b", "name": "get_settings", "input": None},
                ],
            }
        )
        assert resp.stop_reason == "tool_use"
        assert resp.text == "Let me look."
        assert [i.name for i in resp.tool_invocations()] == ["list_events", "get_settings"]
        assert resp.tool_invocations()[1].input == {}

    def test_missing_content(self):
        resp = CompletionResponse.from_dict({"stop_reason": "end_turn"})
        assert resp.content == []
        assert resp.text == ""


class TestMisc:
    def test_tool_definition_schema(self):
        d = ToolDefinition(name="get_settings", description="Read settings")
        assert d.to_schema() == {
            "name": "get_settings",
            "description": "Read settings",
            "input_schema": {"type": "object", "properties": {}},
        }

    def test_invocation_from_block(self):
        inv = ToolInvocation.from_block({"id": "x", "name": "n", "input": {"a": 1}})
        assert inv == ToolInvocation(id="x", name="n", input={"a": 1})

    def test_fragment_from_dict(self):
        f = KnowledgeFragment.from_dict(
            {"id": "f", "label": "F", "data": {"a": 1}, "keywords": ["x", 2]}
        )
        assert f.keywords == ("x", "2")
        assert f.priority == 0

    def test_loop_result_to_dict(self):
        r = LoopResult(final_text="done", tool_status_events=["Working..."], iterations=2)
        assert r.to_dict() == {
            "final_text": "done",
            "tool_status_events": ["Working..."],
            "iterations": 2,
            "exhausted": False,
        }
