"""
Tests for the Sunny HTTP server: configuration and endpoints.
"""

import json
import os
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sunny.database import InventoryItemModel
from sunny.exceptions import CompletionServiceError
from sunny.llm import CompletionClient, CompletionSettings
from sunny.models import CompletionResponse
from sunny.server.config import ServerConfig

HEADERS = {"X-API-Key": "dev-sunny-key", "X-User-Id": "user-a"}


class ScriptedClient(CompletionClient):
    """Completion client that replays canned responses."""

    def __init__(self, responses=()):
        super().__init__(CompletionSettings())
        self.responses = list(responses)
        self.calls = []

    async def complete(self, system, messages, tools):
        self.calls.append({"system": system, "messages": list(messages), "tools": tools})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def text_response(text):
    return CompletionResponse(stop_reason="end_turn", content=[{"type": "text", "text": text}])


def tool_response(call_id, name, args):
    return CompletionResponse(
        stop_reason="tool_use",
        content=[{"type": "tool_use", "id": call_id, "name": name, "input": args}],
    )


def sse_payloads(response):
    return [
        line[len("data: "):]
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = ServerConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 8000
        assert config.database_url == "sqlite:///./sunny.db"
        assert config.api_keys == {"dev-sunny-key"}
        assert config.max_iterations == 8
        assert config.max_history_messages == 10
        assert config.parallel_tools is False

    def test_custom_values(self):
        config = ServerConfig(
            host="127.0.0.1",
            port=9000,
            database_url="postgresql://localhost/sunny",
            debug=True,
        )
        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.database_url == "postgresql://localhost/sunny"
        assert config.debug is True

    def test_from_env(self):
        with patch.dict(
            os.environ,
            {
                "SUNNY_PORT": "9999",
                "SUNNY_DEBUG": "true",
                "SUNNY_PARALLEL_TOOLS": "1",
                "SUNNY_MAX_ITERATIONS": "3",
                "SUNNY_API_KEYS": "key-one, key-two,",
                "ANTHROPIC_API_KEY": "sk-env",
            },
        ):
            config = ServerConfig.from_env()
        assert config.port == 9999
        assert config.debug is True
        assert config.parallel_tools is True
        assert config.max_iterations == 3
        assert config.api_keys == {"key-one", "key-two"}
        assert config.anthropic_api_key == "sk-env"


class TestEndpoints:
    """Tests for the HTTP endpoints with a scripted completion service."""

    @pytest.fixture
    def scripted(self):
        return ScriptedClient()

    @pytest.fixture
    def messenger(self):
        messenger = MagicMock()
        messenger.send = AsyncMock(return_value=True)
        return messenger

    @pytest.fixture
    def server(self, scripted, messenger):
        from fastapi.testclient import TestClient

        from sunny import database as db_module
        from sunny.server.app import create_app

        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            db_path = f.name

        db_module._database = None
        config = ServerConfig(database_url=f"sqlite:///{db_path}", api_keys={"dev-sunny-key"})
        app = create_app(config, completion_client=scripted, messenger=messenger)
        state = {"app": app}
        with TestClient(app) as c:
            db = app.state.db
            with db.session_scope() as session:
                tenant = db.create_tenant(session, name="Golden Hour PJ", phone="555-0100")
                db.add_member(session, tenant.id, "user-a")
                db.create_inventory_item(
                    session, tenant_id=tenant.id, name="Aspen", type="chain",
                    quantity_on_hand=120.0, sell_price=68.0,
                )
                state["tenant_id"] = tenant.id
            state["client"] = c
            state["db"] = db
            yield state

        db_module._database = None
        os.unlink(db_path)

    def _ask(self, server, text, **body):
        return server["client"].post(
            "/api/mentor",
            json={"messages": [{"role": "user", "content": text}], **body},
            headers=HEADERS,
        )

    # ------------------------------------------------------------------
    # Health and tool catalog
    # ------------------------------------------------------------------

    def test_health(self, server):
        resp = server["client"].get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["tools"] == 28
        assert data["knowledge_version"] == 4

    def test_tools_requires_api_key(self, server):
        resp = server["client"].get("/api/tools")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid or missing API key"

    def test_tools_listing(self, server):
        resp = server["client"].get("/api/tools", headers=HEADERS)
        assert resp.status_code == 200
        tools = {t["name"]: t for t in resp.json()}
        assert len(tools) == 28
        assert tools["check_inventory"]["mutating"] is False
        assert tools["check_inventory"]["status_label"] == "Checking inventory..."
        assert tools["update_price"]["mutating"] is True
        assert "confirmed" in tools["update_price"]["input_schema"]["properties"]

    # ------------------------------------------------------------------
    # Mentor request validation
    # ------------------------------------------------------------------

    def test_mentor_requires_api_key(self, server):
        resp = server["client"].post(
            "/api/mentor",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers={"X-User-Id": "user-a"},
        )
        assert resp.status_code == 401

    def test_mentor_requires_user(self, server):
        resp = server["client"].post(
            "/api/mentor",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers={"X-API-Key": "dev-sunny-key"},
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Unauthorized"

    def test_mentor_unknown_tenant(self, server):
        resp = server["client"].post(
            "/api/mentor",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers={**HEADERS, "X-User-Id": "stranger"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No tenant found"

    def test_mentor_requires_messages(self, server, scripted):
        resp = server["client"].post("/api/mentor", json={"messages": []}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Messages required"
        assert scripted.calls == []

    def test_completion_failure_is_502(self, server, scripted):
        scripted.responses.append(
            CompletionServiceError("AI service error", status_code=529, response={"type": "overloaded"})
        )
        resp = self._ask(server, "hi")
        assert resp.status_code == 502
        assert resp.json() == {"error": "AI service error: AI service error"}

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def test_streams_tool_status_text_and_done(self, server, scripted):
        answer = "You have 120 inches of Aspen on hand."
        scripted.responses.extend(
            [tool_response("t1", "check_inventory", {"query": "aspen"}), text_response(answer)]
        )

        resp = self._ask(server, "How much Aspen do I have?")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        payloads = sse_payloads(resp)
        assert payloads[-1] == "[DONE]"
        events = [json.loads(p) for p in payloads[:-1]]
        assert events[0] == {"toolStatus": "Checking inventory..."}
        assert "".join(e["text"] for e in events[1:]) == answer

        second_call = scripted.calls[1]["messages"]
        (result_block,) = second_call[-1]["content"]
        assert result_block["tool_use_id"] == "t1"
        assert "Aspen" in result_block["content"]

    def test_system_prompt_carries_tenant_and_page(self, server, scripted):
        scripted.responses.append(text_response("Ok"))
        self._ask(server, "My zapp welder keeps sparking", currentPage="/dashboard/inventory")

        system = scripted.calls[0]["system"]
        assert "Business: Golden Hour PJ" in system
        assert "Aspen: 120in on hand" in system
        assert "currently on the Inventory page" in system
        assert "[Welders (Zapp" in system
        assert len(scripted.calls[0]["tools"]) == 28

    def test_history_is_trimmed(self, server, scripted):
        scripted.responses.append(text_response("Ok"))
        history = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
            for i in range(13)
        ]
        resp = server["client"].post("/api/mentor", json={"messages": history}, headers=HEADERS)

        assert resp.status_code == 200
        sent = scripted.calls[0]["messages"]
        assert len(sent) == 10
        assert sent[-1]["content"] == "message 12"

    def test_pending_mutation_does_not_write(self, server, scripted, messenger):
        scripted.responses.extend(
            [
                tool_response("t1", "update_price", {"search_name": "aspen", "sell_price": 72}),
                text_response("Change Aspen from $68 to $72?"),
            ]
        )
        self._ask(server, "Raise Aspen to 72")

        (result_block,) = scripted.calls[1]["messages"][-1]["content"]
        assert json.loads(result_block["content"])["pending_confirmation"] is True
        session = server["db"].get_session()
        try:
            assert session.query(InventoryItemModel).one().sell_price == 68.0
        finally:
            session.close()

    def test_knowledge_gap_is_recorded(self, scripted, server):
        reply = (
            "I'm not sure about that one.\n"
            '<!-- KNOWLEDGE_GAP: {"category": "unknown_answer", "topic": "equipment", '
            '"summary": "argon flow"} -->'
        )
        scripted.responses.append(text_response(reply))

        resp = self._ask(server, "What argon flow rate should I use?")
        streamed = "".join(json.loads(p)["text"] for p in sse_payloads(resp)[:-1])
        assert streamed == reply

        server["client"].portal.call(server["app"].state.audit.drain)
        session = server["db"].get_session()
        try:
            (gap,) = server["db"].get_knowledge_gaps(session, server["tenant_id"])
            assert gap.user_id == "user-a"
            assert gap.user_message == "What argon flow rate should I use?"
            assert gap.response == "I'm not sure about that one."
            assert (gap.category, gap.topic, gap.status) == ("unknown_answer", "equipment", "pending")
        finally:
            session.close()
