import json

import pytest
from httpx import AsyncClient, ASGITransport

from conftest import FakeReasoningService, FakeRunner, make_response, text_block, tool_use_block
from pchealth.api import routes
from pchealth.api.main import create_app
from pchealth.config import AgentConfig
from pchealth.errors import ReasoningServiceError
from pchealth.remediation.engine import FixExecutor

SAFE_FIX = {
    "id": "fix-dns",
    "title": "Flush DNS cache",
    "description": "Clears stale name lookups",
    "riskLevel": "low",
    "requiresAdmin": False,
    "steps": ["Flush the resolver cache"],
    "commands": ["ipconfig /flushdns"],
}


@pytest.fixture
def llm(monkeypatch):
    """One scripted service shared by every agent a session creates."""
    service = FakeReasoningService()
    config = AgentConfig(max_iterations=3, step_delay=0.0)
    monkeypatch.setattr(routes, "sessions", {})
    monkeypatch.setattr(routes, "_config", config)
    monkeypatch.setattr(routes, "build_llm_client", lambda agent_name, cfg: service)
    return service


@pytest.fixture
def fix_runner(monkeypatch):
    runner = FakeRunner()
    executor = FixExecutor(lock=routes.execution_lock, runner=runner, config=AgentConfig(step_delay=0.0), is_windows=False)
    monkeypatch.setattr(routes, "_fix_executor", executor)
    return runner


def _client():
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


async def _start(client):
    response = await client.post("/api/v1/session/start", json={"problem_description": "Games keep crashing"})
    assert response.status_code == 200
    return response.json()["session_id"]


@pytest.mark.asyncio
async def test_start_session(llm):
    async with _client() as client:
        response = await client.post("/api/v1/session/start", json={})
        assert response.status_code == 200
        data = response.json()
        assert "session_id" in data
        assert "created_at" in data
        assert data["session_id"] in routes.sessions


@pytest.mark.asyncio
async def test_unknown_session_is_404(llm):
    async with _client() as client:
        for method, path, body in [
            ("post", "/api/v1/session/nope/chat", {"message": "hi"}),
            ("post", "/api/v1/session/nope/playbook", {}),
            ("post", "/api/v1/session/nope/diagnose", {"problem_type": "crash"}),
            ("post", "/api/v1/session/nope/assistant", {"message": "hi"}),
            ("get", "/api/v1/session/nope/history", None),
            ("get", "/api/v1/session/nope/events", None),
            ("post", "/api/v1/session/nope/reset", None),
        ]:
            kwargs = {"json": body} if body is not None else {}
            response = await getattr(client, method)(path, **kwargs)
            assert response.status_code == 404, path
            assert response.json()["detail"] == "Session not found"


@pytest.mark.asyncio
async def test_chat_round_trip(llm):
    llm.script(
        make_response(tool_use_block("t1", "check_disk_health")),
        make_response(text_block("Your SSD is healthy.")),
    )
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/chat", json={"message": "Is my disk OK?"})
        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Your SSD is healthy."
        assert data["iterations"] == 2
        assert data["proposed_fix"] is None
        assert data["usage"]["total_tokens"] == 30

        history = (await client.get(f"/api/v1/session/{session_id}/history")).json()["history"]
        assert [h["role"] for h in history] == ["user", "assistant", "tool_result", "assistant"]

        events = (await client.get(f"/api/v1/session/{session_id}/events")).json()
        assert [e["event_type"] for e in events] == ["tool_call", "success"]


@pytest.mark.asyncio
async def test_chat_returns_proposed_fix(llm):
    llm.script(
        make_response(tool_use_block("fx", "propose_fix", SAFE_FIX)),
        make_response(text_block("Approve the fix to flush DNS.")),
    )
    async with _client() as client:
        session_id = await _start(client)
        data = (await client.post(f"/api/v1/session/{session_id}/chat", json={"message": "Sites won't load"})).json()
        assert data["proposed_fix"] == SAFE_FIX


@pytest.mark.asyncio
async def test_empty_message_rejected(llm):
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/chat", json={"message": ""})
        assert response.status_code == 422


@pytest.mark.asyncio
async def test_reasoning_service_failure_is_502(llm):
    llm.script(ReasoningServiceError("Reasoning service request failed: connection reset"))
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/chat", json={"message": "hi"})
        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "Reasoning service request failed: connection reset"}


@pytest.mark.asyncio
async def test_loop_ceiling_is_500(llm):
    llm.script(*[make_response(tool_use_block(f"t{i}", "check_network")) for i in range(3)])
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/chat", json={"message": "check forever"})
        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert "3 iterations" in body["error"]


@pytest.mark.asyncio
async def test_playbook_then_assistant_uses_analysis(llm):
    llm.script(
        make_response(tool_use_block("t1", "check_disk_health"), tool_use_block("t2", "check_event_logs")),
        make_response(text_block(
            "Problems found:\n"
            "- game.exe crashed 3 times in the graphics module\n"
            "- A bad block warning from 78 days ago was found in the System log"
        )),
        make_response(text_block("Start with the graphics package.")),
    )
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/playbook", json={"problem_type": "crash"})
        assert response.status_code == 200
        data = response.json()
        assert [i["title"] for i in data["analysis"]["issues"]] == ["game.exe crashed 3 times in the graphics module"]

        reply = await client.post(f"/api/v1/session/{session_id}/assistant", json={"message": "What first?"})
        assert reply.status_code == 200
        assert reply.json()["success"] is True
        assert "game.exe crashed 3 times" in llm.calls[-1]["system"]


@pytest.mark.asyncio
async def test_assistant_without_context(llm):
    llm.script(make_response(text_block("Hello! How can I help?")))
    async with _client() as client:
        session_id = await _start(client)
        reply = await client.post(
            f"/api/v1/session/{session_id}/assistant",
            json={"message": "Hi", "use_diagnostic_context": False},
        )
        assert reply.json()["message"] == "Hello! How can I help?"
        assert "CURRENT DIAGNOSTIC CONTEXT" not in llm.calls[-1]["system"]

        cleared = await client.post(f"/api/v1/session/{session_id}/assistant/clear")
        assert cleared.json() == {"session_id": session_id, "status": "cleared"}
        assert routes.sessions[session_id]["assistant"].get_history() == []


@pytest.mark.asyncio
async def test_diagnose(llm):
    llm.script(make_response(text_block(json.dumps({"summary": "All clear", "issues": [], "fixes": []}))))
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/diagnose", json={"problem_type": "network"})
        assert response.status_code == 200
        data = response.json()
        assert data["analysis"]["summary"] == "All clear"
        assert "testConnectivity" in data["investigations"]


@pytest.mark.asyncio
async def test_diagnose_unknown_problem_type_is_400(llm):
    async with _client() as client:
        session_id = await _start(client)
        response = await client.post(f"/api/v1/session/{session_id}/diagnose", json={"problem_type": "meltdown"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Unknown problem type: meltdown"


@pytest.mark.asyncio
async def test_reset(llm):
    llm.script(make_response(text_block("Hi")))
    async with _client() as client:
        session_id = await _start(client)
        await client.post(f"/api/v1/session/{session_id}/chat", json={"message": "Hello"})
        response = await client.post(f"/api/v1/session/{session_id}/reset")
        assert response.json() == {"session_id": session_id, "status": "reset"}
        history = (await client.get(f"/api/v1/session/{session_id}/history")).json()["history"]
        assert history == []


@pytest.mark.asyncio
async def test_execute_fix(llm, fix_runner):
    async with _client() as client:
        response = await client.post("/api/v1/fix/execute", json={"fix": SAFE_FIX})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert data["success"] is True
        assert data["message"] == 'Fix "Flush DNS cache" applied successfully'
        assert fix_runner.calls == ["ipconfig /flushdns"]


@pytest.mark.asyncio
async def test_execute_dangerous_fix_is_rejected(llm, fix_runner):
    fix = dict(SAFE_FIX, commands=["ipconfig /flushdns", "diskpart /s wipe.txt"])
    async with _client() as client:
        data = (await client.post("/api/v1/fix/execute", json={"fix": fix})).json()
        assert data["status"] == "rejected"
        assert data["error_type"] == "SafetyRejection"
        assert fix_runner.calls == []


@pytest.mark.asyncio
async def test_execute_fix_unknown_session(llm, fix_runner):
    async with _client() as client:
        response = await client.post("/api/v1/fix/execute", json={"fix": SAFE_FIX, "session_id": "nope"})
        assert response.status_code == 404
        assert fix_runner.calls == []


@pytest.mark.asyncio
async def test_rollback_off_windows(llm, fix_runner):
    async with _client() as client:
        data = (await client.post("/api/v1/fix/rollback")).json()
        assert data["success"] is False


@pytest.mark.asyncio
async def test_health(llm):
    async with _client() as client:
        await _start(client)
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "active_sessions": 1, "fix_in_progress": False}
