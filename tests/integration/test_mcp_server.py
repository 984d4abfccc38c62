"""
MCP JSON-RPC transport: session handshake, tool listing and tool calls
"""

import json
import time

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from pmo_financial.mcp_remote_server import create_app

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def client(services):
    async with TestClient(TestServer(create_app(services=services))) as test_client:
        yield test_client


async def rpc(client, method, params=None, session_id=None, request_id=1):
    headers = {"Mcp-Session-Id": session_id} if session_id else {}
    payload = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        payload["params"] = params
    resp = await client.post("/mcp", json=payload, headers=headers)
    return resp, await resp.json()


@pytest_asyncio.fixture
async def session_id(client):
    resp, _ = await rpc(
        client,
        "initialize",
        {"protocolVersion": "2025-06-18", "clientInfo": {"name": "pytest", "version": "1.0"}},
    )
    return resp.headers["Mcp-Session-Id"]


async def call_tool(client, session_id, name, arguments):
    return await rpc(client, "tools/call", {"name": name, "arguments": arguments}, session_id)


class TestHandshake:
    """Initialize and session requirements"""

    @pytest.mark.asyncio
    async def test_initialize(self, client):
        resp, body = await rpc(client, "initialize", {"protocolVersion": "2025-03-26"})

        assert resp.status == 200
        assert resp.headers["Mcp-Session-Id"]
        assert body["result"]["protocolVersion"] == "2025-03-26"
        assert body["result"]["serverInfo"]["name"] == "pmo-financial-mcp"
        assert body["result"]["capabilities"] == {"tools": {"listChanged": False}}

    @pytest.mark.asyncio
    async def test_unsupported_protocol_version(self, client):
        resp = await client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "1999-01-01"}}
        )
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_session_required(self, client):
        resp, body = await rpc(client, "tools/list")
        assert resp.status == 400
        assert body["error"]["code"] == -32000

    @pytest.mark.asyncio
    async def test_ping(self, client, session_id):
        _, body = await rpc(client, "ping", session_id=session_id)
        assert body["result"] == {}

    @pytest.mark.asyncio
    async def test_notifications_are_accepted(self, client):
        resp = await client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert resp.status == 202

    @pytest.mark.asyncio
    async def test_stream_requires_session(self, client):
        resp = await client.get("/mcp")
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_stale_sessions_expire_on_initialize(self, client, services, session_id):
        await call_tool(client, session_id, "context.set_program", {"program_id": "PRG-001"})
        sessions = client.server.app["sessions"]
        sessions._sessions[session_id].last_seen = time.time() - services.settings.session_ttl_seconds - 1

        resp, body = await rpc(client, "initialize", {"protocolVersion": "2025-06-18"})
        fresh_id = resp.headers["Mcp-Session-Id"]

        resp, body = await rpc(client, "ping", session_id=session_id)
        assert resp.status == 400
        assert body["error"]["code"] == -32000
        assert services.context.get_active_program(session_id) is None
        _, body = await rpc(client, "ping", session_id=fresh_id)
        assert body["result"] == {}


class TestProtocolErrors:
    @pytest.mark.asyncio
    async def test_parse_error(self, client):
        resp = await client.post("/mcp", data="{oops", headers={"Content-Type": "application/json"})
        assert resp.status == 400
        assert (await resp.json())["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, client):
        resp = await client.post("/mcp", data="hello", headers={"Content-Type": "text/plain"})
        assert resp.status == 415

    @pytest.mark.asyncio
    async def test_invalid_jsonrpc_version(self, client):
        resp = await client.post("/mcp", json={"jsonrpc": "1.0", "method": "ping", "id": 1})
        assert (await resp.json())["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_unknown_method(self, client, session_id):
        _, body = await rpc(client, "resources/list", session_id=session_id)
        assert body["error"]["code"] == -32601


class TestTools:
    @pytest.mark.asyncio
    async def test_tools_list(self, client, session_id):
        _, body = await rpc(client, "tools/list", session_id=session_id)

        tools = {tool["name"]: tool for tool in body["result"]["tools"]}
        assert set(tools) == {
            "evm.calculate",
            "evm.snapshot",
            "evm.health",
            "evm.trend",
            "evm.anomalies",
            "evm.forecast",
            "budget.status",
            "cashflow.runway",
            "transactions.reconcile",
            "context.set_program",
        }
        assert tools["cashflow.runway"]["inputSchema"]["required"] == ["program_id", "current_balance"]

    @pytest.mark.asyncio
    async def test_budget_status(self, client, session_id, seed_budget):
        seed_budget("BUD-001", allocated=1000, spent=250)

        _, body = await call_tool(client, session_id, "budget.status", {"program_id": "PRG-001"})

        result = body["result"]
        assert result["isError"] is False
        assert result["structuredContent"]["remaining"] == 750
        assert json.loads(result["content"][0]["text"]) == result["structuredContent"]

    @pytest.mark.asyncio
    async def test_evm_health(self, client, session_id, seed_budget, seed_deliverable):
        seed_budget("BUD-001", allocated=100000, spent=40000)
        seed_deliverable("D-001", 100000, 50)

        _, body = await call_tool(client, session_id, "evm.health", {"program_id": "PRG-001"})

        health = body["result"]["structuredContent"]
        assert health["program_id"] == "PRG-001"
        assert health["metrics"]["cpi"] == 1.25
        assert health["status"] in ("healthy", "warning", "critical")

    @pytest.mark.asyncio
    async def test_snapshot_records_context_user(self, client, session_id):
        await call_tool(client, session_id, "context.set_program", {"program_id": "PRG-001", "user_id": "dana"})

        _, body = await call_tool(client, session_id, "evm.snapshot", {"program_id": "PRG-001"})

        assert body["result"]["structuredContent"]["calculated_by"] == "dana"

    @pytest.mark.asyncio
    async def test_context_mismatch_is_invalid_params(self, client, session_id):
        await call_tool(client, session_id, "context.set_program", {"program_id": "PRG-001"})

        _, body = await call_tool(client, session_id, "budget.status", {"program_id": "PRG-002"})

        assert body["error"]["code"] == -32602
        assert "Program context mismatch" in body["error"]["message"]

    @pytest.mark.asyncio
    async def test_missing_program_is_invalid_params(self, client, session_id):
        _, body = await call_tool(client, session_id, "evm.calculate", {})
        assert body["error"]["code"] == -32602
        assert body["error"]["message"] == "Missing required field(s): program_id"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, client, session_id):
        _, body = await call_tool(client, session_id, "budget.delete_everything", {})
        assert body["error"]["code"] == -32602
        assert body["error"]["message"] == "Unknown tool: budget.delete_everything"

    @pytest.mark.asyncio
    async def test_service_failure_is_internal_error(self, client, session_id):
        _, body = await call_tool(client, session_id, "evm.forecast", {"program_id": "PRG-001"})
        assert body["error"]["code"] == -32603
        assert "No EVM snapshots found for program PRG-001" in body["error"]["message"]

    @pytest.mark.asyncio
    async def test_runway_reports_infinite_as_null(self, client, session_id):
        _, body = await call_tool(
            client, session_id, "cashflow.runway", {"program_id": "PRG-001", "current_balance": 5000}
        )
        assert body["result"]["structuredContent"]["months_remaining"] is None

    @pytest.mark.asyncio
    async def test_reconcile(self, client, session_id, services):
        created = await services.transactions.create_transaction(
            {
                "program_id": "PRG-001",
                "type": "expense",
                "category": "labor",
                "amount": 100,
                "transaction_date": "2024-03-01",
                "description": "Invoice",
            },
            "ap",
        )

        _, body = await call_tool(
            client, session_id, "transactions.reconcile", {"transaction_ids": [created.transaction_id, "TXN-404"]}
        )

        result = body["result"]["structuredContent"]
        assert result["succeeded"] == [created.transaction_id]
        assert result["failed"][0]["transaction_id"] == "TXN-404"
        reconciled = await services.transactions.read_transaction(created.transaction_id)
        assert reconciled.reconciled_by == "mcp"
