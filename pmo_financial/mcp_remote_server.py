"""HTTP surface for the PMO financial services.

Two surfaces share one aiohttp application:

* A REST API under ``/api`` answering with the envelope
  ``{"success": true, "data": ...}`` or ``{"success": false, "error": ...}``.
  A read that finds nothing answers 404, malformed input answers 400 and any
  failure raised by a service answers 500.
* A Model Context Protocol endpoint at ``/mcp``. ``POST`` carries JSON-RPC 2.0
  messages (``initialize``, ``ping``, ``tools/list``, ``tools/call``) and
  ``GET`` opens an SSE stream that forwards bus events for the session's
  active program.

Every program-scoped route checks the caller's active program context. REST
callers name their session with the ``X-Session-Id`` header; MCP callers use
their ``Mcp-Session-Id``.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import math
import os
import time
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from aiohttp import web

from . import __version__
from .budgets import REQUIRED_CREATE_FIELDS as BUDGET_REQUIRED_FIELDS
from .cashflow import REQUIRED_CREATE_FIELDS as CASH_FLOW_REQUIRED_FIELDS
from .config import Settings
from .dates import parse_datetime, utcnow
from .errors import ValidationError
from .evm_calculations import calculate_health_index
from .evm_snapshots import compare_snapshots
from .events import Event
from .program_context import DEFAULT_SESSION_ID
from .quality import validate_results
from .services import Services, build_services
from .transactions import REQUIRED_CREATE_FIELDS as TRANSACTION_REQUIRED_FIELDS

LOGGER = logging.getLogger("pmo_financial.mcp")


SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26")
DEFAULT_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

SERVER_NAME = "pmo-financial-mcp"
SESSION_HEADER = "X-Session-Id"
HEARTBEAT_SECONDS = 15


class BadRequest(ValueError):
    """Request input is missing or malformed."""


def _jsonable(value: Any) -> Any:
    """Convert service results into JSON friendly values; infinities become ``None``."""

    if hasattr(value, "to_dict"):
        return _jsonable(value.to_dict())
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, float) and (math.isinf(value) or math.isnan(value)):
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _json_dumps(payload: Any) -> str:
    """Serialize a JSON payload using compact separators."""

    return json.dumps(_jsonable(payload), separators=(",", ":"), ensure_ascii=False)


def success_response(data: Any, status: int = 200) -> web.Response:
    return web.json_response({"success": True, "data": data}, status=status, dumps=_json_dumps)


def error_response(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status, dumps=_json_dumps)


def api_route(not_found: str = "Not found") -> Callable[..., Callable[..., Awaitable[web.Response]]]:
    """Wrap a REST handler returning plain data into the response envelope.

    A handler result of ``None`` becomes a 404 with ``not_found`` as the error.
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[web.Response]]:
        @functools.wraps(func)
        async def wrapper(self: "MCPApplication", request: web.Request) -> web.Response:
            try:
                data = await func(self, request)
            except BadRequest as exc:
                return error_response(str(exc), 400)
            except web.HTTPException:
                raise
            except Exception as exc:
                LOGGER.exception("API error on %s %s", request.method, request.path)
                return error_response(str(exc), 500)
            if data is None:
                return error_response(not_found, 404)
            return success_response(data)

        return wrapper

    return decorator


async def read_json_body(request: web.Request) -> Dict[str, Any]:
    if not request.body_exists:
        return {}
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise BadRequest(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")
    return payload


def require_fields(payload: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if payload.get(name) in (None, "")]
    if missing:
        raise BadRequest(f"Missing required field(s): {', '.join(missing)}")


def parse_number(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise BadRequest(f"{name} must be a number") from None
    if math.isnan(number):
        raise BadRequest(f"{name} must be a number")
    return number


def parse_date_field(value: Any, name: str) -> datetime:
    try:
        return parse_datetime(value)
    except ValueError:
        raise BadRequest(f"{name} must be an ISO date") from None


def query_int(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise BadRequest(f"{name} must be an integer") from None


def query_float(request: web.Request, name: str, default: float) -> float:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    return parse_number(raw, name)


def query_bool(request: web.Request, name: str) -> Optional[bool]:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return None
    if raw.lower() in ("true", "1", "yes"):
        return True
    if raw.lower() in ("false", "0", "no"):
        return False
    raise BadRequest(f"{name} must be true or false")


def query_date(request: web.Request, name: str) -> Optional[datetime]:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return None
    return parse_date_field(raw, name)


def actor(payload: Dict[str, Any], key: str) -> str:
    return str(payload.pop(key, None) or "api")


@dataclass
class Session:
    """Represents an MCP session associated with a connected client."""

    id: str
    protocol_version: str
    client_info: Dict[str, Any]
    created_at: float = field(default_factory=lambda: time.time())
    queue: "asyncio.Queue[Dict[str, Any]]" = field(default_factory=asyncio.Queue)
    last_seen: float = field(default_factory=lambda: time.time())

    def heartbeat(self) -> None:
        self.last_seen = time.time()


class SessionManager:
    """Session registry guarded by an ``asyncio.Lock``."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, protocol_version: str, client_info: Dict[str, Any]) -> Session:
        session_id = str(uuid4())
        session = Session(id=session_id, protocol_version=protocol_version, client_info=client_info)
        async with self._lock:
            self._sessions[session_id] = session
        LOGGER.info("Created MCP session %s", session_id)
        return session

    async def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        async with self._lock:
            session = self._sessions.get(session_id)
        if session:
            session.heartbeat()
        return session

    async def cleanup(self, ttl_seconds: int = 3600) -> List[str]:
        """Remove stale sessions and return their IDs."""

        cutoff = time.time() - ttl_seconds
        removed = []
        async with self._lock:
            for session_id in list(self._sessions.keys()):
                if self._sessions[session_id].last_seen < cutoff:
                    LOGGER.info("Removing expired MCP session %s", session_id)
                    self._sessions.pop(session_id, None)
                    removed.append(session_id)
        return removed


ToolHandler = Callable[[Dict[str, Any], Session], Awaitable[Any]]


@dataclass
class ToolDefinition:
    """Metadata describing an MCP tool."""

    handler: ToolHandler
    description: str
    input_schema: Dict[str, Any]


def _object_schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties, "additionalProperties": False}
    if required:
        schema["required"] = required
    return schema


PROGRAM_ID_PROPERTY = {"type": "string", "description": "Program identifier, e.g. PRG-001."}


def apply_cors_headers(response: web.StreamResponse, origin: Optional[str], allowed_origins: tuple) -> None:
    if origin and any(origin.startswith(allowed) for allowed in allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = (
        "Content-Type, Accept, Authorization, Mcp-Session-Id, MCP-Protocol-Version, X-Session-Id"
    )
    response.headers["Access-Control-Expose-Headers"] = "Mcp-Session-Id"


def cors_and_origin_middleware(allowed_origins: tuple) -> Callable[..., Awaitable[web.StreamResponse]]:
    @web.middleware
    async def middleware(
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        origin = request.headers.get("Origin")

        if request.method == "OPTIONS":
            response = web.Response(status=200)
            apply_cors_headers(response, origin, allowed_origins)
            return response

        if origin and not any(origin.startswith(allowed) for allowed in allowed_origins):
            return web.json_response({"success": False, "error": "Invalid origin"}, status=403)

        response = await handler(request)
        if not response.prepared:
            apply_cors_headers(response, origin, allowed_origins)
        return response

    return middleware


class MCPApplication:
    """Encapsulates the aiohttp application, REST routes and MCP handlers."""

    def __init__(self, services: Services) -> None:
        self.services = services
        self.settings = services.settings
        self.sessions = SessionManager()
        self.app = web.Application(middlewares=[cors_and_origin_middleware(self.settings.allowed_origins)])
        self.app["services"] = services
        self.app["sessions"] = self.sessions
        self.app.on_cleanup.append(self._on_cleanup)

        router = self.app.router
        router.add_route("GET", "/mcp", self.handle_get)
        router.add_route("POST", "/mcp", self.handle_post)
        router.add_route("OPTIONS", "/mcp", self.handle_options)
        router.add_get("/health", self.handle_health)
        router.add_get("/.well-known/mcp.json", self.mcp_manifest)
        self._register_budget_routes(router)
        self._register_evm_routes(router)
        self._register_cashflow_routes(router)
        self._register_transaction_routes(router)
        self._register_quality_routes(router)
        router.add_post("/api/context/program", self.api_set_program_context)
        router.add_get("/api/context/program", self.api_get_program_context)
        router.add_delete("/api/context/program", self.api_clear_program_context)
        router.add_post("/api/events/receive", self.api_receive_event)

        self.tool_definitions: Dict[str, ToolDefinition] = {
            "evm.calculate": ToolDefinition(
                handler=self.tool_evm_calculate,
                description="Calculate PV, EV, AC, BAC and the derived EVM metrics for a program.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "as_of_date": {"type": "string", "description": "ISO date to calculate at; defaults to now."},
                    },
                    ["program_id"],
                ),
            ),
            "evm.snapshot": ToolDefinition(
                handler=self.tool_evm_snapshot,
                description="Calculate and store an EVM snapshot for a program.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "snapshot_date": {"type": "string", "description": "ISO date recorded on the snapshot."},
                    },
                    ["program_id"],
                ),
            ),
            "evm.health": ToolDefinition(
                handler=self.tool_evm_health,
                description="Score program health (0-100) from the latest EVM values.",
                input_schema=_object_schema({"program_id": PROGRAM_ID_PROPERTY}, ["program_id"]),
            ),
            "evm.trend": ToolDefinition(
                handler=self.tool_evm_trend,
                description="Analyse CPI, SPI and health trends over the snapshot history.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "period_months": {"type": "integer", "minimum": 1, "maximum": 60},
                    },
                    ["program_id"],
                ),
            ),
            "evm.anomalies": ToolDefinition(
                handler=self.tool_evm_anomalies,
                description="Flag snapshots whose metric deviates from the mean by more than the threshold.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "metric": {"type": "string", "enum": ["cpi", "spi", "cv", "sv"]},
                        "threshold": {"type": "number", "minimum": 0, "description": "Standard deviations."},
                    },
                    ["program_id"],
                ),
            ),
            "evm.forecast": ToolDefinition(
                handler=self.tool_evm_forecast,
                description="Forecast EAC, ETC and VAC from the latest snapshot.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "method": {"type": "string", "enum": ["cpi", "cpi-spi", "bottom-up"]},
                    },
                    ["program_id"],
                ),
            ),
            "budget.status": ToolDefinition(
                handler=self.tool_budget_status,
                description="Total allocated, committed, spent and remaining budget for a program.",
                input_schema=_object_schema({"program_id": PROGRAM_ID_PROPERTY}, ["program_id"]),
            ),
            "cashflow.runway": ToolDefinition(
                handler=self.tool_cashflow_runway,
                description="Months of runway from the current balance and recent completed cash flows.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "current_balance": {"type": "number"},
                    },
                    ["program_id", "current_balance"],
                ),
            ),
            "transactions.reconcile": ToolDefinition(
                handler=self.tool_transactions_reconcile,
                description="Reconcile one or more transactions; failures are reported per transaction.",
                input_schema=_object_schema(
                    {
                        "transaction_ids": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                        "reconciled_by": {"type": "string"},
                    },
                    ["transaction_ids"],
                ),
            ),
            "context.set_program": ToolDefinition(
                handler=self.tool_context_set_program,
                description="Set the active program for this session.",
                input_schema=_object_schema(
                    {
                        "program_id": PROGRAM_ID_PROPERTY,
                        "program_name": {"type": "string"},
                        "user_id": {"type": "string"},
                    },
                    ["program_id"],
                ),
            ),
        }

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.services.events.close()

    # ------------------------------------------------------------------
    # Program context helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _rest_session_id(request: web.Request) -> str:
        return request.headers.get(SESSION_HEADER) or DEFAULT_SESSION_ID

    def _check_program(self, session_id: str, program_id: Any) -> str:
        if not program_id:
            raise BadRequest("Missing required field(s): program_id")
        check = self.services.context.validate_program_context(str(program_id), session_id)
        if not check["valid"]:
            raise BadRequest(check["error"])
        return str(program_id)

    def _program_from_path(self, request: web.Request) -> str:
        return self._check_program(self._rest_session_id(request), request.match_info["programId"])

    # ------------------------------------------------------------------
    # Health and discovery
    # ------------------------------------------------------------------

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "service": SERVER_NAME,
                "version": __version__,
                "row_store": self.settings.row_store,
                "timestamp": utcnow().isoformat(),
            }
        )

    async def mcp_manifest(self, request: web.Request) -> web.Response:
        manifest = {
            "name": SERVER_NAME,
            "version": __version__,
            "description": "Budgets, earned value, cash flow and quality tools for program management offices.",
            "protocolVersions": list(SUPPORTED_PROTOCOL_VERSIONS),
            "transport": {"type": "streamable-http", "endpoint": f"{request.scheme}://{request.host}/mcp"},
            "capabilities": {"tools": {"listChanged": False}},
        }
        return web.json_response(manifest)

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    def _register_budget_routes(self, router: web.UrlDispatcher) -> None:
        router.add_post("/api/budgets", self.api_create_budget)
        router.add_get("/api/budgets/{id}", self.api_read_budget)
        router.add_put("/api/budgets/{id}", self.api_update_budget)
        router.add_delete("/api/budgets/{id}", self.api_delete_budget)
        router.add_get("/api/programs/{programId}/budgets", self.api_list_budgets)
        router.add_post("/api/budgets/{id}/allocate", self.api_allocate_budget)
        router.add_post("/api/budgets/{id}/commit", self.api_commit_budget)
        router.add_post("/api/budgets/{id}/expense", self.api_record_expense)
        router.add_get("/api/programs/{programId}/budget/status", self.api_budget_status)
        router.add_get("/api/budgets/{id}/burn-rate", self.api_burn_rate)
        router.add_get("/api/budgets/{budgetId}/transactions", self.api_budget_transactions)

    @api_route()
    async def api_create_budget(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, *BUDGET_REQUIRED_FIELDS)
        self._check_program(self._rest_session_id(request), payload["program_id"])
        payload["allocated"] = parse_number(payload["allocated"], "allocated")
        created_by = actor(payload, "created_by")
        return await self.services.budgets.create_budget(payload, created_by)

    @api_route("Budget not found")
    async def api_read_budget(self, request: web.Request) -> Any:
        return await self.services.budgets.read_budget(request.match_info["id"])

    @api_route("Budget not found")
    async def api_update_budget(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        modified_by = actor(payload, "modified_by")
        return await self.services.budgets.update_budget(request.match_info["id"], payload, modified_by)

    @api_route("Budget not found")
    async def api_delete_budget(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        deleted = await self.services.budgets.delete_budget(request.match_info["id"], actor(payload, "deleted_by"))
        return {"deleted": True} if deleted else None

    @api_route()
    async def api_list_budgets(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.budgets.list_budgets(
            program_id=program_id,
            project_id=request.query.get("project_id"),
            fiscal_year=request.query.get("fiscal_year"),
            category=request.query.get("category"),
            status=request.query.get("status"),
        )

    async def _budget_amount(self, request: web.Request) -> Dict[str, Any]:
        payload = await read_json_body(request)
        require_fields(payload, "amount")
        payload["amount"] = parse_number(payload["amount"], "amount")
        return payload

    @api_route("Budget not found")
    async def api_allocate_budget(self, request: web.Request) -> Any:
        payload = await self._budget_amount(request)
        return await self.services.budgets.allocate_budget(
            request.match_info["id"], payload["amount"], actor(payload, "allocated_by")
        )

    @api_route("Budget not found")
    async def api_commit_budget(self, request: web.Request) -> Any:
        payload = await self._budget_amount(request)
        return await self.services.budgets.commit_budget(
            request.match_info["id"], payload["amount"], actor(payload, "committed_by")
        )

    @api_route("Budget not found")
    async def api_record_expense(self, request: web.Request) -> Any:
        payload = await self._budget_amount(request)
        return await self.services.budgets.record_expense(
            request.match_info["id"],
            payload["amount"],
            str(payload.get("description") or ""),
            actor(payload, "recorded_by"),
        )

    @api_route()
    async def api_budget_status(self, request: web.Request) -> Any:
        return await self.services.budgets.get_budget_status(self._program_from_path(request))

    @api_route("Budget not found")
    async def api_burn_rate(self, request: web.Request) -> Any:
        return await self.services.budgets.calculate_burn_rate(request.match_info["id"])

    @api_route()
    async def api_budget_transactions(self, request: web.Request) -> Any:
        return await self.services.transactions.get_transactions_by_budget(request.match_info["budgetId"])

    # ------------------------------------------------------------------
    # Earned value
    # ------------------------------------------------------------------

    def _register_evm_routes(self, router: web.UrlDispatcher) -> None:
        prefix = "/api/programs/{programId}/evm"
        router.add_post(f"{prefix}/calculate", self.api_evm_calculate)
        router.add_post(f"{prefix}/snapshot", self.api_create_snapshot)
        router.add_get(f"{prefix}/snapshots", self.api_list_snapshots)
        router.add_get(f"{prefix}/snapshot/latest", self.api_latest_snapshot)
        router.add_get(f"{prefix}/snapshot/history", self.api_snapshot_history)
        router.add_delete("/api/evm/snapshots/{id}", self.api_delete_snapshot)
        router.add_post("/api/evm/snapshots/compare", self.api_compare_snapshots)
        router.add_post(f"{prefix}/forecast/completion", self.api_forecast_completion)
        router.add_post(f"{prefix}/forecast/budget", self.api_forecast_budget)
        router.add_post(f"{prefix}/forecast/scenarios", self.api_forecast_scenarios)
        router.add_post(f"{prefix}/forecast/required-performance", self.api_required_performance)
        router.add_get(f"{prefix}/trend/cpi", self.api_cpi_trend)
        router.add_get(f"{prefix}/trend/spi", self.api_spi_trend)
        router.add_get(f"{prefix}/trend/performance", self.api_performance_trend)
        router.add_post(f"{prefix}/trend/anomalies", self.api_detect_anomalies)
        router.add_post(f"{prefix}/compare/{{baselineSnapshotId}}", self.api_compare_to_baseline)

    @api_route()
    async def api_evm_calculate(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        as_of = parse_date_field(payload["as_of_date"], "as_of_date") if payload.get("as_of_date") else None
        result = await self.services.calculator.perform_evm_calculation(program_id, as_of)
        result["health"] = calculate_health_index(result["metrics"])
        return result

    @api_route()
    async def api_create_snapshot(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        snapshot_date = (
            parse_date_field(payload["snapshot_date"], "snapshot_date") if payload.get("snapshot_date") else None
        )
        return await self.services.snapshots.create_snapshot(program_id, snapshot_date, actor(payload, "created_by"))

    @api_route()
    async def api_list_snapshots(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.snapshots.list_snapshots(
            program_id,
            start_date=query_date(request, "start_date"),
            end_date=query_date(request, "end_date"),
            limit=query_int(request, "limit", 100),
        )

    @api_route("No snapshots found for program")
    async def api_latest_snapshot(self, request: web.Request) -> Any:
        return await self.services.snapshots.get_latest_snapshot(self._program_from_path(request))

    @api_route()
    async def api_snapshot_history(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.snapshots.get_snapshot_history(program_id, query_int(request, "period_months", 12))

    @api_route("Snapshot not found")
    async def api_delete_snapshot(self, request: web.Request) -> Any:
        deleted = await self.services.snapshots.delete_snapshot(request.match_info["id"])
        return {"deleted": True} if deleted else None

    @api_route("One or both snapshots not found")
    async def api_compare_snapshots(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, "baseline_snapshot_id", "current_snapshot_id")
        baseline = await self.services.snapshots.read_snapshot(payload["baseline_snapshot_id"])
        current = await self.services.snapshots.read_snapshot(payload["current_snapshot_id"])
        if baseline is None or current is None:
            return None
        return compare_snapshots(baseline, current)

    @api_route()
    async def api_forecast_completion(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        require_fields(payload, "planned_end_date")
        planned_end = parse_date_field(payload["planned_end_date"], "planned_end_date")
        return await self.services.forecaster.forecast_completion_date(program_id, planned_end)

    @api_route()
    async def api_forecast_budget(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        return await self.services.forecaster.forecast_budget_at_completion(program_id, payload.get("method") or "cpi")

    @api_route()
    async def api_forecast_scenarios(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        elapsed_days = parse_number(payload.get("elapsed_days", 180), "elapsed_days")
        return await self.services.forecaster.generate_forecast_scenarios(program_id, elapsed_days)

    @api_route()
    async def api_required_performance(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        target = payload.get("target_eac")
        target_eac = parse_number(target, "target_eac") if target is not None else None
        return await self.services.forecaster.calculate_required_performance(program_id, target_eac)

    @api_route()
    async def api_cpi_trend(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.trends.analyze_cpi_trend(program_id, query_int(request, "period_months", 12))

    @api_route()
    async def api_spi_trend(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.trends.analyze_spi_trend(program_id, query_int(request, "period_months", 12))

    @api_route()
    async def api_performance_trend(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.trends.analyze_performance_trend(
            program_id, query_int(request, "period_months", 12)
        )

    @api_route()
    async def api_detect_anomalies(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        payload = await read_json_body(request)
        threshold = parse_number(payload.get("threshold", 2.0), "threshold")
        return await self.services.trends.detect_anomalies(program_id, payload.get("metric") or "cpi", threshold)

    @api_route()
    async def api_compare_to_baseline(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.trends.compare_to_baseline(program_id, request.match_info["baselineSnapshotId"])

    # ------------------------------------------------------------------
    # Cash flow
    # ------------------------------------------------------------------

    def _register_cashflow_routes(self, router: web.UrlDispatcher) -> None:
        prefix = "/api/programs/{programId}/cashflow"
        router.add_post("/api/cashflows", self.api_create_cash_flow)
        router.add_get("/api/cashflows/{id}", self.api_read_cash_flow)
        router.add_put("/api/cashflows/{id}", self.api_update_cash_flow)
        router.add_delete("/api/cashflows/{id}", self.api_delete_cash_flow)
        router.add_get("/api/programs/{programId}/cashflows", self.api_list_cash_flows)
        router.add_post("/api/cashflows/{id}/record-actual", self.api_record_actual_cash_flow)
        router.add_get(f"{prefix}/forecast/monthly", self.api_monthly_forecast)
        router.add_get(f"{prefix}/forecast/weekly", self.api_weekly_forecast)
        router.add_get(f"{prefix}/runway", self.api_runway)
        router.add_get(f"{prefix}/position", self.api_cash_position)
        router.add_get(f"{prefix}/upcoming", self.api_upcoming_cash_flows)
        router.add_get(f"{prefix}/overdue", self.api_overdue_cash_flows)

    @api_route()
    async def api_create_cash_flow(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, *CASH_FLOW_REQUIRED_FIELDS)
        self._check_program(self._rest_session_id(request), payload["program_id"])
        payload["amount"] = parse_number(payload["amount"], "amount")
        created_by = actor(payload, "created_by")
        return await self.services.cashflows.create_cash_flow(payload, created_by)

    @api_route("Cash flow not found")
    async def api_read_cash_flow(self, request: web.Request) -> Any:
        return await self.services.cashflows.read_cash_flow(request.match_info["id"])

    @api_route("Cash flow not found")
    async def api_update_cash_flow(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        modified_by = actor(payload, "modified_by")
        return await self.services.cashflows.update_cash_flow(request.match_info["id"], payload, modified_by)

    @api_route("Cash flow not found")
    async def api_delete_cash_flow(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        deleted = await self.services.cashflows.delete_cash_flow(request.match_info["id"], actor(payload, "deleted_by"))
        return {"deleted": True} if deleted else None

    @api_route()
    async def api_list_cash_flows(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.cashflows.list_cash_flows(
            program_id=program_id,
            type=request.query.get("type"),
            status=request.query.get("status"),
            start_date=query_date(request, "start_date"),
            end_date=query_date(request, "end_date"),
        )

    @api_route("Cash flow not found")
    async def api_record_actual_cash_flow(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, "actual_amount")
        amount = parse_number(payload["actual_amount"], "actual_amount")
        actual_date = parse_date_field(payload["actual_date"], "actual_date") if payload.get("actual_date") else utcnow()
        return await self.services.cashflows.record_actual_cash_flow(
            request.match_info["id"], actual_date, amount, actor(payload, "recorded_by")
        )

    @api_route()
    async def api_monthly_forecast(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.cashflow_forecaster.forecast_monthly_cash_flow(
            program_id,
            query_int(request, "period_months", 12),
            query_float(request, "opening_balance", 0.0),
        )

    @api_route()
    async def api_weekly_forecast(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.cashflow_forecaster.forecast_weekly_cash_flow(
            program_id,
            query_int(request, "period_weeks", 12),
            query_float(request, "opening_balance", 0.0),
        )

    @api_route()
    async def api_runway(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        if "current_balance" not in request.query:
            raise BadRequest("Missing required query parameter: current_balance")
        balance = query_float(request, "current_balance", 0.0)
        return await self.services.cashflow_forecaster.calculate_runway(program_id, balance)

    @api_route()
    async def api_cash_position(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        target = query_date(request, "target_date")
        if target is None:
            raise BadRequest("Missing required query parameter: target_date")
        balance = query_float(request, "current_balance", 0.0)
        return await self.services.cashflow_forecaster.forecast_cash_position(program_id, target, balance)

    @api_route()
    async def api_upcoming_cash_flows(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.cashflows.get_upcoming_cash_flows(program_id, query_int(request, "days_ahead", 30))

    @api_route()
    async def api_overdue_cash_flows(self, request: web.Request) -> Any:
        return await self.services.cashflows.get_overdue_cash_flows(self._program_from_path(request))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _register_transaction_routes(self, router: web.UrlDispatcher) -> None:
        router.add_post("/api/transactions", self.api_create_transaction)
        router.add_post("/api/transactions/bulk-reconcile", self.api_bulk_reconcile)
        router.add_get("/api/transactions/{id}", self.api_read_transaction)
        router.add_put("/api/transactions/{id}", self.api_update_transaction)
        router.add_delete("/api/transactions/{id}", self.api_delete_transaction)
        router.add_post("/api/transactions/{id}/reconcile", self.api_reconcile_transaction)
        router.add_get("/api/programs/{programId}/transactions", self.api_list_transactions)
        router.add_get("/api/programs/{programId}/transactions/unreconciled", self.api_unreconciled_transactions)

    @api_route()
    async def api_create_transaction(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, *TRANSACTION_REQUIRED_FIELDS)
        self._check_program(self._rest_session_id(request), payload["program_id"])
        payload["amount"] = parse_number(payload["amount"], "amount")
        created_by = actor(payload, "created_by")
        return await self.services.transactions.create_transaction(payload, created_by)

    @api_route("Transaction not found")
    async def api_read_transaction(self, request: web.Request) -> Any:
        return await self.services.transactions.read_transaction(request.match_info["id"])

    @api_route("Transaction not found")
    async def api_update_transaction(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        modified_by = actor(payload, "modified_by")
        return await self.services.transactions.update_transaction(request.match_info["id"], payload, modified_by)

    @api_route("Transaction not found")
    async def api_delete_transaction(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        deleted = await self.services.transactions.delete_transaction(
            request.match_info["id"], actor(payload, "deleted_by")
        )
        return {"deleted": True} if deleted else None

    @api_route()
    async def api_list_transactions(self, request: web.Request) -> Any:
        program_id = self._program_from_path(request)
        return await self.services.transactions.list_transactions(
            program_id=program_id,
            budget_id=request.query.get("budget_id"),
            type=request.query.get("type"),
            start_date=query_date(request, "start_date"),
            end_date=query_date(request, "end_date"),
            reconciled=query_bool(request, "reconciled"),
        )

    @api_route("Transaction not found")
    async def api_reconcile_transaction(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        return await self.services.transactions.reconcile_transaction(
            request.match_info["id"], actor(payload, "reconciled_by")
        )

    @api_route()
    async def api_bulk_reconcile(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        ids = payload.get("transaction_ids")
        if not isinstance(ids, list) or not ids:
            raise BadRequest("transaction_ids must be a non-empty list")
        return await self.services.transactions.batch_reconcile_transactions(
            [str(item) for item in ids], actor(payload, "reconciled_by")
        )

    @api_route()
    async def api_unreconciled_transactions(self, request: web.Request) -> Any:
        return await self.services.transactions.get_unreconciled_transactions(self._program_from_path(request))

    # ------------------------------------------------------------------
    # Quality
    # ------------------------------------------------------------------

    def _register_quality_routes(self, router: web.UrlDispatcher) -> None:
        router.add_post("/api/quality/checklists", self.api_create_checklist)
        router.add_get("/api/quality/checklists/{id}", self.api_read_checklist)
        router.add_post("/api/deliverables/{id}/evaluate", self.api_evaluate_deliverable)
        router.add_get("/api/deliverables/{id}/quality-results", self.api_quality_results)

    @api_route()
    async def api_create_checklist(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, "name")
        criteria = payload.get("criteria") or []
        if not isinstance(criteria, list):
            raise BadRequest("criteria must be a list")
        return await self.services.quality.create_quality_checklist(
            name=str(payload["name"]),
            description=str(payload.get("description") or ""),
            deliverable_type=payload.get("deliverable_type"),
            criteria=criteria,
            created_by=actor(payload, "created_by"),
        )

    @api_route("Checklist not found")
    async def api_read_checklist(self, request: web.Request) -> Any:
        return await self.services.quality.read_checklist_by_id(request.match_info["id"])

    @api_route()
    async def api_evaluate_deliverable(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, "checklist_id")
        results = payload.get("results")
        try:
            validate_results(results)
        except ValidationError as exc:
            raise BadRequest(str(exc)) from exc
        return await self.services.quality.evaluate_deliverable(
            deliverable_id=request.match_info["id"],
            checklist_id=str(payload["checklist_id"]),
            results=results,
            evaluated_by=actor(payload, "evaluated_by"),
            review_id=payload.get("review_id"),
            comments=str(payload.get("comments") or ""),
        )

    @api_route()
    async def api_quality_results(self, request: web.Request) -> Any:
        return await self.services.quality.get_checklist_results_for_deliverable(request.match_info["id"])

    # ------------------------------------------------------------------
    # Program context and events
    # ------------------------------------------------------------------

    @api_route()
    async def api_set_program_context(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, "program_id")
        return self.services.context.switch_program(
            str(payload["program_id"]),
            program_name=payload.get("program_name"),
            user_id=payload.get("user_id"),
            session_id=self._rest_session_id(request),
        )

    @api_route("No active program for this session")
    async def api_get_program_context(self, request: web.Request) -> Any:
        return self.services.context.get_active_context(self._rest_session_id(request))

    @api_route()
    async def api_clear_program_context(self, request: web.Request) -> Any:
        session_id = self._rest_session_id(request)
        self.services.context.clear_active_program(session_id)
        return {"session_id": session_id, "cleared": True}

    @api_route()
    async def api_receive_event(self, request: web.Request) -> Any:
        payload = await read_json_body(request)
        require_fields(payload, "event_type")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise BadRequest("data must be an object")
        LOGGER.info("Event received from %s: %s", payload.get("source") or "unknown", payload["event_type"])
        event = await self.services.events.publish(
            str(payload["event_type"]),
            data,
            source=payload.get("source"),
            program_id=payload.get("program_id"),
            user_id=payload.get("user_id"),
        )
        return {"received": True, "event_type": event.event_type}

    # ------------------------------------------------------------------
    # MCP transport
    # ------------------------------------------------------------------

    async def handle_options(self, request: web.Request) -> web.Response:
        return web.Response(status=200)

    async def handle_get(self, request: web.Request) -> web.StreamResponse:
        session_id = request.headers.get("Mcp-Session-Id") or request.query.get("sessionId")
        session = await self.sessions.get(session_id)
        if not session:
            return web.json_response(
                {
                    "jsonrpc": "2.0",
                    "error": {"code": -32000, "message": "Session ID required"},
                    "id": None,
                },
                status=400,
            )

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )
        apply_cors_headers(response, request.headers.get("Origin"), self.settings.allowed_origins)
        await response.prepare(request)

        def forward(event: Event) -> None:
            session.queue.put_nowait({"event": event.event_type, **event.to_dict()})

        def for_active_program(event: Event) -> bool:
            active = self.services.context.get_active_program(session.id)
            return active is not None and event.program_id == active

        subscription_id = self.services.events.subscribe("*", forward, for_active_program)

        await self._write_sse_event(response, "connected", {"session": session.id, "timestamp": time.time()})
        try:
            while True:
                try:
                    message = await asyncio.wait_for(session.queue.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    session.heartbeat()
                    await self._write_sse_event(response, "heartbeat", {"timestamp": time.time()})
                    continue

                await self._write_sse_event(response, message.get("event", "message"), message)
        except ConnectionResetError:
            LOGGER.info("SSE connection closed for session %s", session.id)
        finally:
            self.services.events.unsubscribe(subscription_id)
            with suppress(ConnectionResetError, RuntimeError):
                await response.write_eof()

        return response

    async def _write_sse_event(self, response: web.StreamResponse, event: str, data: Dict[str, Any]) -> None:
        payload = _json_dumps(data).encode("utf-8")
        await response.write(f"event: {event}\n".encode("utf-8"))
        await response.write(b"data: " + payload + b"\n\n")

    async def handle_post(self, request: web.Request) -> web.StreamResponse:
        self._validate_headers(request)

        try:
            payload = await request.json()
        except json.JSONDecodeError as exc:
            return self._jsonrpc_error(None, -32700, f"Parse error: {exc}", status=400)

        if not isinstance(payload, dict) or payload.get("jsonrpc") != "2.0":
            return self._jsonrpc_error(None, -32600, "Invalid Request: jsonrpc must be 2.0")

        method = payload.get("method")
        if not method:
            return self._jsonrpc_error(payload.get("id"), -32600, "Invalid Request: method required")

        request_id = payload.get("id")

        if request_id is None:
            await self._handle_notification(method, payload.get("params", {}))
            return web.Response(status=202)

        if method == "initialize":
            result, session = await self._handle_initialize(payload, request)
            response = web.json_response({"jsonrpc": "2.0", "id": request_id, "result": result})
            response.headers["Mcp-Session-Id"] = session.id
            return response

        session = await self.sessions.get(request.headers.get("Mcp-Session-Id"))
        if not session:
            return self._jsonrpc_error(request_id, -32000, "Session ID required", status=400)

        handler = getattr(self, f"rpc_{method.replace('/', '_')}", None)
        if handler is None:
            return self._jsonrpc_error(request_id, -32601, f"Method not found: {method}")

        try:
            result = await handler(payload.get("params") or {}, session)
        except web.HTTPException as exc:
            return self._jsonrpc_error(request_id, -32602, exc.text or exc.reason)
        except Exception as exc:
            LOGGER.exception("MCP method %s failed", method)
            return self._jsonrpc_error(request_id, -32603, f"Internal error: {exc}")

        return web.json_response({"jsonrpc": "2.0", "id": request_id, "result": result}, dumps=_json_dumps)

    def _validate_headers(self, request: web.Request) -> None:
        content_type = request.headers.get("Content-Type", "").split(";")[0].strip()
        if content_type != "application/json":
            raise web.HTTPUnsupportedMediaType(text="Content-Type must be application/json")

        protocol_version = request.headers.get("MCP-Protocol-Version")
        if protocol_version and protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise web.HTTPBadRequest(text="Unsupported protocol version")

        accept = request.headers.get("Accept", "application/json")
        if "application/json" not in accept and "*/*" not in accept:
            raise web.HTTPNotAcceptable(text="Accept header must allow application/json")

    async def _handle_initialize(self, payload: Dict[str, Any], request: web.Request) -> tuple:
        params = payload.get("params") or {}
        requested_version = (
            params.get("protocolVersion")
            or request.headers.get("MCP-Protocol-Version")
            or DEFAULT_PROTOCOL_VERSION
        )
        if requested_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise web.HTTPBadRequest(text="Unsupported protocol version")

        for expired in await self.sessions.cleanup(self.settings.session_ttl_seconds):
            self.services.context.clear_active_program(expired)
        session = await self.sessions.create_session(requested_version, params.get("clientInfo", {}))
        result = {
            "protocolVersion": requested_version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }
        return result, session

    async def _handle_notification(self, method: str, params: Dict[str, Any]) -> None:
        LOGGER.info("Notification received: method=%s params=%s", method, params)

    def _jsonrpc_error(self, request_id: Any, code: int, message: str, *, status: int = 200) -> web.Response:
        payload = {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
        return web.json_response(payload, status=status)

    async def rpc_ping(self, params: Dict[str, Any], session: Session) -> Dict[str, Any]:
        return {}

    async def rpc_tools_list(self, params: Dict[str, Any], session: Session) -> Dict[str, Any]:
        tools = []
        for name, definition in self.tool_definitions.items():
            tools.append({"name": name, "description": definition.description, "inputSchema": definition.input_schema})
        return {"tools": tools}

    async def rpc_tools_call(self, params: Dict[str, Any], session: Session) -> Dict[str, Any]:
        if not isinstance(params, dict):
            raise web.HTTPBadRequest(text="Invalid params: expected object")

        name = params.get("name")
        arguments = params.get("arguments") or {}
        definition = self.tool_definitions.get(name)
        if definition is None:
            raise web.HTTPBadRequest(text=f"Unknown tool: {name}")
        if not isinstance(arguments, dict):
            raise web.HTTPBadRequest(text="Invalid arguments: expected object")

        try:
            data = _jsonable(await definition.handler(arguments, session))
        except BadRequest as exc:
            raise web.HTTPBadRequest(text=str(exc)) from exc
        return {
            "content": [{"type": "text", "text": _json_dumps(data)}],
            "structuredContent": data,
            "isError": False,
        }

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _tool_program(self, arguments: Dict[str, Any], session: Session) -> str:
        return self._check_program(session.id, arguments.get("program_id"))

    async def tool_evm_calculate(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        as_of = arguments.get("as_of_date")
        as_of_date = parse_date_field(as_of, "as_of_date") if as_of else None
        return await self.services.calculator.perform_evm_calculation(program_id, as_of_date)

    async def tool_evm_snapshot(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        snapshot_date = arguments.get("snapshot_date")
        taken_at = parse_date_field(snapshot_date, "snapshot_date") if snapshot_date else None
        context = self.services.context.get_active_context(session.id)
        created_by = context.user_id if context and context.user_id else "mcp"
        return await self.services.snapshots.create_snapshot(program_id, taken_at, created_by)

    async def tool_evm_health(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        calculation = await self.services.calculator.perform_evm_calculation(program_id)
        return {"program_id": program_id, "metrics": calculation["metrics"], **calculate_health_index(calculation["metrics"])}

    async def tool_evm_trend(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        period_months = int(parse_number(arguments.get("period_months", 12), "period_months"))
        return await self.services.trends.analyze_performance_trend(program_id, period_months)

    async def tool_evm_anomalies(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        threshold = parse_number(arguments.get("threshold", 2.0), "threshold")
        anomalies = await self.services.trends.detect_anomalies(program_id, arguments.get("metric") or "cpi", threshold)
        return {"program_id": program_id, "anomalies": anomalies}

    async def tool_evm_forecast(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        return await self.services.forecaster.forecast_budget_at_completion(program_id, arguments.get("method") or "cpi")

    async def tool_budget_status(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        return await self.services.budgets.get_budget_status(program_id)

    async def tool_cashflow_runway(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = self._tool_program(arguments, session)
        balance = parse_number(arguments.get("current_balance"), "current_balance")
        return await self.services.cashflow_forecaster.calculate_runway(program_id, balance)

    async def tool_transactions_reconcile(self, arguments: Dict[str, Any], session: Session) -> Any:
        ids = arguments.get("transaction_ids")
        if not isinstance(ids, list) or not ids:
            raise BadRequest("transaction_ids must be a non-empty list")
        reconciled_by = str(arguments.get("reconciled_by") or "mcp")
        return await self.services.transactions.batch_reconcile_transactions([str(item) for item in ids], reconciled_by)

    async def tool_context_set_program(self, arguments: Dict[str, Any], session: Session) -> Any:
        program_id = arguments.get("program_id")
        if not program_id:
            raise BadRequest("Missing required field(s): program_id")
        return self.services.context.switch_program(
            str(program_id),
            program_name=arguments.get("program_name"),
            user_id=arguments.get("user_id"),
            session_id=session.id,
        )


def configure_logging(settings: Settings) -> None:
    """Log to the console and, when ``LOG_DIR`` is writable, to a file there."""

    log_file = os.path.join(settings.log_dir, "pmo-financial.log")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    try:
        os.makedirs(settings.log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a"))
        file_logging_status = f"SUCCESS: Logging to {log_file}"
    except PermissionError as e:
        file_logging_status = f"WARNING: File logging disabled - Permission denied for {settings.log_dir}: {e}"
    except OSError as e:
        file_logging_status = f"WARNING: File logging disabled - OS error for {settings.log_dir}: {e}"

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    LOGGER.info(f"File logging configuration: {file_logging_status}")
    if file_logging_status.startswith("WARNING"):
        LOGGER.info("Continuing with console-only logging")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> web.Application:
    if services is None:
        settings = settings or Settings.from_environment()
        configure_logging(settings)
        services = build_services(settings)
    server = MCPApplication(services)
    return server.app


def main() -> None:
    settings = Settings.from_environment()
    app = create_app(settings)
    web.run_app(app, host=settings.host, port=settings.port)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
