"""HTTP JSON-RPC server wiring for github-write-mcp.

Routes:
- POST /mcp           read tools (and protocol methods)
- POST /mcp/{secret}  write tools
- GET  /health        liveness

Every JSON-RPC answer uses HTTP 200; failures travel only in the `error` object.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

import uvicorn
from jsonschema import Draft202012Validator
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    TextContent,
    Tool,
)
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from . import __version__, tools
from .errors import PERMISSION_DENIED, SafeError, classify
from .tools import TOOL_METADATA, dispatch_tool

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

SERVER_NAME = "github-write-mcp"


def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(name=tool_name, description=metadata["description"], inputSchema=metadata["inputSchema"])
        for tool_name, metadata in TOOL_METADATA.items()
    ]


def _tool_wire(tool: Tool) -> dict[str, Any]:
    """Serialize a tool with MCP wire field names (`inputSchema`, not `input_schema`)."""
    return tool.model_dump(by_alias=True, exclude_none=True)


def _rpc_result(request_id: Any, result: dict[str, Any]) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": request_id, "result": result})


def _rpc_error(request_id: Any, error: dict[str, Any]) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": request_id, "error": error})


async def _call_tool(request_id: Any, params: dict[str, Any], *, path_secret: str | None) -> JSONResponse:
    name = params.get("name")
    arguments = params.get("arguments")
    if not isinstance(arguments, dict):
        arguments = {}
    if not isinstance(name, str):
        return _rpc_error(request_id, {"code": INVALID_REQUEST, "message": "Tool name is required"})

    logger.info("Tool called: %s", name)
    outcome = await dispatch_tool(name, arguments, path_secret=path_secret)
    if not outcome["ok"]:
        error = outcome["error"]
        error.setdefault("data", {})["correlation_id"] = outcome["correlation_id"]
        return _rpc_error(request_id, error)

    payload = dict(outcome["result"])
    payload.setdefault("correlation_id", outcome["correlation_id"])
    content = TextContent(type="text", text=json.dumps(payload, indent=2, default=str))
    return _rpc_result(request_id, {"content": [content.model_dump(by_alias=True, exclude_none=True)]})


async def handle_rpc(message: dict[str, Any], *, path_secret: str | None) -> Response:
    """Route one JSON-RPC message."""
    request_id = message.get("id")
    method = message.get("method")
    params = message.get("params") if isinstance(message.get("params"), dict) else {}

    if message.get("jsonrpc") != "2.0" or not isinstance(method, str):
        return _rpc_error(request_id, {"code": INVALID_REQUEST, "message": "Invalid JSON-RPC request"})

    if method == "initialize":
        return _rpc_result(
            request_id,
            {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
            },
        )
    if method.startswith("notifications/"):
        return Response(status_code=200)
    if method == "ping":
        return _rpc_result(request_id, {})
    if method == "tools/list":
        tool_models = list_tools()
        logger.info("Listed %s tools", len(tool_models))
        return _rpc_result(request_id, {"tools": [_tool_wire(t) for t in tool_models]})
    if method == "tools/call":
        return await _call_tool(request_id, params, path_secret=path_secret)

    return _rpc_error(request_id, {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"})


async def mcp_endpoint(request: Request) -> Response:
    """POST /mcp and POST /mcp/{secret}."""
    path_secret = request.path_params.get("secret")

    try:
        message = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _rpc_error(None, {"code": PARSE_ERROR, "message": "Invalid JSON"})
    if not isinstance(message, dict):
        return _rpc_error(None, {"code": INVALID_REQUEST, "message": "Batch requests are not supported"})

    try:
        runtime = tools.initialize_runtime_from_env()
    except SafeError as err:
        logger.error("Configuration error: %s", err.message)
        return _rpc_error(message.get("id"), classify(err))

    decision = runtime.policy.check_bearer(request.headers.get("authorization"))
    if not decision.allowed:
        error = {
            "code": PERMISSION_DENIED,
            "message": f"Permission denied: {decision.reason}",
            "data": {"reason": "forbidden"},
        }
        return _rpc_error(message.get("id"), error)

    try:
        return await handle_rpc(message, path_secret=path_secret)
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Unhandled error while processing %s", message.get("method"))
        return _rpc_error(message.get("id"), {"code": INTERNAL_ERROR, "message": "Internal error"})


async def health(request: Request) -> Response:
    """GET /health."""
    return JSONResponse({"status": "ok", "server": SERVER_NAME, "version": __version__})


def create_app() -> Starlette:
    """Create the Starlette application."""
    routes = [
        Route("/mcp", mcp_endpoint, methods=["POST"]),
        Route("/mcp/{secret}", mcp_endpoint, methods=["POST"]),
        Route("/health", health, methods=["GET"]),
    ]
    return Starlette(routes=routes)


app = create_app()


async def run_server() -> None:
    """Run the HTTP server."""
    # Fail fast on invalid/missing host configuration.
    try:
        runtime = tools.initialize_runtime_from_env()
    except SafeError as exc:
        logger.error("Startup configuration error: %s", exc.message)
        raise

    if not runtime.policy.writes_configured:
        logger.warning("MCP_WRITE_SECRET is not set; write tools are disabled")
    if not runtime.config.policy.whitelist:
        logger.warning("PR_WHITELIST is empty; every write will be denied")

    # Access logs would record the secret path segment.
    config = uvicorn.Config(app, host=runtime.config.host, port=runtime.config.port, access_log=False)
    logger.info("Starting %s %s on %s:%s", SERVER_NAME, __version__, runtime.config.host, runtime.config.port)
    await uvicorn.Server(config).serve()


async def test_server() -> None:
    """Lightweight self-test: tool models build and every input schema is valid."""
    for tool in list_tools():
        Draft202012Validator.check_schema(_tool_wire(tool)["inputSchema"])
    logger.info("Self-test passed (%s tools)", len(TOOL_METADATA))
