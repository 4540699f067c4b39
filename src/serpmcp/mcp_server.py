"""
MCP (Model Context Protocol) server for the ValueSerp search API.

Exposes Google web, news, image, video, places and place-details search as
MCP tools.  Every tool returns a text block with the raw API response (CSV by
default, or pretty-printed JSON) followed by one inline image block for each
base64 image embedded in the response, unless ``process_images`` is false.

Protocol: JSON-RPC 2.0 over stdio (one JSON object per line).  Logs go to
stderr so they never corrupt the protocol stream.

Usage
-----
Run directly:
    VALUESERP_API_KEY=... python -m serpmcp.mcp_server

Or via the CLI:
    serpmcp mcp

MCP client entry
----------------
{
  "mcpServers": {
    "valueserp": {
      "command": "serpmcp",
      "args": ["mcp"],
      "env": {"VALUESERP_API_KEY": "<key>"}
    }
  }
}
"""
from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Callable
from typing import Any

from loguru import logger

from .config import image_policy, load_config, require_api_key
from .images import format_response
from .logs import configure_logging
from .tools.errors import ConfigError, ToolRequestError, ValidationError
from .tools.valueserp import ValueSerpClient
from .validation import (
    IMAGE_COLORS,
    IMAGE_SIZES,
    IMAGE_TYPES,
    IMAGE_USAGES,
    TIME_PERIODS,
    validate_image_search_params,
    validate_news_search_params,
    validate_place_details_params,
    validate_places_search_params,
    validate_search_params,
    validate_video_search_params,
)
from .version import __version__

SUPPORTED_PROTOCOL_VERSIONS = {"2024-11-05", "2025-03-26"}

_config: dict[str, Any] | None = None
_client: ValueSerpClient | None = None


def _get_config() -> dict[str, Any]:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _get_client() -> ValueSerpClient:
    global _client
    if _client is None:
        cfg = _get_config()
        _client = ValueSerpClient(
            api_key=require_api_key(cfg),
            base_url=cfg["base_url"],
            timeout=cfg["timeout"],
        )
    return _client


# ---------------------------------------------------------------------------
# Tool schema registry, one entry per exposed tool
# ---------------------------------------------------------------------------

def _base_properties(subject: str) -> dict[str, Any]:
    return {
        "q": {"type": "string", "description": f"{subject} query (required)."},
        "output": {
            "type": "string",
            "enum": ["csv", "json"],
            "description": "Output format: csv (compact, default) or json (full data).",
        },
        "csv_fields": {"type": "string", "description": "Comma-separated CSV fields for output selection."},
        "process_images": {
            "type": "boolean",
            "description": "Return base64 images found in the response as inline image blocks (default true).",
        },
        "location": {
            "type": "string",
            "description": "Geographic location as free text, or 'lat:43.43,lon:-3.83' coordinates.",
        },
        "location_auto": {"type": "boolean", "description": "Auto-update google_domain/gl/hl from location."},
        "uule": {"type": "string", "description": "Custom Google UULE parameter."},
        "google_domain": {"type": "string", "description": "Google domain to use (default google.com)."},
        "gl": {"type": "string", "description": "Google country code (default us)."},
        "hl": {"type": "string", "description": "Google UI language (default en)."},
        "lr": {"type": "string", "description": "Limit results to a language."},
        "cr": {"type": "string", "description": "Limit results to a country."},
        "time_period": {
            "type": "string",
            "enum": list(TIME_PERIODS),
            "description": "Only return results from this time period.",
        },
        "time_period_min": {"type": "string", "description": "Start date when time_period is custom (MM/DD/YYYY)."},
        "time_period_max": {"type": "string", "description": "End date when time_period is custom (MM/DD/YYYY)."},
        "nfpr": {"type": "string", "enum": ["0", "1"], "description": "1 to exclude auto-corrected results."},
        "filter": {"type": "string", "enum": ["0", "1"], "description": "0 to disable Similar/Omitted Results filters."},
        "safe": {"type": "string", "enum": ["active", "off"], "description": "Safe Search setting."},
        "page": {"type": "integer", "minimum": 1, "description": "Page of results to return."},
        "max_page": {"type": "integer", "minimum": 1, "description": "Fetch and concatenate several pages."},
        "num": {"type": "integer", "minimum": 1, "maximum": 100, "description": "Results per page."},
        "tbs": {"type": "string", "description": "Raw Google tbs parameter."},
        "fields": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Top-level objects to parse, e.g. ['organic_results'].",
        },
    }


def _schema(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {"type": "object", "properties": properties, "required": required},
    }


def _places_properties() -> dict[str, Any]:
    props = _base_properties("Places (local business)")
    props["num"] = {"type": "integer", "minimum": 1, "maximum": 20, "description": "Results per page (max 20)."}
    props["order_online"] = {"type": "boolean", "description": "Include pickup/delivery info (2 credits)."}
    return props


def _image_properties() -> dict[str, Any]:
    props = _base_properties("Image search")
    for key in ("num", "page", "max_page"):
        props.pop(key)
    props.update({
        "images_page": {"type": "integer", "minimum": 1, "description": "Image results page (100 per page)."},
        "images_color": {"type": "string", "enum": list(IMAGE_COLORS)},
        "images_size": {"type": "string", "enum": list(IMAGE_SIZES)},
        "images_type": {"type": "string", "enum": list(IMAGE_TYPES)},
        "images_usage": {"type": "string", "enum": list(IMAGE_USAGES)},
    })
    return props


_TOOL_SCHEMAS: list[dict[str, Any]] = [
    _schema(
        "google_search",
        "Search Google via ValueSerp and return organic results (CSV by default, or full JSON).",
        {
            **_base_properties("Web search"),
            "include_ai_overview": {"type": "boolean", "description": "Add Google's AI Overview (1 extra credit)."},
            "web_filter": {"type": "boolean", "description": "Return only organic results when used with num."},
            "knowledge_graph_id": {"type": "string", "description": "Google kgmid, e.g. /m/0jg24."},
            "order_online": {"type": "boolean", "description": "Include restaurant pickup/delivery info."},
            "flatten_results": {"type": "boolean", "description": "Flatten inline results into organic_results."},
            "include_answer_box": {"type": "boolean", "description": "Put the answer box first in organic_results."},
            "ads_optimized": {"type": "boolean", "description": "Optimise the rate at which ads are returned."},
        },
        ["q"],
    ),
    _schema(
        "google_news_search",
        "Search Google News via ValueSerp.",
        {
            **_base_properties("News search"),
            "sort_by": {"type": "string", "enum": ["relevance", "date"]},
            "show_duplicates": {"type": "boolean", "description": "Show duplicate articles (requires sort_by=date)."},
            "exclude_if_modified": {"type": "boolean", "description": "Exclude results if Google modifies the query."},
        },
        ["q"],
    ),
    _schema(
        "google_images_search",
        "Search Google Images via ValueSerp. Inline base64 thumbnails are returned as image blocks.",
        _image_properties(),
        ["q"],
    ),
    _schema(
        "google_videos_search",
        "Search Google Videos via ValueSerp.",
        _base_properties("Video search"),
        ["q"],
    ),
    _schema(
        "google_places_search",
        "Search Google Places (local businesses) via ValueSerp.",
        _places_properties(),
        ["q"],
    ),
    _schema(
        "google_place_details",
        "Fetch details for one Google Place. Pass data_id or data_cid from a places search, or a place_id.",
        {
            "data_id": {"type": "string", "description": "Place data_id from places_results."},
            "data_cid": {"type": "string", "description": "Place data_cid from places_results."},
            "place_id": {"type": "string", "description": "Google Place ID."},
            "output": {"type": "string", "enum": ["csv", "json"]},
            "csv_fields": {"type": "string"},
            "process_images": {"type": "boolean"},
            "google_domain": {"type": "string"},
            "gl": {"type": "string"},
            "hl": {"type": "string"},
        },
        [],
    ),
]

DEFAULT_CSV_FIELDS = {
    "google_search": "organic_results.position,organic_results.title,organic_results.link,organic_results.snippet",
    "google_news_search": (
        "news_results.title,news_results.source,news_results.date,news_results.link,news_results.snippet"
    ),
    "google_images_search": (
        "images_results.title,images_results.original,images_results.thumbnail,images_results.source"
    ),
    "google_videos_search": (
        "video_results.title,video_results.link,video_results.duration,"
        "video_results.source,video_results.date,video_results.views"
    ),
    "google_places_search": (
        "places_results.position,places_results.title,places_results.address,places_results.phone,"
        "places_results.rating,places_results.reviews,local_results.title,local_results.address,"
        "local_results.rating,local_results.reviews"
    ),
    "google_place_details": (
        "place_details.title,place_details.address,place_details.phone,"
        "place_details.rating,place_details.reviews,place_details.website"
    ),
}

# tool name -> (validator, ValueSerpClient method)
_DISPATCH: dict[str, tuple[Callable[[dict[str, Any]], dict[str, Any]], str]] = {
    "google_search": (validate_search_params, "search"),
    "google_news_search": (validate_news_search_params, "search_news"),
    "google_images_search": (validate_image_search_params, "search_images"),
    "google_videos_search": (validate_video_search_params, "search_videos"),
    "google_places_search": (validate_places_search_params, "search_places"),
    "google_place_details": (validate_place_details_params, "place_details"),
}


# ---------------------------------------------------------------------------
# Tool dispatch
# ---------------------------------------------------------------------------

def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in {"", "0", "false", "no", "off"}
    return bool(value)


def _error_result(message: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": f"Error: {message}"}], "isError": True}


async def _call_tool(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Validate, fetch and format one tool call."""
    entry = _DISPATCH.get(name)
    if entry is None:
        return _error_result(f"Unknown tool: {name}")
    validator, method = entry

    try:
        cfg = _get_config()
        args = dict(arguments)
        include_images = _as_bool(args.pop("process_images", cfg["process_images"]))
        args.setdefault("output", cfg["default_output"])
        if args["output"] == "csv" and not args.get("csv_fields"):
            args["csv_fields"] = DEFAULT_CSV_FIELDS[name]
        params = validator(args)
        logger.info("{} called with: {}", name, ", ".join(sorted(params)))

        result = await getattr(_get_client(), method)(params)
    except (ValidationError, ConfigError) as exc:
        logger.warning("{} rejected: {}", name, exc)
        return _error_result(str(exc))
    except ToolRequestError as exc:
        logger.warning("{} failed (status={}, retryable={}): {}", name, exc.status_code, exc.retryable, exc)
        return _error_result(str(exc))
    except Exception as exc:
        logger.exception("{} crashed", name)
        return _error_result(str(exc))

    formatted = format_response(result, include_images, image_policy(cfg))
    for warning in formatted.warnings:
        logger.warning("{}: {}", name, warning)
    logger.info("{} returned {} block(s), {} image(s)", name, len(formatted.blocks), formatted.image_count)
    return {"content": formatted.blocks, "isError": False}


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------

def _ok(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _err(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _write(obj: dict) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


# ---------------------------------------------------------------------------
# Main request handler
# ---------------------------------------------------------------------------

async def _handle(line: str) -> None:
    try:
        req = json.loads(line)
    except json.JSONDecodeError:
        _write(_err(None, -32700, "Parse error"))
        return
    if not isinstance(req, dict):
        _write(_err(None, -32600, "Invalid Request"))
        return

    req_id = req.get("id")
    method = req.get("method", "")
    params = req.get("params") or {}
    if not isinstance(method, str):
        _write(_err(req_id, -32600, "Invalid Request"))
        return
    if not isinstance(params, dict):
        _write(_err(req_id, -32602, "Invalid params"))
        return

    if method == "initialize":
        client_ver = params.get("protocolVersion", "2024-11-05")
        agreed_ver = (
            client_ver
            if isinstance(client_ver, str) and client_ver in SUPPORTED_PROTOCOL_VERSIONS
            else "2024-11-05"
        )
        _write(_ok(req_id, {
            "protocolVersion": agreed_ver,
            "capabilities": {"tools": {}},
            "serverInfo": {
                "name": "valueserp-mcp-server",
                "version": __version__,
            },
        }))

    elif method in {"notifications/initialized", "initialized"}:
        # Notification, no response needed
        pass

    elif method == "tools/list":
        _write(_ok(req_id, {"tools": _TOOL_SCHEMAS}))

    elif method == "tools/call":
        tool_name = params.get("name", "")
        arguments = params.get("arguments") or {}
        if not isinstance(tool_name, str) or not isinstance(arguments, dict):
            _write(_err(req_id, -32602, "Invalid params"))
            return
        _write(_ok(req_id, await _call_tool(tool_name, arguments)))

    elif method == "ping":
        _write(_ok(req_id, {}))

    else:
        if req_id is not None:
            _write(_err(req_id, -32601, f"Method not found: {method}"))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _run() -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)

    while True:
        line_bytes = await reader.readline()
        if not line_bytes:
            break
        line = line_bytes.decode(errors="replace").strip()
        if line:
            await _handle(line)


def main() -> None:
    cfg = _get_config()
    configure_logging(cfg["log_level"])
    try:
        require_api_key(cfg)
    except ConfigError as exc:
        # tools/list still works without a key; each call reports the error.
        logger.error("{}", exc)
    logger.info("ValueSerp MCP server running on stdio")
    asyncio.run(_run())


if __name__ == "__main__":
    main()
