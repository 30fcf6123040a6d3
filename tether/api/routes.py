"""API route handlers for the Tether API server."""

from __future__ import annotations

import functools
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from ..errors import InvalidArgument, SyncError
from ..sync.engine import OperationRequest
from ..sync.models import camelize

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import JSONResponse

    from ..sync import SyncEngine

logger = logging.getLogger("tether.api.routes")

Handler = Callable[["Request"], Awaitable["JSONResponse"]]


def sync_endpoint(handler: Callable[["Request"], Awaitable[Any]]) -> Handler:
    """Wrap a handler so SyncErrors map to their HTTP status."""

    @functools.wraps(handler)
    async def wrapper(request: "Request") -> "JSONResponse":
        from starlette.responses import JSONResponse

        try:
            payload = await handler(request)
        except SyncError as exc:
            return JSONResponse(exc.to_dict(), status_code=exc.http_status)
        except Exception:
            logger.exception("Unhandled error in %s", handler.__name__)
            return JSONResponse(
                {"error": "Internal server error", "code": "internal"},
                status_code=500,
            )
        return JSONResponse(payload)

    return wrapper


def _engine(request: "Request") -> "SyncEngine":
    return request.app.state.tether_server.engine


def _user(request: "Request") -> str:
    return request.state.user_id


async def _run(request: "Request", method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking engine call off the event loop."""
    from starlette.concurrency import run_in_threadpool

    return await run_in_threadpool(method, _user(request), *args, **kwargs)


async def _read_json(request: "Request") -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidArgument("Invalid JSON") from None
    if not isinstance(body, dict):
        raise InvalidArgument("Request body must be a JSON object")
    return body


def _limit(request: "Request") -> Optional[int]:
    raw = request.query_params.get("limit")
    if raw is None:
        return None
    try:
        limit = int(raw)
    except ValueError:
        raise InvalidArgument("limit must be an integer") from None
    if limit < 1:
        raise InvalidArgument("limit must be positive")
    return limit


async def health_handler(request: "Request") -> "JSONResponse":
    """Health check endpoint."""
    from starlette.responses import JSONResponse

    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "tether-api",
    })


@sync_endpoint
async def enqueue_handler(request: "Request") -> Dict[str, Any]:
    """Queue one operation."""
    body = await _read_json(request)
    operation_id = await _run(
        request,
        _engine(request).enqueue,
        OperationRequest.from_dict(body),
        device_id=body.get("deviceId"),
    )
    return {"success": True, "operationId": operation_id}


@sync_endpoint
async def batch_enqueue_handler(request: "Request") -> Dict[str, Any]:
    """Queue several operations atomically."""
    body = await _read_json(request)
    operation_ids = await _run(
        request,
        _engine(request).batch_enqueue,
        body.get("operations"),
        body.get("deviceId"),
    )
    return {"success": True, "operationIds": operation_ids}


@sync_endpoint
async def list_operations_handler(request: "Request") -> Dict[str, Any]:
    records = await _run(
        request,
        _engine(request).list_operations,
        request.query_params.get("status"),
        _limit(request),
    )
    return {"operations": [record.to_wire() for record in records]}


@sync_endpoint
async def clear_operations_handler(request: "Request") -> Dict[str, Any]:
    removed = await _run(request, _engine(request).clear_queue)
    return {"success": True, "removed": removed}


@sync_endpoint
async def process_handler(request: "Request") -> Dict[str, Any]:
    """Run one processing pass for the caller."""
    result = await _run(request, _engine(request).process)
    return {"success": True, **result.to_wire()}


@sync_endpoint
async def status_handler(request: "Request") -> Dict[str, Any]:
    status = await _run(request, _engine(request).status)
    return status.to_wire()


@sync_endpoint
async def detect_conflict_handler(request: "Request") -> Dict[str, Any]:
    body = await _read_json(request)
    result = await _run(
        request,
        _engine(request).detect_conflict,
        body.get("collection"),
        body.get("documentId"),
        body.get("clientVersion"),
        body.get("clientData"),
        operation_id=body.get("operationId"),
    )
    return result.to_wire()


@sync_endpoint
async def list_conflicts_handler(request: "Request") -> Dict[str, Any]:
    conflicts = await _run(request, _engine(request).list_conflicts, _limit(request))
    return {"conflicts": [conflict.to_wire() for conflict in conflicts]}


@sync_endpoint
async def resolve_conflict_handler(request: "Request") -> Dict[str, Any]:
    """Resolve a conflict; the strategy defaults to the one the operation declared."""
    body = await _read_json(request)
    resolution = await _run(
        request,
        _engine(request).resolve_conflict,
        request.path_params["conflict_id"],
        body.get("strategy"),
        body.get("resolvedData"),
    )
    return {"success": True, "resolution": resolution.to_wire()}


@sync_endpoint
async def resolutions_handler(request: "Request") -> Dict[str, Any]:
    engine = _engine(request)
    history = await _run(request, engine.conflict_history, _limit(request))
    stats = await _run(request, engine.conflict_stats)
    return {
        "resolutions": [resolution.to_wire() for resolution in history],
        "stats": camelize(stats),
    }


__all__ = [
    "health_handler",
    "enqueue_handler",
    "batch_enqueue_handler",
    "list_operations_handler",
    "clear_operations_handler",
    "process_handler",
    "status_handler",
    "detect_conflict_handler",
    "list_conflicts_handler",
    "resolve_conflict_handler",
    "resolutions_handler",
    "sync_endpoint",
]
