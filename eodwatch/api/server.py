"""HTTP API for scheduler registration, status reports and heartbeats.

A thin aiohttp layer: request bodies are validated with pydantic, then passed
to ``SchedulerService``.  Results and errors come back unchanged apart from
the HTTP status mapping (unknown scheduler → 404, invalid body → 400).
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from aiohttp import web
from pydantic import ValidationError

from eodwatch.api.schemas import (
    HeartbeatRequest,
    RegisterSchedulerRequest,
    UpdateStatusRequest,
)
from eodwatch.config import settings
from eodwatch.monitor.service import SchedulerNotFoundError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from eodwatch.monitor.service import SchedulerService

logger = logging.getLogger(__name__)

SERVICE_KEY: web.AppKey[SchedulerService] = web.AppKey("scheduler_service")


class _BadRequest(Exception):
    def __init__(self, detail: Any) -> None:
        super().__init__(str(detail))
        self.detail = detail


# -- Middleware ----------------------------------------------------------------


@web.middleware
async def _error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    try:
        return await handler(request)
    except SchedulerNotFoundError as exc:
        return web.json_response({"error": "not_found", "message": str(exc)}, status=404)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        return web.json_response({"error": "validation_failed", "details": errors}, status=400)
    except _BadRequest as exc:
        return web.json_response({"error": "bad_request", "message": exc.detail}, status=400)


@web.middleware
async def _logging_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    started = time.monotonic()
    try:
        response = await handler(request)
    except Exception:
        logger.exception(
            "%s %s ERROR - %dms",
            request.method,
            request.path,
            (time.monotonic() - started) * 1000,
        )
        raise
    logger.info(
        "%s %s %d - %dms - %s",
        request.method,
        request.path,
        response.status,
        (time.monotonic() - started) * 1000,
        request.remote,
    )
    return response


# -- Helpers -------------------------------------------------------------------


async def _json_body(request: web.Request, *, required: bool = True) -> dict[str, Any]:
    if not required and not request.can_read_body:
        return {}
    try:
        payload = await request.json()
    except Exception as exc:
        raise _BadRequest("invalid JSON") from exc
    if not isinstance(payload, dict):
        raise _BadRequest("request body must be a JSON object")
    return payload


def _service(request: web.Request) -> SchedulerService:
    return request.app[SERVICE_KEY]


# -- Handlers ------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


async def _register(request: web.Request) -> web.Response:
    body = RegisterSchedulerRequest.model_validate(await _json_body(request))
    scheduler = await _service(request).register(
        body.scheduler_id,
        body.service_name,
        body.job_name,
        owner_email=body.owner_email,
        alert_user_id=body.alert_user_id,
    )
    return web.json_response(scheduler.to_dict(), status=201)


async def _update_status(request: web.Request) -> web.Response:
    scheduler_id = request.match_info["scheduler_id"]
    body = UpdateStatusRequest.model_validate(await _json_body(request))
    if body.scheduler_id and body.scheduler_id != scheduler_id:
        logger.warning(
            "Body scheduler_id %s does not match path %s; using path",
            body.scheduler_id,
            scheduler_id,
        )
    scheduler = await _service(request).report_status(
        scheduler_id,
        body.service_name,
        body.job_name,
        body.status,
        body.timestamp,
        execution_time_ms=body.execution_time_ms,
        error_message=body.error_message,
        metadata=body.metadata,
    )
    return web.json_response(scheduler.to_dict())


async def _heartbeat(request: web.Request) -> web.Response:
    scheduler_id = request.match_info["scheduler_id"]
    HeartbeatRequest.model_validate(await _json_body(request, required=False))
    await _service(request).record_heartbeat(scheduler_id)
    return web.json_response({
        "message": "Heartbeat recorded",
        "scheduler_id": scheduler_id,
        "timestamp": datetime.now(UTC).isoformat(),
    })


async def _list(request: web.Request) -> web.Response:
    schedulers = await _service(request).list_all()
    return web.json_response([s.to_dict() for s in schedulers])


async def _get(request: web.Request) -> web.Response:
    scheduler = await _service(request).get(request.match_info["scheduler_id"])
    return web.json_response(scheduler.to_dict())


async def _history(request: web.Request) -> web.Response:
    raw_limit = request.query.get("limit")
    limit = None
    if raw_limit is not None:
        try:
            limit = int(raw_limit)
        except ValueError as exc:
            raise _BadRequest("limit must be an integer") from exc
        if limit < 1:
            raise _BadRequest("limit must be >= 1")
    entries = await _service(request).history(request.match_info["scheduler_id"], limit)
    return web.json_response([e.to_dict() for e in entries])


def create_web_app(service: SchedulerService, prefix: str | None = None) -> web.Application:
    """Build the aiohttp Application with routes."""
    base = settings.get_api_prefix() if prefix is None else prefix
    app = web.Application(middlewares=[_logging_middleware, _error_middleware])
    app[SERVICE_KEY] = service
    app.router.add_get("/health", _health)
    app.router.add_post(f"{base}/schedulers/register", _register)
    app.router.add_get(f"{base}/schedulers", _list)
    app.router.add_get(f"{base}/schedulers/{{scheduler_id}}", _get)
    app.router.add_put(f"{base}/schedulers/{{scheduler_id}}/status", _update_status)
    app.router.add_post(f"{base}/schedulers/{{scheduler_id}}/heartbeat", _heartbeat)
    app.router.add_get(f"{base}/schedulers/{{scheduler_id}}/history", _history)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self, service: SchedulerService, host: str | None = None, port: int | None = None
    ) -> None:
        self._service = service
        self.host = host or settings.api_host
        self.port = settings.api_port if port is None else port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        app = create_web_app(self._service)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(
            "API listening on http://%s:%d%s", self.host, self.port, settings.get_api_prefix()
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("API server stopped")
