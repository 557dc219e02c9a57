"""NIP-86 management service over HTTP.

Serves the relay management API as JSON-RPC: clients ``POST /`` a body of
``{"method": ..., "params": [...]}`` with content type
``application/nostr+json+rpc`` and a NIP-98 ``Authorization`` header, and
receive ``{"result": ..., "error": ...}``.

The HTTP server runs as a background ``asyncio.Task`` alongside the
standard ``run_forever()`` cycle. Each ``run()`` cycle logs request
statistics and updates Prometheus metrics.

Status codes:

* 200: the call ran; ``error`` may still be set (unknown method, bad
  params, failed ban cascade).
* 400: the body is not a JSON-RPC object.
* 401: the caller is not authenticated as the relay owner.
* 413 / 415: oversized body / wrong content type.
* 500: the moderation store failed.

See Also:
    [ManagementApi][relayguard.moderation.api.ManagementApi]: The
        operations behind each method.
    [authenticate()][relayguard.services.management.auth.authenticate]:
        NIP-98 verification.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from typing import TYPE_CHECKING, Any, ClassVar, Final

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from relayguard.core.base_service import BaseService
from relayguard.core.config import RelaySettings
from relayguard.core.event_store import PostgresEventStore
from relayguard.core.exceptions import AuthRequiredError, DatabaseError, ManagementError
from relayguard.models.constants import ServiceName
from relayguard.moderation import ManagementApi
from relayguard.policies import RequestContext

from .auth import authenticate
from .configs import ManagementConfig


if TYPE_CHECKING:
    from types import TracebackType

    from relayguard.core.store import ModerationStore
    from relayguard.moderation import EventStore


RPC_CONTENT_TYPE: Final = "application/nostr+json+rpc"

_HTTP_ERROR_THRESHOLD = 400


def _rpc_response(
    result: Any = None, error: str | None = None, status_code: int = 200
) -> JSONResponse:
    return JSONResponse(
        {"result": result, "error": error},
        status_code=status_code,
        media_type="application/json",
    )


class Management(BaseService[ManagementConfig]):
    """NIP-86 management endpoint for the relay owner.

    Unless *api* or *event_stores* is given, the ban cascade deletes from
    the relay engine's event table named by ``config.event_store``.

    Lifecycle:
        1. ``__aenter__``: build FastAPI app, start uvicorn.
        2. ``run()``: log statistics and update Prometheus gauges.
        3. ``__aexit__``: cancel the HTTP server task.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.MANAGEMENT
    CONFIG_CLASS: ClassVar[type[ManagementConfig]] = ManagementConfig

    def __init__(
        self,
        store: ModerationStore,
        config: ManagementConfig | None = None,
        *,
        api: ManagementApi | None = None,
        event_stores: list[EventStore] | None = None,
    ) -> None:
        super().__init__(store, config)
        if api is None:
            owner = self._config.owner_pubkey or RelaySettings.from_env().pubkey
            if event_stores is None:
                event_stores = []
                if self._config.event_store.enabled:
                    event_stores.append(PostgresEventStore(store.pool, self._config.event_store))
            api = ManagementApi(store, owner, event_stores)
        self._api = api
        self._server_task: asyncio.Task[None] | None = None
        self._requests_total = 0
        self._requests_failed = 0
        self._auth_failures = 0

    @property
    def api(self) -> ManagementApi:
        return self._api

    async def __aenter__(self) -> Management:
        await super().__aenter__()

        app = self._build_app()
        self._server_task = asyncio.create_task(self._run_server(app))
        self._logger.info(
            "http_server_started",
            host=self._config.host,
            port=self._config.port,
            owner=self._api.owner_pubkey,
        )
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        if self._server_task is not None:
            self._server_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._server_task
            self._server_task = None
        self._logger.info("http_server_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    async def run(self) -> None:
        """Log request stats and update Prometheus counters."""
        if self._server_task is not None and self._server_task.done():
            exc = self._server_task.exception() if not self._server_task.cancelled() else None
            self._logger.error("http_server_crashed", error=str(exc) if exc else "cancelled")
            raise RuntimeError("HTTP server task has stopped unexpectedly") from exc

        total = self._requests_total
        failed = self._requests_failed
        auth_failures = self._auth_failures
        self._requests_total = 0
        self._requests_failed = 0
        self._auth_failures = 0

        queue = await self._store.count_unresolved_reports()
        self._logger.info(
            "cycle_stats",
            requests_total=total,
            requests_failed=failed,
            auth_failures=auth_failures,
            reports_pending=queue,
        )
        self.inc_counter("requests_total", total)
        self.inc_counter("requests_failed", failed)
        self.inc_counter("auth_failures", auth_failures)
        self.set_gauge("reports_pending", queue)

    def _build_app(self) -> FastAPI:
        """Construct the FastAPI application."""
        app = FastAPI(title="relayguard management", docs_url=None, redoc_url=None)

        @app.middleware("http")
        async def log_requests(request: Request, call_next: Any) -> Response:
            start = time.monotonic()
            try:
                response: Response = await call_next(request)
            except Exception as exc:  # HTTP request error boundary
                self._logger.error("unhandled_error", error=str(exc), path=request.url.path)
                response = _rpc_response(error="internal server error", status_code=500)
            duration_ms = (time.monotonic() - start) * 1000
            self._requests_total += 1
            if response.status_code >= _HTTP_ERROR_THRESHOLD:
                self._requests_failed += 1
                self._logger.warning(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=round(duration_ms, 1),
                )
            else:
                self._logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=round(duration_ms, 1),
                )
            return response

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        @app.post("/")
        async def rpc(request: Request) -> JSONResponse:
            return await self._handle_rpc(request)

        return app

    async def _handle_rpc(self, request: Request) -> JSONResponse:
        content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if content_type != RPC_CONTENT_TYPE:
            return _rpc_response(
                error=f"content type must be {RPC_CONTENT_TYPE}", status_code=415
            )

        body = await request.body()
        if len(body) > self._config.max_body_size:
            return _rpc_response(error="request body too large", status_code=413)

        try:
            payload = json.loads(body)
        except ValueError:
            return _rpc_response(error="invalid JSON", status_code=400)
        if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
            return _rpc_response(error="request must be an object with a method", status_code=400)

        authed = authenticate(
            request.headers.get("authorization"),
            url=str(request.url),
            method=request.method,
            body=body,
            config=self._config.auth,
        )
        ctx = RequestContext(authed_pubkey=authed)
        method = payload["method"]

        try:
            result = await self._api.dispatch(ctx, method, payload.get("params"))
        except AuthRequiredError as e:
            self._auth_failures += 1
            return _rpc_response(error=str(e), status_code=401)
        except ManagementError as e:
            self._logger.info("rpc_error", method=method, error=str(e))
            return _rpc_response(error=str(e))
        except DatabaseError as e:
            self._logger.error("rpc_database_error", method=method, error=str(e))
            return _rpc_response(error=f"database error: {e}", status_code=500)

        return _rpc_response(result=result)

    async def _run_server(self, app: FastAPI) -> None:
        """Run uvicorn as an asyncio server."""
        config = uvicorn.Config(
            app,
            host=self._config.host,
            port=self._config.port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()
