"""
Object cache HTTP API.

Every request needs Basic credentials. The object key is the URL path
without its leading slash.

    GET /{key}  -> 200 with the stored body and content headers, 404 if absent
    PUT /{key}  -> stores the request body with its content headers

Both record the access time after the store call succeeded. Reclamation
runs in the background when SWEEP_INTERVAL_SECONDS is positive.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from oc import __version__
from oc.config import Settings, get_settings
from oc.exceptions import AuthenticationError, StoreError
from oc.gateway.auth import authenticate
from oc.logging import get_logger, log_context
from oc.reclamation.scheduler import ReclamationScheduler
from oc.runtime import CacheServices, open_services
from oc.types import now_ms

logger = get_logger(__name__)

# Content headers kept with a blob on PUT and replayed on GET.
STORED_HEADERS = (
    "content-type",
    "content-language",
    "content-disposition",
    "content-encoding",
    "cache-control",
    "expires",
)

ALLOWED_METHODS = "GET, PUT"


def extract_http_metadata(request: Request) -> dict[str, str]:
    return {
        name: request.headers[name] for name in STORED_HEADERS if name in request.headers
    }


def create_app(
    settings: Settings | None = None,
    services: CacheServices | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings: Settings to use; defaults to get_settings().
        services: Pre-built services (tests). When omitted the file blob
            store and SQLite index from settings are opened at startup and
            closed at shutdown.
        start_scheduler: Whether to run periodic reclamation in-process.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if services is not None:
            await _serve(app, services)
            yield
            await _shutdown(app)
            return

        async with open_services(settings) as opened:
            await _serve(app, opened)
            yield
            await _shutdown(app)

    async def _serve(app: FastAPI, svc: CacheServices) -> None:
        app.state.services = svc
        app.state.scheduler = None
        if start_scheduler and settings.SWEEP_INTERVAL_SECONDS > 0:
            scheduler = ReclamationScheduler(svc.coordinator, settings.SWEEP_INTERVAL_SECONDS)
            scheduler.start()
            app.state.scheduler = scheduler

    async def _shutdown(app: FastAPI) -> None:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()

    app = FastAPI(title="Object Cache", version=__version__, lifespan=lifespan)

    @app.exception_handler(AuthenticationError)
    async def unauthorized(request: Request, exc: AuthenticationError) -> Response:
        logger.debug("Rejected request", path=request.url.path, reason=exc.message)
        return PlainTextResponse(
            "Unauthorized", status_code=401, headers={"WWW-Authenticate": "Basic"}
        )

    @app.exception_handler(StoreError)
    async def store_unavailable(request: Request, exc: StoreError) -> Response:
        logger.error("Store call failed", path=request.url.path, error=str(exc))
        return PlainTextResponse("Storage temporarily unavailable.", status_code=503)

    async def handle(request: Request, key: str) -> Response:
        svc: CacheServices = request.app.state.services
        await authenticate(request.headers.get("Authorization"), svc.credentials)

        if not key:
            return PlainTextResponse(
                "A key in the URL path is required. e.g., /my-object-key", status_code=400
            )

        with log_context(component="gateway"):
            if request.method == "GET":
                return await _get_object(svc, key)
            if request.method == "PUT":
                return await _put_object(svc, request, key)

        return PlainTextResponse(
            "Method Not Allowed", status_code=405, headers={"Allow": ALLOWED_METHODS}
        )

    async def handle_root(request: Request) -> Response:
        return await handle(request, "")

    methods = ["GET", "PUT", "POST", "DELETE", "PATCH", "HEAD", "OPTIONS"]
    app.add_api_route("/", handle_root, methods=methods, include_in_schema=False)
    app.add_api_route("/{key:path}", handle, methods=methods, include_in_schema=False)

    return app


async def _get_object(svc: CacheServices, key: str) -> Response:
    blob = await svc.blobs.get(key)
    if blob is None:
        return PlainTextResponse(f'Object with key "{key}" not found.', status_code=404)

    await svc.tracker.record_access(key, now_ms())

    headers = dict(blob.metadata)
    media_type = headers.pop("content-type", None)
    if blob.etag:
        headers["etag"] = f'"{blob.etag}"'
    return Response(content=blob.data, headers=headers, media_type=media_type)


async def _put_object(svc: CacheServices, request: Request, key: str) -> Response:
    body = await request.body()
    if not body:
        return PlainTextResponse("Request body is required for PUT.", status_code=400)

    # Blob before timestamp: a timestamp never points at a blob that was
    # not written.
    await svc.blobs.put(key, body, extract_http_metadata(request))
    await svc.tracker.record_access(key, now_ms())

    logger.info("Stored object", key=key, size=len(body))
    return PlainTextResponse(f'Object with key "{key}" stored successfully.', status_code=200)
