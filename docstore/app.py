"""
HTTP service for uploading, listing, searching, downloading and deleting
documents, behind a session-cookie login.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import os
from typing import TYPE_CHECKING

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import FileResponse, JSONResponse
from starlette.routing import Route

from .config import load_config
from .exceptions import ParseError, StorageError
from .multipart import File, parse_form
from .sessions import SessionStore, sweep_periodically
from .storage import DocumentStore

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

    from .config import DocStoreConfig

    Endpoint = Callable[[Request], Awaitable[Response]]


logger = logging.getLogger(__name__)

SESSION_COOKIE = "sessionId"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    config: DocStoreConfig | None = None,
    sessions: SessionStore | None = None,
    documents: DocumentStore | None = None,
) -> Starlette:
    """Builds the Starlette application.

    The session store and document store can be passed in; by default they
    are created from ``config``.
    """
    if config is None:
        config = load_config()
    if sessions is None:
        sessions = SessionStore(config["SESSION_TIMEOUT"])
    if documents is None:
        documents = DocumentStore.from_directories(config["UPLOAD_DIR"], config["DATA_DIR"])

    auth_enabled = config["AUTH_ENABLED"]
    max_body_size = config["MAX_BODY_SIZE"]

    def is_authenticated(request: Request) -> bool:
        return sessions.validate(request.cookies.get(SESSION_COOKIE))

    def require_auth(endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            if auth_enabled and not is_authenticated(request):
                return _error("Authentication required", 401)
            return await endpoint(request)

        return wrapper

    async def login(request: Request) -> Response:
        try:
            payload = await request.json()
            username = payload["username"]
            password = payload["password"]
        except (ValueError, KeyError, TypeError):
            return _error("Invalid request", 400)

        if username != config["AUTH_USERNAME"] or password != config["AUTH_PASSWORD"]:
            logger.warning("Failed login for %r", username)
            return _error("Invalid credentials", 401)

        session_id = sessions.create()
        response = JSONResponse({"success": True, "message": "Login successful"})
        response.set_cookie(SESSION_COOKIE, session_id, max_age=int(sessions.timeout), path="/", httponly=True)
        logger.info("Login for %r", username)
        return response

    async def logout(request: Request) -> Response:
        sessions.expire(request.cookies.get(SESSION_COOKIE))
        response = JSONResponse({"success": True, "message": "Logout successful"})
        response.delete_cookie(SESSION_COOKIE, path="/", httponly=True)
        return response

    async def auth_status(request: Request) -> Response:
        return JSONResponse({"authenticated": is_authenticated(request), "authEnabled": auth_enabled})

    @require_auth
    async def list_files(request: Request) -> Response:
        return JSONResponse(documents.metadata.all())

    @require_auth
    async def search(request: Request) -> Response:
        return JSONResponse(documents.metadata.search(request.query_params.get("q")))

    @require_auth
    async def upload(request: Request) -> Response:
        content_length = request.headers.get("content-length")
        if content_length is not None and content_length.isdigit() and int(content_length) > max_body_size:
            logger.warning("Rejected upload of %s bytes", content_length)
            return _error("Upload too large", 413)

        # The parser needs the whole body, so it is buffered here.
        body = bytearray()
        async for chunk in request.stream():
            body += chunk
            if len(body) > max_body_size:
                logger.warning("Rejected upload larger than %d bytes", max_body_size)
                return _error("Upload too large", 413)

        try:
            fields = parse_form(request.headers, bytes(body))
        except ParseError as e:
            logger.warning("Rejected malformed upload: %s", e)
            return _error("Malformed upload", 400)

        file = fields.get("file")
        if not isinstance(file, File):
            return _error("No file uploaded", 400)

        try:
            record = await run_in_threadpool(documents.store, file)
        except StorageError:
            return _error("Upload failed", 500)

        return JSONResponse({"success": True, "file": record})

    @require_auth
    async def download(request: Request) -> Response:
        record = documents.get(request.path_params["file_id"])
        if record is None:
            return _error("File not found", 404)

        try:
            path = documents.path_for(record)
        except StorageError:
            logger.warning("Metadata for %r has an invalid file name", record["id"])
            path = None
        if path is None:
            return _error("File not found", 404)

        return FileResponse(path, media_type=record["fileType"], filename=record["originalName"])

    @require_auth
    async def delete_file(request: Request) -> Response:
        try:
            deleted = await run_in_threadpool(documents.delete, request.path_params["file_id"])
        except StorageError:
            return _error("Delete failed", 500)

        if not deleted:
            return _error("File not found", 404)
        return JSONResponse({"success": True})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        task = asyncio.create_task(sweep_periodically(sessions, config["SESSION_SWEEP_INTERVAL"]))
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    routes = [
        Route("/api/login", login, methods=["POST"]),
        Route("/api/logout", logout, methods=["POST"]),
        Route("/api/auth-status", auth_status, methods=["GET"]),
        Route("/api/files", list_files, methods=["GET"]),
        Route("/api/search", search, methods=["GET"]),
        Route("/api/upload", upload, methods=["POST"]),
        Route("/api/download/{file_id}", download, methods=["GET"]),
        Route("/api/files/{file_id}", delete_file, methods=["DELETE"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type"],
        )
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.config = config
    app.state.sessions = sessions
    app.state.documents = documents
    return app


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = load_config(os.environ.get("DOCSTORE_AUTH_CONFIG", "auth-config.json"))
    logger.info("Upload directory: %s", os.path.abspath(config["UPLOAD_DIR"]))
    logger.info("Data directory: %s", os.path.abspath(config["DATA_DIR"]))

    uvicorn.run(create_app(config), host=config["HOST"], port=config["PORT"])
