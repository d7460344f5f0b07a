"""HTTP endpoint the Studio plugin polls.

Everything goes through ``/``; the operation is chosen by the ``action``
request header, and payloads travel as raw JSON or text bodies.
"""

import logging
import threading
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from . import __version__
from .config import SEPARATOR
from .sync import SyncSession

logger = logging.getLogger(__name__)

STATUS_PAGE = """pyargon {version}

Project:          {title}
Connected:        {connected}
Server uptime:    {uptime}
Lines synced:     {lines_synced}
Files synced:     {files_synced}
Projects ported:  {projects_ported}
Sessions started: {sessions_started}
"""


def create_app(session: SyncSession) -> FastAPI:
    """Build the FastAPI app serving one sync session.

    Requests are handled one at a time: a request runs to completion,
    under the session lock, before the next touches the queue or tree.
    """
    app = FastAPI(title="pyargon", version=__version__)
    lock = threading.Lock()

    def init(body: str) -> Response:
        was_connected = session.connect()
        return JSONResponse(
            {
                "State": was_connected,
                "Title": session.title(),
                "Version": __version__,
                "Separator": SEPARATOR,
            }
        )

    def get_sync(body: str) -> Response:
        return JSONResponse(session.drain())

    def set_sync(body: str) -> Response:
        session.apply_remote(body)
        return Response()

    def disconnect(body: str) -> Response:
        session.disconnect()
        return Response()

    def sync_title(body: str) -> Response:
        session.remote_title = body
        return Response()

    def get_state(body: str) -> Response:
        return JSONResponse(session.millis_since_materialized())

    def port_instances(body: str) -> Response:
        session.port_instances(body)
        return Response()

    def port_scripts(body: str) -> Response:
        session.port_scripts(body)
        return Response()

    def port_properties(body: str) -> Response:
        session.port_properties(body)
        return Response()

    def port_project(body: str) -> Response:
        return JSONResponse(session.port_project())

    def port_project_source(body: str) -> Response:
        return JSONResponse(session.next_chunk())

    def clear_folders(body: str) -> Response:
        session.clear_folders()
        return Response()

    handlers: dict[str, Callable[[str], Response]] = {
        "init": init,
        "getSync": get_sync,
        "setSync": set_sync,
        "disconnect": disconnect,
        "syncTitle": sync_title,
        "getState": get_state,
        "portInstances": port_instances,
        "portScripts": port_scripts,
        "portProperties": port_properties,
        "portProject": port_project,
        "portProjectSource": port_project_source,
        "clearFolders": clear_folders,
    }

    def status_page() -> Response:
        stats = session.stats
        return PlainTextResponse(
            STATUS_PAGE.format(
                version=__version__,
                title=session.remote_title or session.title(),
                connected="yes" if session.connected else "no",
                uptime=session.uptime(),
                lines_synced=stats.lines_synced,
                files_synced=stats.files_synced,
                projects_ported=stats.projects_ported,
                sessions_started=stats.sessions_started,
            )
        )

    @app.api_route("/", methods=["GET", "POST"])
    async def dispatch(request: Request) -> Response:
        action: Optional[str] = request.headers.get("action")
        body = (await request.body()).decode("utf-8", errors="replace")

        handler = handlers.get(action or "")
        if handler is None:
            return status_page()

        logger.debug(f"Handling {action} ({len(body)} bytes)")
        with lock:
            return handler(body)

    return app


def run_server(
    session: SyncSession, host: str, port: int, log_level: str = "warning"
) -> None:
    """Serve a session with uvicorn until interrupted."""
    app = create_app(session)
    logger.info(f"Serving {session.workspace} on http://{host}:{port}/")
    uvicorn.run(app, host=host, port=port, log_level=log_level)
