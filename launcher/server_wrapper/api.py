from __future__ import annotations
import threading
from typing import Optional
import uvicorn
from fastapi import FastAPI, HTTPException, Query
from . import __version__
from .console import ROUTE_SHELL, ConsoleBridge
from .log_reader import known_logs, list_logs, read_from_cursor, read_tail
from .logging_setup import get_logger
from .models import ActionResult, ConsoleLine, ConsoleResult, LogEntry, LogPage
from .rcon import describe
from .supervisor import Supervisor

log = get_logger("server_wrapper.api")


def create_app(supervisor: Supervisor, bridge: ConsoleBridge) -> FastAPI:
    app = FastAPI(title="Server Wrapper API", version=__version__)
    settings = supervisor.settings
    logs = known_logs(settings, supervisor.tail_path)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/status", response_model=ActionResult)
    def status():
        data = supervisor.status()
        data["console_mode"] = bridge.mode
        data["console_route"] = bridge.default_route()
        data["remote"] = describe(bridge.remote)
        return ActionResult(ok=True, data=data)

    @app.post("/stop", response_model=ActionResult)
    def stop():
        if supervisor.stop_requested:
            return ActionResult(ok=True, detail="already stopping")
        supervisor.request_stop("api")
        return ActionResult(ok=True, detail="stopping")

    @app.post("/console", response_model=ConsoleResult)
    def console(body: ConsoleLine):
        # shell passthrough belongs to the local operator console only
        route, _ = bridge.classify(body.line.rstrip("\r\n"))
        if route == ROUTE_SHELL:
            raise HTTPException(status_code=403, detail="shell_commands_not_allowed")
        result = bridge.handle_line(body.line)
        return ConsoleResult(ok=result.ok, route=result.route, command=result.command,
                             response=result.response, fallback=result.fallback)

    @app.get("/logs")
    def get_logs():
        return {"ok": True, "logs": list_logs(logs)}

    @app.get("/logs/{log_id}", response_model=LogPage)
    def get_log(
        log_id: str,
        tail: int = Query(default=200, ge=0, le=5000),
        cursor: Optional[str] = None,
        max_lines: int = Query(default=200, ge=1, le=5000),
    ):
        path = logs.get(log_id)
        if path is None or not path.exists():
            raise HTTPException(status_code=404, detail="log_not_found")

        if cursor:
            chunk = read_from_cursor(path, cursor=cursor, max_lines=max_lines)
        else:
            chunk = read_tail(path, tail_lines=tail)

        return LogPage(
            id=log_id,
            cursor=chunk.cursor,
            entries=[LogEntry(n=i + 1, line=line) for i, line in enumerate(chunk.entries)],
            truncated=chunk.truncated,
        )

    return app


def serve_in_background(app: FastAPI, host: str, port: int, log_level: str = "info") -> threading.Thread:
    """Run uvicorn next to the supervisor loop (off the main thread, so it leaves signals alone)."""
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=log_level.lower()))
    t = threading.Thread(target=server.run, name="api", daemon=True)
    t.start()
    log.info("Status API listening on %s:%s", host, port)
    return t
