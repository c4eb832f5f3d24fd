"""JSON-lines bridge between a frontend process and the Backend.

Requests:  {"id": 1, "cmd": "fetch_video_info", "args": {"url": "..."}}
Responses: {"id": 1, "ok": true, "result": {...}}
           {"id": 1, "ok": false, "error": "Invalid YouTube URL"}
Events:    {"event": "progress", "payload": {...}}
"""

from __future__ import annotations

import inspect
import json
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, IO, Optional

from .commands import Backend
from .errors import AppError, Internal
from .events import to_payload
from .logging_utils import get_logger

MAX_WORKERS = 4

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(name: str) -> str:
    return _CAMEL.sub("_", name).lower()


class IpcBridge:
    def __init__(self, backend: Backend, instream: IO[str], outstream: IO[str]):
        self.backend = backend
        self._in = instream
        self._out = outstream
        self._write_lock = threading.Lock()
        self._commands = backend.command_table()
        self._log = get_logger()

    def write(self, message: Dict[str, Any]) -> None:
        line = json.dumps(message, default=str)
        with self._write_lock:
            self._out.write(line + "\n")
            self._out.flush()

    def _on_event(self, channel: str, payload: Any) -> None:
        self.write({"event": channel, "payload": payload})

    def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Execute one request line and return its response (None for blank lines)."""
        line = line.strip()
        if not line:
            return None
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            return {"id": None, "ok": False, "error": f"Malformed request: {e.msg}"}
        if not isinstance(request, dict):
            return {"id": None, "ok": False, "error": "Malformed request: expected an object"}

        req_id = request.get("id")
        cmd = request.get("cmd")
        handler = self._commands.get(cmd) if isinstance(cmd, str) else None
        if handler is None:
            return {"id": req_id, "ok": False, "error": f"Unknown command: {cmd}"}
        args = request.get("args") or {}
        if not isinstance(args, dict):
            return {"id": req_id, "ok": False, "error": "Command arguments must be an object"}
        kwargs = {snake_case(k): v for k, v in args.items()}

        try:
            inspect.signature(handler).bind(**kwargs)
        except TypeError as e:
            self._log.error("Bad arguments for %s: %s", cmd, e)
            return {"id": req_id, "ok": False, "error": f"Invalid arguments for {cmd}"}

        self._log.debug("-> %s %s", cmd, kwargs)
        try:
            result = handler(**kwargs)
        except AppError as e:
            self._log.error("Command %s failed: %r (detail=%s)", cmd, e, e.detail)
            return {"id": req_id, "ok": False, "error": str(e)}
        except Exception as e:
            self._log.exception("Command %s crashed", cmd)
            return {"id": req_id, "ok": False, "error": str(Internal(str(e)))}
        self._log.debug("<- %s ok", cmd)
        return {"id": req_id, "ok": True, "result": _jsonable(result)}

    def _dispatch(self, line: str) -> None:
        response = self.handle_line(line)
        if response is not None:
            self.write(response)

    def serve(self) -> None:
        """Read requests until EOF, then shut the backend down."""
        self.backend.bus.subscribe("*", self._on_event)
        self._log.info("IPC bridge ready (%d commands)", len(self._commands))
        try:
            with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
                for line in self._in:
                    executor.submit(self._dispatch, line)
        finally:
            self.backend.bus.unsubscribe("*", self._on_event)
            self.backend.shutdown()


def _jsonable(value: Any) -> Any:
    value = to_payload(value)
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    return value


__all__ = ["IpcBridge", "snake_case"]
