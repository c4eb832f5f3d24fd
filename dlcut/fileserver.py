"""Local HTTP server that streams one media file for in-app preview.

Range requests are answered by Flask's conditional ``send_file`` so a
``<video>`` element can seek without loading the whole file.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

from flask import Flask, abort, send_file
from werkzeug.serving import BaseWSGIServer, make_server

from .logging_utils import get_logger

HOST = "127.0.0.1"
ROUTE = "/video"

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".flv": "video/x-flv",
    ".wmv": "video/x-ms-wmv",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
}


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


def create_app(file_path: Path) -> Flask:
    app = Flask(__name__)

    @app.route(ROUTE, methods=["GET", "HEAD"])
    def video():
        if not file_path.is_file():
            abort(404)
        return send_file(
            file_path,
            mimetype=content_type_for(file_path),
            conditional=True,
            etag=False,
            max_age=0,
        )

    @app.after_request
    def no_keepalive(response):
        response.headers["Accept-Ranges"] = "bytes"
        response.headers["Connection"] = "close"
        return response

    return app


class FileServer:
    def __init__(self, file_path: str | Path, port: int = 0):
        self.file_path = Path(file_path)
        self._port = port
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None
        self._log = get_logger()

    def start(self) -> "FileServer":
        self._server = make_server(HOST, self._port, create_app(self.file_path), threaded=True)
        self._port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="dlcut-fileserver", daemon=True
        )
        self._thread.start()
        self._log.info("Serving %s at %s", self.file_path, self.url)
        return self

    @property
    def port(self) -> int:
        return self._port

    @property
    def url(self) -> str:
        return f"http://{HOST}:{self._port}{ROUTE}"

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._server = None
        self._thread = None
        self._log.debug("File server on port %s stopped", self._port)


__all__ = ["FileServer", "create_app", "content_type_for"]
