"""Development server for NucleusFlow.

Serves the generated output with live reload for local authoring:
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches content, templates, assets and the config file; rebuilds into a
  staging directory, swaps it in and tells connected browsers to reload.
- Hot-reloads the config file through the shared ConfigHandle.

Key classes:
- DevServer: Main class for running the development server.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
- _ChangeHandler: File system event handler for triggering rebuilds.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import json
import logging
import os
import shutil
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import ConfigHandle
from .errors import ProcessingError
from .pipeline import NucleusFlow, ProcessResult
from .utils import ensure_clean_dir, is_within

logger = logging.getLogger(__name__)


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript code for WebSocket connection to trigger reloads.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, content: str) -> None:
        encoded = self._inject(content)
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        handle: Shared config handle; reloaded when the config file changes.
        output_dir: Directory served over HTTP.
        ws_port: Port for WebSocket connections.
        http_port: Port for HTTP server.
        last_result: Outcome of the most recent build.
    """

    def __init__(self, handle: ConfigHandle, http_port: int = 4000, ws_port: int | None = None):
        """Initialize the development server.

        Args:
            handle: Config handle built with auto reload enabled.
            http_port: HTTP port.
            ws_port: WebSocket port; defaults to ``http_port + 1``.
        """
        self.handle = handle
        self.output_dir = handle.current.output_dir
        self._staging_dir = self.output_dir.with_name(self.output_dir.name + ".staging")
        self.http_port = http_port
        self.ws_port = ws_port if ws_port is not None else http_port + 1
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        self._observer: Observer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._rebuild_lock = threading.Lock()
        self._last_rebuild_at = 0.0
        self._last_signature: tuple | None = None
        self._debounce_seconds = 0.05
        self._post_build_delay = 0.05
        self.last_result: ProcessResult | None = None

    def start(self, watch: bool = True) -> None:  # pragma: no cover - integration path
        self.build()
        self._last_signature = self._compute_signature()
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        if watch:
            self._start_watcher()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def build(self) -> ProcessResult:
        """Build into the staging directory and swap it in as the output.

        Returns:
            The run's ProcessResult.

        Raises:
            ProcessingError: If the config is invalid or a strict-mode run
                fails; the previous output stays in place.
        """
        staging = self._prepare_staging_dir()
        config = dataclasses.replace(self.handle.current, output_dir=staging)
        result = NucleusFlow.from_config(config).process()
        self._activate_staging(staging)
        logger.info(result.summary())
        self.last_result = result
        return result

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at http://localhost:%d", self.output_dir, self.http_port)
        httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("WebSocket server failed to start (port %d): %s", self.ws_port, exc)

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self):
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in self._ws_clients:
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _watch_roots(self) -> list[tuple[Path, bool]]:
        config = self.handle.current
        roots = [(config.content_dir, True), (config.template_dir, True)]
        if config.output.asset_dir is not None:
            roots.append((config.output.asset_dir, True))
        if config.source_path is not None:
            roots.append((config.source_path.parent, False))
        return [(root, recursive) for root, recursive in roots if root.exists()]

    def _start_watcher(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        for root, recursive in self._watch_roots():
            observer.schedule(handler, str(root), recursive=recursive)
        observer.start()
        self._observer = observer

    def rebuild(self) -> bool:
        """Reload the config if its file changed, rebuild and notify browsers.

        Returns:
            True if a rebuild ran.
        """
        now = time.time()
        if (now - self._last_rebuild_at) < self._debounce_seconds:
            return False
        if not self._rebuild_lock.acquire(blocking=False):
            return False
        try:
            signature = self._compute_signature()
            if signature is not None and signature == self._last_signature:
                return False
            logger.info("Change detected; rebuilding...")
            try:
                if self.handle.reload_if_needed(force=True):
                    logger.info("Configuration reloaded")
                self.build()
            except ProcessingError as exc:
                logger.error("Rebuild failed: %s", exc)
                return False
            self._last_signature = signature
            if self._post_build_delay:
                time.sleep(self._post_build_delay)
            self._broadcast_reload()
            return True
        finally:
            self._last_rebuild_at = time.time()
            self._rebuild_lock.release()

    def _compute_signature(self) -> tuple | None:
        entries: list[tuple] = []
        for root, recursive in self._watch_roots():
            paths = root.rglob("*") if recursive else root.glob("*")
            for path in sorted(paths):
                if path.is_dir() or self.is_ignored(path):
                    continue
                try:
                    stat = path.stat()
                except OSError:
                    continue
                entries.append((str(path), stat.st_mtime_ns, stat.st_size))
        return tuple(entries) if entries else None

    def is_ignored(self, path: Path) -> bool:
        """Whether a changed path lies inside the output or staging directory."""
        resolved = path.resolve()
        return any(is_within(resolved, d.resolve()) for d in (self.output_dir, self._staging_dir))

    def _prepare_staging_dir(self) -> Path:
        ensure_clean_dir(self._staging_dir)
        return self._staging_dir

    def _activate_staging(self, staging: Path) -> None:
        target = self.output_dir
        previous = target.with_name(target.name + ".previous")
        if previous.exists():
            shutil.rmtree(previous)
        if target.exists():
            os.replace(target, previous)
        os.replace(staging, target)
        if previous.exists():
            shutil.rmtree(previous)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer):
        super().__init__()
        self.server = server

    def on_any_event(self, event):
        if event.is_directory:
            return
        path = Path(event.src_path)
        if self.server.is_ignored(path):
            return
        self.server.rebuild()
