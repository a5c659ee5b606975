import asyncio
import os
from pathlib import Path
from types import SimpleNamespace

import pytest
import websockets
from watchdog.events import DirModifiedEvent, FileModifiedEvent

from nucleusflow.config import ConfigBuilder
from nucleusflow.server import DevServer, _ChangeHandler, _ReloadHandler

from conftest import builder_for


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def write_config(root: Path, template: str = "default", content_dir: str = "content") -> Path:
    return write(
        root / "nucleusflow.yaml",
        f"content_dir: {content_dir}\n"
        "template_dir: templates\n"
        "output_dir: public\n"
        "rate_limit: 10000\n"
        f"template:\n  default_template: {template}\n",
    )


def bump_mtime(path: Path) -> None:
    stat = path.stat()
    os.utime(path, (stat.st_atime + 10, stat.st_mtime + 10))


@pytest.fixture
def quiet_server():
    servers = []

    def make(handle, **kwargs):
        server = DevServer(handle, **kwargs)
        server._debounce_seconds = 0
        server._post_build_delay = 0
        server.broadcasts = 0

        def broadcast():
            server.broadcasts += 1

        server._broadcast_reload = broadcast
        servers.append(server)
        return server

    yield make
    for server in servers:
        server._loop.close()


def test_ws_port_defaults_to_http_plus_one(project, quiet_server):
    handle = builder_for(project).build_shared()
    assert quiet_server(handle, http_port=5000).ws_port == 5001
    assert quiet_server(handle, http_port=5000, ws_port=7000).ws_port == 7000


def test_reload_script_injection():
    fake = SimpleNamespace(reload_script="<script>reload()</script>")
    assert _ReloadHandler._inject(fake, "<body><p>x</p></body>") == b"<body><p>x</p><script>reload()</script></body>"
    assert _ReloadHandler._inject(fake, "<p>x</p>") == b"<p>x</p><script>reload()</script>"


def test_build_swaps_in_staging_output(project, quiet_server):
    write(project / "content" / "post.md", "# Post\n")
    write(project / "public" / "stale.html", "old")
    server = quiet_server(builder_for(project).build_shared())

    result = server.build()
    assert result.successes == 1
    assert server.last_result is result
    assert (project / "public" / "post.html").exists()
    assert not (project / "public" / "stale.html").exists()
    assert not (project / "public.staging").exists()
    assert not (project / "public.previous").exists()


def test_is_ignored_covers_output_and_staging(project, quiet_server):
    server = quiet_server(builder_for(project).build_shared())
    assert server.is_ignored(project / "public" / "index.html")
    assert server.is_ignored(project / "public.staging" / "index.html")
    assert not server.is_ignored(project / "content" / "index.md")


def test_change_handler_skips_output_and_directories(project, quiet_server):
    server = quiet_server(builder_for(project).build_shared())
    calls = []
    server.rebuild = lambda: calls.append(1)
    handler = _ChangeHandler(server)

    handler.on_any_event(FileModifiedEvent(str(project / "public" / "post.html")))
    handler.on_any_event(DirModifiedEvent(str(project / "content")))
    assert calls == []

    handler.on_any_event(FileModifiedEvent(str(project / "content" / "post.md")))
    assert calls == [1]


def test_watch_roots(project, quiet_server):
    config_file = write_config(project)
    server = quiet_server(ConfigBuilder().with_file(config_file).build_shared())
    roots = server._watch_roots()
    assert (project / "content", True) in roots
    assert (project / "templates", True) in roots
    assert (project, False) in roots


def test_rebuild_picks_up_config_changes(project, quiet_server):
    write(project / "templates" / "alt.html", "<h2>{{ title }}</h2>\n{{ body }}\n")
    write(project / "content" / "post.md", "---\ntitle: Live\n---\nBody\n")
    config_file = write_config(project)
    server = quiet_server(ConfigBuilder().with_file(config_file).with_auto_reload().build_shared())
    server.build()
    server._last_signature = server._compute_signature()

    assert server.rebuild() is False
    assert server.broadcasts == 0

    write_config(project, template="alt")
    bump_mtime(config_file)
    assert server.rebuild() is True
    assert server.broadcasts == 1
    assert server.handle.current.template.default_template == "alt"
    assert "<h2>" in (project / "public" / "post.html").read_text(encoding="utf-8")


def test_failed_rebuild_keeps_previous_output(project, quiet_server):
    write(project / "content" / "post.md", "# Post\n")
    config_file = write_config(project)
    server = quiet_server(ConfigBuilder().with_file(config_file).with_auto_reload().build_shared())
    server.build()
    server._last_signature = server._compute_signature()

    write_config(project, content_dir="missing")
    bump_mtime(config_file)
    assert server.rebuild() is False
    assert server.broadcasts == 0
    assert server.handle.current.content_dir == project / "content"
    assert (project / "public" / "post.html").exists()


class FakeClient:
    def __init__(self, closed=False):
        self.closed = closed
        self.messages = []

    async def send(self, message):
        if self.closed:
            raise websockets.ConnectionClosed(None, None)
        self.messages.append(message)


def test_broadcast_drops_closed_clients(project, quiet_server):
    server = quiet_server(builder_for(project).build_shared())
    live, dead = FakeClient(), FakeClient(closed=True)
    server._ws_clients = {live, dead}
    asyncio.run(server._async_broadcast('{"type": "reload"}'))
    assert live.messages == ['{"type": "reload"}']
    assert server._ws_clients == {live}
