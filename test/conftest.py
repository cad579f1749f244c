from http.server import ThreadingHTTPServer, SimpleHTTPRequestHandler
from threading import Thread
from functools import partial
from pathlib import Path
import pytest

from mcclient.standard import Context


def pytest_addoption(parser):
    parser.addoption("--runslow", action="store_true", default=False, help="run slow tests")

def pytest_configure(config):
    config.addinivalue_line("markers", "slow: mark test as slow to run")

def pytest_collection_modifyitems(config, items):

    if config.getoption("--runslow"):
        return

    skip_slow = pytest.mark.skip(reason="need --runslow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture
def tmp_context(tmp_path: Path) -> Context:
    """This fixture is used to create a game's install context for a single test.
    """
    return Context(tmp_path / "main", tmp_path / "work")


class FileRequestHandler(SimpleHTTPRequestHandler):
    """Serve files of a directory, with two special paths: `/status/<code>` answers
    with the given status and `/redirect/<path>` redirects to `/<path>`.
    """

    def log_message(self, format, *args):
        return

    def do_GET(self):

        hits = self.server.hits  # type: ignore
        hits[self.path] = hits.get(self.path, 0) + 1

        if self.path.startswith("/status/"):
            self.send_error(int(self.path[len("/status/"):]))
        elif self.path.startswith("/redirect/"):
            self.send_response(302)
            self.send_header("Location", self.path[len("/redirect"):])
            self.send_header("Content-Length", "0")
            self.end_headers()
        else:
            super().do_GET()


class FileServer:

    def __init__(self, root: Path) -> None:
        self.root = root
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), partial(FileRequestHandler, directory=str(root)))
        self.server.hits = {}  # type: ignore
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}"

    @property
    def hits(self) -> dict:
        return self.server.hits  # type: ignore

    def add_file(self, path: str, data: bytes) -> Path:
        file = self.root / path
        file.parent.mkdir(parents=True, exist_ok=True)
        file.write_bytes(data)
        return file


@pytest.fixture
def file_server(tmp_path: Path, monkeypatch):
    """A local HTTP server serving files from a temporary directory.
    """

    for var in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")

    root = tmp_path / "www"
    root.mkdir()

    server = FileServer(root)
    thread = Thread(target=server.server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.server.shutdown()
        server.server.server_close()
