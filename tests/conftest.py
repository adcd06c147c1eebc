# tests/conftest.py
# Shared fixtures: a real local HTTP server standing in for Jenkins, and
# builders for the wfapi JSON it serves.

import io
import json
import socketserver
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import pytest

from jenkins_stages.api.client import JenkinsClient
from jenkins_stages.ui.console import Console, set_console

PIPELINE = "master"


@dataclass
class Recorded:
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes


# handler(request) -> (status, body, headers)
Handler = Callable[[Recorded], Tuple[int, Any, Dict[str, str]]]


def _encode(body: Any) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body).encode("utf-8")


class FakeJenkins:
    """Route table served by a ThreadingHTTPServer on an ephemeral port."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[Recorded] = []
        self._lock = threading.Lock()
        fake = self

        class RequestHandler(BaseHTTPRequestHandler):
            def _dispatch(self):
                length = int(self.headers.get("Content-Length") or 0)
                parts = urlsplit(self.path)
                req = Recorded(
                    method=self.command,
                    path=parts.path,
                    query=parse_qs(parts.query, keep_blank_values=True),
                    headers={k: v for k, v in self.headers.items()},
                    body=self.rfile.read(length) if length else b"",
                )
                status, body, headers = fake.handle(req)
                payload = _encode(body)
                self.send_response(status)
                for k, v in headers.items():
                    self.send_header(k, v)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            do_GET = _dispatch
            do_POST = _dispatch

            def log_message(self, format, *args):
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), RequestHandler)
        self.server.daemon_threads = True
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> "FakeJenkins":
        self.thread.start()
        return self

    def close(self) -> None:
        self.server.shutdown()
        self.server.server_close()

    def handle(self, req: Recorded) -> Tuple[int, Any, Dict[str, str]]:
        with self._lock:
            self.requests.append(req)
            handler = self.routes.get((req.method, req.path))
        if handler is None:
            return 404, {"error": f"no route for {req.method} {req.path}"}, {}
        return handler(req)

    def add(
        self,
        method: str,
        path: str,
        body: Any = None,
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Serve a fixed response."""
        self.routes[(method, path)] = lambda req: (status, body, dict(headers or {}))

    def add_handler(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def add_sequence(self, method: str, path: str, responses: List[Tuple[int, Any, Dict[str, str]]]) -> None:
        """Serve the responses in order, repeating the last one."""
        remaining = list(responses)

        def handler(req):
            if len(remaining) > 1:
                return remaining.pop(0)
            return remaining[0]

        self.routes[(method, path)] = handler

    def calls(self, method: str, path: str) -> List[Recorded]:
        with self._lock:
            return [r for r in self.requests if r.method == method and r.path == path]


# ----------------------------------------------------------------------
# wfapi JSON builders
# ----------------------------------------------------------------------

def node(id: str, name: str, status: str = "SUCCESS", children=(), duration: int = 1000, log: bool = True) -> Dict[str, Any]:
    """A stage tree node; ``children`` are nested ``node()`` dicts."""
    return {
        "id": id,
        "name": name,
        "status": status,
        "durationMillis": duration,
        "execNode": "agent-1",
        "children": list(children),
        "log": log,
    }


def stage_links(build_id: str, n: Dict[str, Any]) -> Dict[str, Any]:
    links = {"self": {"href": f"/job/{PIPELINE}/{build_id}/execution/node/{n['id']}/wfapi/describe"}}
    if n.get("log", True):
        links["log"] = {"href": f"/job/{PIPELINE}/{build_id}/execution/node/{n['id']}/wfapi/log"}
    return links


def stage_summary(build_id: str, n: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": n["id"],
        "name": n["name"],
        "status": n["status"],
        "startTimeMillis": 1700000000000,
        "durationMillis": n["durationMillis"],
        "pauseDurationMillis": 0,
        "execNode": n["execNode"],
        "_links": stage_links(build_id, n),
    }


def stage_detail(build_id: str, n: Dict[str, Any]) -> Dict[str, Any]:
    detail = stage_summary(build_id, n)
    detail["stageFlowNodes"] = [stage_summary(build_id, c) for c in n["children"]]
    return detail


def job_json(build_id: str, roots, status: str = "FAILED", name: str = None) -> Dict[str, Any]:
    return {
        "id": build_id,
        "name": name or f"#{build_id}",
        "status": status,
        "startTimeMillis": 1700000000000,
        "endTimeMillis": 1700000600000,
        "durationMillis": 600000,
        "queueDurationMillis": 10,
        "stages": [stage_summary(build_id, r) for r in roots],
    }


def register_tree(server: FakeJenkins, build_id: str, roots, job_status: str = "FAILED") -> None:
    """Serve a build's describe endpoint and one describe endpoint per stage."""
    server.add("GET", f"/job/{PIPELINE}/{build_id}/wfapi/describe", job_json(build_id, roots, job_status))

    def visit(n):
        server.add("GET", f"/job/{PIPELINE}/{build_id}/execution/node/{n['id']}/wfapi/describe", stage_detail(build_id, n))
        if n.get("log", True):
            server.add(
                "GET",
                f"/job/{PIPELINE}/{build_id}/execution/node/{n['id']}/wfapi/log",
                {"nodeId": n["id"], "nodeStatus": n["status"], "text": f"log of {n['name']}\nline 2", "length": 20},
            )
        for c in n["children"]:
            visit(c)

    for r in roots:
        visit(r)


def build_info(build_id: str, result: Optional[str] = "SUCCESS", building: bool = False, name: str = None) -> Dict[str, Any]:
    return {
        "id": build_id,
        "displayName": name or f"#{build_id}",
        "fullDisplayName": f"{PIPELINE} #{build_id}",
        "result": result,
        "building": building,
        "duration": 125000,
        "timestamp": 1700000000000,
        "url": f"http://jenkins/job/{PIPELINE}/{build_id}/",
    }


def failing_tree():
    """
    Build    (FAILED)
      Linux  (SUCCESS)
      Windows (FAILED)
        Compile (SUCCESS)
        Unit tests (FAILED)
    Deploy   (FAILED, no failed children)
      Upload (SUCCESS)
    Docs     (SUCCESS)
    """
    return [
        node("10", "Build", "FAILED", [
            node("11", "Linux"),
            node("12", "Windows", "FAILED", [
                node("13", "Compile"),
                node("14", "Unit tests", "FAILED", duration=4500),
            ]),
        ]),
        node("20", "Deploy", "FAILED", [node("21", "Upload")]),
        node("30", "Docs"),
    ]


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture
def jenkins_server():
    server = FakeJenkins().start()
    try:
        yield server
    finally:
        server.close()


@pytest.fixture
def console():
    c = Console(verbosity=2, stdout=io.StringIO(), stderr=io.StringIO())
    set_console(c)
    return c


@pytest.fixture
def client(jenkins_server, console):
    return JenkinsClient(jenkins_server.url, "me", "s3cret", console=console, timeout=5)


class GarbageHandler(socketserver.StreamRequestHandler):
    """Reads a request and answers with something that is not HTTP."""

    def handle(self):
        while self.rfile.readline() not in (b"\r\n", b"\n", b""):
            pass
        self.wfile.write(b"GARBAGE\r\n\r\n")


@pytest.fixture
def garbage_server():
    server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), GarbageHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        server.shutdown()
        server.server_close()
