# api/client.py
from __future__ import annotations

import base64
import http.client
import json
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar
from urllib.parse import urlencode, urlsplit, urlunsplit

from ..errors import APIError, BuildNotFoundError, NoMatchingBuildError, TransportError
from ..logs import extract_text_from_html
from ..ui.console import Console, get_console
from .models import Job, Stage, StageLog, WorkflowRun

BRANCH_PARAM = "TRYMAX_BRANCH"
PRODUCT_PARAM = "PRODUCT"
LATEST_BUILD_TREE = "builds[id,fullDisplayName,actions[parameters[name,value]]]"

T = TypeVar("T")


@dataclass
class Response:
    """
    A fully read HTTP response.

    Status codes are not interpreted here: a 404 comes back as a Response with
    ``status == 404`` just like a 200 does.
    """
    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        name = name.lower()
        for k, v in self.headers.items():
            if k.lower() == name:
                return v
        return None

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            APIError: If the body is not valid JSON
        """
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise APIError(self.url, f"invalid JSON response: {e}", status=self.status) from e


class JenkinsClient:
    """HTTP client for the Jenkins JSON and workflow (``wfapi``) APIs."""

    def __init__(
        self,
        host: str,
        user: str,
        key: str,
        console: Optional[Console] = None,
        timeout: Optional[float] = 30.0,
    ):
        """
        Initialize API client.

        Args:
            host: Base URL of the server (e.g., "https://jenkins.example.com")
            user: User name for HTTP Basic auth
            key: API key for HTTP Basic auth (never logged)
            console: Where verbose request logging goes
            timeout: Socket timeout in seconds, None to wait forever
        """
        self.host = host.rstrip("/")
        self.user = user
        self._key = key
        self.console = console or get_console()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def url_for(self, path: str) -> str:
        """Resolve a relative path, a ``/rooted`` link or an absolute URL against the host."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.host}/{path.lstrip('/')}"

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self.user}:{self._key}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Response:
        """
        Make an authenticated request.

        GET requests carry ``params`` in the query string; other methods send
        them as a form-encoded body.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path or absolute URL
            params: Optional query/form parameters

        Returns:
            Response for any HTTP status

        Raises:
            TransportError: If the connection failed or the server did not speak HTTP
        """
        method = method.upper()
        self.console.debug(f"Using host [{self.host}]")
        self.console.debug(f"Using user [{self.user}] and key [***]")

        url = self.url_for(path)
        headers = {"Authorization": self._auth_header()}
        data = None

        if params:
            encoded = urlencode({k: str(v) for k, v in params.items()})
            if method == "GET":
                scheme, netloc, p, query, fragment = urlsplit(url)
                query = f"{query}&{encoded}" if query else encoded
                url = urlunsplit((scheme, netloc, p, query, fragment))
            else:
                self.console.trace(f"setting post data [{encoded}]")
                data = encoded.encode("utf-8")
                headers["Content-Type"] = "application/x-www-form-urlencoded"

        self.console.debug(f"Calling jenkins API [{method}][{url}]")
        req = urllib.request.Request(url, data=data, headers=headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return Response(
                    url=url,
                    status=response.status,
                    headers=dict(response.headers.items()),
                    body=response.read(),
                )
        except urllib.error.HTTPError as e:
            body = e.read() if e.fp else b""
            return Response(url=url, status=e.code, headers=dict(e.headers.items()) if e.headers else {}, body=body)
        except urllib.error.URLError as e:
            raise TransportError(url, str(e.reason)) from e
        except (http.client.HTTPException, OSError) as e:
            # timeouts, resets and garbled status lines surface outside URLError
            raise TransportError(url, str(e) or type(e).__name__) from e

    def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        res = self.request("GET", path, params)
        if not res.ok:
            raise APIError(res.url, res.text[:300].strip() or "request failed", status=res.status)
        return res.json()

    @staticmethod
    def decode(model: Type[T], data: Any, url: str) -> T:
        """
        Build a model from a decoded JSON object.

        Raises:
            APIError: If the JSON is not an object or does not fit the model
        """
        if not isinstance(data, dict):
            raise APIError(url, f"unexpected response shape: expected an object, got {type(data).__name__}")
        try:
            return model.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise APIError(url, f"unexpected response shape: {e}") from e

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def get_latest_build(self, pipeline: str, product: str, branch: str) -> WorkflowRun:
        """
        Find the newest build of a pipeline triggered for a product and branch.

        Builds are scanned in the order the server returns them (newest first);
        the first whose PRODUCT and TRYMAX_BRANCH parameters both match wins.

        Raises:
            NoMatchingBuildError: If no recent build matches
        """
        path = f"job/{pipeline}/api/json"
        query = {"tree": LATEST_BUILD_TREE}
        self.console.debug(f"get_latest_build([{path}], [{query}])")

        data = self.get_json(path, query)
        url = self.url_for(path)
        if not isinstance(data, dict):
            raise APIError(url, f"unexpected response shape: expected an object, got {type(data).__name__}")
        builds = data.get("builds") or ()
        if not isinstance(builds, list):
            raise APIError(url, "unexpected response shape: builds is not a list")
        for raw in builds:
            run = self.decode(WorkflowRun, raw, url)
            self.console.trace(f"Build {run.id}")
            if run.matches(**{PRODUCT_PARAM: product, BRANCH_PARAM: branch}):
                return run

        raise NoMatchingBuildError(product, branch)

    def get_build_info(self, pipeline: str, build_id: str) -> WorkflowRun:
        path = f"job/{pipeline}/{build_id}/api/json"
        self.console.debug(f"get_build_info([{path}])")
        res = self.request("GET", path)
        if res.status == 404:
            raise BuildNotFoundError(str(build_id), pipeline)
        if not res.ok:
            raise APIError(res.url, "could not fetch build info", status=res.status)
        return self.decode(WorkflowRun, res.json(), res.url)

    def get_jobs(self, pipeline: str) -> List[Job]:
        """Recent runs of a pipeline with their top-level stages."""
        path = f"job/{pipeline}/wfapi/runs"
        data = self.get_json(path)
        if not isinstance(data, list):
            raise APIError(self.url_for(path), "expected a list of runs")
        return [self.decode(Job, j, self.url_for(path)) for j in data]

    def get_job_details(self, pipeline: str, build_id: str) -> Job:
        path = f"job/{pipeline}/{build_id}/wfapi/describe"
        res = self.request("GET", path)
        if res.status == 404:
            raise BuildNotFoundError(str(build_id), pipeline)
        if not res.ok:
            raise APIError(res.url, "could not fetch build details", status=res.status)
        return self.decode(Job, res.json(), res.url)

    def build_url(self, pipeline: str, build_id: str) -> str:
        return f"{self.host}/job/{pipeline}/{build_id}/flowGraphTable"

    # ------------------------------------------------------------------
    # Stages and logs
    # ------------------------------------------------------------------

    def get_stage(self, self_link: str) -> Stage:
        """Fetch the detail view of a stage, which lists its children."""
        return self.decode(Stage, self.get_json(self_link), self.url_for(self_link))

    def get_stage_log(self, log_link: str) -> StageLog:
        return self.decode(StageLog, self.get_json(log_link), self.url_for(log_link))

    def get_full_stage_log(self, pipeline: str, build_id: str, stage_id: str) -> str:
        """Fetch the untruncated console page of a node and return its text."""
        path = f"job/{pipeline}/{build_id}/execution/node/{stage_id}/log/?consoleFull"
        res = self.request("GET", path)
        if not res.ok:
            raise APIError(res.url, "could not fetch full stage log", status=res.status)
        return extract_text_from_html(res.text, url=res.url)

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger_build(self, pipeline: str, params: Mapping[str, Any]) -> Response:
        """
        Queue a parameterized build.

        The returned response's ``Location`` header points at the queue item.
        """
        self.console.debug(f"trigger_build params [{dict(params)}]")
        return self.request("POST", f"job/{pipeline}/buildWithParameters", params)
