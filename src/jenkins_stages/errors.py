# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class JenkinsError(Exception):
    """Base class for every error the CLI knows how to render."""

    title = "Jenkins error"
    suggestion: Optional[str] = None


@dataclass
class ConfigError(JenkinsError):
    """Missing or unreadable configuration. Fatal, checked before any request."""
    field: str
    message: str

    title = "Configuration error"
    suggestion = (
        "Please ensure you have set the following environment variables:\n"
        "  JENKINS_HOST - Your Jenkins server URL\n"
        "  JENKINS_USER - Your Jenkins username\n"
        "  JENKINS_KEY  - Your Jenkins API key\n\n"
        "Or configure them in ~/.jenkins.yaml"
    )

    def __str__(self) -> str:
        return f"configuration error for {self.field}: {self.message}"


@dataclass
class TransportError(JenkinsError):
    """The connection to the server could not be established."""
    url: str
    reason: str

    title = "Network error"
    suggestion = "Verify the Jenkins host is correct and reachable."

    def __str__(self) -> str:
        return f"could not reach {self.url}: {self.reason}"


@dataclass
class APIError(JenkinsError):
    """A response that could not be decoded (or was otherwise unusable)."""
    url: str
    message: str
    status: Optional[int] = None

    title = "API error"

    def __str__(self) -> str:
        if self.status is not None:
            return f"API error [{self.url}] (status {self.status}): {self.message}"
        return f"API error [{self.url}]: {self.message}"


@dataclass
class BuildNotFoundError(JenkinsError):
    build_id: str
    pipeline: str

    title = "Build not found"

    def __str__(self) -> str:
        return f"build {self.build_id} not found in pipeline {self.pipeline}"


@dataclass
class NoMatchingBuildError(JenkinsError):
    """No build in the recent list carries the requested product/branch."""
    product: str
    branch: str

    title = "No builds found"

    def __str__(self) -> str:
        return f"no build found for {self.product} on branch [{self.branch}]"


@dataclass
class StageNotFoundError(JenkinsError):
    stage_id: str
    build_id: str

    title = "Stage not found"

    def __str__(self) -> str:
        return f"stage {self.stage_id} not found in build {self.build_id}"


@dataclass
class ValidationError(JenkinsError):
    """Bad user input."""
    field: str
    value: str
    message: str

    title = "Invalid input"

    def __str__(self) -> str:
        return f"validation error for {self.field}='{self.value}': {self.message}"


@dataclass
class QueueLocationError(JenkinsError):
    """A trigger response that did not say where the build was queued."""
    url: str
    status: int
    details: dict = field(default_factory=dict)

    title = "Trigger failed"

    def __str__(self) -> str:
        return f"no queue location in response from {self.url} (status {self.status})"


@dataclass
class SpawnError(JenkinsError):
    """A background process could not be started."""
    command: str
    reason: str

    title = "Could not start background process"

    def __str__(self) -> str:
        return f"failed to spawn command {self.command}: {self.reason}"


@dataclass
class NoTimingDataError(JenkinsError):
    """No successful run had a stage matching the filters."""
    filters: tuple = ()

    title = "No results"
    suggestion = "Try a broader --filter, or check that recent runs succeeded."

    def __str__(self) -> str:
        return "No matching, successful jobs found"
