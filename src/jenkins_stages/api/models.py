# api/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class StageStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    IN_PROGRESS = "IN_PROGRESS"
    NOT_EXECUTED = "NOT_EXECUTED"
    UNSTABLE = "UNSTABLE"
    PAUSED_PENDING_INPUT = "PAUSED_PENDING_INPUT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "StageStatus":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_failure(self) -> bool:
        return self in (StageStatus.FAILED, StageStatus.ABORTED)

    def __str__(self) -> str:
        return self.value


def parse_millis(value: Any) -> Optional[datetime]:
    """Jenkins timestamps are Unix milliseconds; keep whole seconds like the UI does."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) // 1000, tz=timezone.utc)


def _href(links: Dict[str, Any], name: str) -> Optional[str]:
    link = links.get(name) or {}
    return link.get("href") or None


@dataclass(frozen=True)
class Stage:
    """
    One node of a pipeline's flow graph.

    Snapshots are never mutated; a fresh fetch of ``self_link`` replaces them.
    ``children`` is only populated on a stage-detail response.
    """
    id: str
    name: str
    status: StageStatus
    start_time: Optional[datetime] = None
    duration_millis: int = 0
    pause_duration_millis: int = 0
    exec_node: str = ""
    parent_node_ids: Tuple[str, ...] = ()
    children: Tuple["Stage", ...] = ()
    self_link: Optional[str] = None
    log_link: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stage":
        links = data.get("_links") or {}
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            status=StageStatus.parse(data.get("status")),
            start_time=parse_millis(data.get("startTimeMillis")),
            duration_millis=int(data.get("durationMillis") or 0),
            pause_duration_millis=int(data.get("pauseDurationMillis") or 0),
            exec_node=data.get("execNode") or "",
            parent_node_ids=tuple(str(p) for p in data.get("parentNodes") or ()),
            children=tuple(cls.from_dict(c) for c in data.get("stageFlowNodes") or ()),
            self_link=_href(links, "self"),
            log_link=_href(links, "log"),
        )

    @property
    def has_children(self) -> bool:
        return bool(self.children)


@dataclass(frozen=True)
class Job:
    """A pipeline run as seen by the workflow API (``wfapi``): carries the stage tree."""
    id: str
    name: str
    status: StageStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_millis: int = 0
    queue_duration_millis: int = 0
    pause_duration_millis: int = 0
    stages: Tuple[Stage, ...] = ()
    self_link: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        links = data.get("_links") or {}
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            status=StageStatus.parse(data.get("status")),
            start_time=parse_millis(data.get("startTimeMillis")),
            end_time=parse_millis(data.get("endTimeMillis")),
            duration_millis=int(data.get("durationMillis") or 0),
            queue_duration_millis=int(data.get("queueDurationMillis") or 0),
            pause_duration_millis=int(data.get("pauseDurationMillis") or 0),
            stages=tuple(Stage.from_dict(s) for s in data.get("stages") or ()),
            self_link=_href(links, "self"),
        )


@dataclass(frozen=True)
class WorkflowParameter:
    name: str
    value: Any = None


@dataclass(frozen=True)
class WorkflowRun:
    """A build as seen by the classic JSON API: trigger parameters and completion state."""
    id: str
    display_name: str = ""
    full_display_name: str = ""
    result: Optional[str] = None
    building: bool = False
    duration: int = 0
    estimated_duration: int = 0
    timestamp: Optional[datetime] = None
    url: str = ""
    description: str = ""
    parameters: Tuple[WorkflowParameter, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowRun":
        params = []
        for action in data.get("actions") or ():
            # Jenkins pads the actions list with empty objects and nulls
            for p in (action or {}).get("parameters") or ():
                params.append(WorkflowParameter(name=p.get("name", ""), value=p.get("value")))
        return cls(
            id=str(data.get("id", "")),
            display_name=data.get("displayName") or "",
            full_display_name=data.get("fullDisplayName") or "",
            result=data.get("result"),
            building=bool(data.get("building", False)),
            duration=int(data.get("duration") or 0),
            estimated_duration=int(data.get("estimatedDuration") or 0),
            timestamp=parse_millis(data.get("timestamp")),
            url=data.get("url") or "",
            description=data.get("description") or "",
            parameters=tuple(params),
        )

    def parameter(self, name: str) -> Optional[WorkflowParameter]:
        """First parameter with the given name (names are not unique)."""
        return next((p for p in self.parameters if p.name == name), None)

    def matches(self, **expected: Any) -> bool:
        """True when every named parameter exists and equals the expected value."""
        for name, value in expected.items():
            param = self.parameter(name)
            if param is None or param.value != value:
                return False
        return True


@dataclass(frozen=True)
class Executable:
    number: int
    url: str = ""


@dataclass(frozen=True)
class QueueItem:
    """A triggered build waiting for an executor."""
    id: str
    executable: Optional[Executable] = None
    why: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        exe = data.get("executable")
        executable = None
        if exe and exe.get("number") is not None:
            executable = Executable(number=int(exe["number"]), url=exe.get("url") or "")
        return cls(id=str(data.get("id", "")), executable=executable, why=data.get("why"))

    @property
    def build_number(self) -> Optional[int]:
        return self.executable.number if self.executable else None


@dataclass(frozen=True)
class StageLog:
    """Console text for one flow node (``wfapi/log``)."""
    node_id: str
    node_status: StageStatus
    text: str = ""
    length: int = 0
    has_more: bool = False
    console_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageLog":
        return cls(
            node_id=str(data.get("nodeId", "")),
            node_status=StageStatus.parse(data.get("nodeStatus")),
            text=data.get("text") or "",
            length=int(data.get("length") or 0),
            has_more=bool(data.get("hasMore", False)),
            console_url=data.get("consoleUrl") or "",
        )

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")


@dataclass(frozen=True)
class StageWithPath:
    """A hydrated stage plus the names of its ancestors, root first."""
    stage: Stage
    path: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def full_path(self) -> str:
        return " > ".join([*self.path, self.stage.name])
