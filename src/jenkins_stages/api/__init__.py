from .client import JenkinsClient, Response
from .models import (
    Executable,
    Job,
    QueueItem,
    Stage,
    StageLog,
    StageStatus,
    StageWithPath,
    WorkflowParameter,
    WorkflowRun,
)

__all__ = [
    "JenkinsClient",
    "Response",
    "Executable",
    "Job",
    "QueueItem",
    "Stage",
    "StageLog",
    "StageStatus",
    "StageWithPath",
    "WorkflowParameter",
    "WorkflowRun",
]
