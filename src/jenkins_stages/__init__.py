from .api import JenkinsClient
from .config import Settings, load_settings
from .errors import JenkinsError
from .monitor import BuildMonitor
from .poller import QueuePoller, wait_for_build_number
from .stages import Policy, StageTreeFetcher, Strategy, collect_leaf_stages

__version__ = "0.4.0"

__all__ = [
    "JenkinsClient",
    "Settings",
    "load_settings",
    "JenkinsError",
    "BuildMonitor",
    "QueuePoller",
    "wait_for_build_number",
    "Policy",
    "StageTreeFetcher",
    "Strategy",
    "collect_leaf_stages",
]
