# stages.py
# Stage tree traversal: hydrate each stage through its self link, walk into its
# children, and pick out the stages worth reporting.
from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .api.client import JenkinsClient
from .api.models import Stage, StageWithPath
from .config import DEFAULT_FETCH_WORKERS, DEFAULT_MAX_STAGE_DEPTH
from .errors import APIError, TransportError
from .ui.console import Console, get_console


class Strategy(str, Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


class Policy(str, Enum):
    ALL = "all"
    FAILED = "failed"


# ----------------------------------------------------------------------
# Classification
# ----------------------------------------------------------------------

def is_leaf(stage: Stage) -> bool:
    return not stage.has_children


def is_failed_leaf(stage: Stage) -> bool:
    """
    True for the deepest failing stage of a branch.

    A grouping stage is marked FAILED whenever a descendant fails, so a failed
    stage only counts if none of its immediate children failed too.
    """
    if not stage.status.is_failure:
        return False
    return not any(child.status.is_failure for child in stage.children)


def select_all_leaves(nodes: Iterable[StageWithPath]) -> List[StageWithPath]:
    return [n for n in nodes if is_leaf(n.stage)]


def select_failed_leaves(nodes: Iterable[StageWithPath]) -> List[StageWithPath]:
    return [n for n in nodes if is_failed_leaf(n.stage)]


SELECTORS = {
    Policy.ALL: select_all_leaves,
    Policy.FAILED: select_failed_leaves,
}


# ----------------------------------------------------------------------
# Traversal
# ----------------------------------------------------------------------

def hydrate(client: JenkinsClient, stage: Stage) -> Stage:
    """Fetch the detail view of a stage; a stage without a self link is already all we have."""
    if not stage.self_link:
        return stage
    return client.get_stage(stage.self_link)


def walk_stage_tree(
    client: JenkinsClient,
    stages: Sequence[Stage],
    path: Tuple[str, ...] = (),
    max_depth: int = DEFAULT_MAX_STAGE_DEPTH,
    console: Optional[Console] = None,
) -> Iterator[StageWithPath]:
    """
    Depth-first, pre-order walk yielding every hydrated stage with its path.

    A stage that cannot be fetched is logged and its subtree skipped; its
    siblings are still visited.
    """
    console = console or get_console()
    for summary in stages:
        try:
            stage = hydrate(client, summary)
        except (TransportError, APIError) as e:
            console.debug(f"Error fetching stage {summary.id}: {e}")
            continue

        yield StageWithPath(stage=stage, path=path)

        if stage.has_children:
            if len(path) + 1 > max_depth:
                console.debug(f"Not expanding stage {stage.id}: depth limit {max_depth} reached")
                continue
            yield from walk_stage_tree(client, stage.children, (*path, stage.name), max_depth, console)


class StageTreeFetcher:
    """Hydrates a build's stage tree, sequentially or with a pool of fetch workers."""

    def __init__(
        self,
        client: JenkinsClient,
        workers: int = DEFAULT_FETCH_WORKERS,
        max_depth: int = DEFAULT_MAX_STAGE_DEPTH,
        console: Optional[Console] = None,
    ):
        self.client = client
        self.workers = max(1, workers)
        self.max_depth = max_depth
        self.console = console or client.console

    def fetch(
        self,
        stages: Sequence[Stage],
        strategy: Strategy = Strategy.CONCURRENT,
    ) -> List[StageWithPath]:
        """
        Hydrate every reachable stage.

        Args:
            stages: Top-level stage summaries (children may be missing)
            strategy: SEQUENTIAL keeps pre-order; CONCURRENT order varies run to run

        Returns:
            Every stage that could be fetched, with its ancestor names
        """
        if Strategy(strategy) is Strategy.SEQUENTIAL:
            return list(walk_stage_tree(self.client, stages, (), self.max_depth, self.console))
        return self._fetch_concurrent(stages)

    def _fetch_concurrent(self, stages: Sequence[Stage]) -> List[StageWithPath]:
        results: List[StageWithPath] = []
        expected = len(stages)
        processed = 0

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            in_flight: Dict[Future, Tuple[str, Tuple[str, ...]]] = {
                pool.submit(hydrate, self.client, s): (s.id, ()) for s in stages
            }

            while processed < expected:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    stage_id, path = in_flight.pop(fut)
                    processed += 1

                    try:
                        stage = fut.result()
                    except (TransportError, APIError) as e:
                        self.console.debug(f"Error fetching stage {stage_id}: {e}")
                        continue

                    results.append(StageWithPath(stage=stage, path=path))

                    if not stage.has_children:
                        continue
                    if len(path) + 1 > self.max_depth:
                        self.console.debug(f"Not expanding stage {stage.id}: depth limit {self.max_depth} reached")
                        continue

                    child_path = (*path, stage.name)
                    for child in stage.children:
                        expected += 1
                        in_flight[pool.submit(hydrate, self.client, child)] = (child.id, child_path)

                self.console.trace(f"stage fetch progress [{processed}/{expected}]")

        return results


def collect_leaf_stages(
    client: JenkinsClient,
    stages: Sequence[Stage],
    policy: Policy = Policy.ALL,
    strategy: Strategy = Strategy.CONCURRENT,
    workers: int = DEFAULT_FETCH_WORKERS,
    max_depth: int = DEFAULT_MAX_STAGE_DEPTH,
) -> List[StageWithPath]:
    """Hydrate a stage tree and keep the stages selected by ``policy``."""
    fetcher = StageTreeFetcher(client, workers=workers, max_depth=max_depth)
    return SELECTORS[Policy(policy)](fetcher.fetch(stages, strategy))


def find_stage_by_id(
    client: JenkinsClient,
    stages: Sequence[Stage],
    stage_id: str,
    max_depth: int = DEFAULT_MAX_STAGE_DEPTH,
) -> Optional[Stage]:
    """Search a stage tree, hydrating as it goes, and stop at the first match."""
    for node in walk_stage_tree(client, stages, (), max_depth, client.console):
        if node.stage.id == stage_id:
            return node.stage
    return None
