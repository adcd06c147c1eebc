# ui/browser.py
# Prompt-driven browser over recent runs, a run's stages and stage logs.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import click

from ..api.client import JenkinsClient
from ..api.models import Job, Stage
from ..errors import JenkinsError
from .console import Console, get_console
from .tables import Row, SortColumn, listing_table, sort_rows

HELP = "[id] open  [n/s/d] sort by name/status/duration  [f] filter  [c] clear filter  [b] back  [q] quit"


@dataclass
class View:
    """One screen of the browser: a titled list of jobs or stages."""
    title: str
    rows: Sequence[Row]
    job_id: Optional[str] = None
    column: SortColumn = SortColumn.NONE
    ascending: bool = False
    text_filter: str = ""

    def visible(self) -> List[Row]:
        return sort_rows(self.rows, self.column, self.ascending, self.text_filter)

    def toggle_sort(self, column: SortColumn) -> None:
        """Selecting the current column again flips the direction."""
        if self.column is column:
            self.ascending = not self.ascending
        else:
            self.column = column
            self.ascending = False


@dataclass
class StageBrowser:
    """
    Interactive browser for the ``stages`` command.

    Views are kept on a stack: the recent runs, a run's top-level stages and
    then one view per stage drilled into. Selecting a stage without children
    shows its log in the pager.
    """
    client: JenkinsClient
    pipeline: str
    console: Console = field(default_factory=get_console)
    prompt: Callable[..., str] = click.prompt
    pager: Callable[[str], None] = click.echo_via_pager
    stack: List[View] = field(default_factory=list)

    def run(self, jobs: Sequence[Job], job: Optional[Job] = None) -> None:
        self.stack = [View(f"Recent runs of {self.pipeline}", jobs)]
        if job is not None:
            self.stack.append(self._job_view(job))

        while self.stack:
            view = self.stack[-1]
            rows = view.visible()
            self.console.print(listing_table(rows, view.title, view.column, view.ascending))
            if view.text_filter:
                self.console.print_muted(f"filter: {view.text_filter}")
            self.console.print_muted(HELP)

            choice = self.prompt(">", default="", show_default=False).strip()
            if not self.handle(view, rows, choice):
                return

    def handle(self, view: View, rows: Sequence[Row], choice: str) -> bool:
        """Apply one command to the current view; False ends the session."""
        key = choice.lower()
        if key == "q":
            return False
        if key == "":
            return True
        if key == "b":
            self.stack.pop()
            return bool(self.stack)
        if key in ("n", "s", "d"):
            view.toggle_sort(SortColumn(key))
            return True
        if key == "f":
            view.text_filter = self.prompt("filter", default="", show_default=False).strip()
            return True
        if key == "c":
            view.text_filter = ""
            return True

        selected = next((r for r in rows if r.id == choice), None)
        if selected is None:
            self.console.print_muted(f"no entry with ID {choice}")
            return True
        self.open(view, selected)
        return True

    def open(self, view: View, row: Row) -> None:
        try:
            if isinstance(row, Job):
                self.stack.append(self._job_view(self.client.get_job_details(self.pipeline, row.id)))
                return
            stage = self.client.get_stage(row.self_link) if row.self_link else row
            if stage.has_children:
                self.stack.append(View(f"{view.title} > {stage.name}", stage.children, job_id=view.job_id))
            else:
                self.show_log(stage)
        except JenkinsError as e:
            self.console.print_error(e.title, str(e), suggestion=e.suggestion)

    def show_log(self, stage: Stage) -> None:
        if not stage.log_link:
            self.console.print_muted("(no log available)")
            return
        log = self.client.get_stage_log(stage.log_link)
        self.pager(log.text)

    def _job_view(self, job: Job) -> View:
        return View(f"Run {job.id}: {job.name}", job.stages, job_id=job.id)
