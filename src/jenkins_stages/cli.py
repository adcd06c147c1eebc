# cli.py
from __future__ import annotations

import functools
import sys
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import click
from rich.text import Text

from jenkins_stages import __version__
from jenkins_stages.api.client import BRANCH_PARAM, PRODUCT_PARAM, JenkinsClient
from jenkins_stages.api.models import Job, StageStatus, StageWithPath, WorkflowRun
from jenkins_stages.config import ENV_VARS, Settings, load_settings
from jenkins_stages.errors import (
    APIError,
    JenkinsError,
    NoMatchingBuildError,
    NoTimingDataError,
    QueueLocationError,
    StageNotFoundError,
    ValidationError,
)
from jenkins_stages.formatting import duration_stats, fmt_duration
from jenkins_stages.launcher import ProcessLauncher, SubprocessLauncher, is_child, monitor_args
from jenkins_stages.logs import elide_middle, head_lines, tail_lines
from jenkins_stages.monitor import BuildMonitor
from jenkins_stages.poller import wait_for_build_number
from jenkins_stages.stages import (
    StageTreeFetcher,
    Strategy,
    find_stage_by_id,
    select_all_leaves,
    select_failed_leaves,
)
from jenkins_stages.ui.browser import StageBrowser
from jenkins_stages.ui.console import (
    FAILURE,
    INFO_BOLD,
    Console,
    get_console,
    result_style,
    set_console,
)
from jenkins_stages.ui.tables import StageTiming, timing_table

BUILD_SITE_PIPELINE = "build-site"
LATEST_PUSH_BRANCH = "origin/master"


def handle_errors(f):
    """Render JenkinsError (and Ctrl-C) the same way for every command."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        console = get_console()
        try:
            return f(*args, **kwargs)
        except JenkinsError as e:
            console.print_error(e.title, str(e), suggestion=e.suggestion)
            if console.debug_mode:
                console.print_exception(e)
            sys.exit(1)
        except KeyboardInterrupt:
            console.print_info("\nInterrupted by user")
            sys.exit(130)

    return wrapper


def get_settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def get_client(ctx: click.Context) -> JenkinsClient:
    """
    Create the API client on first use.

    Raises:
        ConfigError: If host, user or key is missing
    """
    client = ctx.obj.get("client")
    if client is None:
        settings = get_settings(ctx).validate()
        client = JenkinsClient(
            settings.host,
            settings.user,
            settings.key,
            console=get_console(),
            timeout=settings.timeout,
        )
        ctx.obj["client"] = client
    return client


def get_launcher(ctx: click.Context) -> ProcessLauncher:
    launcher = ctx.obj.get("launcher")
    if launcher is None:
        launcher = SubprocessLauncher(env=child_env(get_settings(ctx)), console=get_console())
        ctx.obj["launcher"] = launcher
    return launcher


def child_env(settings: Settings) -> Dict[str, str]:
    """Connection settings for a re-executed child, which may not see our flags."""
    env = {}
    for name, var in ENV_VARS.items():
        value = getattr(settings, name)
        if value:
            env[var] = str(value)
    if settings.config_file:
        env["JENKINS_CONFIG"] = str(settings.config_file)
    return env


def normalize_branch(branch: str) -> str:
    return branch if branch.startswith("origin/") else f"origin/{branch}"


def build_sort_key(build: WorkflowRun) -> Tuple[int, Any]:
    # numeric IDs sort numerically, anything else after them by text
    return (0, int(build.id)) if build.id.isdigit() else (1, build.id)


# ----------------------------------------------------------------------
# Group
# ----------------------------------------------------------------------

@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_path",
    envvar="JENKINS_CONFIG",
    default=None,
    type=click.Path(dir_okay=False),
    help="Config file (default is ~/.jenkins.yaml)",
)
@click.option("--host", envvar=ENV_VARS["host"], default=None, help="Jenkins host")
@click.option("--user", envvar=ENV_VARS["user"], default=None, help="Jenkins user")
@click.option("--key", envvar=ENV_VARS["key"], default=None, help="Jenkins API key")
@click.option("--pipeline", envvar=ENV_VARS["pipeline"], default=None, help="Jenkins pipeline to analyze [default: master]")
@click.option("-v", "--verbose", count=True, help="Verbose output (-vv for more)")
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces for errors)",
)
@click.version_option(__version__, prog_name="jenkins")
@click.pass_context
@handle_errors
def cli(ctx, config_path, host, user, key, pipeline, verbose, debug):
    """Summarize, diagnose, trigger and monitor Jenkins pipeline builds."""
    console = Console(verbosity=verbose, debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["verbosity"] = verbose

    settings = load_settings(
        config_path,
        overrides={"host": host, "user": user, "key": key, "pipeline": pipeline},
    )
    if settings.config_file and not is_child():
        console.debug(f"Using config file: {settings.config_file}")
    ctx.obj["settings"] = settings

    if ctx.invoked_subcommand is None:
        ctx.invoke(timing)


# ----------------------------------------------------------------------
# Timing
# ----------------------------------------------------------------------

def summarize_timing(jobs: Sequence[Job], filters: Sequence[str] = (), console: Optional[Console] = None) -> Tuple[List[StageTiming], int]:
    """
    Collect top-level stage durations across successful runs.

    Returns:
        (rows sorted by average descending, number of successful runs)
    """
    console = console or get_console()
    needles = [f.lower() for f in filters]
    durations: Dict[str, List[int]] = defaultdict(list)
    successful = 0

    for job in jobs:
        if job.status is not StageStatus.SUCCESS:
            console.debug(f"Job has a status other than SUCCESS [{job.id}][{job.status}]")
            continue
        successful += 1
        for stage in job.stages:
            if needles and not any(n in stage.name.lower() for n in needles):
                console.trace(f"Stage did not match any filter [{stage.name}]")
                continue
            durations[stage.name].append(stage.duration_millis)

    rows = []
    for name, values in durations.items():
        mean, low, high = duration_stats(values)
        rows.append(StageTiming(name, mean, low, high))
    rows.sort(key=lambda r: r.avg, reverse=True)
    console.debug(f"Ended with [{len(rows)}] stages to print")
    return rows, successful


@cli.command()
@click.option("-f", "--filter", "filters", multiple=True, help="Filter stage list (case insensitive)")
@click.pass_context
@handle_errors
def timing(ctx, filters):
    """Summarize stage durations over recent successful runs."""
    console = get_console()
    settings = get_settings(ctx)
    jobs = get_client(ctx).get_jobs(settings.pipeline)

    rows, successful = summarize_timing(jobs, filters, console)
    if not rows:
        raise NoTimingDataError(tuple(filters))

    console.print(timing_table(rows))
    console.print_banner(f"Times for {len(rows)} stages across {successful} successful jobs")


# ----------------------------------------------------------------------
# Browsing and reporting
# ----------------------------------------------------------------------

@cli.command()
@click.argument("build_id", required=False)
@click.pass_context
@handle_errors
def stages(ctx, build_id):
    """Browse recent runs, a run's stages and their logs."""
    settings = get_settings(ctx)
    client = get_client(ctx)
    jobs = client.get_jobs(settings.pipeline)
    job = client.get_job_details(settings.pipeline, build_id) if build_id else None
    StageBrowser(client, settings.pipeline, get_console()).run(jobs, job)


strategy_option = click.option(
    "--strategy",
    type=click.Choice([s.value for s in Strategy]),
    default=Strategy.CONCURRENT.value,
    show_default=True,
    help="How the stage tree is fetched",
)


def fetch_stage_tree(ctx: click.Context, job: Job, strategy: str) -> List[StageWithPath]:
    settings = get_settings(ctx)
    fetcher = StageTreeFetcher(
        get_client(ctx),
        workers=settings.fetch_workers,
        max_depth=settings.max_stage_depth,
    )
    return fetcher.fetch(job.stages, Strategy(strategy))


@cli.command()
@click.argument("build_id")
@strategy_option
@click.pass_context
@handle_errors
def failed(ctx, build_id, strategy):
    """List the failed stages of a build."""
    console = get_console()
    settings = get_settings(ctx)
    job = get_client(ctx).get_job_details(settings.pipeline, build_id)
    failed_leaves = select_failed_leaves(fetch_stage_tree(ctx, job, strategy))

    if not failed_leaves:
        console.print_success("✓ No failed stages found")
        return

    console.print_header(f"Failed stages in build {build_id}:")
    console.print()
    for item in failed_leaves:
        stage = item.stage
        console.print(Text.assemble(("  ✗", FAILURE), " ", (item.full_path, INFO_BOLD)))
        console.print_info(f"    ID:       {stage.id}")
        console.print_info(f"    Status:   {stage.status}")
        console.print_info(f"    Duration: {fmt_duration(stage.duration_millis)}")
        console.print_info(f"    Node:     {stage.exec_node}")
        console.print_info(f"    Log URL:  {stage.log_link or ''}")
        console.print()

    console.print_muted(f"Total failed stages: {len(failed_leaves)}")
    console.print_muted(f"Use 'jenkins stage-log {build_id} <stage_id>' to view logs")


def print_stage_divider(console: Console, index: int, item: StageWithPath, show_status: bool) -> None:
    stage = item.stage
    title = f"─── {index}. {item.full_path}"
    if show_status:
        if stage.status is StageStatus.SUCCESS:
            marker = "✓ SUCCESS"
        elif stage.status is StageStatus.ABORTED:
            marker = "⊘ ABORTED"
        else:
            marker = "✗ FAILED"
        title = f"{title} {marker}"
    console.print_header(f"{title} ───")
    console.print_muted(
        f"Stage ID: {stage.id} | Duration: {fmt_duration(stage.duration_millis)} | Node: {stage.exec_node}"
    )
    console.print()


@cli.command()
@click.argument("build_id")
@click.option("-a", "--all", "show_all", is_flag=True, help="Show all stages, not just failed ones")
@click.option("-l", "--log-lines", default=50, show_default=True, type=click.IntRange(min=0), help="Maximum lines of log to show per stage (0 for all)")
@strategy_option
@click.pass_context
@handle_errors
def diagnose(ctx, build_id, show_all, log_lines, strategy):
    """Analyze a build: status, failed stages and their logs."""
    console = get_console()
    settings = get_settings(ctx)
    client = get_client(ctx)

    build = client.get_build_info(settings.pipeline, build_id)
    job = client.get_job_details(settings.pipeline, build_id)

    console.print_rule()
    console.print_header(f"  BUILD DIAGNOSIS: {settings.pipeline} #{build_id}")
    console.print_rule()
    console.print()
    console.print(Text.assemble("Status:   ", (build.result or "IN_PROGRESS", result_style(build.result))))
    console.print_info(f"Duration: {fmt_duration(build.duration)}")
    console.print_info(f"URL:      {build.url}")
    console.print()

    nodes = fetch_stage_tree(ctx, job, strategy)
    failed_leaves = select_failed_leaves(nodes)
    to_show = select_all_leaves(nodes) if show_all else failed_leaves

    if not to_show:
        console.print_success("✓ No failed stages found - build passed!")
        return

    console.print_header("FAILED STAGES:")
    for i, item in enumerate(failed_leaves, 1):
        console.print_info(f"  {i}. {item.full_path} (Duration: {fmt_duration(item.stage.duration_millis)})")
    console.print()

    console.print_header("STAGE LOGS:")
    console.print()
    for i, item in enumerate(to_show, 1):
        print_stage_divider(console, i, item, show_all)
        if not item.stage.log_link:
            console.print_muted("  (no log available)")
            console.print()
            continue
        try:
            log = client.get_stage_log(item.stage.log_link)
        except JenkinsError as e:
            console.print_muted(f"  (failed to fetch log: {e})")
            console.print()
            continue

        head, tail, omitted = elide_middle(log.lines, log_lines)
        for line in head:
            console.print_info(line)
        if omitted:
            console.print_muted(f"\n  ... ({omitted} lines omitted) ...\n")
            for line in tail:
                console.print_info(line)
        console.print()

    console.print_rule()
    console.print_header("SUMMARY FOR ANALYSIS:")
    console.print_info(f"  Build {build_id} had {len(failed_leaves)} failed stage(s)")
    if failed_leaves:
        console.print_info("  Failed stages:")
        for item in failed_leaves:
            console.print_info(f"    - {item.full_path} ({item.stage.status})")
    console.print_rule()


@cli.command("stage-log")
@click.argument("build_id")
@click.argument("stage_id")
@click.option("-t", "--tail", "tail", default=0, type=click.IntRange(min=0), help="Show only the last N lines")
@click.option("-n", "--head", "head", default=0, type=click.IntRange(min=0), help="Show only the first N lines")
@click.option("-f", "--full", "full", is_flag=True, help="Fetch the full log without truncation")
@click.pass_context
@handle_errors
def stage_log(ctx, build_id, stage_id, tail, head, full):
    """Print the console log of one stage."""
    console = get_console()
    settings = get_settings(ctx)
    client = get_client(ctx)

    job = client.get_job_details(settings.pipeline, build_id)
    stage = find_stage_by_id(client, job.stages, stage_id, settings.max_stage_depth)
    if stage is None:
        raise StageNotFoundError(stage_id, build_id)

    console.print_header(f"Stage: {stage.name}")
    console.print_muted(f"Build: {build_id} | Stage ID: {stage_id} | Status: {stage.status}")
    console.print_rule("─")
    console.print()

    if not stage.log_link:
        raise APIError(stage.self_link or stage_id, "no log available for this stage")

    if full:
        lines = client.get_full_stage_log(settings.pipeline, build_id, stage_id).split("\n")
    else:
        lines = client.get_stage_log(stage.log_link).lines

    if tail and tail < len(lines):
        lines = tail_lines(lines, tail)
        console.print_muted(f"(showing last {tail} lines)")
    elif head and head < len(lines):
        lines = head_lines(lines, head)
        console.print_muted(f"(showing first {head} lines)")

    for line in lines:
        console.print_info(line)


# ----------------------------------------------------------------------
# Triggering and monitoring
# ----------------------------------------------------------------------

def queue_build(ctx: click.Context, pipeline: str, params: Mapping[str, Any]) -> str:
    """
    Trigger a parameterized build.

    Returns:
        The queue item location

    Raises:
        QueueLocationError: If the response has no Location header
    """
    res = get_client(ctx).trigger_build(pipeline, params)
    get_console().debug(f"Response body [{res.text}]")
    location = res.header("Location")
    if not location:
        raise QueueLocationError(res.url, res.status)
    if not res.ok:
        raise APIError(res.url, "build trigger was rejected", status=res.status)
    return location


def resolve_build_number(ctx: click.Context, location: str) -> int:
    """Wait until the queued build is assigned a number."""
    number = wait_for_build_number(get_client(ctx), location, get_settings(ctx).poll_interval)
    if number is None:
        raise APIError(location, "queue item was never assigned a build number")
    return number


def spawn_monitor(ctx: click.Context, pipeline: str, build_ids: Sequence[str]) -> int:
    """Run ``monitor --bg`` as a separate process and wait for it."""
    args = monitor_args(pipeline, build_ids, ctx.obj.get("verbosity", 0))
    get_console().debug(f"Spawning monitor with args [{args}]")
    handle = get_launcher(ctx).spawn(args)
    return handle.wait()


@cli.command()
@click.argument("product")
@click.argument("branch")
@click.pass_context
@handle_errors
def build(ctx, product, branch):
    """
    Trigger a build of PRODUCT (rs, pra or their search names) from BRANCH.

    "origin/" is prepended to BRANCH when missing.
    """
    console = get_console()
    settings = get_settings(ctx)

    config = settings.product(product)
    if config is None:
        names = ", ".join(sorted(settings.products))
        raise ValidationError("product", product, f"must be one of: {names}")
    branch = normalize_branch(branch)

    console.debug(f"Triggering build for product [{config.search_name}] branch [{branch}]")
    params = {PRODUCT_PARAM: config.search_name, BRANCH_PARAM: branch}

    location = queue_build(ctx, settings.pipeline, params)
    console.print_info("Build queued successfully!")
    console.print_info(f"Product: {config.search_name}")
    console.print_info(f"Branch:  {branch}")
    console.print_info(f"Queue:   {location}")
    console.print()

    number = resolve_build_number(ctx, location)

    console.print_info(f"Build started: #{number}")
    console.print_info(f"Monitor with: jenkins monitor -b {number}")
    console.print_info(f"Diagnose with: jenkins diagnose {number}")
    code = spawn_monitor(ctx, settings.pipeline, [str(number)])
    if code:
        sys.exit(code)


@cli.command()
@click.argument("target")
@click.argument("subdomain")
@click.pass_context
@handle_errors
def push(ctx, target, subdomain):
    """
    Deploy a build to SUBDOMAIN with the build-site pipeline.

    TARGET is a build number, or a product alias (rs, pra) to push the
    latest build of origin/master.
    """
    console = get_console()
    settings = get_settings(ctx)
    client = get_client(ctx)

    build_number = target.lower()
    if build_number in settings.products:
        config = settings.products[build_number]
        build_number = client.get_latest_build(settings.pipeline, config.search_name, LATEST_PUSH_BRANCH).id
    elif not build_number.isdigit():
        raise ValidationError("build", target, "must be a build number or a product alias")

    console.print_info(f"Pushing [{build_number}] to [{subdomain}.{settings.deployment_domain}]")
    params = {
        "PROJECT_NAME": settings.pipeline,
        "BUILD_NUMBER": build_number,
        "SUBDOMAIN": subdomain,
    }
    number = resolve_build_number(ctx, queue_build(ctx, BUILD_SITE_PIPELINE, params))
    console.print_info(f"Build started: #{number}")

    code = spawn_monitor(ctx, BUILD_SITE_PIPELINE, [str(number)])
    if code:
        sys.exit(code)


@cli.command()
@click.option("-b", "--build", "build_ids", multiple=True, required=True, help="Build ID to monitor")
@click.option("--bg", is_flag=True, hidden=True)
@click.pass_context
@handle_errors
def monitor(ctx, build_ids, bg):
    """Wait for builds to finish and report each one as it does."""
    settings = get_settings(ctx)
    if not bg:
        code = spawn_monitor(ctx, settings.pipeline, build_ids)
        if code:
            sys.exit(code)
        return

    console = get_console()
    watcher = BuildMonitor(get_client(ctx), settings.pipeline, build_ids, settings.monitor_interval)
    watcher.run(
        lambda b: console.print_build_status(settings.pipeline, b.id, b.display_name, b.result, verb="monitor")
    )


@cli.command()
@click.option("-b", "--build", "build_ids", multiple=True, required=True, help="Build ID")
@click.pass_context
@handle_errors
def status(ctx, build_ids):
    """Print the result of one or more builds."""
    console = get_console()
    settings = get_settings(ctx)
    client = get_client(ctx)

    builds = [client.get_build_info(settings.pipeline, b) for b in build_ids]
    for b in sorted(builds, key=build_sort_key):
        console.print_build_status(settings.pipeline, b.id, b.display_name, b.result)


@cli.command()
@click.option("-r", "--rs", "product", flag_value="rs", help="Remote Support")
@click.option("-p", "--pra", "product", flag_value="pra", help="PRA")
@click.option("-b", "--branch", default="master", show_default=True, help="Branch")
@click.pass_context
@handle_errors
def latest(ctx, product, branch):
    """Print the latest build of a branch for a product."""
    if product is None:
        raise click.UsageError("one of --rs or --pra is required")
    console = get_console()
    settings = get_settings(ctx)
    config = settings.product(product)
    branch = normalize_branch(branch)

    try:
        run = get_client(ctx).get_latest_build(settings.pipeline, config.search_name, branch)
    except NoMatchingBuildError as e:
        raise NoMatchingBuildError(config.display_name, branch) from e
    console.print_banner(f"Latest build for {config.display_name} on branch [{branch}] is {run.id}")


@cli.command("open")
@click.argument("build_id")
@click.pass_context
@handle_errors
def open_build(ctx, build_id):
    """Open a build in your browser and print its URL."""
    url = get_client(ctx).build_url(get_settings(ctx).pipeline, build_id)
    get_console().print_info(url, style=INFO_BOLD)
    click.launch(url)

