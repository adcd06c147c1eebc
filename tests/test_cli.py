# tests/test_cli.py
# Command-level tests: CliRunner against the local fake server.

import pytest
import yaml
from click.testing import CliRunner

from conftest import PIPELINE, build_info, failing_tree, job_json, node, register_tree
from jenkins_stages.cli import cli, summarize_timing
from jenkins_stages.api.models import Job

CLEAN_ENV = {
    "JENKINS_HOST": None,
    "JENKINS_USER": None,
    "JENKINS_KEY": None,
    "JENKINS_PIPELINE": None,
    "JENKINS_CONFIG": None,
}


class FakeHandle:
    def __init__(self, code):
        self.code = code

    def wait(self):
        return self.code


class FakeLauncher:
    """Records spawn requests instead of starting processes."""

    def __init__(self, code=0):
        self.code = code
        self.spawned = []

    def spawn(self, args):
        self.spawned.append(list(args))
        return FakeHandle(self.code)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "jenkins.yaml"
    path.write_text(yaml.safe_dump({"poll_interval": 0.01, "monitor_interval": 0.01}))
    return str(path)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def run(jenkins_server, config_path, launcher):
    """Invoke the CLI with connection flags pointing at the fake server."""

    def invoke(*args, obj=None):
        runner = CliRunner()
        base = ["--config", config_path, "--host", jenkins_server.url, "--user", "me", "--key", "s3cret"]
        return runner.invoke(cli, [*base, *args], obj=obj if obj is not None else {"launcher": launcher}, env=CLEAN_ENV)

    return invoke


def timing_runs():
    return [
        job_json("3", [node("1", "Checkout", duration=1000), node("2", "Compile", duration=60000)], status="SUCCESS"),
        job_json("2", [node("1", "Checkout", duration=3000), node("2", "Compile", duration=30000)], status="SUCCESS"),
        job_json("1", [node("1", "Checkout", duration=999999)], status="FAILED"),
    ]


class TestConfiguration:
    def test_missing_connection_settings(self, config_path):
        result = CliRunner().invoke(cli, ["--config", config_path, "status", "-b", "1"], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "Configuration error" in result.output
        assert "JENKINS_HOST" in result.output

    def test_bad_config_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("host: [oops")
        result = CliRunner().invoke(cli, ["--config", str(path), "status", "-b", "1"], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "jenkins" in result.output


class TestTiming:
    def test_summarize_only_successful_runs(self, console):
        jobs = [Job.from_dict(j) for j in timing_runs()]
        rows, successful = summarize_timing(jobs, console=console)

        assert successful == 2
        assert [r.name for r in rows] == ["Compile", "Checkout"]
        assert (rows[0].avg, rows[0].min, rows[0].max) == (45000.0, 30000, 60000)
        assert (rows[1].avg, rows[1].min, rows[1].max) == (2000.0, 1000, 3000)

    def test_filter_is_case_insensitive(self, console):
        jobs = [Job.from_dict(j) for j in timing_runs()]
        rows, _ = summarize_timing(jobs, ["COMP", "nothing"], console=console)
        assert [r.name for r in rows] == ["Compile"]

    def test_default_command(self, jenkins_server, run):
        jenkins_server.add("GET", f"/job/{PIPELINE}/wfapi/runs", timing_runs())
        result = run()

        assert result.exit_code == 0, result.output
        assert "Times for 2 stages across 2 successful jobs" in result.output
        assert "Compile" in result.output

    def test_no_matching_stages(self, jenkins_server, run):
        jenkins_server.add("GET", f"/job/{PIPELINE}/wfapi/runs", timing_runs())
        result = run("timing", "-f", "deploy")

        assert result.exit_code == 1
        assert "No matching, successful jobs found" in result.output


class TestFailed:
    def test_lists_failed_leaves(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        result = run("failed", "7")

        assert result.exit_code == 0, result.output
        assert "Failed stages in build 7:" in result.output
        assert "Build > Windows > Unit tests" in result.output
        assert "Duration: 00:04.500" in result.output
        assert "Total failed stages: 2" in result.output
        assert "jenkins stage-log 7 <stage_id>" in result.output

    def test_no_failures(self, jenkins_server, run):
        register_tree(jenkins_server, "8", [node("1", "Build")], job_status="SUCCESS")
        result = run("failed", "8", "--strategy", "sequential")

        assert result.exit_code == 0
        assert "No failed stages found" in result.output

    def test_malformed_branch_does_not_abort_report(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        jenkins_server.add("GET", f"/job/{PIPELINE}/7/execution/node/12/wfapi/describe", "null")
        result = run("failed", "7")

        assert result.exit_code == 0, result.output
        assert "Build > Windows > Unit tests" not in result.output
        assert "Total failed stages: 1" in result.output

    def test_malformed_build_is_reported_not_raised(self, jenkins_server, run):
        jenkins_server.add("GET", f"/job/{PIPELINE}/7/wfapi/describe", [])
        result = run("failed", "7")

        assert result.exit_code == 1
        assert "API error" in result.output
        assert "unexpected response shape" in result.output

    def test_unknown_build(self, run):
        result = run("failed", "404")
        assert result.exit_code == 1
        assert "Build not found" in result.output


class TestDiagnose:
    def test_report(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        jenkins_server.add("GET", f"/job/{PIPELINE}/7/api/json", build_info("7", "FAILURE"))

        result = run("diagnose", "7")

        assert result.exit_code == 0, result.output
        assert "BUILD DIAGNOSIS: master #7" in result.output
        assert "Status:   FAILURE" in result.output
        assert "Duration: 02:05.000" in result.output
        assert "log of Unit tests" in result.output
        assert "Build 7 had 2 failed stage(s)" in result.output
        assert "- Deploy (FAILED)" in result.output

    def test_long_logs_are_elided(self, jenkins_server, run):
        register_tree(jenkins_server, "7", [node("1", "Only", "FAILED")])
        jenkins_server.add("GET", f"/job/{PIPELINE}/7/api/json", build_info("7", "FAILURE"))
        text = "\n".join(f"row {i}" for i in range(100))
        jenkins_server.add(
            "GET",
            f"/job/{PIPELINE}/7/execution/node/1/wfapi/log",
            {"nodeId": "1", "nodeStatus": "FAILED", "text": text},
        )

        result = run("diagnose", "7", "-l", "10")

        assert "row 4" in result.output
        assert "row 5\n" not in result.output
        assert "(90 lines omitted)" in result.output
        assert "row 99" in result.output

    def test_all_stages(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        jenkins_server.add("GET", f"/job/{PIPELINE}/7/api/json", build_info("7", "FAILURE"))

        result = run("diagnose", "7", "--all")

        assert "log of Docs" in result.output
        assert "✓ SUCCESS" in result.output


class TestStageLog:
    def test_tail(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        result = run("stage-log", "7", "14", "--tail", "1")

        assert result.exit_code == 0, result.output
        assert "Stage: Unit tests" in result.output
        assert "(showing last 1 lines)" in result.output
        assert "line 2" in result.output
        assert "log of Unit tests" not in result.output

    def test_full_log(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        jenkins_server.add(
            "GET",
            f"/job/{PIPELINE}/7/execution/node/14/log/",
            '<pre class="console-output">full &amp; complete</pre>',
        )
        result = run("stage-log", "7", "14", "--full")

        assert result.exit_code == 0, result.output
        assert "full & complete" in result.output

    def test_missing_stage(self, jenkins_server, run):
        register_tree(jenkins_server, "7", failing_tree())
        result = run("stage-log", "7", "999")

        assert result.exit_code == 1
        assert "stage 999 not found in build 7" in result.output


class TestBuild:
    def test_trigger_resolve_and_monitor(self, jenkins_server, run, launcher):
        jenkins_server.add(
            "POST",
            f"/job/{PIPELINE}/buildWithParameters",
            status=201,
            headers={"Location": "/queue/item/42/"},
        )
        jenkins_server.add_sequence("GET", "/queue/item/42/", [
            (200, {"id": 42, "why": "Waiting for next available executor"}, {}),
            (200, {"id": 42, "executable": {"number": 555}}, {}),
        ])

        result = run("build", "rs", "feature/x")

        assert result.exit_code == 0, result.output
        assert "Build started: #555" in result.output
        assert "Monitor with: jenkins monitor -b 555" in result.output
        post = jenkins_server.calls("POST", f"/job/{PIPELINE}/buildWithParameters")[0]
        assert post.body == b"PRODUCT=ingredi&TRYMAX_BRANCH=origin%2Ffeature%2Fx"
        assert launcher.spawned == [["--pipeline", PIPELINE, "monitor", "--bg", "-b", "555"]]

    def test_branch_already_prefixed(self, jenkins_server, run):
        jenkins_server.add(
            "POST",
            f"/job/{PIPELINE}/buildWithParameters",
            status=201,
            headers={"Location": "/queue/item/43/"},
        )
        jenkins_server.add("GET", "/queue/item/43/", {"executable": {"number": 1}})

        run("build", "bpam", "origin/main")

        post = jenkins_server.calls("POST", f"/job/{PIPELINE}/buildWithParameters")[0]
        assert post.body == b"PRODUCT=bpam&TRYMAX_BRANCH=origin%2Fmain"

    def test_no_queue_location(self, jenkins_server, run, launcher):
        jenkins_server.add("POST", f"/job/{PIPELINE}/buildWithParameters", status=201)
        result = run("build", "pra", "main")

        assert result.exit_code == 1
        assert "no queue location" in result.output
        assert launcher.spawned == []

    def test_invalid_product(self, jenkins_server, run):
        result = run("build", "nope", "main")

        assert result.exit_code == 1
        assert "Invalid input" in result.output
        assert not jenkins_server.calls("POST", f"/job/{PIPELINE}/buildWithParameters")

    def test_monitor_exit_code_propagates(self, jenkins_server, run):
        jenkins_server.add(
            "POST",
            f"/job/{PIPELINE}/buildWithParameters",
            status=201,
            headers={"Location": "/queue/item/44/"},
        )
        jenkins_server.add("GET", "/queue/item/44/", {"executable": {"number": 2}})

        result = run("build", "rs", "main", obj={"launcher": FakeLauncher(code=3)})

        assert result.exit_code == 3


class TestPush:
    def test_push_latest_for_alias(self, jenkins_server, run, launcher):
        jenkins_server.add("GET", f"/job/{PIPELINE}/api/json", {"builds": [
            {"id": "101", "actions": [{"parameters": [
                {"name": "PRODUCT", "value": "ingredi"},
                {"name": "TRYMAX_BRANCH", "value": "origin/master"},
            ]}]},
        ]})
        jenkins_server.add(
            "POST",
            "/job/build-site/buildWithParameters",
            status=201,
            headers={"Location": "/queue/item/50/"},
        )
        jenkins_server.add("GET", "/queue/item/50/", {"executable": {"number": 77}})

        result = run("push", "rs", "qa1")

        assert result.exit_code == 0, result.output
        assert "Pushing [101] to [qa1.dev.bomgar.com]" in result.output
        post = jenkins_server.calls("POST", "/job/build-site/buildWithParameters")[0]
        assert post.body == b"PROJECT_NAME=master&BUILD_NUMBER=101&SUBDOMAIN=qa1"
        assert launcher.spawned == [["--pipeline", "build-site", "monitor", "--bg", "-b", "77"]]

    def test_push_rejects_garbage(self, run):
        result = run("push", "latest-ish", "qa1")
        assert result.exit_code == 1
        assert "Invalid input" in result.output


class TestStatusAndMonitor:
    def test_status_sorted_by_id(self, jenkins_server, run):
        jenkins_server.add("GET", f"/job/{PIPELINE}/10/api/json", build_info("10", "FAILURE"))
        jenkins_server.add("GET", f"/job/{PIPELINE}/9/api/json", build_info("9", "SUCCESS"))

        result = run("status", "-b", "10", "-b", "9")

        assert result.exit_code == 0, result.output
        lines = [l for l in result.output.splitlines() if "The status for" in l]
        assert lines == [
            "9: The status for [#9] on branch [master] is [SUCCESS]",
            "10: The status for [#10] on branch [master] is [FAILURE]",
        ]

    def test_monitor_in_background_mode(self, jenkins_server, run):
        jenkins_server.add_sequence("GET", f"/job/{PIPELINE}/5/api/json", [
            (200, build_info("5", None, building=True), {}),
            (200, build_info("5", "SUCCESS"), {}),
        ])

        result = run("monitor", "--bg", "-b", "5")

        assert result.exit_code == 0, result.output
        assert result.output.count("5: The monitor for [#5] on branch [master] is [SUCCESS]") == 1

    def test_monitor_spawns_background_copy(self, run, launcher):
        result = run("-v", "monitor", "-b", "5", "-b", "6")

        assert result.exit_code == 0, result.output
        assert launcher.spawned == [["-v", "--pipeline", PIPELINE, "monitor", "--bg", "-b", "5", "-b", "6"]]


class TestLatestAndOpen:
    builds = {"builds": [
        {"id": "201", "actions": [{"parameters": [
            {"name": "PRODUCT", "value": "bpam"},
            {"name": "TRYMAX_BRANCH", "value": "origin/release"},
        ]}]},
    ]}

    def test_latest(self, jenkins_server, run):
        jenkins_server.add("GET", f"/job/{PIPELINE}/api/json", self.builds)
        result = run("latest", "--pra", "-b", "release")

        assert result.exit_code == 0, result.output
        assert "Latest build for PRA on branch [origin/release] is 201" in result.output

    def test_latest_no_match(self, jenkins_server, run):
        jenkins_server.add("GET", f"/job/{PIPELINE}/api/json", self.builds)
        result = run("latest", "--rs")

        assert result.exit_code == 1
        assert "no build found for RS" in result.output

    def test_latest_requires_product(self, run):
        result = run("latest")
        assert result.exit_code == 2

    def test_open(self, jenkins_server, run, monkeypatch):
        opened = []
        monkeypatch.setattr("click.launch", lambda url: opened.append(url))

        result = run("open", "42")

        expected = f"{jenkins_server.url}/job/{PIPELINE}/42/flowGraphTable"
        assert result.exit_code == 0, result.output
        assert expected in result.output
        assert opened == [expected]


class TestStagesBrowser:
    def test_drill_down_to_log(self, jenkins_server, launcher, config_path):
        register_tree(jenkins_server, "7", failing_tree())
        jenkins_server.add("GET", f"/job/{PIPELINE}/wfapi/runs", [job_json("7", failing_tree())])

        result = CliRunner().invoke(
            cli,
            ["--config", config_path, "--host", jenkins_server.url, "--user", "me", "--key", "k", "stages"],
            input="7\n10\n12\n14\nq\n",
            env=CLEAN_ENV,
            obj={"launcher": launcher},
        )

        assert result.exit_code == 0, result.output
        assert "Windows" in result.output
        assert "log of Unit tests" in result.output

    def test_sort_filter_and_back(self, jenkins_server, launcher, config_path):
        register_tree(jenkins_server, "7", failing_tree())
        jenkins_server.add("GET", f"/job/{PIPELINE}/wfapi/runs", [job_json("7", failing_tree())])

        result = CliRunner().invoke(
            cli,
            ["--config", config_path, "--host", jenkins_server.url, "--user", "me", "--key", "k", "stages", "7"],
            input="n\nf\ndoc\nc\nbogus\nb\nb\n",
            env=CLEAN_ENV,
            obj={"launcher": launcher},
        )

        assert result.exit_code == 0, result.output
        assert "filter: doc" in result.output
        assert "no entry with ID bogus" in result.output

    def test_vanished_run_keeps_browser_open(self, jenkins_server, launcher, config_path):
        """A run listed but gone by the time it is opened prints an error and stays on the list."""
        jenkins_server.add("GET", f"/job/{PIPELINE}/wfapi/runs", [job_json("7", failing_tree())])

        result = CliRunner().invoke(
            cli,
            ["--config", config_path, "--host", jenkins_server.url, "--user", "me", "--key", "k", "stages"],
            input="7\nq\n",
            env=CLEAN_ENV,
            obj={"launcher": launcher},
        )

        assert result.exit_code == 0, result.output
        assert "Build not found" in result.output
