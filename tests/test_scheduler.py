from __future__ import annotations

import dataclasses
import shlex
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

import pytest

from warden import ConfigError, FailedJob, Job, MissingResourceError, Scheduler
from warden.engine import ExecutionEngine

UTC = timezone.utc
RUN_TIME = datetime(2026, 6, 15, 10, 30, tzinfo=UTC)


def _spawner(directive: str) -> Tuple[List[str], int]:
    return [], 0


def _scheduler(tmp_path: Path, **config: object) -> Scheduler:
    merged = {"temp_dir": str(tmp_path), "timezone": "UTC"}
    merged.update(config)
    return Scheduler(merged, engine=ExecutionEngine(_spawner))


def test_due_job_runs_once_per_tick(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    calls: List[str] = []
    job = scheduler.call(lambda: calls.append("ran"))

    assert scheduler.run(RUN_TIME) == [job]
    assert calls == ["ran"]
    assert scheduler.get_executed_jobs() == [job]
    assert scheduler.get_failed_jobs() == []


def test_not_due_job_is_left_alone(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    calls: List[str] = []
    scheduler.call(lambda: calls.append("ran")).at("0 0 1 1 *")

    assert scheduler.run(RUN_TIME) == []
    assert calls == []
    assert scheduler.get_verbose_output("array") == []


def test_run_returns_only_this_ticks_jobs(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    job = scheduler.call(lambda: None)

    assert scheduler.run(RUN_TIME) == [job]
    assert scheduler.run(RUN_TIME) == [job]
    assert scheduler.get_executed_jobs() == [job, job]


def test_reset_run_keeps_queue(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    scheduler.call(lambda: None, id="a")
    scheduler.call(lambda: 1 / 0, id="b")
    scheduler.run(RUN_TIME)
    assert len(scheduler.get_executed_jobs()) == 1
    assert len(scheduler.get_failed_jobs()) == 1

    before = [job.id for job in scheduler.get_queued_jobs()]
    scheduler.reset_run()

    assert scheduler.get_executed_jobs() == []
    assert scheduler.get_failed_jobs() == []
    assert scheduler.get_verbose_output("array") == []
    assert [job.id for job in scheduler.get_queued_jobs()] == before == ["a", "b"]


def test_prioritise_is_a_stable_partition(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    fg_callable = scheduler.call(lambda: None, id="fg-callable")
    bg_one = scheduler.raw("echo one", id="bg-one")
    fg_shell = scheduler.raw("echo two", id="fg-shell").in_foreground()
    bg_two = scheduler.raw("echo three", id="bg-two")
    fg_mail = scheduler.raw("echo four", id="fg-mail").email("ops@example.com")

    ordered = scheduler.get_queued_jobs()
    assert ordered == [bg_one, bg_two, fg_callable, fg_shell, fg_mail]


def test_background_jobs_are_logged_first(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    foreground = scheduler.call(lambda: None, id="F")
    background = scheduler.raw("true", id="G")

    executed = scheduler.run(RUN_TIME)

    assert executed == [background, foreground]
    lines = scheduler.get_verbose_output("array")
    assert len(lines) == 2
    assert lines[0].endswith("Executing ( true ) > /dev/null 2>&1 &")
    assert lines[1].endswith("Executing Closure")
    assert lines[0].startswith("[2")


def test_failure_does_not_stop_the_tick(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    calls: List[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    failing = scheduler.call(broken, id="broken")
    healthy = scheduler.call(lambda: calls.append("ok"), id="healthy")

    assert scheduler.run(RUN_TIME) == [healthy]
    assert calls == ["ok"]

    failed = scheduler.get_failed_jobs()
    assert len(failed) == 1
    assert failed[0].job is failing
    assert isinstance(failed[0].exception, RuntimeError)
    assert scheduler.get_verbose_output("array")[0].endswith("boom: Closure")


def test_failed_shell_command_is_recorded(tmp_path: Path) -> None:
    scheduler = Scheduler({"temp_dir": str(tmp_path), "timezone": "UTC"})
    scheduler.raw("exit 3", id="exits").in_foreground()

    assert scheduler.run(RUN_TIME) == []
    failed = scheduler.get_failed_jobs()
    assert len(failed) == 1
    assert failed[0].exception.exit_code == 3
    assert "Command exited with code 3: exit 3" in scheduler.get_verbose_output("text")


def test_before_hook_failure_is_recorded(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    calls: List[str] = []

    def before() -> None:
        raise RuntimeError("db offline")

    job = scheduler.call(lambda: calls.append("body"), id="guarded").only_one().before(before)
    scheduler.run(RUN_TIME)

    assert calls == []
    assert not (tmp_path / "guarded.lock").exists()
    assert scheduler.get_executed_jobs() == []
    assert [failed.job for failed in scheduler.get_failed_jobs()] == [job]


def test_after_hook_failure_is_recorded(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)

    def after(output: str, code: int) -> None:
        raise RuntimeError("notify failed")

    job = scheduler.call(lambda: "done").then(after)
    scheduler.run(RUN_TIME)

    assert job.output == "done"
    assert scheduler.get_executed_jobs() == []
    assert scheduler.get_failed_jobs()[0].job is job


def test_overlapping_job_is_in_neither_list(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    scheduler.call(lambda: None, id="busy").only_one()
    (tmp_path / "busy.lock").write_text("busy", encoding="utf-8")

    assert scheduler.run(RUN_TIME) == []
    assert scheduler.get_executed_jobs() == []
    assert scheduler.get_failed_jobs() == []


def test_missing_script_fails_without_queueing(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    job = scheduler.script(tmp_path / "missing.py")

    assert scheduler.get_queued_jobs() == []
    failed = scheduler.get_failed_jobs()
    assert len(failed) == 1
    assert failed[0].job is job
    assert isinstance(failed[0].exception, MissingResourceError)


def test_script_runs_through_interpreter(tmp_path: Path) -> None:
    script = tmp_path / "task.py"
    script.write_text("print('ok')\n", encoding="utf-8")
    scheduler = _scheduler(tmp_path)

    job = scheduler.script(script, args={"--mode": "full"}).in_foreground()

    assert scheduler.get_queued_jobs() == [job]
    assert job.compile() == f"{shlex.quote(sys.executable)} {shlex.quote(str(script))} --mode full"


def test_config_is_propagated_to_jobs(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path, email={"subject": "Nightly"})
    job = scheduler.raw("echo hi", id="nightly").only_one()

    assert job.temp_dir == tmp_path
    assert job.lock_path == tmp_path / "nightly.lock"
    assert job.email_config.subject == "Nightly"


def test_invalid_email_config_rejected_at_construction() -> None:
    with pytest.raises(ConfigError, match="email configuration should be a mapping"):
        Scheduler({"email": "ops@example.com"})


def test_verbose_output_formats(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    scheduler.call(lambda: None)
    scheduler.call(lambda: None)
    scheduler.run(RUN_TIME)

    lines = scheduler.get_verbose_output("array")
    assert scheduler.get_verbose_output("text") == "\n".join(lines)
    assert scheduler.get_verbose_output() == "\n".join(lines)
    assert scheduler.get_verbose_output("html") == "<br>".join(lines)
    with pytest.raises(ConfigError, match="Invalid output type"):
        scheduler.get_verbose_output("xml")


def test_clear_jobs_empties_queue(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    scheduler.call(lambda: None)
    assert scheduler.clear_jobs().get_queued_jobs() == []


def test_failed_job_is_immutable(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    scheduler.call(lambda: 1 / 0)
    scheduler.run(RUN_TIME)
    failed = scheduler.get_failed_jobs()[0]

    assert isinstance(failed, FailedJob)
    with pytest.raises(dataclasses.FrozenInstanceError):
        failed.exception = RuntimeError("other")  # type: ignore[misc]


class _StopWorker(Exception):
    pass


def test_work_runs_scheduler_on_matching_second(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    scheduler = _scheduler(tmp_path)
    ticks: List[str] = []

    def fake_run(run_time: object = None) -> list:
        ticks.append("tick")
        raise _StopWorker()

    monkeypatch.setattr(scheduler, "run", fake_run)
    with pytest.raises(_StopWorker):
        scheduler.work(range(60))
    assert ticks == ["tick"]


def test_queue_job_applies_scheduler_config(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path, email={"subject": "Nightly"})
    job = scheduler.queue_job(Job("echo hi"))

    assert job.temp_dir == tmp_path
    assert job.email_config.subject == "Nightly"
    assert job.only_one().lock_path == tmp_path / f"{job.id}.lock"


def test_failing_locked_shell_job_is_recorded_as_failed(tmp_path: Path) -> None:
    scheduler = Scheduler({"temp_dir": str(tmp_path), "timezone": "UTC"})
    scheduler.raw("false", id="locked").in_foreground().only_one()
    scheduler.raw("exit 3", id="teed").output_to(str(tmp_path / "out.txt")).in_foreground()

    assert scheduler.run(RUN_TIME) == []
    assert [failed.job.id for failed in scheduler.get_failed_jobs()] == ["locked", "teed"]
    assert not (tmp_path / "locked.lock").exists()
