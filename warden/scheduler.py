"""
The job queue and the per-tick dispatch loop.

Jobs run strictly one after another. Background-eligible shell jobs are
dispatched first because they return immediately; foreground jobs block the
loop until they finish. A failure in one job is recorded and the loop moves on.
"""

from __future__ import annotations

import logging
import shlex
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from warden.config import WardenConfig, parse_config
from warden.engine import ExecutionEngine
from warden.errors import ConfigError, MissingResourceError
from warden.job import FailedJob, Job

logger = logging.getLogger(__name__)
UTC = timezone.utc

VERBOSE_FORMATS = ("text", "html", "array")
WORK_POLL_SECONDS = 0.1


class Scheduler:
    def __init__(
        self,
        config: Union[None, Mapping[str, Any], WardenConfig] = None,
        engine: Optional[ExecutionEngine] = None,
    ):
        self.config = parse_config(config)
        self.engine = engine or ExecutionEngine()
        self._jobs: List[Job] = []
        self._executed_jobs: List[Job] = []
        self._failed_jobs: List[FailedJob] = []
        self._verbose_output: List[str] = []

    def queue_job(self, job: Job) -> Job:
        job.configure(self.config)
        self._jobs.append(job)
        logger.debug("Queued job %s (%s)", job.id, job.schedule.expression)
        return job

    def _prioritise_jobs(self) -> List[Job]:
        background: List[Job] = []
        foreground: List[Job] = []
        for job in self._jobs:
            if job.can_run_in_background():
                background.append(job)
            else:
                foreground.append(job)
        return background + foreground

    def get_queued_jobs(self) -> List[Job]:
        return self._prioritise_jobs()

    def _new_job(self, command: Any, args: Optional[Mapping[str, Any]], id: Optional[str]) -> Job:
        return Job(command, args, id, config=self.config, engine=self.engine)

    def call(self, fn: Callable[..., Any], args: Optional[Mapping[str, Any]] = None, id: Optional[str] = None) -> Job:
        """Queue a Python callable; ``args`` are passed as keyword arguments."""
        return self.queue_job(self._new_job(fn, args, id))

    def raw(self, command: str, args: Optional[Mapping[str, Any]] = None, id: Optional[str] = None) -> Job:
        """Queue a raw shell command; ``args`` are appended as quoted flags."""
        return self.queue_job(self._new_job(command, args, id))

    def script(
        self,
        script: Union[str, Path],
        interpreter: Optional[str] = None,
        args: Optional[Mapping[str, Any]] = None,
        id: Optional[str] = None,
    ) -> Job:
        """
        Queue a script run through an interpreter (the current Python by default).

        A missing script is recorded as failed straight away and never queued.
        """
        if not (isinstance(interpreter, str) and Path(interpreter).exists()):
            interpreter = sys.executable
        job = self._new_job(f"{shlex.quote(interpreter)} {shlex.quote(str(script))}", args, id)

        if not Path(script).is_file():
            self._push_failed_job(job, MissingResourceError("The script should be a valid path to a file."))
            return job

        return self.queue_job(job)

    def run(self, run_time: Optional[datetime] = None) -> List[Job]:
        """Run every due job once and return the ones executed in this tick."""
        run_time = run_time or datetime.now(tz=UTC)
        executed: List[Job] = []

        for job in self._prioritise_jobs():
            if not job.is_due(run_time):
                continue
            try:
                ran = job.run(run_time)
            except Exception as exc:
                self._push_failed_job(job, exc)
                continue
            if ran:
                self._push_executed_job(job)
                executed.append(job)

        return executed

    def reset_run(self) -> "Scheduler":
        """Forget the results of previous runs; the queued jobs are kept."""
        self._executed_jobs = []
        self._failed_jobs = []
        self._verbose_output = []
        return self

    def _add_verbose_output(self, message: str) -> None:
        stamp = datetime.now(tz=UTC).astimezone(self.config.timezone).isoformat(timespec="seconds")
        self._verbose_output.append(f"[{stamp}] {message}")

    @staticmethod
    def _describe(job: Job) -> str:
        compiled = job.compile()
        return "Closure" if callable(compiled) else compiled

    def _push_executed_job(self, job: Job) -> None:
        self._executed_jobs.append(job)
        message = f"Executing {self._describe(job)}"
        self._add_verbose_output(message)
        logger.info(message)

    def get_executed_jobs(self) -> List[Job]:
        return list(self._executed_jobs)

    def _push_failed_job(self, job: Job, exc: BaseException) -> None:
        self._failed_jobs.append(FailedJob(job, exc))
        message = f"{exc}: {self._describe(job)}"
        self._add_verbose_output(message)
        logger.error("Job %s failed: %s", job.id, message)

    def get_failed_jobs(self) -> List[FailedJob]:
        return list(self._failed_jobs)

    def get_verbose_output(self, fmt: str = "text") -> Union[str, List[str]]:
        if fmt == "text":
            return "\n".join(self._verbose_output)
        if fmt == "html":
            return "<br>".join(self._verbose_output)
        if fmt == "array":
            return list(self._verbose_output)
        raise ConfigError(f'Error: Invalid output type "{fmt}", expected one of {list(VERBOSE_FORMATS)}.')

    def clear_jobs(self) -> "Scheduler":
        self._jobs = []
        return self

    def work(self, seconds: Iterable[int] = (0,)) -> None:
        """Block forever, running the scheduler whenever the clock hits one of ``seconds``."""
        targets = {int(second) for second in seconds}
        logger.info("Starting worker at second(s) %s of every minute", sorted(targets))
        while True:
            if datetime.now().second in targets:
                self.run()
                # stay clear of the second that just fired
                time.sleep(1)
            else:
                time.sleep(WORK_POLL_SECONDS)
