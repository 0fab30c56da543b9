"""
Runs a single job: gates, lock handling, hooks, dispatch and finalisation.

Errors raised by hooks or by the job body are never swallowed here; the
scheduler is the one place that turns them into failed-job records.
"""

from __future__ import annotations

import inspect
import io
import logging
import subprocess
from contextlib import redirect_stdout
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple

from warden import lock
from warden.compiler import CallableCommand, compile_job
from warden.errors import ExecutionError
from warden.mailer import send_output

if TYPE_CHECKING:  # pragma: no cover
    from warden.job import Job

logger = logging.getLogger(__name__)
UTC = timezone.utc

Spawner = Callable[[str], Tuple[List[str], int]]
OUTPUT_KEYWORD = "output"


def spawn(directive: str) -> Tuple[List[str], int]:
    """Run a shell directive and block until the shell itself returns."""
    result = subprocess.run(
        directive,
        shell=True,
        capture_output=True,
        text=True,
        check=False,
    )
    return (result.stdout or "").splitlines(), result.returncode


class OutputBuffer(io.StringIO):
    """
    Collects a callable job's output.

    A callable that declares an ``output`` parameter is handed the buffer and
    can write to it directly; anything printed to stdout lands in it as well.
    """


def _accepts_output(handle: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(handle).parameters
    except (TypeError, ValueError):
        return False
    param = params.get(OUTPUT_KEYWORD)
    return param is not None and param.kind in (
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
        inspect.Parameter.KEYWORD_ONLY,
    )


def _now() -> datetime:
    return datetime.now(tz=UTC)


class ExecutionEngine:
    def __init__(self, spawner: Optional[Spawner] = None):
        self.spawner = spawner or spawn

    def run(self, job: "Job", reference_time: Optional[datetime] = None) -> bool:
        reference_time = reference_time or _now()

        if job.truth_test is not True:
            logger.info("Skipping %s: truth test is false.", job.id)
            return False

        if lock.is_overlapping(job.lock_path, job.when_overlapping):
            logger.info("Skipping %s: previous run still holds %s.", job.id, job.lock_path)
            return False

        job.scheduled_at = reference_time
        directive = compile_job(job)

        lock.create_lock(job.lock_path, job.id)

        if job.before_hook is not None:
            try:
                job.before_hook()
            except Exception:
                lock.remove_lock(job.lock_path)
                raise

        job.started_at = _now()
        logger.info("Starting job %s", job.id)
        try:
            if isinstance(job.command, CallableCommand):
                job.output = self._invoke(job, directive)
                job.exit_code = 0
            else:
                self._execute(job, directive)
        finally:
            job.finished_at = _now()

        logger.info(
            "Job %s finished in %.2fs",
            job.id,
            (job.finished_at - job.started_at).total_seconds(),
        )
        self.finalise(job)
        return True

    def _invoke(self, job: "Job", handle: Callable[..., Any]) -> str:
        buffer = OutputBuffer()
        kwargs = dict(job.args)
        if OUTPUT_KEYWORD not in kwargs and _accepts_output(handle):
            kwargs[OUTPUT_KEYWORD] = buffer

        try:
            # Callables that do not take the buffer still have their prints captured.
            with redirect_stdout(buffer):
                returned = handle(**kwargs)

            captured = buffer.getvalue()
            if returned is not None:
                captured += str(returned)

            for sink in job.output_sinks:
                with open(sink, job.output_mode, encoding="utf-8") as handle_out:
                    handle_out.write(captured)
        finally:
            lock.remove_lock(job.lock_path)
        return captured

    def _execute(self, job: "Job", directive: str) -> None:
        detached = job.can_run_in_background()
        try:
            lines, exit_code = self.spawner(directive)
        except Exception:
            lock.remove_lock(job.lock_path)
            raise
        if not detached:
            lock.remove_lock(job.lock_path)

        job.output = "\n".join(lines)
        job.exit_code = exit_code

        if detached:
            logger.info("Job %s detached to the background.", job.id)
            return
        if exit_code != 0:
            raise ExecutionError(f"Command exited with code {exit_code}", exit_code, job.output)

    def finalise(self, job: "Job") -> None:
        self.email_output(job)

        if job.after_hook is not None:
            job.after_hook(job.output, job.exit_code)

    def email_output(self, job: "Job") -> bool:
        if not job.output_sinks or not job.email_recipients:
            return False

        if job.email_config.ignore_empty_output and not job.output:
            logger.info("Not emailing %s: output is empty.", job.id)
            return False

        return send_output(job.output_sinks, job.email_recipients, job.email_config)
