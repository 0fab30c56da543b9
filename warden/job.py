from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from warden import lock
from warden.compiler import CallableCommand, Directive, ShellCommand, can_run_in_background, compile_job, to_command
from warden.config import EmailConfig, WardenConfig, parse_config
from warden.engine import ExecutionEngine
from warden.errors import ConfigError
from warden.schedule import IntervalMixin, Schedule, is_due, next_run_times

logger = logging.getLogger(__name__)
UTC = timezone.utc


def derive_job_id(command: Union[ShellCommand, CallableCommand]) -> str:
    """Identical shell commands share an id, and therefore a lock file."""
    if isinstance(command, ShellCommand):
        return hashlib.md5(command.text.encode("utf-8")).hexdigest()
    handle = command.handle
    name = f"{getattr(handle, '__module__', '')}.{getattr(handle, '__qualname__', type(handle).__name__)}"
    return hashlib.md5(f"{name}:{id(handle)}".encode("utf-8")).hexdigest()


class Job(IntervalMixin):
    """A command, its arguments, a cron schedule and the hooks around a run."""

    def __init__(
        self,
        command: Any,
        args: Optional[Mapping[str, Any]] = None,
        id: Optional[str] = None,
        config: Union[None, Mapping[str, Any], WardenConfig] = None,
        engine: Optional[ExecutionEngine] = None,
    ):
        self.command = to_command(command)
        self.args: Dict[str, Any] = dict(args or {})
        self.id = id if isinstance(id, str) else derive_job_id(self.command)
        self.created_at = datetime.now(tz=UTC)
        self.engine = engine or ExecutionEngine()

        self.schedule = Schedule()
        self.run_in_background = True
        self.truth_test = True

        self.scheduled_at: Optional[datetime] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

        self.lock_path: Optional[Path] = None
        self.when_overlapping: lock.OverlapPredicate = lock.never_override

        self.output: Optional[str] = None
        self.exit_code = 0
        self.output_sinks: List[str] = []
        self.output_mode = "w"
        self.email_recipients: List[str] = []

        self.before_hook: Optional[Callable[[], Any]] = None
        self.after_hook: Optional[Callable[[Optional[str], int], Any]] = None

        self._apply_config(parse_config(config))

    def __repr__(self) -> str:
        return f"<Job id={self.id!r} schedule={self.schedule.expression!r}>"

    def _apply_config(self, config: WardenConfig) -> None:
        self.config = config
        self.email_config: EmailConfig = config.email
        self.temp_dir = config.temp_dir
        self.timezone = config.timezone

    def configure(self, config: Union[None, Mapping[str, Any], WardenConfig] = None) -> "Job":
        self._apply_config(parse_config(config))
        return self

    def is_due(self, at: Optional[datetime] = None) -> bool:
        return is_due(self.schedule, at if at is not None else self.created_at, self.timezone)

    def next_run_times(self, count: int = 5, after: Optional[datetime] = None) -> List[datetime]:
        return next_run_times(self.schedule, count, after or datetime.now(tz=UTC), self.timezone)

    def is_overlapping(self) -> bool:
        return lock.is_overlapping(self.lock_path, self.when_overlapping)

    def in_foreground(self) -> "Job":
        self.run_in_background = False
        return self

    def can_run_in_background(self) -> bool:
        return can_run_in_background(self)

    def only_one(
        self,
        temp_dir: Union[None, str, Path] = None,
        when_overlapping: Optional[lock.OverlapPredicate] = None,
    ) -> "Job":
        """
        Prevent a new run while a previous one still holds the job's lock file.

        ``when_overlapping`` receives the lock file mtime (epoch seconds) and
        returns True to run anyway.
        """
        if self.lock_path is None:
            self.lock_path = lock.lock_path_for(self.id, temp_dir, self.temp_dir)
        else:
            logger.debug("Keeping lock file %s for job %s", self.lock_path, self.id)
        self.when_overlapping = when_overlapping or lock.never_override
        return self

    def compile(self) -> Directive:
        return compile_job(self)

    def when(self, fn: Callable[[], Any]) -> "Job":
        # Evaluated once, here, not at run time.
        self.truth_test = bool(fn())
        return self

    def run(self, run_time: Optional[datetime] = None) -> bool:
        return self.engine.run(self, run_time)

    def output_to(self, filename: Union[str, Path, List[Union[str, Path]]], append: bool = False) -> "Job":
        names = filename if isinstance(filename, list) else [filename]
        self.output_sinks = [str(name) for name in names]
        self.output_mode = "a" if append else "w"
        return self

    def email(self, email: Union[str, List[str]]) -> "Job":
        if isinstance(email, str):
            self.email_recipients = [email]
        elif isinstance(email, list) and all(isinstance(item, str) for item in email):
            self.email_recipients = list(email)
        else:
            raise ConfigError("Error: email can only be a string or a list of strings.")
        # The output has to exist before it can be mailed.
        return self.in_foreground()

    def before(self, fn: Callable[[], Any]) -> "Job":
        self.before_hook = fn
        return self

    def then(self, fn: Callable[[Optional[str], int], Any], run_in_background: bool = False) -> "Job":
        self.after_hook = fn
        if not run_in_background:
            self.in_foreground()
        return self


@dataclass(frozen=True)
class FailedJob:
    job: Job
    exception: BaseException
