"""
Turns a job's configuration into the directive the engine dispatches.

A directive is either the job's callable, returned untouched, or a single
shell string with quoted arguments, output redirection, lock cleanup and
background detachment already folded in.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:  # pragma: no cover
    from warden.job import Job


@dataclass(frozen=True)
class ShellCommand:
    text: str


@dataclass(frozen=True)
class CallableCommand:
    handle: Callable[..., Any]


Command = Union[ShellCommand, CallableCommand]
Directive = Union[str, Callable[..., Any]]

STATUS_VAR = "warden_rc"


def to_command(command: Any) -> Command:
    if isinstance(command, (ShellCommand, CallableCommand)):
        return command
    if isinstance(command, str):
        return ShellCommand(command)
    if callable(command):
        return CallableCommand(command)
    raise TypeError(f"Job command must be a string or a callable, got {type(command).__name__}.")


def can_run_in_background(job: "Job") -> bool:
    if isinstance(job.command, CallableCommand):
        return False
    return job.run_in_background


def _tee(job: "Job") -> str:
    tee = ["tee"]
    if job.output_mode == "a":
        tee.append("-a")
    tee.extend(shlex.quote(str(sink)) for sink in job.output_sinks)
    return " ".join(tee)


def compile_job(job: "Job") -> Directive:
    command = job.command
    if isinstance(command, CallableCommand):
        return command.handle

    parts = [command.text]
    for flag, value in job.args.items():
        parts.append(shlex.quote(str(flag)))
        if value is not None:
            parts.append(shlex.quote(str(value)))
    compiled = " ".join(parts)

    if job.output_sinks or job.lock_path is not None:
        # The command runs in its own subshell so that an exit inside it still
        # reaches the cleanup step, and the script exits with its status.
        if job.output_sinks:
            # fd 3 carries the command's status out of the pipeline, fd 4 is
            # the real stdout for tee.
            compiled = (
                f"exec 4>&1; {STATUS_VAR}=$( {{ {{ ( {compiled} ); echo $? >&3; }}"
                f" | {_tee(job)} >&4; }} 3>&1 )"
            )
        else:
            compiled = f"( {compiled} ); {STATUS_VAR}=$?"

        # Detached processes are never awaited, so the command removes its own lock.
        if job.lock_path is not None:
            compiled = f"{compiled}; rm -f {shlex.quote(str(job.lock_path))}"

        compiled = f"{compiled}; exit ${STATUS_VAR}"

    if can_run_in_background(job):
        # The subshell groups the whole chain so it detaches as one unit.
        compiled = f"( {compiled} ) > /dev/null 2>&1 &"

    return compiled.strip()
