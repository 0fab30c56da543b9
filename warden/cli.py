"""
Command line driver: load a YAML jobs file and run, preview or work it.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from warden.config import JobDefinition, WardenConfig, load_jobs_file
from warden.errors import WardenError
from warden.job import Job
from warden.schedule import Schedule
from warden.scheduler import Scheduler

LOG_FILE = "warden.log"
DEFAULT_CONFIG = "warden.yaml"
DEFAULT_PREVIEW_COUNT = 5

logger = logging.getLogger("warden")


def setup_logging(log_file: str = LOG_FILE) -> logging.Logger:
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    return logger


def _register(scheduler: Scheduler, definition: JobDefinition) -> Job:
    if definition.script is not None:
        job = scheduler.script(definition.script, definition.interpreter, definition.args, definition.id)
    else:
        job = scheduler.raw(definition.command or "", definition.args, definition.id)

    job.schedule = Schedule(definition.schedule, definition.year)
    if definition.output:
        job.output_to(definition.output, append=definition.append)
    if definition.only_one:
        job.only_one(definition.lock_dir)
    if definition.email:
        job.email(definition.email)
    if definition.foreground:
        job.in_foreground()
    return job


def build_scheduler(config: WardenConfig, definitions: List[JobDefinition]) -> Scheduler:
    scheduler = Scheduler(config)
    for definition in definitions:
        _register(scheduler, definition)
    return scheduler


def command_validate(config_path: Path) -> int:
    config, definitions = load_jobs_file(config_path)
    print(f"Config valid: {config_path}")
    print(f"Total jobs: {len(definitions)}")
    print(f"Timezone: {config.timezone.key}")
    for definition in definitions:
        year = f" (year {definition.year})" if definition.year else ""
        print(f"- {definition.label}: {definition.schedule}{year}")
    return 0


def command_preview(config_path: Path, job_id: Optional[str], count: int) -> int:
    config, definitions = load_jobs_file(config_path)
    scheduler = build_scheduler(config, definitions)
    jobs = scheduler.get_queued_jobs()
    if job_id:
        jobs = [job for job in jobs if job.id == job_id]
        if not jobs:
            raise WardenError(f'Unknown job "{job_id}".')

    for job in jobs:
        print("=" * 80)
        print(f"Job: {job.id}")
        print(f"Schedule: {job.schedule.expression}" + (f" (year {job.schedule.year})" if job.schedule.year else ""))
        print(f"Background: {job.can_run_in_background()}")
        print(f"Command: {job.compile()}")
        print(f"Next {count} run(s):")
        runs = job.next_run_times(count)
        if not runs:
            print("- none")
        for run_dt in runs:
            print(f"- {run_dt.isoformat()}")
    print("=" * 80)
    return 0


def command_run(config_path: Path) -> int:
    config, definitions = load_jobs_file(config_path)
    scheduler = build_scheduler(config, definitions)
    scheduler.run()
    verbose = scheduler.get_verbose_output("text")
    if verbose:
        print(verbose)
    return 1 if scheduler.get_failed_jobs() else 0


def command_work(config_path: Path, seconds: List[int]) -> int:
    config, definitions = load_jobs_file(config_path)
    scheduler = build_scheduler(config, definitions)
    try:
        scheduler.work(seconds)
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user.")
        return 130
    return 0


def _second(value: str) -> int:
    second = int(value)
    if not 0 <= second <= 59:
        raise argparse.ArgumentTypeError(f"second must be between 0 and 59, got {second}")
    return second


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="warden cron job scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to the YAML jobs file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--log-file", default=LOG_FILE, help=f"Log file (default: {LOG_FILE})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Validate the jobs file")

    preview_parser = subparsers.add_parser("preview", help="Show the next run times")
    preview_parser.add_argument("--job", help="Preview a single job by id")
    preview_parser.add_argument("--count", type=int, default=DEFAULT_PREVIEW_COUNT, help="Next run count")

    subparsers.add_parser("run", help="Run every due job once")

    work_parser = subparsers.add_parser("work", help="Run the scheduler in a blocking loop")
    work_parser.add_argument(
        "--seconds",
        type=_second,
        nargs="+",
        default=[0],
        help="Second(s) of each minute at which to run (default: 0)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file)
    config_path = Path(args.config).resolve()

    try:
        if args.command == "validate":
            return command_validate(config_path)
        if args.command == "preview":
            if args.count <= 0:
                raise WardenError("--count must be >= 1")
            return command_preview(config_path, job_id=args.job, count=args.count)
        if args.command == "run":
            return command_run(config_path)
        if args.command == "work":
            return command_work(config_path, seconds=args.seconds)
        raise WardenError(f"Unsupported command: {args.command}")
    except WardenError as exc:
        logger.error(str(exc))
        return 1
    except Exception as exc:  # pragma: no cover - defensive
        logger.exception("Unexpected error: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
