"""
warden: an in-process cron job scheduler.

Queue shell commands, scripts or Python callables on a Scheduler, give each a
cron schedule, and call ``Scheduler.run()`` once a minute (or ``work()``).
"""

from warden.config import EmailConfig, WardenConfig
from warden.errors import ConfigError, ExecutionError, MissingResourceError, WardenError
from warden.job import FailedJob, Job
from warden.scheduler import Scheduler

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "EmailConfig",
    "ExecutionError",
    "FailedJob",
    "Job",
    "MissingResourceError",
    "Scheduler",
    "WardenConfig",
    "WardenError",
]
