"""
Scheduler configuration and the YAML jobs file.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from warden.errors import ConfigError
from warden.schedule import DEFAULT_EXPRESSION, validate_expression

DEFAULT_SUBJECT = "Cronjob execution"
DEFAULT_SENDER = "cronjob@server.my"
DEFAULT_BODY = "Cronjob output attached"
DEFAULT_SMTP_HOST = "localhost"
DEFAULT_SMTP_PORT = 25

EMAIL_KEYS = {
    "subject",
    "from",
    "body",
    "ignore_empty_output",
    "host",
    "port",
    "username",
    "password",
    "use_ssl",
    "transport",
}
CONFIG_KEYS = {"email", "temp_dir", "timezone"}
JOB_KEYS = {
    "id",
    "command",
    "script",
    "interpreter",
    "args",
    "schedule",
    "year",
    "only_one",
    "output",
    "append",
    "email",
    "foreground",
}


@dataclass(frozen=True)
class EmailConfig:
    subject: str = DEFAULT_SUBJECT
    sender: str = DEFAULT_SENDER
    body: str = DEFAULT_BODY
    ignore_empty_output: bool = False
    host: str = DEFAULT_SMTP_HOST
    port: int = DEFAULT_SMTP_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    use_ssl: bool = False
    # any object exposing send(files, recipients, config) -> bool
    transport: Any = None


@dataclass(frozen=True)
class WardenConfig:
    email: EmailConfig = field(default_factory=EmailConfig)
    temp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    timezone: ZoneInfo = field(default_factory=lambda: system_timezone()[0])


@dataclass(frozen=True)
class JobDefinition:
    id: Optional[str]
    command: Optional[str]
    script: Optional[str]
    interpreter: Optional[str]
    args: Dict[str, Optional[str]]
    schedule: str
    year: Optional[str]
    only_one: bool
    lock_dir: Optional[str]
    output: List[str]
    append: bool
    email: List[str]
    foreground: bool

    @property
    def label(self) -> str:
        return self.id or self.command or self.script or "<unnamed>"


def system_timezone() -> Tuple[ZoneInfo, str]:
    local_tz = datetime.now().astimezone().tzinfo
    if isinstance(local_tz, ZoneInfo):
        return local_tz, local_tz.key
    tz_name = os.environ.get("TZ")
    if tz_name:
        try:
            zone = ZoneInfo(tz_name)
            return zone, tz_name
        except ZoneInfoNotFoundError:
            pass
    return ZoneInfo("UTC"), "UTC"


def parse_timezone(name: Any, field_path: str) -> ZoneInfo:
    if isinstance(name, ZoneInfo):
        return name
    try:
        return ZoneInfo(ensure_str(name, field_path))
    except ZoneInfoNotFoundError as exc:
        raise ConfigError(f'Error: Invalid timezone "{name}" at {field_path}.') from exc


def ensure_bool(value: Any, field_path: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be true or false.")
    return value


def ensure_int(value: Any, field_path: str, default: int, minimum: int = 1) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Error: {field_path} must be an integer.")
    if value < minimum:
        raise ConfigError(f"Error: {field_path} must be >= {minimum}.")
    return value


def ensure_str(value: Any, field_path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Error: {field_path} must be a non-empty string.")
    return value.strip()


def ensure_str_list(value: Any, field_path: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [ensure_str(value, field_path)]
    if not isinstance(value, list):
        raise ConfigError(f"Error: {field_path} must be a string or a list of strings.")
    return [ensure_str(item, f"{field_path}[{idx}]") for idx, item in enumerate(value)]


def _reject_unknown(raw: Mapping[str, Any], allowed: set, field_path: str) -> None:
    unknown = sorted(str(key) for key in raw if key not in allowed)
    if unknown:
        raise ConfigError(f"Error: Unknown key(s) {unknown} at {field_path}.")


def parse_email_config(raw: Any, field_path: str = "email") -> EmailConfig:
    if raw is None:
        return EmailConfig()
    if isinstance(raw, EmailConfig):
        return raw
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Error: {field_path} configuration should be a mapping.")
    _reject_unknown(raw, EMAIL_KEYS, field_path)

    username = raw.get("username")
    password = raw.get("password")
    return EmailConfig(
        subject=ensure_str(raw.get("subject", DEFAULT_SUBJECT), f"{field_path}.subject"),
        sender=ensure_str(raw.get("from", DEFAULT_SENDER), f"{field_path}.from"),
        body=ensure_str(raw.get("body", DEFAULT_BODY), f"{field_path}.body"),
        ignore_empty_output=ensure_bool(
            raw.get("ignore_empty_output"), f"{field_path}.ignore_empty_output", False
        ),
        host=ensure_str(raw.get("host", DEFAULT_SMTP_HOST), f"{field_path}.host"),
        port=ensure_int(raw.get("port"), f"{field_path}.port", DEFAULT_SMTP_PORT),
        username=ensure_str(username, f"{field_path}.username") if username is not None else None,
        password=str(password) if password is not None else None,
        use_ssl=ensure_bool(raw.get("use_ssl"), f"{field_path}.use_ssl", False),
        transport=raw.get("transport"),
    )


def parse_config(raw: Union[None, Mapping[str, Any], WardenConfig] = None) -> WardenConfig:
    if raw is None:
        return WardenConfig()
    if isinstance(raw, WardenConfig):
        return raw
    if not isinstance(raw, Mapping):
        raise ConfigError("Error: configuration should be a mapping.")
    _reject_unknown(raw, CONFIG_KEYS, "config")

    email = parse_email_config(raw.get("email"))

    # An invalid temp_dir silently falls back to the system default.
    temp_dir = raw.get("temp_dir")
    if temp_dir is not None and Path(str(temp_dir)).is_dir():
        resolved_temp = Path(str(temp_dir))
    else:
        resolved_temp = Path(tempfile.gettempdir())

    if raw.get("timezone") is not None:
        tz = parse_timezone(raw["timezone"], "config.timezone")
    else:
        tz = system_timezone()[0]

    return WardenConfig(email=email, temp_dir=resolved_temp, timezone=tz)


def _parse_args(raw: Any, field_path: str) -> Dict[str, Optional[str]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Error: {field_path} must be a mapping of flag to value.")
    out: Dict[str, Optional[str]] = {}
    for key, value in raw.items():
        flag = ensure_str(key, f"{field_path} key")
        if value is not None and not isinstance(value, (str, int, float)):
            raise ConfigError(f"Error: {field_path}.{flag} must be a scalar or null.")
        out[flag] = None if value is None else str(value)
    return out


def parse_job_definition(raw: Any, field_path: str) -> JobDefinition:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Error: {field_path} must be a mapping.")
    _reject_unknown(raw, JOB_KEYS, field_path)

    command = raw.get("command")
    script = raw.get("script")
    if (command is None) == (script is None):
        raise ConfigError(f'Error: {field_path} requires exactly one of "command" or "script".')

    only_one = raw.get("only_one")
    lock_dir: Optional[str] = None
    if isinstance(only_one, Mapping):
        lock_dir = ensure_str(only_one.get("dir"), f"{field_path}.only_one.dir")
        only_one = True

    year = raw.get("year")
    if year is not None:
        year = str(year).strip()
        if not (len(year) == 4 and year.isdigit()):
            raise ConfigError(f'Error: {field_path}.year must be a four digit year, got "{year}".')

    return JobDefinition(
        id=ensure_str(raw["id"], f"{field_path}.id") if raw.get("id") is not None else None,
        command=ensure_str(command, f"{field_path}.command") if command is not None else None,
        script=ensure_str(script, f"{field_path}.script") if script is not None else None,
        interpreter=(
            ensure_str(raw["interpreter"], f"{field_path}.interpreter")
            if raw.get("interpreter") is not None
            else None
        ),
        args=_parse_args(raw.get("args"), f"{field_path}.args"),
        schedule=validate_expression(raw.get("schedule", DEFAULT_EXPRESSION)),
        year=year,
        only_one=ensure_bool(only_one, f"{field_path}.only_one", False),
        lock_dir=lock_dir,
        output=ensure_str_list(raw.get("output"), f"{field_path}.output"),
        append=ensure_bool(raw.get("append"), f"{field_path}.append", False),
        email=ensure_str_list(raw.get("email"), f"{field_path}.email"),
        foreground=ensure_bool(raw.get("foreground"), f"{field_path}.foreground", False),
    )


def _load_payload(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Error: Config file not found: {config_path}")
    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Error: Failed to parse YAML in {config_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Error: {config_path} must contain a mapping at the top level.")
    return payload


def load_jobs_file(config_path: Path) -> Tuple[WardenConfig, List[JobDefinition]]:
    payload = _load_payload(config_path)
    _reject_unknown(payload, {"config", "jobs"}, str(config_path))

    config = parse_config(payload.get("config") or {})

    raw_jobs = payload.get("jobs")
    if not isinstance(raw_jobs, list) or not raw_jobs:
        raise ConfigError("Error: jobs must be a non-empty list.")
    definitions = [parse_job_definition(item, f"jobs[{idx}]") for idx, item in enumerate(raw_jobs)]
    return config, definitions
