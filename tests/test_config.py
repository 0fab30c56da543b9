from __future__ import annotations

import tempfile
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import yaml

from warden import ConfigError
from warden.config import EmailConfig, load_jobs_file, parse_config


def _write_config(tmp_path: Path, payload: object) -> Path:
    path = tmp_path / "warden.yaml"
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def test_defaults() -> None:
    config = parse_config(None)
    assert config.email == EmailConfig()
    assert config.email.ignore_empty_output is False
    assert config.temp_dir == Path(tempfile.gettempdir())


def test_email_settings_parsed(tmp_path: Path) -> None:
    config = parse_config(
        {
            "temp_dir": str(tmp_path),
            "timezone": "Europe/Rome",
            "email": {
                "subject": "Backups",
                "from": "cron@example.com",
                "ignore_empty_output": True,
                "host": "smtp.example.com",
                "port": 465,
                "use_ssl": True,
            },
        }
    )
    assert config.temp_dir == tmp_path
    assert config.timezone == ZoneInfo("Europe/Rome")
    assert config.email.subject == "Backups"
    assert config.email.sender == "cron@example.com"
    assert config.email.ignore_empty_output is True
    assert config.email.port == 465
    assert config.email.use_ssl is True


def test_email_must_be_a_mapping() -> None:
    with pytest.raises(ConfigError, match="email configuration should be a mapping"):
        parse_config({"email": ["ops@example.com"]})


def test_bad_email_values_rejected() -> None:
    with pytest.raises(ConfigError, match="ignore_empty_output must be true or false"):
        parse_config({"email": {"ignore_empty_output": "yes"}})
    with pytest.raises(ConfigError, match="Unknown key"):
        parse_config({"email": {"smtp": "localhost"}})


def test_invalid_temp_dir_falls_back(tmp_path: Path) -> None:
    config = parse_config({"temp_dir": str(tmp_path / "missing")})
    assert config.temp_dir == Path(tempfile.gettempdir())


def test_unknown_timezone_rejected() -> None:
    with pytest.raises(ConfigError, match="Invalid timezone"):
        parse_config({"timezone": "America/NotAZone"})


def test_load_jobs_file(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        {
            "config": {"timezone": "UTC", "temp_dir": str(tmp_path)},
            "jobs": [
                {
                    "id": "backup",
                    "command": "tar czf /tmp/backup.tgz /srv",
                    "args": {"--verbose": None, "--level": 9},
                    "schedule": "0 2 * * *",
                    "only_one": {"dir": str(tmp_path)},
                    "output": "/tmp/backup.log",
                    "append": True,
                    "email": ["ops@example.com"],
                },
                {"script": "scripts/report.py", "year": 2026, "foreground": True},
            ],
        },
    )
    config, definitions = load_jobs_file(path)

    assert config.timezone == ZoneInfo("UTC")
    backup, report = definitions
    assert backup.id == "backup"
    assert backup.args == {"--verbose": None, "--level": "9"}
    assert list(backup.args) == ["--verbose", "--level"]
    assert backup.schedule == "0 2 * * *"
    assert backup.only_one is True
    assert backup.lock_dir == str(tmp_path)
    assert backup.output == ["/tmp/backup.log"]
    assert backup.append is True
    assert backup.email == ["ops@example.com"]

    assert report.script == "scripts/report.py"
    assert report.schedule == "* * * * *"
    assert report.year == "2026"
    assert report.foreground is True
    assert report.label == "scripts/report.py"


def test_jobs_file_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        load_jobs_file(tmp_path / "absent.yaml")

    with pytest.raises(ConfigError, match='exactly one of "command" or "script"'):
        load_jobs_file(_write_config(tmp_path, {"jobs": [{"command": "ls", "script": "a.py"}]}))

    with pytest.raises(ConfigError, match="Invalid cron expression"):
        load_jobs_file(_write_config(tmp_path, {"jobs": [{"command": "ls", "schedule": "every day"}]}))

    with pytest.raises(ConfigError, match="jobs must be a non-empty list"):
        load_jobs_file(_write_config(tmp_path, {"jobs": []}))

    with pytest.raises(ConfigError, match="four digit year"):
        load_jobs_file(_write_config(tmp_path, {"jobs": [{"command": "ls", "year": "26"}]}))

    broken = tmp_path / "broken.yaml"
    broken.write_text("jobs: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to parse YAML"):
        load_jobs_file(broken)
