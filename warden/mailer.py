"""
Email delivery of job output files.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Iterable, List, Sequence

from warden.config import EmailConfig

logger = logging.getLogger(__name__)


def build_message(files: Iterable[Path], recipients: Sequence[str], config: EmailConfig) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = config.subject
    msg["From"] = config.sender
    msg["To"] = ", ".join(recipients)
    msg.set_content(config.body)

    for path in files:
        if not path.is_file():
            continue
        msg.add_attachment(
            path.read_bytes(),
            maintype="application",
            subtype="octet-stream",
            filename=path.name,
        )
    return msg


class SmtpTransport:
    """Sends mail over SMTP using the host settings carried by EmailConfig."""

    def send(self, files: Sequence[Path], recipients: Sequence[str], config: EmailConfig) -> bool:
        msg = build_message(files, recipients, config)
        smtp_class = smtplib.SMTP_SSL if config.use_ssl else smtplib.SMTP
        with smtp_class(config.host, config.port) as server:
            if config.username and config.password:
                server.login(config.username, config.password)
            server.send_message(msg)
        logger.info("Email sent to %s", ", ".join(recipients))
        return True


def send_output(files: Sequence[str], recipients: Sequence[str], config: EmailConfig) -> bool:
    transport = config.transport if config.transport is not None else SmtpTransport()
    paths: List[Path] = [Path(name) for name in files]
    return bool(transport.send(paths, list(recipients), config))
