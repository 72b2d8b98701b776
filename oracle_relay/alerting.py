"""Operator alerting over log, JSONL file, Slack and SendGrid."""

from __future__ import annotations

import asyncio
import datetime as _dt
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Set

import httpx

from .config import AlertingConfig

_LOGGER = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass(slots=True)
class Alert:
    """Structured alert payload emitted by the relay."""

    title: str
    message: str
    severity: str = "critical"
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: _dt.datetime.now(_dt.timezone.utc).isoformat())

    def to_json(self) -> Dict[str, Any]:
        payload = dict(self.metadata)
        payload.update({
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp,
        })
        return payload


class AlertNotifier:
    """Fan an alert out to every configured channel.

    ``notify`` never raises: a failing channel is logged and the others still
    receive the alert.
    """

    def __init__(
        self,
        config: Optional[AlertingConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self._config = config or AlertingConfig()
        self._transport = transport
        self._timeout = timeout
        self._pending: Set[asyncio.Task[None]] = set()

    @property
    def log_path(self) -> Path:
        return self._config.log_path

    async def notify(
        self,
        title: str,
        message: str,
        *,
        severity: str = "critical",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        alert = Alert(title=title, message=message, severity=severity, metadata=dict(metadata or {}))
        _LOGGER.error("ALERT [%s] %s - %s", alert.severity.upper(), alert.title, alert.message)
        results = await asyncio.gather(
            self._persist(alert),
            self._send_slack(alert),
            self._send_email(alert),
            return_exceptions=True,
        )
        for channel, result in zip(("file", "slack", "email"), results):
            if isinstance(result, BaseException):
                _LOGGER.error("Failed to deliver %s alert: %s", channel, result)

    def notify_nowait(self, title: str, message: str, **kwargs: Any) -> None:
        """Schedule :meth:`notify` without waiting for delivery."""

        task = asyncio.get_running_loop().create_task(self.notify(title, message, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _persist(self, alert: Alert) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_line, alert)

    def _write_line(self, alert: Alert) -> None:
        path = self._config.log_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(alert.to_json(), ensure_ascii=False, default=str) + "\n")

    async def _send_slack(self, alert: Alert) -> None:
        if not self._config.slack_enabled:
            return
        text = f"*{alert.title}*\n\n{alert.message}\n\n*Timestamp:* {alert.timestamp}"
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                SLACK_POST_MESSAGE_URL,
                headers={"Authorization": f"Bearer {self._config.slack_token}"},
                json={"channel": self._config.slack_channel, "text": text},
            )
        response.raise_for_status()
        body = response.json()
        if not body.get("ok", False):
            raise RuntimeError(f"Slack API error: {body.get('error', 'unknown')}")

    async def _send_email(self, alert: Alert) -> None:
        if not self._config.email_enabled:
            return
        body = {
            "personalizations": [
                {
                    "to": [{"email": self._config.to_email}],
                    "dynamic_template_data": {
                        "alert_title": alert.title,
                        "alert_message": alert.message.replace("\n", "<br>"),
                        "timestamp": alert.timestamp,
                    },
                }
            ],
            "from": {"email": self._config.from_email, "name": self._config.from_name or "Oracle Alert"},
            "template_id": self._config.sendgrid_template_id,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                SENDGRID_SEND_URL,
                headers={"Authorization": f"Bearer {self._config.sendgrid_api_key}"},
                json=body,
            )
        if response.status_code >= 400:
            raise RuntimeError(f"SendGrid API responded with status {response.status_code}: {response.text}")


__all__ = ["Alert", "AlertNotifier"]
