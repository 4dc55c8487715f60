#!/usr/bin/env python3
"""
SMA Octopus Battery Manager - Notifications

Renders session start/stop notices and anomaly alerts into (subject, body)
pairs and hands them to the outbox. Delivery (email) is done by an external
mailer that consumes the outbox file; an optional webhook gets the same text.

Sending a notification never raises: a failed notification is logged and the
cycle carries on.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import aiofiles
import aiohttp

from session_state_machine import Anomaly, StartNotice, StopNotice

logger = logging.getLogger(__name__)

CHANNEL_SESSION = "session"
CHANNEL_ALERT = "alert"


def _format_time(moment: Optional[datetime]) -> str:
    if moment is None:
        return "Unknown"
    return moment.strftime('%Y-%m-%d %H:%M:%S %Z').strip()


def _format_pct(value: Optional[float]) -> str:
    return "Unknown" if value is None else f"{value:g}%"


def render_start_notice(notice: StartNotice) -> Tuple[str, str]:
    subject = "Battery Charging Started"
    lines = [f"Battery charging has been turned ON at {_format_time(notice.started_at)}"]
    if notice.adopted:
        lines.append("The inverter was already charging when the session was picked up.")
    lines.append(f"Start SOC: {_format_pct(notice.start_soc_pct)}")
    consumption = "Unknown" if notice.consumption_watts is None else f"{notice.consumption_watts:.0f}W"
    lines.append(f"Current consumption: {consumption}")
    if notice.forecast_data is not None:
        lines.append(f"Target SOC: {notice.forecast_data.final_target_soc_pct:.1f}%")
    if notice.rationale:
        lines.append(f"Reason: {notice.rationale}")
    return subject, "\n".join(lines)


def render_stop_notice(notice: StopNotice) -> Tuple[str, str]:
    """Stop subject lists the known figures; missing ones read Unknown, never 0."""
    subject = "Battery Charging Stopped"
    lines = [f"Battery charging has been turned OFF at {_format_time(notice.stopped_at)}"]
    parts = []

    if notice.energy_kwh is not None:
        parts.append(f"{notice.energy_kwh:.2f} kWh")
        lines.append(f"Total kWh charged: {notice.energy_kwh:.2f} kWh")
    else:
        lines.append("kWh charged: Unknown (battery capacity not available or calculation error)")

    if notice.soc_increase_pct is not None:
        parts.append(f"+{notice.soc_increase_pct:g}%")
        lines.append(f"SOC increase: {notice.soc_increase_pct:g}%")
    else:
        lines.append("SOC increase: Unknown")

    if notice.estimated_cost is not None:
        parts.append(f"£{notice.estimated_cost:.2f}")
        lines.append(f"Estimated cost: £{notice.estimated_cost:.2f}")
    else:
        lines.append("Estimated cost: Unknown")

    if notice.duration_minutes is not None:
        lines.append(f"Duration: {notice.duration_minutes:.0f} min")
    if notice.rationale:
        lines.append(f"Reason: {notice.rationale}")

    subject += f" - {', '.join(parts)}" if parts else " - Details Unknown"
    return subject, "\n".join(lines)


def render_anomaly(anomaly: Anomaly) -> Tuple[str, str]:
    subject = f"SMA Octopus Error - {anomaly.kind}"
    lines = [
        f"An error occurred in the SMA Octopus system at {_format_time(anomaly.detected_at)}",
        "",
        f"Error Type: {anomaly.kind}",
        f"Error Message: {anomaly.details}",
        "",
        "---",
        "This is an automated error notification from the SMA Octopus system.",
    ]
    return subject, "\n".join(lines)


class NotificationPort(ABC):
    """Notification sink. Session notices and anomaly alerts use distinct channels."""

    @abstractmethod
    async def send_start_notice(self, notice: StartNotice) -> bool:
        pass

    @abstractmethod
    async def send_stop_notice(self, notice: StopNotice) -> bool:
        pass

    @abstractmethod
    async def send_anomaly(self, anomaly: Anomaly) -> bool:
        pass


class OutboxNotifier(NotificationPort):
    """Appends rendered messages to a JSON-lines outbox and optionally posts them to a webhook."""

    def __init__(self, config: Dict[str, Any]):
        cfg = config.get('notifications', {}) or {}
        self.enabled = bool(cfg.get('enabled', True))
        self.outbox_file = Path(cfg.get('outbox_file', 'out/notifications.jsonl'))
        self.webhook_url = cfg.get('webhook_url', '')
        self.webhook_timeout_seconds = float(cfg.get('webhook_timeout_seconds', 10))

    async def send_start_notice(self, notice: StartNotice) -> bool:
        subject, body = render_start_notice(notice)
        return await self._dispatch(CHANNEL_SESSION, 'charging_started', subject, body)

    async def send_stop_notice(self, notice: StopNotice) -> bool:
        subject, body = render_stop_notice(notice)
        return await self._dispatch(CHANNEL_SESSION, 'charging_stopped', subject, body)

    async def send_anomaly(self, anomaly: Anomaly) -> bool:
        subject, body = render_anomaly(anomaly)
        return await self._dispatch(CHANNEL_ALERT, anomaly.kind, subject, body)

    async def _dispatch(self, channel: str, kind: str, subject: str, body: str) -> bool:
        log = logger.warning if channel == CHANNEL_ALERT else logger.info
        log(f"📧 [{channel}] {subject}")

        if not self.enabled:
            logger.debug("Notifications disabled - not writing to outbox")
            return False

        record = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'channel': channel,
            'kind': kind,
            'subject': subject,
            'body': body,
        }

        delivered = await self._append_to_outbox(record)
        if self.webhook_url:
            delivered = await self._post_webhook(record) and delivered
        return delivered

    async def _append_to_outbox(self, record: Dict[str, Any]) -> bool:
        try:
            self.outbox_file.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.outbox_file, 'a') as f:
                await f.write(json.dumps(record, ensure_ascii=False) + "\n")
            return True
        except OSError as e:
            logger.warning(f"Failed to write notification to {self.outbox_file}: {e}")
            return False

    async def _post_webhook(self, record: Dict[str, Any]) -> bool:
        payload = {
            'text': f"SMA Octopus: {record['subject']}\n{record['body']}",
            'timestamp': record['timestamp'],
        }
        try:
            timeout = aiohttp.ClientTimeout(total=self.webhook_timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status == 200:
                        logger.info("Webhook notification sent successfully")
                        return True
                    logger.warning(f"Webhook notification failed: {response.status}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to send webhook notification: {e}")
            return False
