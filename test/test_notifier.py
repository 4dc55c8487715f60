#!/usr/bin/env python3
"""
Tests for notification rendering and the outbox notifier
"""

import json
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from notifier import (
    CHANNEL_ALERT,
    CHANNEL_SESSION,
    OutboxNotifier,
    render_anomaly,
    render_start_notice,
    render_stop_notice,
)
from session_state_machine import Anomaly, StartNotice, StopNotice

NOW = datetime(2024, 1, 15, 3, 0, tzinfo=timezone.utc)


def create_test_config(tmp_path, **overrides):
    """Create test configuration"""
    cfg = {'enabled': True, 'outbox_file': str(tmp_path / "out" / "notifications.jsonl"), 'webhook_url': ''}
    cfg.update(overrides)
    return {'notifications': cfg}


def read_outbox(notifier):
    return [json.loads(line) for line in notifier.outbox_file.read_text().splitlines()]


class TestRendering:
    """Subject and body text"""

    def test_stop_subject_with_figures(self):
        notice = StopNotice(stopped_at=NOW, energy_kwh=7.8, soc_increase_pct=25, estimated_cost=0.663)

        subject, body = render_stop_notice(notice)

        assert subject == "Battery Charging Stopped - 7.80 kWh, +25%, £0.66"
        assert "Total kWh charged: 7.80 kWh" in body
        assert "Estimated cost: £0.66" in body

    def test_stop_with_unknown_figures(self):
        notice = StopNotice(stopped_at=NOW, energy_kwh=None, soc_increase_pct=None, estimated_cost=None)

        subject, body = render_stop_notice(notice)

        assert subject == "Battery Charging Stopped - Details Unknown"
        assert "kWh charged: Unknown" in body
        assert "SOC increase: Unknown" in body
        assert "Estimated cost: Unknown" in body
        assert "0.00" not in body

    def test_stop_with_partial_figures(self):
        notice = StopNotice(stopped_at=NOW, energy_kwh=None, soc_increase_pct=25, estimated_cost=None)

        subject, _ = render_stop_notice(notice)

        assert subject == "Battery Charging Stopped - +25%"

    def test_start_notice(self):
        notice = StartNotice(started_at=NOW, start_soc_pct=20, rationale="Charging approved",
                             consumption_watts=1234.4)

        subject, body = render_start_notice(notice)

        assert subject == "Battery Charging Started"
        assert "Start SOC: 20%" in body
        assert "Current consumption: 1234W" in body
        assert "Reason: Charging approved" in body

    def test_adopted_start_notice(self):
        _, body = render_start_notice(StartNotice(started_at=NOW, start_soc_pct=None, rationale="", adopted=True))
        assert "already charging" in body
        assert "Start SOC: Unknown" in body
        assert "Current consumption: Unknown" in body

    def test_anomaly(self):
        subject, body = render_anomaly(Anomaly("stuck_charging", "Inverter still charging", NOW))

        assert subject == "SMA Octopus Error - stuck_charging"
        assert "Error Message: Inverter still charging" in body


class TestOutboxNotifier:
    """JSON-lines outbox delivery"""

    async def test_session_notice_written(self, tmp_path):
        notifier = OutboxNotifier(create_test_config(tmp_path))

        ok = await notifier.send_start_notice(StartNotice(started_at=NOW, start_soc_pct=20, rationale="x"))

        assert ok is True
        records = read_outbox(notifier)
        assert len(records) == 1
        assert records[0]['channel'] == CHANNEL_SESSION
        assert records[0]['kind'] == 'charging_started'
        assert records[0]['subject'] == "Battery Charging Started"

    async def test_anomaly_uses_alert_channel(self, tmp_path):
        notifier = OutboxNotifier(create_test_config(tmp_path))

        await notifier.send_anomaly(Anomaly("command_failed", "boom", NOW))
        await notifier.send_stop_notice(StopNotice(stopped_at=NOW, energy_kwh=None,
                                                   soc_increase_pct=None, estimated_cost=None))

        records = read_outbox(notifier)
        assert [r['channel'] for r in records] == [CHANNEL_ALERT, CHANNEL_SESSION]
        assert records[0]['kind'] == 'command_failed'

    async def test_disabled_writes_nothing(self, tmp_path):
        notifier = OutboxNotifier(create_test_config(tmp_path, enabled=False))

        ok = await notifier.send_anomaly(Anomaly("command_failed", "boom", NOW))

        assert ok is False
        assert not notifier.outbox_file.exists()

    async def test_unwritable_outbox_does_not_raise(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        notifier = OutboxNotifier(create_test_config(tmp_path, outbox_file=str(blocker / "n.jsonl")))

        assert await notifier.send_anomaly(Anomaly("command_failed", "boom", NOW)) is False

    async def test_webhook_receives_message(self, tmp_path):
        notifier = OutboxNotifier(create_test_config(tmp_path, webhook_url="http://localhost:9/hook"))

        with patch.object(OutboxNotifier, '_post_webhook', new=AsyncMock(return_value=True)) as post:
            ok = await notifier.send_anomaly(Anomaly("stuck_charging", "still charging", NOW))

        assert ok is True
        post.assert_awaited_once()
        assert post.await_args.args[0]['subject'] == "SMA Octopus Error - stuck_charging"

    async def test_webhook_failure_reported(self, tmp_path):
        notifier = OutboxNotifier(create_test_config(tmp_path, webhook_url="http://localhost:9/hook"))

        with patch.object(OutboxNotifier, '_post_webhook', new=AsyncMock(return_value=False)):
            ok = await notifier.send_anomaly(Anomaly("stuck_charging", "still charging", NOW))

        assert ok is False
        assert len(read_outbox(notifier)) == 1
