"""Tests for settings and service wiring."""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from helpdesk_engine.config import MonitorState, Settings
from helpdesk_engine.container import build_container, build_sink
from helpdesk_engine.shared.infrastructure.notifications import (
    LoggingNotificationSink,
    WebhookNotificationSink,
)
from helpdesk_engine.shared.infrastructure.resilience import OperationKind, ResilientStore
from helpdesk_engine.sla.application import StaticSLAConfigProvider
from tests.fakes import FakeScheduler, RecordingSink, make_store


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.store_read_attempts == 3
        assert settings.store_write_attempts == 2
        assert settings.sla_monitor_autostart is False

    def test_rejects_unknown_environment(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="qa")

    def test_log_level_is_normalised(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_store_policies_follow_settings(self):
        settings = Settings(_env_file=None, store_read_attempts=5, store_write_attempts=1, cache_max_entries=7)

        store = ResilientStore.from_settings(settings)

        assert store.policy_for(OperationKind.READ).max_attempts == 5
        assert store.policy_for(OperationKind.WRITE).max_attempts == 1
        assert store.cache_stats()["max_entries"] == 7


class TestContainer:

    def test_sink_follows_webhook_setting(self):
        assert isinstance(build_sink(Settings(_env_file=None)), LoggingNotificationSink)
        webhook = build_sink(Settings(_env_file=None, notification_webhook_url="http://delivery.test/intents"))
        assert isinstance(webhook, WebhookNotificationSink)

    @pytest.mark.asyncio
    async def test_close_stops_monitor_and_sink(self, session_factory):
        sink = RecordingSink()
        sink.close = AsyncMock()
        scheduler = FakeScheduler()
        container = build_container(
            Settings(_env_file=None), session_factory, StaticSLAConfigProvider(),
            sink=sink, scheduler=scheduler, store=make_store(),
        )
        await container.sla_monitor.start()

        await container.close()

        sink.close.assert_awaited_once()
        assert scheduler.stops == 1
        assert container.sla_monitor.status().state == MonitorState.STOPPED
