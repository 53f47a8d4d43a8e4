"""
Tests for the notification sink: subscribers, history, lifecycle and
webhook delivery with dedupe.
"""

import json

import pytest
from unittest.mock import MagicMock, patch

from infra.notifications import (
    Notification,
    NotificationCenter,
    NotificationConfig,
    NotificationSeverity,
)


@pytest.fixture
def center():
    c = NotificationCenter()
    c.start()
    yield c
    c.close()


class TestSubscribers:
    def test_subscriber_receives_events(self, center):
        received = []
        center.subscribe(received.append)

        event = Notification(title="Take Profit: BONK", message="Closed at +60.0% profit")
        center.notify(event)

        assert received == [event]
        assert center.history() == [event]

    def test_unsubscribe_stops_delivery(self, center):
        received = []
        token = center.subscribe(received.append)

        assert center.unsubscribe(token) is True
        assert center.unsubscribe(token) is False

        center.notify(Notification(title="t", message="m"))
        assert received == []

    def test_failing_listener_does_not_block_others(self, center):
        received = []

        def broken(_event):
            raise RuntimeError("ui crashed")

        center.subscribe(broken)
        center.subscribe(received.append)

        center.notify(Notification(title="t", message="m"))

        assert len(received) == 1


class TestLifecycle:
    def test_not_started_drops_events(self):
        c = NotificationCenter()
        received = []
        c.subscribe(received.append)

        c.notify(Notification(title="t", message="m"))

        assert received == []
        assert c.history() == []

    def test_closed_sink_drops_events(self, center):
        center.close()

        center.notify(Notification(title="t", message="m"))

        assert center.history() == []
        assert center.is_open is False

    def test_history_bounded(self):
        c = NotificationCenter(NotificationConfig(history_size=3))
        c.start()
        for i in range(5):
            c.notify(Notification(title=f"n{i}", message="m"))

        assert [n.title for n in c.history()] == ["n2", "n3", "n4"]


class TestSeverity:
    def test_ordering(self):
        assert NotificationSeverity.INFO.value < NotificationSeverity.SUCCESS.value
        assert NotificationSeverity.SUCCESS.value < NotificationSeverity.WARNING.value
        assert NotificationSeverity.WARNING.value < NotificationSeverity.ERROR.value

    def test_from_string(self):
        assert NotificationSeverity.from_string("ERROR") == NotificationSeverity.ERROR
        assert NotificationSeverity.from_string("bogus") == NotificationSeverity.WARNING
        assert NotificationSeverity.from_string("") == NotificationSeverity.WARNING


class TestWebhook:
    def _center(self, **overrides):
        config = NotificationConfig(webhook_url="https://hooks.test/abc", **overrides)
        c = NotificationCenter(config)
        c.start()
        return c

    def test_sends_at_or_above_min_severity(self):
        c = self._center(min_severity=NotificationSeverity.WARNING)
        with patch('infra.notifications.urllib.request.urlopen') as mock_urlopen:
            mock_urlopen.return_value.__enter__.return_value = MagicMock(status=200)

            c.notify(Notification(title="Trade", message="info", severity=NotificationSeverity.INFO))
            c.notify(Notification(title="Exit Failed", message="no route",
                                  severity=NotificationSeverity.ERROR, metadata={"kind": "exit_failed"}))

            assert mock_urlopen.call_count == 1
            request = mock_urlopen.call_args.args[0]
            payload = json.loads(request.data.decode("utf-8"))
            assert payload["text"].startswith("[ERROR] Exit Failed | no route")
            assert '"kind": "exit_failed"' in payload["text"]

    def test_duplicate_webhook_posts_deduped(self):
        c = self._center()
        with patch('infra.notifications.urllib.request.urlopen') as mock_urlopen:
            mock_urlopen.return_value.__enter__.return_value = MagicMock(status=200)
            event = Notification(title="Wallet Not Connected", message="2 exits waiting",
                                 severity=NotificationSeverity.WARNING)

            c.notify(event)
            c.notify(event)

            assert mock_urlopen.call_count == 1
            assert len(c.history()) == 2

    def test_dry_run_never_posts(self):
        c = self._center(dry_run=True)
        with patch('infra.notifications.urllib.request.urlopen') as mock_urlopen:
            c.notify(Notification(title="x", message="y", severity=NotificationSeverity.ERROR))

            mock_urlopen.assert_not_called()

    def test_from_config_reads_env(self, monkeypatch):
        monkeypatch.setenv("MY_HOOK", "https://hooks.test/env")

        c = NotificationCenter.from_config({"webhook_env": "MY_HOOK", "min_severity": "error"})

        assert c._config.webhook_url == "https://hooks.test/env"
        assert c._config.min_severity == NotificationSeverity.ERROR
