"""Tests for configuration and the command line entry point."""

from ssestream.__main__ import build_parser
from ssestream.config import EventSourceConfig
from ssestream.connection.stream_connection import StreamConnection


class TestEventSourceConfig:
    def test_defaults(self):
        config = EventSourceConfig()
        assert config.default_reconnection_time_ms == 3000
        assert config.max_backoff_exponent == 12
        assert config.retry_after_unit == "ms"
        assert config.read_timeout_seconds is None

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SSESTREAM_DEFAULT_RECONNECTION_TIME_MS", "500")
        monkeypatch.setenv("SSESTREAM_RETRY_AFTER_UNIT", "s")
        config = EventSourceConfig()
        assert config.default_reconnection_time_ms == 500
        assert config.retry_after_unit == "s"

    def test_connection_uses_config(self):
        config = EventSourceConfig(default_reconnection_time_ms=750, max_backoff_exponent=2)
        connection = StreamConnection("http://sse.test/events", config=config)
        assert connection.retry.reconnection_time_ms == 750
        assert connection.retry.max_backoff_exponent == 2


class TestParser:
    def test_url_only(self):
        args = build_parser().parse_args(["http://127.0.0.1:8000/events"])
        assert args.url == "http://127.0.0.1:8000/events"
        assert args.user is None
        assert args.stop_on is None

    def test_stop_on_statuses(self):
        args = build_parser().parse_args(["http://x/events", "--stop-on", "401", "403"])
        assert args.stop_on == [401, 403]

    def test_stop_on_without_statuses(self):
        args = build_parser().parse_args(["http://x/events", "--stop-on"])
        assert args.stop_on == []
