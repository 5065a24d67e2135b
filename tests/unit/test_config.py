"""
Unit tests for AcceptorConfig.
"""

import pytest

from tcpacceptor.config import AcceptorConfig


class TestDefaults:

    def test_defaults(self):
        config = AcceptorConfig()

        assert config.port == 4221
        assert config.response_body == "Hey Client!"
        assert config.work_delay == 0.0
        assert config.max_request_size >= config.buffer_size
        assert config.concurrency_bound == config.max_workers

    def test_defaults_validate(self):
        AcceptorConfig().validate()

    def test_describe(self):
        summary = AcceptorConfig(port=8080, max_workers=10, min_workers=2).describe()
        assert "127.0.0.1:8080" in summary
        assert "workers=2-10" in summary


class TestValidate:

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"backlog": 0},
        {"min_workers": 0},
        {"min_workers": 5, "max_workers": 4},
        {"queue_size": 0},
        {"buffer_size": 0},
        {"max_request_size": 100, "buffer_size": 1024},
        {"read_timeout": 0},
        {"write_timeout": -1},
        {"handler_timeout": 0},
        {"drain_timeout": 0},
        {"work_delay": -0.5},
        {"work_delay": 30.0, "handler_timeout": 30.0},
        {"log_format": "xml"},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ValueError):
            AcceptorConfig(**overrides).validate()

    def test_port_zero_allowed(self):
        AcceptorConfig(port=0).validate()


class TestFromEnv:

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ACCEPTOR_HOST", "0.0.0.0")
        monkeypatch.setenv("ACCEPTOR_PORT", "9000")
        monkeypatch.setenv("ACCEPTOR_WORKERS", "8")
        monkeypatch.setenv("ACCEPTOR_QUEUE_SIZE", "16")
        monkeypatch.setenv("ACCEPTOR_WORK_DELAY", "1.5")
        monkeypatch.setenv("ACCEPTOR_LOG_FORMAT", "json")

        config = AcceptorConfig.from_env()

        assert config.host == "0.0.0.0"
        assert config.port == 9000
        assert config.max_workers == 8
        assert config.queue_size == 16
        assert config.work_delay == 1.5
        assert config.log_format == "json"
        config.validate()

    def test_small_pool_lowers_min_workers(self, monkeypatch):
        monkeypatch.setenv("ACCEPTOR_WORKERS", "2")

        config = AcceptorConfig.from_env()

        assert config.min_workers == 2
        config.validate()

    def test_defaults_without_environment(self, monkeypatch):
        for name in ("ACCEPTOR_HOST", "ACCEPTOR_PORT", "ACCEPTOR_WORKERS"):
            monkeypatch.delenv(name, raising=False)

        assert AcceptorConfig.from_env().port == 4221

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("ACCEPTOR_PORT", "not-a-port")
        with pytest.raises(ValueError):
            AcceptorConfig.from_env()
