"""
Unit tests for the command-line entry point.
"""

import socket

import pytest

from tcpacceptor import __version__
from tcpacceptor.__main__ import build_parser, config_from_args, main
from tcpacceptor.config import AcceptorConfig


class TestParser:

    def test_defaults_from_config(self):
        defaults = AcceptorConfig()
        args = build_parser(defaults).parse_args([])

        config = config_from_args(args, defaults)

        assert config == defaults

    def test_overrides(self):
        defaults = AcceptorConfig()
        args = build_parser(defaults).parse_args([
            "--host", "0.0.0.0",
            "--port", "8080",
            "--workers", "2",
            "--queue-size", "3",
            "--max-request-size", "4096",
            "--read-timeout", "1.5",
            "--handler-timeout", "9",
            "--delay", "8",
            "--body", "Hi",
            "--log-level", "debug",
            "--log-format", "json",
        ])

        config = config_from_args(args, defaults)

        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.max_workers == 2
        assert config.min_workers == 2
        assert config.queue_size == 3
        assert config.max_request_size == 4096
        assert config.read_timeout == 1.5
        assert config.handler_timeout == 9.0
        assert config.work_delay == 8.0
        assert config.response_body == "Hi"
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"
        config.validate()

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser(AcceptorConfig()).parse_args(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestMain:

    def test_invalid_config_exits_2(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--port", "0", "--workers", "0"])

        assert exc_info.value.code == 2

    def test_invalid_environment_exits_2(self, monkeypatch):
        monkeypatch.setenv("ACCEPTOR_PORT", "nope")
        assert main([]) == 2

    def test_bind_failure_exits_1(self, capsys):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]

            status = main(["--port", str(port), "--log-level", "ERROR"])

        assert status == 1
        assert "Failed to bind" in capsys.readouterr().err
