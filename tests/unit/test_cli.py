"""
Unit tests for the command-line entry point.
"""

import signal
import socket

import pytest

from rconserver.__main__ import build_parser, config_from_args, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("RCON_HOST", "RCON_PORT", "RCON_PASSWORD", "RCON_BAN_LIST",
                 "RCON_MAX_CONNECTIONS", "RCON_IDLE_TIMEOUT", "RCON_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestArguments:

    def test_defaults(self):
        config = config_from_args(build_parser().parse_args([]))

        assert config.host == "127.0.0.1"
        assert config.port == 27015
        assert config.password == ""
        assert config.ban_list == []

    def test_overrides(self):
        args = build_parser().parse_args([
            "-H", "0.0.0.0", "-p", "27016", "-P", "secret",
            "--ban", "10.0.0.5", "--ban", "10.0.0.6",
            "--max-connections", "4", "--idle-timeout", "30",
            "-l", "DEBUG", "--echo",
        ])
        config = config_from_args(args)

        assert config.host == "0.0.0.0"
        assert config.port == 27016
        assert config.password == "secret"
        assert config.ban_list == ["10.0.0.5", "10.0.0.6"]
        assert config.max_connections == 4
        assert config.idle_timeout == 30.0
        assert config.log_level == "DEBUG"
        assert args.echo is True

    def test_arguments_beat_environment(self, monkeypatch):
        monkeypatch.setenv("RCON_PASSWORD", "from-env")
        monkeypatch.setenv("RCON_PORT", "27030")
        monkeypatch.setenv("RCON_BAN_LIST", "10.0.0.1")

        config = config_from_args(build_parser().parse_args(["-P", "from-cli", "--ban", "10.0.0.2"]))

        assert config.password == "from-cli"
        assert config.port == 27030
        assert config.ban_list == ["10.0.0.1", "10.0.0.2"]

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "rconserver" in capsys.readouterr().out


class TestMain:

    def test_invalid_config_exits_2(self, capsys):
        assert main(["--port", "70000"]) == 2
        assert "Invalid port" in capsys.readouterr().err

    def test_bind_failure_exits_1(self, capsys):
        previous = signal.getsignal(signal.SIGINT)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen(1)
            port = taken.getsockname()[1]

            assert main(["-p", str(port), "-P", "pw", "-l", "ERROR"]) == 1

        assert "Error" in capsys.readouterr().err
        assert signal.getsignal(signal.SIGINT) is previous
