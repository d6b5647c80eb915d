"""
End-to-end tests: a real RCONServer on a loopback port, real TCP clients.
"""

import os
import signal
import threading
from unittest.mock import MagicMock

import pytest

from rconserver import RCONServer, ServerConfig, close_on_signals
from rconserver.protocol import (
    Packet,
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_RESPONSE_VALUE,
)

from conftest import PASSWORD, RCONTestClient, TestServer, wait_for


class TestAuthentication:

    def test_correct_password_then_command(self, test_server, connect):
        client = connect()

        response = client.auth(PASSWORD, packet_id=1)
        assert response == Packet(id=1, type=SERVERDATA_AUTH_RESPONSE, body="")

        client.command("status", packet_id=2)

        assert wait_for(lambda: len(test_server.server.commands) == 1)
        command, packet_id, _ = test_server.server.commands[0]
        assert command == "status"
        assert packet_id == 2
        assert not client.is_closed_by_peer()

    def test_wrong_password_gets_sentinel_and_close(self, test_server, connect):
        client = connect()

        response = client.auth("wrong", packet_id=5)

        assert response.id == -1
        assert response.type == SERVERDATA_AUTH_RESPONSE
        assert client.recv() is None

    def test_failed_auth_releases_session_while_client_keeps_writing(self, test_server, connect):
        client = connect()
        assert client.auth("wrong", packet_id=5).id == -1

        stop = threading.Event()

        def chatter():
            while not stop.is_set():
                try:
                    client.send_raw(b"\x00" * 16)
                except OSError:
                    return
                stop.wait(0.1)

        writer = threading.Thread(target=chatter, daemon=True)
        writer.start()
        try:
            assert wait_for(lambda: test_server.server.active_connections == 0, timeout=4.0)
        finally:
            stop.set()
            writer.join(5.0)

    def test_command_before_auth_closes_without_dispatch(self, test_server, connect):
        client = connect()

        client.command("status", packet_id=2)

        assert client.recv() is None
        assert test_server.server.commands == []

    def test_empty_password_refuses(self, config):
        config.password = ""
        server = RCONServer(config=config)
        handler = MagicMock()
        server.on_command(handler)

        harness = TestServer(server)
        harness.start()
        try:
            client = harness.client()
            client.send(Packet(id=1, type=SERVERDATA_AUTH, body=""))
            assert client.recv() is None  # no auth response at all
            client.close()
        finally:
            harness.stop()

        handler.assert_not_called()

    def test_concurrent_sessions_are_isolated(self, test_server, connect):
        good, bad = connect(), connect()
        results = {}

        def attempt(name, client, password, packet_id):
            results[name] = client.auth(password, packet_id=packet_id)

        threads = [
            threading.Thread(target=attempt, args=("good", good, PASSWORD, 10)),
            threading.Thread(target=attempt, args=("bad", bad, "nope", 20)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5.0)

        assert results["good"].id == 10
        assert results["bad"].id == -1
        assert bad.recv() is None

        good.command("still here", packet_id=11)
        assert wait_for(lambda: len(test_server.server.commands) == 1)
        assert test_server.server.commands[0][0] == "still here"


class TestCommands:

    def test_handler_can_reply(self, test_server, connect):
        @test_server.server.on_command
        def echo(command, client):
            client.reply(command.upper())

        client = connect()
        client.auth(PASSWORD)
        client.command("status", packet_id=9)

        response = client.recv()
        assert response == Packet(id=9, type=SERVERDATA_RESPONSE_VALUE, body="STATUS")

    def test_last_registration_wins(self, test_server, connect):
        first, second = MagicMock(), MagicMock()
        test_server.server.on_command(first)
        test_server.server.on_command(second)

        client = connect()
        client.auth(PASSWORD)
        client.command("status")

        assert wait_for(lambda: second.called)
        first.assert_not_called()

    def test_no_handler_ignores_commands(self, test_server, connect):
        test_server.server.on_command(None)

        client = connect()
        assert client.auth(PASSWORD, packet_id=1).id == 1
        client.command("status")

        # Still open and still answering
        assert client.auth(PASSWORD, packet_id=3).id == 3

    def test_handler_sees_distinct_connections(self, test_server, connect):
        a, b = connect(), connect()
        a.auth(PASSWORD)
        b.auth(PASSWORD)
        a.command("from a")
        b.command("from b")

        assert wait_for(lambda: len(test_server.server.commands) == 2)
        connection_ids = {entry[2] for entry in test_server.server.commands}
        assert len(connection_ids) == 2

    def test_malformed_frame_does_not_end_session(self, test_server, connect):
        client = connect()
        client.auth(PASSWORD)

        client.send_raw(b"\x03\x00\x00\x00abc")  # length 3, below minimum
        client.command("after junk", packet_id=4)

        assert wait_for(lambda: len(test_server.server.commands) == 1)
        assert test_server.server.commands[0][:2] == ("after junk", 4)


class TestBanList:

    def test_banned_address_closed_before_exchange(self, test_server):
        test_server.server.set_ban_list(["127.0.0.1"])

        client = test_server.client()
        try:
            assert client.is_closed_by_peer()
        finally:
            client.close()

        assert test_server.server.commands == []
        assert test_server.server.active_connections == 0

    def test_ban_list_entries_strip_port(self):
        server = RCONServer(config=ServerConfig(port=0))
        server.set_ban_list(["10.0.0.5:51000", "10.0.0.6"])

        assert server.ban_list == ("10.0.0.5", "10.0.0.6")
        assert server.is_banned("10.0.0.5")
        assert not server.is_banned("10.0.0.7")

    def test_ban_list_replaced_wholesale(self):
        server = RCONServer(config=ServerConfig(port=0, ban_list=["10.0.0.5"]))
        assert server.is_banned("10.0.0.5")

        server.set_ban_list(["10.0.0.6"])

        assert not server.is_banned("10.0.0.5")
        assert server.is_banned("10.0.0.6")

    def test_other_addresses_still_served(self, test_server, connect):
        test_server.server.set_ban_list(["10.0.0.5"])
        assert connect().auth(PASSWORD).id == 1


class TestLifecycle:

    def test_shutdown_returns_listen_and_serve(self, test_server):
        test_server.server.shutdown()

        assert test_server.returned.wait(5.0)
        assert test_server.error is None
        assert test_server.server.wait_for_shutdown(5.0)

    def test_shutdown_keeps_existing_sessions(self, test_server, connect):
        client = connect()
        assert client.auth(PASSWORD).id == 1

        test_server.server.shutdown()
        assert test_server.returned.wait(5.0)

        client.command("after shutdown", packet_id=6)
        assert wait_for(lambda: len(test_server.server.commands) == 1)

        with pytest.raises(OSError):
            RCONTestClient.connect(test_server.port)

    def test_bind_failure_raises(self, test_server):
        other = RCONServer(config=ServerConfig(port=test_server.port, password=PASSWORD))

        with pytest.raises(OSError):
            other.listen_and_serve()

    def test_close_is_shutdown(self):
        assert RCONServer.close is RCONServer.shutdown

    def test_active_connections_tracks_sessions(self, test_server, connect):
        client = connect()
        client.auth(PASSWORD)
        assert wait_for(lambda: test_server.server.active_connections == 1)

        client.close()
        assert wait_for(lambda: test_server.server.active_connections == 0)

    def test_constructor_arguments_override_config(self):
        server = RCONServer("0.0.0.0", 27020, "pw", config=ServerConfig())
        assert server.config.host == "0.0.0.0"
        assert server.config.port == 27020
        assert server.config.password == "pw"

    def test_callers_config_left_untouched(self):
        config = ServerConfig(port=27015, password="original", ban_list=["10.0.0.1:5"])

        server = RCONServer(port=27020, password="pw", config=config)
        server.set_ban_list(["10.0.0.9"])

        assert config.port == 27015
        assert config.password == "original"
        assert config.ban_list == ["10.0.0.1:5"]
        assert server.config is not config
        assert server.config.ban_list == ["10.0.0.9"]

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            RCONServer(port=70000)


class TestAdmissionControl:

    def test_connections_beyond_limit_closed(self, config):
        config.max_connections = 1
        harness = TestServer(RCONServer(config=config))
        harness.start()
        try:
            first = harness.client()
            assert first.auth(PASSWORD).id == 1

            second = harness.client()
            assert second.is_closed_by_peer()

            first.close()
            assert wait_for(lambda: harness.server.active_connections == 0)

            third = harness.client()
            assert third.auth(PASSWORD, packet_id=3).id == 3

            second.close()
            third.close()
        finally:
            harness.stop()


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="needs SIGUSR1")
class TestSignals:

    def test_signal_triggers_shutdown(self):
        server = MagicMock()
        restore = close_on_signals(server, signals=(signal.SIGUSR1,))
        try:
            os.kill(os.getpid(), signal.SIGUSR1)
            assert wait_for(lambda: server.shutdown.called, timeout=2.0)
        finally:
            restore()

        assert signal.getsignal(signal.SIGUSR1) is signal.SIG_DFL

    def test_restore_reinstalls_previous_handler(self):
        previous = MagicMock()
        signal.signal(signal.SIGUSR1, previous)
        try:
            restore = close_on_signals(MagicMock(), signals=(signal.SIGUSR1,))
            assert signal.getsignal(signal.SIGUSR1) is not previous
            restore()
            assert signal.getsignal(signal.SIGUSR1) is previous
        finally:
            signal.signal(signal.SIGUSR1, signal.SIG_DFL)
