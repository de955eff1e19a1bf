#!/usr/bin/env python3
"""
Unit tests for network.py module.
"""

from backupsync.network import ConnectivityMonitor


class TestConnectivityMonitor:
    def test_listeners_fire_on_transitions(self):
        monitor = ConnectivityMonitor(probe=False, initial=True)
        seen = []
        monitor.add_listener(seen.append)
        monitor.set_online(True)
        monitor.set_online(False)
        monitor.set_online(False)
        monitor.set_online(True)
        assert seen == [False, True]

    def test_check_without_probe_keeps_value(self, mocker):
        create = mocker.patch("backupsync.network.socket.create_connection")
        monitor = ConnectivityMonitor(probe=False, initial=False)
        assert monitor.check() is False
        create.assert_not_called()

    def test_probe_success(self, mocker):
        create = mocker.patch("backupsync.network.socket.create_connection")
        monitor = ConnectivityMonitor(host="example.org", port=443, timeout=1.0, initial=False)
        assert monitor.check() is True
        assert monitor.is_online()
        create.assert_called_once_with(("example.org", 443), timeout=1.0)

    def test_probe_failure_goes_offline(self, mocker):
        mocker.patch("backupsync.network.socket.create_connection", side_effect=OSError("unreachable"))
        monitor = ConnectivityMonitor()
        seen = []
        monitor.add_listener(seen.append)
        assert monitor.check() is False
        assert seen == [False]

    def test_failing_listener_is_isolated(self):
        monitor = ConnectivityMonitor(probe=False)
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        monitor.add_listener(broken)
        monitor.add_listener(seen.append)
        monitor.set_online(False)
        assert seen == [False]
        assert not monitor.is_online()

    def test_remove_listener(self):
        monitor = ConnectivityMonitor(probe=False)
        seen = []
        monitor.add_listener(seen.append)
        monitor.remove_listener(seen.append)
        monitor.set_online(False)
        assert seen == []
