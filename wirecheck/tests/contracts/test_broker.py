"""
Contract tests for the connection broker.

Covers both link directions: dialing a server subject, and accepting a client
subject on a reference listener bound before the subject starts.
"""

import dataclasses
import socket

import pytest

from wirecheck.errors import ConnectTimeout, DialError, LaunchError
from wirecheck.net.broker import (
    ReferenceListener,
    dial,
    establish_client_link,
    find_free_port,
    port_available,
    start_server_subject,
)


class TestReferenceListener:

    @pytest.mark.timeout(5)
    def test_accepts_one_connection(self):
        port = find_free_port()
        listener = ReferenceListener("127.0.0.1", port)
        try:
            listener.accept_async()
            client = socket.create_connection(("127.0.0.1", port))
            try:
                conn = listener.wait_accepted(2.0)
                assert conn is listener.conn
                client.sendall(b"hi")
                assert conn.recv(2) == b"hi"
            finally:
                client.close()
        finally:
            assert listener.close() == []

    @pytest.mark.timeout(5)
    def test_nobody_connecting_times_out(self):
        listener = ReferenceListener("127.0.0.1", find_free_port())
        try:
            with pytest.raises(ConnectTimeout, match="Timed out waiting for client connection"):
                listener.wait_accepted(0.1)
        finally:
            listener.close()

    def test_port_is_held_while_bound(self):
        port = find_free_port()
        listener = ReferenceListener("127.0.0.1", port)
        try:
            assert not port_available("127.0.0.1", port)
            with pytest.raises(OSError):
                ReferenceListener("127.0.0.1", port)
        finally:
            listener.close()
        assert port_available("127.0.0.1", port)


class TestDial:

    @pytest.mark.timeout(5)
    def test_dial_with_nobody_listening_fails(self):
        with pytest.raises(DialError):
            dial("127.0.0.1", find_free_port(), timeout_sec=1.0)

    @pytest.mark.timeout(5)
    def test_dialed_socket_is_blocking(self):
        port = find_free_port()
        listener = ReferenceListener("127.0.0.1", port)
        try:
            sock = dial("127.0.0.1", port)
            try:
                assert sock.gettimeout() is None
            finally:
                sock.close()
        finally:
            listener.close()


class TestServerSubjectLink:

    @pytest.mark.timeout(15)
    def test_connect_to_running_server(self, harness_config, echo_server):
        link = start_server_subject(harness_config)
        try:
            conn = link.connect()
            assert link.connections == [conn]
            assert conn.peer is None
            assert conn.subject is link.subject
        finally:
            link.close()
        assert not link.subject.is_running

    @pytest.mark.timeout(15)
    def test_missing_server_executable(self, harness_config):
        with pytest.raises(LaunchError):
            start_server_subject(harness_config)


class TestClientSubjectLink:

    @pytest.mark.timeout(15)
    def test_client_connects_to_reference_listener(self, harness_config, echo_client, thread_leak_guard):
        link = establish_client_link(harness_config)
        try:
            assert link.connection.peer is link.listener
            assert link.subject.is_running
        finally:
            link.close()
        assert not link.subject.is_running

    @pytest.mark.timeout(15)
    def test_silent_client_times_out_and_releases_everything(self, harness_config, silent_client):
        config = dataclasses.replace(harness_config, accept_timeout_ms=500)
        with pytest.raises(ConnectTimeout):
            establish_client_link(config)
        assert port_available(config.host, config.default_port)

    @pytest.mark.timeout(15)
    def test_missing_client_executable_releases_listener(self, harness_config):
        with pytest.raises(LaunchError):
            establish_client_link(harness_config)
        assert port_available(harness_config.host, harness_config.default_port)
