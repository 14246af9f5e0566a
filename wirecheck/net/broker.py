"""
Connection broker: establishes the TCP link between harness and subject.

Two roles:

- Harness as server (client subjects): a ReferenceListener is bound BEFORE the
  subject starts, an accept is raced against the accept timeout, and the
  subject is launched as `<client> <ip> <port>`.
- Harness as client (server subjects): the subject is launched as
  `<server> <port>`, allowed to settle, then dialed.

The broker never decides when to close either side; the test case owns the
subject and the reference peer and releases them itself.
"""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from wirecheck.config import HarnessConfig
from wirecheck.errors import AcceptError, ConnectTimeout, DialError, ProcessStopError
from wirecheck.process.subject import Subject
from wirecheck.streams.timed_stream import TimedStream

logger = logging.getLogger(__name__)


# Bound on connect() itself when dialing a subject server
DIAL_TIMEOUT_SEC = 3.0

LISTEN_BACKLOG = 128


def find_free_port(host: str = "127.0.0.1") -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        s.listen(1)
        return s.getsockname()[1]


def port_available(host: str, port: int) -> bool:
    """Return True if nothing is listening on host:port (i.e. we could bind it)."""
    logger.debug(f"Checking port {port}")
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


@dataclass
class Connection:
    """
    An established TCP connection, tagged with the parties that produced it.

    Attributes:
        sock: Connected socket (the harness end)
        subject: Subject on the other end
        peer: ReferenceListener that accepted it, or None when the harness dialed
    """
    sock: socket.socket
    subject: Subject
    peer: Optional["ReferenceListener"] = None

    def timed(self, timeout_sec: float, epsilon_sec: float) -> TimedStream:
        return TimedStream(self.sock, timeout_sec, epsilon_sec, name=f"conn:{self.subject.name}")

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing connection to {self.subject.name}: {e}")


class ReferenceListener:
    """
    Harness-side listening socket standing in for the real server.

    Bind happens in the constructor so the port is held before any subject
    starts.
    """

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.conn: Optional[socket.socket] = None
        self._accepted: "queue.Queue[tuple]" = queue.Queue(maxsize=1)
        self._accept_thread: Optional[threading.Thread] = None

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._sock.bind((host, port))
            self._sock.listen(LISTEN_BACKLOG)
        except OSError:
            self._sock.close()
            raise
        logger.debug(f"Reference listener bound on {host}:{port}")

    def accept_async(self) -> None:
        """Begin accepting one connection in the background."""
        if self._accept_thread is not None:
            return
        self._accept_thread = threading.Thread(target=self._accept, daemon=True, name=f"RefAccept-{self.port}")
        self._accept_thread.start()

    def _accept(self) -> None:
        try:
            conn, addr = self._sock.accept()
        except OSError as e:
            self._accepted.put((None, e))
            return
        logger.debug(f"Reference listener accepted {addr}")
        self._accepted.put((conn, None))

    def wait_accepted(self, timeout_sec: float) -> socket.socket:
        """
        Wait for the background accept to finish.

        Raises:
            ConnectTimeout: If nobody connected within timeout_sec
            AcceptError: If the listener failed
        """
        self.accept_async()
        try:
            conn, error = self._accepted.get(timeout=timeout_sec)
        except queue.Empty:
            raise ConnectTimeout("Timed out waiting for client connection.")
        if error is not None:
            raise AcceptError(f"Failed to accept client connection: {error}")
        self.conn = conn
        return conn

    def close(self) -> List[str]:
        """
        Close the listener and any accepted connection.

        Returns:
            Close failures (empty when everything closed cleanly)
        """
        errors: List[str] = []
        try:
            self._sock.close()
        except OSError as e:
            errors.append(f"Failed to close reference listener: {e}")
        if self.conn is not None:
            try:
                self.conn.close()
            except OSError as e:
                errors.append(f"Failed to close reference conn: {e}")
        for error in errors:
            logger.warning(error)
        return errors


def dial(host: str, port: int, timeout_sec: float = DIAL_TIMEOUT_SEC) -> socket.socket:
    """
    Connect to a subject server.

    Raises:
        DialError: If the connection cannot be made
    """
    logger.debug(f"Dialing server at {host}:{port}...")
    try:
        sock = socket.create_connection((host, port), timeout=timeout_sec)
    except OSError as e:
        raise DialError(f"Failed to connect to server: {e}") from e
    # Timed streams set their own deadlines per operation
    sock.settimeout(None)
    return sock


@dataclass
class ServerLink:
    """
    A running server subject the harness can dial (harness as client).

    Attributes:
        subject: The server subject
        host: Address to dial
        port: Port the subject was told to listen on
        connections: Every connection opened through this link
    """
    subject: Subject
    host: str
    port: int
    config: HarnessConfig
    connections: List[Connection] = field(default_factory=list)

    def connect(self) -> Connection:
        """
        Open one fresh connection to the subject.

        Raises:
            DialError: If the dial fails
        """
        conn = Connection(sock=dial(self.host, self.port), subject=self.subject)
        self.connections.append(conn)
        return conn

    def close(self) -> None:
        """Close connections and stop the subject."""
        for conn in self.connections:
            conn.close()
        if self.subject.is_running:
            self.subject.stop()


def start_server_subject(config: HarnessConfig, port: Optional[int] = None) -> ServerLink:
    """
    Launch the server subject on port and wait for it to settle.

    Raises:
        LaunchError: If the subject fails to start
    """
    port = port if port is not None else config.default_port
    if not port_available(config.host, port):
        logger.warning(f"Port {port} is already in use before starting the server subject")

    subject = Subject(config.server_path, [str(port)], config=config, name="server")
    subject.start()
    subject.settle()
    return ServerLink(subject=subject, host=config.host, port=port, config=config)


@dataclass
class ClientLink:
    """
    A client subject connected to the harness's reference listener.

    Attributes:
        subject: The client subject (its stdout is folded into diagnostics)
        listener: Reference listener that accepted the connection
        connection: The accepted connection
    """
    subject: Subject
    listener: ReferenceListener
    connection: Connection

    def close(self) -> None:
        """Stop the subject, then release the reference peer."""
        try:
            if self.subject.is_running:
                self.subject.stop()
        finally:
            self.listener.close()


def establish_client_link(config: HarnessConfig, port: Optional[int] = None) -> ClientLink:
    """
    Bind a reference listener, launch the client subject, and accept its connection.

    The listener is released if establishment fails; the subject is stopped
    if it was started.

    Raises:
        OSError: If the reference listener cannot bind
        LaunchError: If the client subject fails to start
        ConnectTimeout: If the subject does not connect within the accept timeout
        AcceptError: If accepting fails
    """
    port = port if port is not None else config.default_port
    listener = ReferenceListener(config.host, port)
    subject = Subject(
        config.client_path,
        [config.host, str(port)],
        config=config,
        merge_output=True,
        name="client",
    )
    try:
        listener.accept_async()
        # Give the accept task time to be waiting before the client dials
        time.sleep(config.startup_delay_sec)
        logger.debug(f"Connecting client to {config.host}:{port}")
        subject.start()
        sock = listener.wait_accepted(config.accept_timeout_sec)
    except BaseException:
        if subject.is_running:
            try:
                subject.stop()
            except ProcessStopError as e:
                logger.warning(f"Cleanup after failed client link: {e}")
        listener.close()
        raise

    return ClientLink(
        subject=subject,
        listener=listener,
        connection=Connection(sock=sock, subject=subject, peer=listener),
    )
