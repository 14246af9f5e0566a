"""
Connection broker for wirecheck.

This package links the harness to a subject over TCP in either direction:
- ReferenceListener / establish_client_link: harness as server, subject as client
- start_server_subject / ServerLink.connect: harness as client, subject as server
"""

from wirecheck.net.broker import (
    ClientLink,
    Connection,
    ReferenceListener,
    ServerLink,
    dial,
    establish_client_link,
    find_free_port,
    port_available,
    start_server_subject,
)

__all__ = [
    "ClientLink",
    "Connection",
    "ReferenceListener",
    "ServerLink",
    "dial",
    "establish_client_link",
    "find_free_port",
    "port_available",
    "start_server_subject",
]
