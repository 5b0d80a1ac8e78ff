from __future__ import annotations

import logging
import socket
from dataclasses import dataclass


LOGGER = logging.getLogger("liveness-monitor")

UNKNOWN = "NIL"

# Connecting a UDP socket sends no packets; it only selects the outbound interface.
_ROUTE_PROBE_ADDR = ("192.0.2.1", 9)


@dataclass(frozen=True)
class ServerIdentity:
    nice_name: str
    hostname: str
    ip: str

    def describe(self) -> str:
        return f"{self.nice_name} {self.hostname} with IP {self.ip}"


def _primary_ip() -> str:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(_ROUTE_PROBE_ADDR)
        return str(s.getsockname()[0])
    except OSError:
        pass
    finally:
        s.close()

    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError as exc:
        LOGGER.warning("Error resolving server IP, using %s error=%s", UNKNOWN, exc)
        return UNKNOWN


def discover_server_identity(nice_name: str) -> ServerIdentity:
    try:
        hostname = socket.gethostname()
        ip = _primary_ip()
    except OSError as exc:
        LOGGER.warning("Error getting server information, using %s error=%s", UNKNOWN, exc)
        return ServerIdentity(nice_name=nice_name, hostname=UNKNOWN, ip=UNKNOWN)

    identity = ServerIdentity(nice_name=nice_name, hostname=hostname, ip=ip)
    LOGGER.info("Server identity server=%r", identity.describe())
    return identity
