from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


TCP_PREFIX = "tcp://"
HTTP_PREFIXES = ("http://", "https://")


class TargetKind(str, Enum):
    PROCESS = "process"
    TCP = "tcp"
    HTTP = "http"


@dataclass(frozen=True)
class Target:
    raw: str
    kind: TargetKind
    # Process name, "host:port" or URL depending on kind.
    value: str

    @property
    def identifier(self) -> str:
        return self.raw


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port_s = address.rpartition(":")
    host = host.strip("[]")
    if not sep or not host:
        raise ValueError(f"TCP target {address!r} must look like host:port")
    try:
        port = int(port_s)
    except ValueError:
        raise ValueError(f"TCP target {address!r} has a non-numeric port") from None
    if not 0 < port < 65536:
        raise ValueError(f"TCP target {address!r} has an out of range port")
    return host, port


def parse_target(raw: str) -> Target:
    s = str(raw or "").strip()
    if not s:
        raise ValueError("target is empty")

    lowered = s.lower()
    if lowered.startswith(TCP_PREFIX):
        address = s[len(TCP_PREFIX):]
        _split_host_port(address)
        return Target(raw=s, kind=TargetKind.TCP, value=address)
    if lowered.startswith(HTTP_PREFIXES):
        return Target(raw=s, kind=TargetKind.HTTP, value=s)
    return Target(raw=s, kind=TargetKind.PROCESS, value=s)


def tcp_host_port(target: Target) -> tuple[str, int]:
    if target.kind is not TargetKind.TCP:
        raise ValueError(f"{target.raw!r} is not a TCP target")
    return _split_host_port(target.value)
