from __future__ import annotations

import asyncio
import io
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Iterable

import httpx

from liveness_checks.config import MonitorSettings
from liveness_checks.targets import Target, TargetKind, tcp_host_port


LOGGER = logging.getLogger("liveness-monitor")

PROCESS_LIST_COMMAND = ("ps", "auxww")
LINE_COUNT_CHUNK_SIZE = 32 * 1024


class ProbeError(Exception):
    """A probe could not be executed (as opposed to the target being down)."""


@dataclass(frozen=True)
class CheckResult:
    target: Target
    healthy: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def count_lines(stream: BinaryIO, *, chunk_size: int = LINE_COUNT_CHUNK_SIZE) -> int:
    chunk_size = max(1, int(chunk_size))
    count = 0
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            return count
        count += chunk.count(b"\n")


async def _list_processes(*, timeout_seconds: float) -> tuple[int, bytes]:
    """Run the process listing; returns (listing pid, stdout)."""
    proc = await asyncio.create_subprocess_exec(
        *PROCESS_LIST_COMMAND,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            raise ProbeError(f"{' '.join(PROCESS_LIST_COMMAND)} timed out after {timeout_seconds}s") from None
        if proc.returncode != 0:
            err = (stderr or b"").decode("utf-8", errors="replace").strip()[:300]
            raise ProbeError(f"{' '.join(PROCESS_LIST_COMMAND)} exited with {proc.returncode}: {err}")
        return proc.pid, stdout or b""
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()


def matching_process_lines(listing: bytes, name: str, *, exclude_pids: Iterable[int] = ()) -> bytes:
    """
    Lines of a ``ps auxww`` listing that mention ``name``.

    The header line and the lines of ``exclude_pids`` (the listing command and
    the monitor itself) are dropped. Every returned line ends with a newline so
    the result can be fed to count_lines.
    """
    needle = name.encode("utf-8")
    skip = {str(pid).encode("ascii") for pid in exclude_pids}
    out: list[bytes] = []
    for idx, line in enumerate(listing.splitlines()):
        if idx == 0 or not line.strip():
            continue
        if needle not in line:
            continue
        cols = line.split(None, 2)
        if len(cols) >= 2 and cols[1] in skip:
            continue
        out.append(line + b"\n")
    return b"".join(out)


async def check_local_process(target: Target, *, timeout_seconds: float = 10.0) -> CheckResult:
    LOGGER.info("Checking for process target=%s", target.identifier)
    try:
        ps_pid, listing = await _list_processes(timeout_seconds=timeout_seconds)
    except (ProbeError, OSError) as exc:
        err = f"process_listing_failed: {type(exc).__name__}: {exc}"
        LOGGER.warning("Unable to list processes target=%s error=%s", target.identifier, err)
        return CheckResult(target=target, healthy=False, error=err)

    matches = matching_process_lines(listing, target.value, exclude_pids=(ps_pid, os.getpid()))
    lines = count_lines(io.BytesIO(matches))
    if lines == 0:
        LOGGER.warning("No process found running target=%s", target.identifier)
        return CheckResult(target=target, healthy=False, error="process_not_running", details={"matches": 0})

    LOGGER.info("Process running target=%s matches=%s", target.identifier, lines)
    return CheckResult(target=target, healthy=True, details={"matches": lines})


async def check_tcp_socket(target: Target, *, timeout_seconds: float = 5.0) -> CheckResult:
    LOGGER.info("Checking for tcp socket target=%s", target.identifier)
    host, port = tcp_host_port(target)
    started = time.perf_counter()

    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port),
            timeout=max(0.1, float(timeout_seconds)),
        )
    except (OSError, asyncio.TimeoutError) as exc:
        err = f"tcp_error: {type(exc).__name__}: {exc}"
        LOGGER.warning("Unable to open socket target=%s error=%s", target.identifier, err)
        return CheckResult(target=target, healthy=False, error=err)
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    LOGGER.info("Successful connection target=%s elapsed_ms=%s", target.identifier, round(elapsed_ms, 3))
    return CheckResult(target=target, healthy=True, details={"tcp_elapsed_ms": round(elapsed_ms, 3)})


async def check_http_endpoint(
    target: Target, client: httpx.AsyncClient, *, timeout_seconds: float = 10.0
) -> CheckResult:
    LOGGER.info("Checking http endpoint target=%s", target.identifier)
    started = time.perf_counter()
    try:
        resp = await client.get(target.value, follow_redirects=True, timeout=timeout_seconds)
    except httpx.RequestError as exc:
        err = f"http_error: {type(exc).__name__}: {exc}"
        LOGGER.warning("Unable to connect target=%s error=%s", target.identifier, err)
        return CheckResult(target=target, healthy=False, error=err)

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    details = {"status_code": resp.status_code, "http_elapsed_ms": round(elapsed_ms, 3)}
    if resp.status_code != 200:
        LOGGER.warning("Non 200 status target=%s status_code=%s", target.identifier, resp.status_code)
        return CheckResult(target=target, healthy=False, error=f"http_status_{resp.status_code}", details=details)

    LOGGER.info("Endpoint returns 200 OK target=%s elapsed_ms=%s", target.identifier, details["http_elapsed_ms"])
    return CheckResult(target=target, healthy=True, details=details)


async def check_target(target: Target, client: httpx.AsyncClient, *, settings: MonitorSettings) -> CheckResult:
    try:
        if target.kind is TargetKind.TCP:
            return await check_tcp_socket(target, timeout_seconds=settings.tcp_timeout_seconds)
        if target.kind is TargetKind.HTTP:
            return await check_http_endpoint(target, client, timeout_seconds=settings.http_timeout_seconds)
        return await check_local_process(target, timeout_seconds=settings.process_timeout_seconds)
    except Exception as exc:
        err = f"{type(exc).__name__}: {exc}"
        LOGGER.exception("Check crashed target=%s error=%s", target.identifier, err)
        return CheckResult(target=target, healthy=False, error=f"check_crashed: {err}")
