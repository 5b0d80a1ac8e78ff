from __future__ import annotations

import asyncio
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import httpx
import pytest

from liveness_checks.checks import CheckResult, check_target
from liveness_checks.config import parse_config
from liveness_checks.dedup import NotificationDeduplicator, TtlCache
from liveness_checks.pipeline import CheckScheduler, FailureAggregator, new_result_channel
from liveness_checks.targets import Target, parse_target


PS_LISTING = (
    b"USER         PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND\n"
    b"root           1  0.0  0.1 167744 11800 ?        Ss   09:00   0:02 /sbin/init\n"
    b"root        4242  0.0  0.0  10000  3000 pts/0    R+   09:30   0:00 ps aux\n"
)


def _pick_free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = int(s.getsockname()[1])
    s.close()
    return port


class _HealthHandler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_GET(self) -> None:  # noqa: N802
        status = 200 if self.path == "/health" else 404
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()


@pytest.fixture()
def health_server_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _HealthHandler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://{host}:{port}/health"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


class RecordingNotifier:
    def __init__(self, delay: float = 0.0) -> None:
        self.sent: list[str] = []
        self.delay = delay

    async def notify(self, result: CheckResult) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append(result.target.identifier)
        return True


@pytest.mark.asyncio
async def test_round_waits_for_every_check_regardless_of_latency() -> None:
    delays = {"a": 0.05, "b": 0.0, "c": 0.02, "d": 0.01}
    targets = [parse_target(name) for name in delays]
    finished: list[str] = []

    async def fake_check(target: Target) -> CheckResult:
        await asyncio.sleep(delays[target.value])
        finished.append(target.value)
        return CheckResult(target=target, healthy=target.value != "c")

    channel = new_result_channel(targets)
    scheduler = CheckScheduler(targets, fake_check, channel, interval_seconds=0)
    results = await scheduler.run_round()

    assert sorted(finished) == sorted(delays)
    assert len(results) == len(targets)
    assert channel.qsize() == len(targets)
    assert finished[0] == "b"
    assert finished[-1] == "a"
    assert [r.target.value for r in results if not r.healthy] == ["c"]


@pytest.mark.asyncio
async def test_crashing_check_still_publishes_one_result() -> None:
    targets = [parse_target("ok"), parse_target("boom")]

    async def fake_check(target: Target) -> CheckResult:
        if target.value == "boom":
            raise RuntimeError("kaboom")
        return CheckResult(target=target, healthy=True)

    channel = new_result_channel(targets)
    scheduler = CheckScheduler(targets, fake_check, channel, interval_seconds=0)
    results = await scheduler.run_round()

    assert channel.qsize() == 2
    crashed = [r for r in results if not r.healthy]
    assert len(crashed) == 1
    assert crashed[0].error and crashed[0].error.startswith("check_crashed")


@pytest.mark.asyncio
async def test_aggregator_keeps_draining_while_notifications_are_slow() -> None:
    targets = [parse_target(f"proc{i}") for i in range(3)]
    channel = new_result_channel(targets)
    notifier = RecordingNotifier(delay=0.2)
    dedup = NotificationDeduplicator(TtlCache(default_ttl_seconds=60.0))
    aggregator = FailureAggregator(channel, dedup, notifier.notify)
    task = asyncio.create_task(aggregator.run_forever())
    try:
        for t in targets:
            await channel.put(CheckResult(target=t, healthy=False))
        await asyncio.wait_for(channel.join(), timeout=0.1)
        assert notifier.sent == []
        assert aggregator.pending == 3

        await aggregator.drain()
        assert sorted(notifier.sent) == ["proc0", "proc1", "proc2"]
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_repeated_failures_notify_once_per_ttl_window() -> None:
    target = parse_target("myproc")
    channel = new_result_channel([target])
    notifier = RecordingNotifier()
    dedup = NotificationDeduplicator(TtlCache(default_ttl_seconds=60.0))
    aggregator = FailureAggregator(channel, dedup, notifier.notify)
    task = asyncio.create_task(aggregator.run_forever())
    try:
        await channel.put(CheckResult(target=target, healthy=False))
        await channel.put(CheckResult(target=target, healthy=False))
        await channel.join()
        await aggregator.drain()
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert notifier.sent == ["myproc"]


@pytest.mark.asyncio
async def test_end_to_end_two_rounds(monkeypatch: pytest.MonkeyPatch, health_server_url: str) -> None:
    async def fake_list_processes(*, timeout_seconds: float):
        return 4242, PS_LISTING

    monkeypatch.setattr("liveness_checks.checks._list_processes", fake_list_processes)

    closed_tcp = f"tcp://127.0.0.1:{_pick_free_port()}"
    config = parse_config(
        {
            "processes": ["myproc", closed_tcp, health_server_url],
            "config": {"serverNiceName": "web-01", "tcpTimeoutSeconds": 2, "httpTimeoutSeconds": 5},
        }
    )
    targets = config.targets()
    channel = new_result_channel(targets)
    notifier = RecordingNotifier()
    dedup = NotificationDeduplicator(TtlCache(default_ttl_seconds=config.config.default_ttl_seconds))

    async with httpx.AsyncClient() as client:

        async def _check(target: Target) -> CheckResult:
            return await check_target(target, client, settings=config.config)

        scheduler = CheckScheduler(targets, _check, channel, interval_seconds=0)
        aggregator = FailureAggregator(channel, dedup, notifier.notify)
        task = asyncio.create_task(aggregator.run_forever())
        try:
            first = await scheduler.run_round()
            await channel.join()
            await aggregator.drain()
            assert sorted(r.target.identifier for r in first if not r.healthy) == sorted(["myproc", closed_tcp])
            assert sorted(notifier.sent) == sorted(["myproc", closed_tcp])

            second = await scheduler.run_round()
            await channel.join()
            await aggregator.drain()
            assert sorted(r.target.identifier for r in second if not r.healthy) == sorted(["myproc", closed_tcp])
            # Still failing, but both targets are cached.
            assert len(notifier.sent) == 2
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    assert scheduler.rounds_completed == 2
