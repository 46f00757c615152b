"""Tests for the messaging client, using an in-process fake connection."""

from __future__ import annotations

import asyncio
import os
import signal
import ssl
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from flint.config import MessagingAuthMethod, MessagingConfig
from flint.errors import MessagingError, ValidationError
from flint.messaging import Message, MessagingClient, resolve_creds_path, store_creds_path


@dataclass
class FakeMsg:
    subject: str
    data: bytes
    reply: str = ""
    headers: dict[str, str] | None = None


class FakeSubscription:
    def __init__(self) -> None:
        self.unsubscribed = False

    async def unsubscribe(self) -> None:
        self.unsubscribed = True


@dataclass
class FakeConnection:
    """Minimal stand-in for a nats-py client."""

    published: list[tuple[str, bytes, str, dict[str, str] | None]] = field(default_factory=list)
    subscriptions: list[FakeSubscription] = field(default_factory=list)
    callbacks: list[Any] = field(default_factory=list)
    replies: dict[str, bytes] = field(default_factory=dict)
    drained: bool = False
    closed: bool = False
    is_closed: bool = False
    # Messages delivered to each new subscription right after subscribing
    backlog: list[FakeMsg] = field(default_factory=list)

    async def publish(self, subject: str, payload: bytes, reply: str = "", headers: Any = None) -> None:
        self.published.append((subject, payload, reply, headers))

    async def flush(self, timeout: float = 0) -> None:
        return None

    async def request(self, subject: str, payload: bytes, timeout: float = 0, headers: Any = None) -> FakeMsg:
        if subject not in self.replies:
            raise asyncio.TimeoutError()
        return FakeMsg(subject="_INBOX.1", data=self.replies[subject], headers={"status": "ok"})

    async def subscribe(self, subject: str, queue: str = "", cb: Any = None) -> FakeSubscription:
        sub = FakeSubscription()
        self.subscriptions.append(sub)
        self.callbacks.append(cb)
        for msg in self.backlog:
            asyncio.get_running_loop().call_soon(lambda m=msg: asyncio.ensure_future(cb(m)))
        return sub

    async def drain(self) -> None:
        self.drained = True

    async def close(self) -> None:
        self.closed = True


def make_client(
    conn: FakeConnection | None = None,
    config: MessagingConfig | None = None,
    environment_dir: Path | None = None,
) -> tuple[MessagingClient, FakeConnection, dict[str, Any]]:
    conn = conn or FakeConnection()
    captured: dict[str, Any] = {}

    async def connect(**options: Any) -> FakeConnection:
        captured.update(options)
        return conn

    config = config or MessagingConfig(
        servers=["nats://localhost:4222"], auth_method=MessagingAuthMethod.TOKEN, token="eyJtoken", tls_enabled=False
    )
    return MessagingClient(config, environment_dir, connect=connect), conn, captured


class TestConnectOptions:
    """Tests for MessagingClient.connect_options()."""

    def test_token(self) -> None:
        """Test token authentication options."""
        client, _, _ = make_client()
        options = client.connect_options()
        assert options["servers"] == ["nats://localhost:4222"]
        assert options["token"] == "eyJtoken"
        assert options["name"] == "flint-cli"
        assert "tls" not in options

    def test_user_pass(self) -> None:
        """Test username/password options."""
        config = MessagingConfig(servers=["nats://x:4222"], tls_enabled=False)
        config.set_user_pass("operator", "secret")
        options = make_client(config=config)[0].connect_options()
        assert (options["user"], options["password"]) == ("operator", "secret")

    def test_creds_relative_to_environment(self, tmp_path: Path) -> None:
        """Test that ./ credential paths resolve inside the environment directory."""
        (tmp_path / "user.creds").write_text("creds")
        config = MessagingConfig(servers=["nats://x:4222"], creds_file="./user.creds", tls_enabled=False)
        options = make_client(config=config, environment_dir=tmp_path)[0].connect_options()
        assert options["user_credentials"] == str(tmp_path / "user.creds")

    def test_missing_secrets(self, tmp_path: Path) -> None:
        """Test that missing secrets fail before connecting."""
        configs = [
            MessagingConfig(servers=["nats://x"], auth_method=MessagingAuthMethod.TOKEN),
            MessagingConfig(servers=["nats://x"], auth_method=MessagingAuthMethod.USER_PASS, username="u"),
            MessagingConfig(servers=["nats://x"], auth_method=MessagingAuthMethod.CREDS),
            MessagingConfig(servers=["nats://x"], creds_file="./missing.creds"),
            MessagingConfig(servers=[], auth_method=MessagingAuthMethod.TOKEN, token="t"),
        ]
        for config in configs:
            with pytest.raises(MessagingError):
                make_client(config=config, environment_dir=tmp_path)[0].connect_options()

    def test_tls(self) -> None:
        """Test TLS with and without certificate verification."""
        config = MessagingConfig(servers=["tls://x"], auth_method=MessagingAuthMethod.TOKEN, token="t")
        assert make_client(config=config)[0].connect_options()["tls"].verify_mode == ssl.CERT_REQUIRED

        config.tls_verify = False
        context = make_client(config=config)[0].connect_options()["tls"]
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False


class TestCredsPaths:
    """Tests for credentials path helpers."""

    def test_resolve(self, tmp_path: Path) -> None:
        """Test relative and absolute credentials paths."""
        assert resolve_creds_path("./a.creds", tmp_path) == tmp_path / "a.creds"
        assert resolve_creds_path("/etc/a.creds", tmp_path) == Path("/etc/a.creds")

    def test_store_inside_environment(self, tmp_path: Path) -> None:
        """Test that files inside the environment directory are stored relative."""
        assert store_creds_path(str(tmp_path / "keys" / "a.creds"), tmp_path) == "./keys/a.creds"

    def test_store_outside_environment(self, tmp_path: Path) -> None:
        """Test that other paths are stored as given."""
        other = tmp_path.parent / "elsewhere.creds"
        assert store_creds_path(str(other), tmp_path / "env") == str(other)
        assert store_creds_path("./a.creds", tmp_path) == "./a.creds"


class TestPublishRequest:
    """Tests for publish() and request()."""

    def test_publish(self) -> None:
        """Test that publishing sends the payload and drains on exit."""
        client, conn, _ = make_client()

        async def run() -> None:
            async with client:
                await client.publish("telemetry.edge1", b"hello", headers={"k": "v"}, reply="replies.1")

        asyncio.run(run())
        assert conn.published == [("telemetry.edge1", b"hello", "replies.1", {"k": "v"})]
        assert conn.drained

    def test_publish_rejects_wildcards(self) -> None:
        """Test that wildcard subjects are rejected before sending."""
        client, conn, _ = make_client()

        async def run() -> None:
            async with client:
                await client.publish("telemetry.*", b"x")

        with pytest.raises(ValidationError):
            asyncio.run(run())
        assert conn.published == []
        assert conn.drained

    def test_not_connected(self) -> None:
        """Test operations without a connection."""
        client, _, _ = make_client()
        with pytest.raises(MessagingError):
            asyncio.run(client.publish("a.b", b"x"))

    def test_request(self) -> None:
        """Test a request with a reply."""
        conn = FakeConnection(replies={"svc.echo": b"pong"})
        client, _, _ = make_client(conn)

        async def run() -> Message:
            async with client:
                return await client.request("svc.echo", b"ping", timeout=timedelta(seconds=1))

        reply = asyncio.run(run())
        assert reply.text == "pong"
        assert reply.headers == {"status": "ok"}
        assert reply.to_dict()["size"] == 4

    def test_request_timeout(self) -> None:
        """Test that a missing reply is a messaging error with a hint."""
        client, _, _ = make_client()

        async def run() -> None:
            async with client:
                await client.request("svc.none", b"ping")

        with pytest.raises(MessagingError) as exc_info:
            asyncio.run(run())
        assert "timed out" in str(exc_info.value)

    def test_connect_failure(self) -> None:
        """Test that connection failures are wrapped."""
        async def connect(**options: Any) -> Any:
            raise OSError("Connection refused")

        client = MessagingClient(
            MessagingConfig(servers=["nats://x"], auth_method=MessagingAuthMethod.TOKEN, token="t", tls_enabled=False),
            connect=connect,
        )
        with pytest.raises(MessagingError) as exc_info:
            asyncio.run(client.connect())
        assert exc_info.value.hint is not None


class TestSubscribe:
    """Tests for subscribe()."""

    def test_stops_after_count(self) -> None:
        """Test that delivery stops after max_messages and unsubscribes."""
        conn = FakeConnection(backlog=[FakeMsg("a.1", b"one"), FakeMsg("a.2", b"two"), FakeMsg("a.3", b"three")])
        client, _, _ = make_client(conn)
        received: list[str] = []

        async def run() -> int:
            async with client:
                return await client.subscribe("a.*", lambda m: received.append(m.text), max_messages=2)

        assert asyncio.run(run()) == 2
        assert received == ["one", "two"]
        assert conn.subscriptions[0].unsubscribed

    def test_timeout(self) -> None:
        """Test that the timeout ends an idle subscription."""
        client, conn, _ = make_client()

        async def run() -> int:
            async with client:
                return await client.subscribe("idle.>", lambda m: None, timeout=timedelta(milliseconds=50))

        assert asyncio.run(run()) == 0
        assert conn.subscriptions[0].unsubscribed

    def test_handler_errors_do_not_stop_delivery(self) -> None:
        """Test that a failing handler only logs a warning."""
        conn = FakeConnection(backlog=[FakeMsg("a.1", b"bad"), FakeMsg("a.2", b"good")])
        client, _, _ = make_client(conn)
        received: list[str] = []

        async def handler(msg: Message) -> None:
            if msg.text == "bad":
                raise RuntimeError("boom")
            received.append(msg.text)

        async def run() -> int:
            async with client:
                return await client.subscribe("a.*", handler, queue="workers", max_messages=2)

        assert asyncio.run(run()) == 2
        assert received == ["good"]

    def test_invalid_queue(self) -> None:
        """Test queue validation before subscribing."""
        client, conn, _ = make_client()

        async def run() -> None:
            async with client:
                await client.subscribe("a.b", lambda m: None, queue="bad queue")

        with pytest.raises(ValidationError):
            asyncio.run(run())
        assert conn.subscriptions == []

    @pytest.mark.skipif(sys.platform == "win32", reason="requires POSIX signals")
    def test_interrupt(self) -> None:
        """Test that SIGINT ends the wait, unsubscribes and restores the handler."""
        client, conn, _ = make_client()
        previous = signal.getsignal(signal.SIGINT)

        async def run() -> int:
            async with client:
                asyncio.get_running_loop().call_later(0.05, os.kill, os.getpid(), signal.SIGINT)
                return await client.subscribe("events.>", lambda m: None)

        assert asyncio.run(run()) == 0
        assert conn.subscriptions[0].unsubscribed
        assert conn.drained
        assert signal.getsignal(signal.SIGINT) is previous
