"""Tests for the Twitch IRC session against a local line server."""

import asyncio
import socket
import struct
from typing import List
from unittest.mock import MagicMock, patch

import pytest

from streambot.actions.base import ActionRegistry
from streambot.bot import LoopState, StreamBot
from streambot.exceptions import JoinError, SendError, SessionError
from streambot.membership import MembershipTracker
from streambot.models import ChatMessage, EofEvent, MessageEvent, OtherEvent
from streambot.twitch import SendRateLimiter, TwitchSession

NICK = "streambot"


class IrcClientSide:
    """Server's view of one connected client."""

    def __init__(self, reader, writer, received: List[str]):
        self.reader = reader
        self.writer = writer
        self.received = received

    async def send(self, *lines: str) -> None:
        for line in lines:
            self.writer.write((line + "\r\n").encode("utf-8"))
        await self.writer.drain()

    async def expect(self, command: str) -> str:
        """Read client lines until one starts with ``command``."""
        while True:
            raw = await self.reader.readline()
            if not raw:
                raise ConnectionError(f"client left before sending {command}")
            line = raw.decode("utf-8").rstrip("\r\n")
            self.received.append(line)
            if line.startswith(command):
                return line

    async def login(self) -> None:
        await self.expect("NICK")
        await self.send(f":tmi.twitch.tv 001 {NICK} :Welcome, GLHF!")

    async def confirm_join(self) -> str:
        channel = (await self.expect("JOIN")).split()[1]
        await self.send(f":{NICK}!{NICK}@{NICK}.tmi.twitch.tv JOIN {channel}")
        return channel

    async def wait_closed(self) -> None:
        while await self.reader.read(4096):
            pass

    def reset(self) -> None:
        sock = self.writer.get_extra_info("socket")
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        self.writer.transport.abort()


class LocalIrcServer:
    """Plain-TCP IRC server on localhost running ``script`` per client."""

    def __init__(self, script):
        self.script = script
        self.received: List[str] = []
        self._tasks: List[asyncio.Task] = []

    async def __aenter__(self):
        self._server = await asyncio.start_server(self._serve, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc):
        for task in self._tasks:
            task.cancel()
        self._server.close()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _serve(self, reader, writer):
        self._tasks.append(asyncio.current_task())
        try:
            await self.script(IrcClientSide(reader, writer, self.received))
        finally:
            writer.close()

    def session(self, **kwargs) -> TwitchSession:
        kwargs.setdefault("join_timeout", 1.0)
        return TwitchSession(
            "StreamBot", "abc", server="127.0.0.1", port=self.port, tls=False, **kwargs
        )


def _recording_bot(vips=("alice",)):
    calls = []

    async def boop(ctx):
        calls.append(ctx.message.sender)

    registry = ActionRegistry().with_action("!boop", boop)
    return StreamBot(registry, MembershipTracker(vips=vips)), calls


async def _drain(session) -> list:
    events = []
    while True:
        event = await asyncio.wait_for(session.next_event(), 2.0)
        events.append(event)
        if isinstance(event, EofEvent):
            return events


# --- end to end through the dispatcher ---

@pytest.mark.asyncio
async def test_server_close_ends_run_cleanly():
    async def script(client):
        await client.login()
        await client.confirm_join()
        await client.send(
            "@badge-info=;display-name=Alice;mod=0 "
            ":alice!alice@alice.tmi.twitch.tv PRIVMSG #kirino :!boop now"
        )

    bot, calls = _recording_bot()
    async with LocalIrcServer(script) as server:
        await asyncio.wait_for(bot.run(server.session(), ["kirino"]), 5.0)

    assert calls == ["alice"]
    assert bot.state == LoopState.STOPPED
    assert "PASS oauth:abc" in server.received
    assert f"NICK {NICK}" in server.received
    assert any(line.startswith("CAP REQ") for line in server.received)


@pytest.mark.asyncio
async def test_server_error_line_fails_run():
    async def script(client):
        await client.login()
        await client.confirm_join()
        await client.send("ERROR :Closing Link: streambot")

    bot, calls = _recording_bot()
    async with LocalIrcServer(script) as server:
        with pytest.raises(SessionError, match="Closing Link"):
            await asyncio.wait_for(bot.run(server.session(), ["kirino"]), 5.0)

    assert bot.state == LoopState.STOPPED


@pytest.mark.asyncio
async def test_connection_reset_fails_run():
    async def script(client):
        await client.login()
        await client.confirm_join()
        client.reset()

    bot, _ = _recording_bot()
    async with LocalIrcServer(script) as server:
        with pytest.raises(SessionError, match="Chat connection failed"):
            await asyncio.wait_for(bot.run(server.session(), ["kirino"]), 5.0)


@pytest.mark.asyncio
async def test_failing_event_handler_fails_run_instead_of_hanging():
    async def script(client):
        await client.login()
        await client.confirm_join()
        await client.send(":alice!alice@alice.tmi.twitch.tv PRIVMSG #kirino :!boop")
        await client.wait_closed()

    bot, calls = _recording_bot()
    async with LocalIrcServer(script) as server:
        session = server.session()
        with patch.object(session, "_on_pubmsg", side_effect=RuntimeError("boom")):
            with pytest.raises(SessionError, match="boom"):
                await asyncio.wait_for(bot.run(session, ["kirino"]), 5.0)

    assert calls == []


# --- login ---

@pytest.mark.asyncio
async def test_login_failure_notice_rejects_connect():
    async def script(client):
        await client.expect("NICK")
        await client.send(":tmi.twitch.tv NOTICE * :Login authentication failed")

    async with LocalIrcServer(script) as server:
        session = server.session()
        with pytest.raises(SessionError, match="Login rejected"):
            await session.connect()
        await session.close()


@pytest.mark.asyncio
async def test_close_during_login_rejects_connect():
    async def script(client):
        await client.expect("NICK")

    async with LocalIrcServer(script) as server:
        session = server.session()
        with pytest.raises(SessionError):
            await session.connect()
        await session.close()


@pytest.mark.asyncio
async def test_unreachable_server_rejects_connect():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()

    session = TwitchSession("bot", "abc", server="127.0.0.1", port=port, tls=False)
    with pytest.raises(SessionError, match="Cannot reach"):
        await session.connect()
    await session.close()


@pytest.mark.asyncio
async def test_connect_requires_credentials():
    session = TwitchSession("", "")
    with pytest.raises(SessionError, match="credentials"):
        await session.connect()


# --- joins ---

@pytest.mark.asyncio
async def test_join_times_out_without_confirmation():
    async def script(client):
        await client.login()
        await client.expect("JOIN")
        await client.wait_closed()

    async with LocalIrcServer(script) as server:
        session = server.session(join_timeout=0.2)
        await session.connect()
        with pytest.raises(JoinError, match="Timed out"):
            await session.join("kirino")
        await session.close()


@pytest.mark.asyncio
async def test_banned_notice_fails_join():
    async def script(client):
        await client.login()
        await client.expect("JOIN")
        await client.send(
            "@msg-id=msg_banned :tmi.twitch.tv NOTICE #kirino "
            ":You are permanently banned from talking in kirino."
        )
        await client.wait_closed()

    async with LocalIrcServer(script) as server:
        session = server.session()
        await session.connect()
        with pytest.raises(JoinError, match="banned"):
            await session.join("#Kirino")
        await session.close()


# --- inbound events ---

@pytest.mark.asyncio
async def test_privmsg_fields_and_other_events():
    async def script(client):
        await client.login()
        await client.send(
            "@badge-info=;display-name=Alice;mod=0 "
            ":alice!alice@alice.tmi.twitch.tv PRIVMSG #kirino :see https://example.com :)",
            ":tmi.twitch.tv ROOMSTATE #kirino",
        )

    async with LocalIrcServer(script) as server:
        session = server.session()
        await session.connect()
        events = await _drain(session)
        await session.close()

    messages = [e.message for e in events if isinstance(e, MessageEvent)]
    assert len(messages) == 1
    assert messages[0].sender == "alice"
    assert messages[0].display_name == "Alice"
    assert messages[0].channel == "kirino"
    assert messages[0].text == "see https://example.com :)"
    assert messages[0].tags["badge-info"] == ""

    others = [e for e in events if isinstance(e, OtherEvent)]
    assert "roomstate" in [e.command for e in others]
    roomstate = next(e for e in others if e.command == "roomstate")
    assert roomstate.raw == ":tmi.twitch.tv ROOMSTATE #kirino"


@pytest.mark.asyncio
async def test_ping_is_answered():
    loop = asyncio.get_running_loop()
    pong = loop.create_future()

    async def script(client):
        await client.login()
        await client.send("PING :tmi.twitch.tv")
        pong.set_result(await client.expect("PONG"))
        await client.wait_closed()

    async with LocalIrcServer(script) as server:
        session = server.session()
        await session.connect()
        assert "tmi.twitch.tv" in await asyncio.wait_for(pong, 2.0)
        await session.close()


# --- outbound ---

@pytest.mark.asyncio
async def test_writer_sends_single_privmsg_line():
    loop = asyncio.get_running_loop()
    sent = loop.create_future()

    async def script(client):
        await client.login()
        sent.set_result(await client.expect("PRIVMSG"))
        await client.wait_closed()

    async with LocalIrcServer(script) as server:
        session = server.session()
        await session.connect()
        msg = ChatMessage(sender="alice", text="!uptime", channel="kirino")
        await session.writer.send(msg, "its been\nrunning")
        assert await asyncio.wait_for(sent, 2.0) == "PRIVMSG #kirino :its been running"
        await session.close()


@pytest.mark.asyncio
async def test_send_without_connection_raises_send_error():
    session = TwitchSession("bot", "abc")
    msg = ChatMessage(sender="alice", text="!uptime", channel="kirino")
    with pytest.raises(SendError):
        await session.writer.send(msg, "hello")


# --- SendRateLimiter ---

@pytest.mark.asyncio
async def test_rate_limiter_allows_burst_up_to_limit():
    limiter = SendRateLimiter(limit=3, window=30)
    for _ in range(3):
        await asyncio.wait_for(limiter.acquire(), 0.5)


@pytest.mark.asyncio
async def test_rate_limiter_blocks_over_limit():
    limiter = SendRateLimiter(limit=1, window=30)
    await limiter.acquire()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(limiter.acquire(), 0.05)


@pytest.mark.asyncio
async def test_rate_limiter_frees_slot_after_window():
    limiter = SendRateLimiter(limit=1, window=0.05)
    await limiter.acquire()
    await asyncio.wait_for(limiter.acquire(), 1.0)


# --- construction ---

def test_identity_is_lowercased_login():
    assert TwitchSession("StreamBot", "abc").identity == "streambot"


def test_from_config():
    config = MagicMock()
    config.twitch_name = "bot"
    config.twitch_token = "oauth:abc"
    config.twitch_server = "irc.example.invalid"
    config.twitch_port = 6667
    config.twitch_tls = False
    config.join_timeout = 3.0
    config.send_rate_limit = 5
    config.send_rate_window = 10.0
    session = TwitchSession.from_config(config)
    assert session.server == "irc.example.invalid"
    assert session.port == 6667
    assert session.tls is False
    assert session.join_timeout == 3.0
