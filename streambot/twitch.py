"""Twitch chat session over IRC.

Built on the ``irc`` package's asyncio client: the reactor splits and
parses server lines, answers PINGs and calls one handler per event
type. The handlers here resolve the login and JOIN waits and feed the
dispatcher's event queue. Outbound messages go through a
sliding-window rate limiter so the bot stays under Twitch's per-user
message limit.

Key classes:
    SendRateLimiter: Async sliding-window limiter for outbound messages.
    TwitchWriter: Writer sending PRIVMSG through the limiter.
    TwitchSession: Session implementation backed by irc.client_aio.
"""

import asyncio
import time
from collections import deque
from typing import Deque, Dict, Iterable, Optional

import irc.client
import irc.connection
import structlog
from irc.client_aio import AioConnection, AioReactor, IrcProtocol
from jaraco.stream import buffer

from .exceptions import JoinError, SendError, SessionError
from .models import ChatMessage, EofEvent, MessageEvent, OtherEvent
from .session import Session, Writer

logger = structlog.get_logger("streambot.session")

CAPABILITIES = ("twitch.tv/tags", "twitch.tv/commands")

_AUTH_FAILURES = ("Login authentication failed", "Improperly formatted auth")
_JOIN_FAILURE_IDS = frozenset({
    "msg_banned", "msg_channel_suspended", "msg_channel_blocked", "tos_ban",
})

# Never forwarded to the dispatcher as OtherEvent
_INTERNAL_EVENTS = frozenset({"all_raw_messages", "ping", "pubmsg", "disconnect"})


def _tag_dict(tags: Optional[Iterable[dict]]) -> Dict[str, str]:
    # irc hands tags over as [{"key": ..., "value": ...}], empty values as None
    return {tag["key"]: tag["value"] or "" for tag in tags or ()}


class _TwitchProtocol(IrcProtocol):
    """Records why the stream ended so the disconnect handler can report it."""

    def data_received(self, data):
        try:
            super().data_received(data)
        except Exception as e:
            logger.error("irc_event_failed", error=str(e), exc_type=type(e).__name__)
            self.connection.lost_reason = e
            self.connection.disconnect()

    def connection_lost(self, exc):
        if exc is not None and self.connection.lost_reason is None:
            self.connection.lost_reason = exc
        super().connection_lost(exc)


class _TwitchConnection(AioConnection):
    protocol_class = _TwitchProtocol
    # Chat text is user input; undecodable bytes must not kill the session
    buffer_class = buffer.LenientDecodingLineBuffer
    lost_reason: Optional[BaseException] = None


class _TwitchReactor(AioReactor):
    connection_class = _TwitchConnection


class SendRateLimiter:
    """Allows at most ``limit`` acquisitions per ``window`` seconds.

    ``acquire()`` sleeps until a slot frees up instead of rejecting.
    """

    def __init__(self, limit: int = 20, window: float = 30.0):
        self.limit = max(1, limit)
        self.window = window
        self._sent: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._sent and self._sent[0] <= now - self.window:
            self._sent.popleft()

    async def acquire(self) -> None:
        while True:
            now = time.monotonic()
            self._prune(now)
            if len(self._sent) < self.limit:
                self._sent.append(now)
                return
            delay = self._sent[0] + self.window - now
            logger.debug("send_rate_limited", delay=round(delay, 2))
            await asyncio.sleep(delay)


class TwitchWriter(Writer):
    """Sends chat messages as ``PRIVMSG #channel :text``."""

    def __init__(self, session: "TwitchSession", limiter: SendRateLimiter):
        self._session = session
        self._limiter = limiter

    async def send(self, in_reply_to: ChatMessage, text: str) -> None:
        # IRC lines cannot carry a newline
        text = " ".join(text.splitlines())
        await self._limiter.acquire()
        self._session.send_privmsg(in_reply_to.channel, text)


class TwitchSession(Session):
    """Twitch chat over ``irc.chat.twitch.tv``.

    Args:
        name: Bot login name.
        token: OAuth token, with or without the ``oauth:`` prefix.
        server: IRC server host.
        port: IRC server port (6697 is TLS, 6667 plain).
        tls: Wrap the connection in TLS.
        join_timeout: Seconds to wait for login and JOIN confirmations.
        rate_limit: Outbound messages allowed per ``rate_window`` seconds.
    """

    def __init__(
        self,
        name: str,
        token: str,
        server: str = "irc.chat.twitch.tv",
        port: int = 6697,
        tls: bool = True,
        join_timeout: float = 10.0,
        rate_limit: int = 20,
        rate_window: float = 30.0,
    ):
        super().__init__()
        self._name = name.lower()
        self._token = token
        self.server = server
        self.port = port
        self.tls = tls
        self.join_timeout = join_timeout
        self._connection: Optional[_TwitchConnection] = None
        self._ready: Optional[asyncio.Future] = None
        self._pending_joins: Dict[str, asyncio.Future] = {}
        self._server_error: Optional[str] = None
        self._last_raw = ""
        self._disconnected = False
        self._writer = TwitchWriter(self, SendRateLimiter(rate_limit, rate_window))

    @classmethod
    def from_config(cls, config) -> "TwitchSession":
        return cls(
            name=config.twitch_name,
            token=config.twitch_token,
            server=config.twitch_server,
            port=config.twitch_port,
            tls=config.twitch_tls,
            join_timeout=config.join_timeout,
            rate_limit=config.send_rate_limit,
            rate_window=config.send_rate_window,
        )

    @property
    def identity(self) -> str:
        return self._name

    @property
    def writer(self) -> TwitchWriter:
        return self._writer

    async def connect(self) -> None:
        if not self._name or not self._token:
            raise SessionError("Missing Twitch credentials (TWITCH_NAME / TWITCH_TOKEN)")

        loop = asyncio.get_running_loop()
        reactor = _TwitchReactor(loop=loop)
        reactor.add_global_handler("welcome", self._on_welcome)
        reactor.add_global_handler("join", self._on_join)
        reactor.add_global_handler("pubmsg", self._on_pubmsg)
        reactor.add_global_handler("privnotice", self._on_notice)
        reactor.add_global_handler("pubnotice", self._on_notice)
        reactor.add_global_handler("error", self._on_error)
        reactor.add_global_handler("disconnect", self._on_disconnect)
        reactor.add_global_handler("all_events", self._on_any, 10)

        self._ready = loop.create_future()
        self._connection = reactor.server()
        factory = irc.connection.AioFactory(ssl=True) if self.tls else irc.connection.AioFactory()
        token = self._token if self._token.startswith("oauth:") else f"oauth:{self._token}"

        logger.info("irc_connecting", server=self.server, port=self.port, tls=self.tls)
        try:
            await asyncio.wait_for(
                self._connection.connect(
                    self.server, self.port, self._name,
                    password=token, connect_factory=factory,
                ),
                self.join_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise SessionError(
                "Cannot reach chat server", server=self.server, port=self.port,
                error=str(e) or type(e).__name__,
            ) from e

        self._connection.cap("REQ", *CAPABILITIES)
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), self.join_timeout)
        except asyncio.TimeoutError as e:
            raise SessionError(
                "Timed out waiting for login", timeout=self.join_timeout
            ) from e
        logger.info("logged_in", identity=self._name)

    async def join(self, channel: str) -> None:
        channel = channel.lower().lstrip("#")
        future = asyncio.get_running_loop().create_future()
        self._pending_joins[channel] = future
        try:
            try:
                self._require_connection().join(f"#{channel}")
            except (SendError, irc.client.IRCError) as e:
                raise JoinError("JOIN could not be sent", channel=channel) from e
            try:
                await asyncio.wait_for(future, self.join_timeout)
            except asyncio.TimeoutError as e:
                raise JoinError(
                    "Timed out waiting for JOIN confirmation",
                    channel=channel, timeout=self.join_timeout,
                ) from e
        finally:
            self._pending_joins.pop(channel, None)
        logger.info("joined_channel", channel=channel)

    def send_privmsg(self, channel: str, text: str) -> None:
        """Send one chat line to ``channel``.

        Raises:
            SendError: Not connected, or the line was rejected
                (too long or containing line breaks).
        """
        connection = self._require_connection()
        try:
            connection.privmsg(f"#{channel}", text)
        except (irc.client.IRCError, ValueError) as e:
            raise SendError("Message could not be sent", channel=channel, error=str(e)) from e
        logger.debug("irc_send", channel=channel, text=text)

    async def close(self) -> None:
        if self._connection is not None and self._connection.is_connected():
            self._connection.disconnect("Bye")
        logger.info("session_closed")

    def _require_connection(self) -> _TwitchConnection:
        if self._connection is None or not self._connection.is_connected():
            raise SendError("Not connected to chat")
        return self._connection

    # --- reactor handlers ---

    def _on_welcome(self, connection, event):
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)

    def _on_join(self, connection, event):
        if event.source is None or event.source.nick.lower() != self._name:
            return
        future = self._pending_joins.get(event.target.lstrip("#").lower())
        if future is not None and not future.done():
            future.set_result(None)

    def _on_pubmsg(self, connection, event):
        tags = _tag_dict(event.tags)
        self._push(MessageEvent(message=ChatMessage(
            sender=event.source.nick,
            text=event.arguments[0],
            channel=event.target.lstrip("#"),
            display_name=tags.get("display-name") or None,
            tags=tags,
        )))

    def _on_notice(self, connection, event):
        text = event.arguments[0] if event.arguments else ""
        if self._ready is not None and not self._ready.done():
            if any(reason in text for reason in _AUTH_FAILURES):
                self._ready.set_exception(SessionError("Login rejected by server", notice=text))
                return

        target = (event.target or "").lstrip("#").lower()
        future = self._pending_joins.get(target)
        if future is not None and not future.done():
            if _tag_dict(event.tags).get("msg-id") in _JOIN_FAILURE_IDS:
                future.set_exception(JoinError(text, channel=target))
                return

        logger.info("server_notice", target=target, notice=text)

    def _on_error(self, connection, event):
        # ERROR always precedes the server closing the link
        self._server_error = event.target or "ERROR"
        logger.warning("server_error", reason=self._server_error)

    def _on_any(self, connection, event):
        if event.type == "all_raw_messages":
            self._last_raw = event.arguments[0]
        elif event.type not in _INTERNAL_EVENTS:
            self._push(OtherEvent(command=event.type, raw=self._last_raw))

    def _on_disconnect(self, connection, event):
        if self._disconnected:
            return
        self._disconnected = True

        reason = connection.lost_reason or self._server_error
        failure = (
            SessionError("Chat connection failed", error=str(reason) or type(reason).__name__)
            if reason is not None else None
        )

        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(
                failure or SessionError("Connection closed during login")
            )
        for future in self._pending_joins.values():
            if not future.done():
                future.set_exception(JoinError("Connection closed"))

        if failure is not None:
            logger.error("irc_failed", error=str(failure))
            self._push(failure)
        else:
            logger.info("irc_disconnected")
            self._push(EofEvent())
