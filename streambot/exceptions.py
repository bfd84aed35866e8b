"""Custom exception hierarchy for streambot.

Separates the failures the dispatcher treats differently: a failed
channel join or a rejected send is logged and the run continues,
while a session-level failure ends the run.
"""

from typing import Any, Optional


class StreambotError(Exception):
    """Base exception for all streambot errors.

    Attributes:
        message: Human-readable error description.
        module: Originating module name (e.g. "session").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.module = module
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, module={self.module!r})"


class SessionError(StreambotError):
    """The chat session itself is unusable (connect, auth, stream error).

    Fatal to the run: propagates out of StreamBot.run().
    """

    def __init__(self, message: str = "", *, module: Optional[str] = None, **context: Any):
        super().__init__(message, module=module or "session", **context)


class JoinError(StreambotError):
    """Joining a single channel failed. Logged, never fatal.

    Attributes:
        channel: The channel that could not be joined.
    """

    def __init__(
        self,
        message: str = "",
        *,
        channel: Optional[str] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.channel = channel
        super().__init__(
            message, module=module or "session", channel=channel, **context
        )


class SendError(StreambotError):
    """The writer could not deliver an outbound chat message."""

    def __init__(
        self,
        message: str = "",
        *,
        channel: Optional[str] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.channel = channel
        super().__init__(
            message, module=module or "writer", channel=channel, **context
        )
