"""Base classes for the chat action framework.

Actions are async callables keyed by their exact command token
(``!uptime``). Related actions are grouped into classes extending
BaseActionGroup, then registered with an ActionRegistry.

Key classes:
    DispatchContext: Per-invocation view handed to an action.
    BaseActionGroup: ABC that action groups implement.
    ActionRegistry: Maps command tokens to action callables.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import structlog

from ..exceptions import SendError
from ..models import ChatMessage
from ..session import QuitHandle, Writer

logger = structlog.get_logger("streambot.actions")

Action = Callable[["DispatchContext"], Awaitable[None]]


@dataclass
class DispatchContext:
    """Everything an action may touch during one invocation.

    Built fresh for each dispatch and dropped afterwards.
    """

    message: ChatMessage
    writer: Writer
    quit: QuitHandle

    @property
    def args(self) -> list:
        """Whitespace-delimited tokens after the command token."""
        return self.message.text.split()[1:]

    async def say(self, text: str) -> bool:
        """Send ``text`` to the message's channel without quoting the sender.

        A failed send is logged and reported as False so the action can
        carry on.
        """
        try:
            await self.writer.send(self.message, text)
        except SendError as e:
            logger.error("send_failed", channel=self.message.channel, error=str(e))
            return False
        return True


class BaseActionGroup(ABC):
    """Abstract base class for action groups.

    Subclasses implement get_commands() to return a dict mapping
    command tokens to async actions taking a DispatchContext.
    """

    @abstractmethod
    def get_commands(self) -> Dict[str, Action]:
        """Return {command_token: async_action} mapping."""
        ...


class ActionRegistry:
    """Maps command tokens to actions.

    Built once before the dispatcher starts. ``with_action`` returns
    the registry so construction can be chained.
    """

    def __init__(self):
        self._actions: Dict[str, Action] = {}

    def with_action(self, name: str, action: Action) -> "ActionRegistry":
        """Bind ``action`` to ``name``, replacing any earlier binding."""
        if name in self._actions:
            logger.warning("command_handler_conflict", command=name)
        self._actions[name] = action
        return self

    def register(self, group: BaseActionGroup) -> "ActionRegistry":
        """Register all commands from an action group."""
        for name, action in group.get_commands().items():
            self.with_action(name, action)
        return self

    def get(self, token: str) -> Optional[Action]:
        """Exact-match lookup. None means the token is not a command."""
        return self._actions.get(token)

    @property
    def command_names(self) -> frozenset:
        """All registered command tokens."""
        return frozenset(self._actions.keys())
