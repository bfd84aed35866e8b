"""Chat action framework for streambot.

Provides the BaseActionGroup ABC, the per-call DispatchContext and the
ActionRegistry mapping command tokens to async actions.
"""

from .base import Action, ActionRegistry, BaseActionGroup, DispatchContext
from .core import CoreActions, build_registry

__all__ = [
    "Action",
    "ActionRegistry",
    "BaseActionGroup",
    "CoreActions",
    "DispatchContext",
    "build_registry",
]
