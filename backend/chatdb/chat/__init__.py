"""Chat orchestration module.

Contains prompt rendering and the chat turn engine.
"""

from .engine import TRANSITIONS, ChatEngine, TurnState
from .prompt_builder import PromptBuilder

__all__ = [
    "TRANSITIONS",
    "ChatEngine",
    "TurnState",
    "PromptBuilder",
]
