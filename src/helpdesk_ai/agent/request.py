"""Provider-neutral request and message types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from helpdesk_ai.agent.providers import TaskType

DEFAULT_MAX_TOKENS = 1024
DEFAULT_TEMPERATURE = 0.7

Role = Literal["system", "user", "assistant"]


@dataclass
class AIMessage:
    """A single chat message."""

    role: Role
    content: str


@dataclass
class AIRequest:
    """One logical "ask a language model" request."""

    messages: list[AIMessage]
    max_tokens: int | None = None
    temperature: float | None = None
    task_type: TaskType | str = TaskType.OTHER
    ticket_id: str | None = None
    user_id: str | None = None

    @property
    def resolved_max_tokens(self) -> int:
        """``max_tokens`` or the default of 1024."""
        return self.max_tokens if self.max_tokens is not None else DEFAULT_MAX_TOKENS
