"""Helpdesk task wrappers over the inference broker."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Literal

from helpdesk_ai.agent.providers import TaskType
from helpdesk_ai.agent.request import AIMessage, AIRequest

if TYPE_CHECKING:
    from helpdesk_ai.agent.inference import InferenceBroker, InferenceResult

Tone = Literal["professional", "friendly", "formal"]
TONES: tuple[str, ...] = ("professional", "friendly", "formal")

SUMMARY_MAX_TOKENS = 256
REPLY_MAX_TOKENS = 512

SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes support tickets. "
    "Provide a brief, clear summary of the ticket and conversation in 2-3 sentences. "
    "Focus on the main issue and current status."
)

REPLY_SYSTEM_PROMPT = (
    "You are a helpful support agent. Write a {tone} reply to help resolve the "
    "customer's issue. Be concise and helpful. Do not include a greeting or "
    "signature - just the body of the reply."
)


def format_conversation(messages: Iterable[Mapping[str, str]]) -> str:
    """Render ticket messages as ``author_type: body`` blocks."""
    return "\n\n".join(f"{m['author_type']}: {m['body']}" for m in messages)


def _ticket_context(subject: str, description: str, messages: Iterable[Mapping[str, str]]) -> str:
    return (
        f"Subject: {subject}\n\n"
        f"Description: {description}\n\n"
        f"Conversation:\n{format_conversation(messages)}"
    )


async def generate_ticket_summary(
    broker: InferenceBroker,
    subject: str,
    description: str,
    messages: Iterable[Mapping[str, str]],
    ticket_id: str | None = None,
    user_id: str | None = None,
) -> InferenceResult:
    """Summarize a ticket and its conversation in 2-3 sentences."""
    request = AIRequest(
        messages=[
            AIMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
            AIMessage(
                role="user",
                content=(
                    f"{_ticket_context(subject, description, messages)}\n\n"
                    "Please summarize this ticket."
                ),
            ),
        ],
        max_tokens=SUMMARY_MAX_TOKENS,
        task_type=TaskType.SUMMARY,
        ticket_id=ticket_id,
        user_id=user_id,
    )
    return await broker.infer(request)


async def generate_suggested_reply(
    broker: InferenceBroker,
    subject: str,
    description: str,
    messages: Iterable[Mapping[str, str]],
    tone: Tone = "professional",
    ticket_id: str | None = None,
    user_id: str | None = None,
) -> InferenceResult:
    """Draft the body of an agent reply in the requested tone.

    Raises:
        ValueError: If *tone* is not one of ``professional``, ``friendly``
            or ``formal``.
    """
    if tone not in TONES:
        raise ValueError(f"Unsupported tone: {tone}")

    request = AIRequest(
        messages=[
            AIMessage(role="system", content=REPLY_SYSTEM_PROMPT.format(tone=tone)),
            AIMessage(
                role="user",
                content=(
                    f"{_ticket_context(subject, description, messages)}\n\n"
                    "Write a helpful reply to the customer."
                ),
            ),
        ],
        max_tokens=REPLY_MAX_TOKENS,
        task_type=TaskType.REPLY,
        ticket_id=ticket_id,
        user_id=user_id,
    )
    return await broker.infer(request)
