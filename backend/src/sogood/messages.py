"""Message history sanitization and merging.

Stored message arrays come from an untyped JSON column and incoming ones from
clients, so every helper here degrades malformed input to an empty or neutral
value instead of raising.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol, Sequence, TypeVar

from sogood_models import ChatTurn, Message

logger = logging.getLogger(__name__)

VALID_ROLES = ("system", "user", "assistant")


class TurnLike(Protocol):
    role: str
    content: str


T = TypeVar("T", bound=TurnLike)


@dataclass(frozen=True)
class InvalidMessage:
    """A stored or incoming element that is not a usable message."""

    index: int
    reason: str


def _coerce_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def _coerce_timestamp(value: Any, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return int(value)


def parse_message(
    value: Any,
    conversation_id: str,
    index: int,
    created_at_fallback: int,
) -> Message | InvalidMessage:
    """Parse one element of a message array."""
    if not isinstance(value, dict):
        return InvalidMessage(index, f"expected an object, got {type(value).__name__}")

    role = value.get("role")
    if role not in VALID_ROLES:
        return InvalidMessage(index, f"unknown role {role!r}")

    message_id = value.get("id")
    if not isinstance(message_id, str) or not message_id:
        message_id = f"{role}:{conversation_id}:{index}"

    return Message(
        id=message_id,
        role=role,
        content=_coerce_content(value.get("content")),
        timestamp=_coerce_timestamp(value.get("timestamp"), created_at_fallback),
    )


def sanitize_messages(
    raw: Any,
    conversation_id: str,
    created_at_fallback: int,
) -> list[Message]:
    """Validate an arbitrary payload into an ordered list of messages."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (ValueError, RecursionError):
            logger.warning(f"Discarding malformed message JSON for {conversation_id}")
            return []

    if not isinstance(raw, list):
        return []

    messages: list[Message] = []
    for index, item in enumerate(raw):
        if isinstance(item, (Message, ChatTurn)):
            item = item.model_dump()
        parsed = parse_message(item, conversation_id, index, created_at_fallback)
        if isinstance(parsed, InvalidMessage):
            logger.debug(f"Skipping message {index} of {conversation_id}: {parsed.reason}")
            continue
        messages.append(parsed)
    return messages


def _same_turn(a: TurnLike, b: TurnLike) -> bool:
    return a.role == b.role and (a.content or "").strip() == (b.content or "").strip()


def merge_history(stored: Sequence[T], incoming: Sequence[T]) -> list[T]:
    """Merge server-persisted history with a client-submitted one.

    A client that sends at least as many turns as the server has is trusted to
    have sent the full history. A shorter one is treated as a tail delta.
    """
    if not stored:
        return list(incoming)
    if not incoming:
        return list(stored)
    if len(incoming) >= len(stored):
        return list(incoming)

    merged = list(stored)
    for turn in incoming:
        if _same_turn(merged[-1], turn):
            continue
        merged.append(turn)
    return merged


def merge_consecutive(turns: Sequence[TurnLike]) -> list[ChatTurn]:
    """Collapse adjacent same-role turns; the model API rejects them."""
    merged: list[ChatTurn] = []
    for turn in turns:
        content = (turn.content or "").strip()
        if not content:
            continue
        if merged and merged[-1].role == turn.role:
            merged[-1] = ChatTurn(role=turn.role, content=f"{merged[-1].content}\n\n{content}")
            continue
        merged.append(ChatTurn(role=turn.role, content=content))
    return merged


def normalize_messages(
    conversation_id: str,
    created_at: int,
    social_entry: str | None,
    messages: Sequence[Message],
) -> list[Message]:
    """Ensure the thread's social entry is present as a system message."""
    social = (social_entry or "").strip()
    result = list(messages)
    if not social:
        return result

    if any(m.role == "system" and m.content.strip() == social for m in result):
        return result

    if result and result[0].content.strip() == social and result[0].role != "assistant":
        result[0] = result[0].model_copy(update={"role": "system"})
        return result

    synthetic = Message(
        id=f"system:{conversation_id}:social_entry",
        role="system",
        content=social,
        timestamp=created_at,
    )
    return [synthetic, *result]


def pick_most_complete_messages(
    existing: Sequence[Message],
    incoming: Sequence[Message],
) -> list[Message]:
    """Choose between stored and incoming history on upsert.

    The longer list wins. On equal length the list whose last message is newer
    wins, with ties going to the incoming list.
    """
    if len(existing) != len(incoming):
        return list(existing if len(existing) > len(incoming) else incoming)
    if not existing:
        return list(incoming)
    if existing[-1].timestamp > incoming[-1].timestamp:
        return list(existing)
    return list(incoming)


def last_user_request(turns: Sequence[TurnLike]) -> str | None:
    """Content of the most recent user turn."""
    for turn in reversed(turns):
        if turn.role == "user" and (turn.content or "").strip():
            return turn.content.strip()
    return None
