"""
Session compaction - bounded conversation/tool history

Pure helpers used by the prompt loop to keep provider payloads within limits:

- truncate_text: clip one oversized text field
- format_history_summary: render turns + tool notes into a prompt-prependable block
- compact_history: replace the middle of a long turn list with one synthetic turn
- truncate_tool_payloads: clip tool outputs retained inside a live provider session
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal, NamedTuple

logger = logging.getLogger(__name__)

MAX_HISTORY_TURNS = 40
MAX_TOOL_NOTES = 24

SUMMARY_TURN_WINDOW = 24
SUMMARY_TOOL_WINDOW = 10
SUMMARY_HEAD_RATIO = 0.58
SUMMARY_MARKER_RESERVE = 64

COMPACT_MIN_TURNS = 10
COMPACT_KEEP_RECENT = 7
COMPACT_MAX_CHARS = 2_000

_WHITESPACE = re.compile(r"\s+")
_TRUNCATION_MARKER = re.compile(r"\n\.\.\.\[truncated \d+ chars\]$")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConversationTurn:
    role: Literal["user", "assistant"]
    content: str
    ts: int = field(default_factory=_now_ms)


@dataclass
class ToolNote:
    name: str
    output: str
    ts: int = field(default_factory=_now_ms)


class TruncatedText(NamedTuple):
    value: str
    truncated_chars: int


def _flatten(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def safe_serialize(value: Any) -> str:
    """Render a tool output as text (strings pass through, objects as JSON)"""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)


def truncate_text(text: str, max_chars: int) -> TruncatedText:
    """
    Clip text to max_chars, appending a marker with the dropped count.

    Returns:
        TruncatedText(value, truncated_chars); a no-op returns (text, 0)
    """
    if len(text) <= max_chars:
        return TruncatedText(text, 0)
    keep = max(0, max_chars)
    extra = len(text) - keep
    return TruncatedText(f"{text[:keep]}\n...[truncated {extra} chars]", extra)


def format_history_summary(
    turns: list[ConversationTurn],
    tool_notes: list[ToolNote],
    max_chars: int,
) -> str:
    """
    Render recent turns and tool outputs into a compact text block.

    When the block exceeds max_chars the head (~58%) and tail are kept and
    the middle is replaced with an omission marker.
    """
    if not turns and not tool_notes:
        return ""

    history_lines = [
        f"{'User' if turn.role == 'user' else 'Assistant'}: {_flatten(turn.content)}"
        for turn in turns[-SUMMARY_TURN_WINDOW:]
    ]
    tool_lines = [
        f"Tool {note.name}: {_flatten(note.output)}"
        for note in list(tool_notes)[-SUMMARY_TOOL_WINDOW:]
    ]

    blocks = []
    if history_lines:
        blocks.append("Conversation so far:\n" + "\n".join(history_lines))
    if tool_lines:
        blocks.append("Recent tool outputs:\n" + "\n".join(tool_lines))

    joined = "\n\n".join(blocks)
    if len(joined) <= max_chars:
        return joined

    head_len = int(max_chars * SUMMARY_HEAD_RATIO)
    tail_len = max(0, max_chars - head_len - SUMMARY_MARKER_RESERVE)
    omitted = len(joined) - head_len - tail_len
    tail = joined[len(joined) - tail_len:] if tail_len else ""
    return f"{joined[:head_len]}\n...[context compacted, omitted {omitted} chars]...\n{tail}"


def compose_prompt_with_summary(summary: str, user_text: str) -> str:
    return "\n".join([
        "Use the compact context below for continuity.",
        "Do not repeat it verbatim unless the user asks.",
        "",
        summary,
        "",
        "Latest user message:",
        user_text,
    ])


def compact_history(turns: list[ConversationTurn]) -> list[ConversationTurn]:
    """
    Compact a turn list, keeping the first turn and the most recent turns.

    Lists of COMPACT_MIN_TURNS or fewer are returned unchanged (as a copy).
    """
    if len(turns) <= COMPACT_MIN_TURNS:
        return list(turns)

    head = turns[:1]
    middle = turns[1:-COMPACT_KEEP_RECENT]
    tail = turns[-COMPACT_KEEP_RECENT:]

    flattened = " | ".join(f"{turn.role}: {_flatten(turn.content)}" for turn in middle)
    compacted = truncate_text(flattened, COMPACT_MAX_CHARS).value

    logger.debug(f"Compacted {len(middle)} turns into one summary turn")
    return [
        *head,
        ConversationTurn(role="assistant", content=f"[Compacted prior context] {compacted}"),
        *tail,
    ]


def append_turns(
    history: list[ConversationTurn],
    *turns: ConversationTurn,
    max_turns: int = MAX_HISTORY_TURNS,
) -> None:
    """Append turns in place, compacting instead of dropping when over the cap"""
    history.extend(turns)
    if len(history) > max_turns:
        history[:] = compact_history(history)


def is_likely_tool_payload(value: Any) -> bool:
    """Heuristic for messages that carry tool calls or tool output"""
    if not isinstance(value, dict):
        return False
    kind = str(value.get("type", "")).lower()
    if "tool" in kind:
        return True
    role = str(value.get("role", "")).lower()
    if role in ("tool", "toolresult"):
        return True
    if any(key in value for key in ("toolName", "toolCallId", "tool_name", "tool_call_id")):
        return True
    return "output" in value or "result" in value


def truncate_long_strings(value: Any, max_chars: int) -> tuple[Any, int]:
    """
    Recursively clip every string inside value; returns (new value, chars removed).

    Strings already clipped to max_chars are left as they are.
    """
    if isinstance(value, str):
        marker = _TRUNCATION_MARKER.search(value)
        if marker and marker.start() <= max_chars:
            return value, 0
        clipped = truncate_text(value, max_chars)
        return clipped.value, clipped.truncated_chars

    if isinstance(value, list):
        total = 0
        items = []
        for item in value:
            new_item, removed = truncate_long_strings(item, max_chars)
            items.append(new_item)
            total += removed
        return items, total

    if isinstance(value, dict):
        total = 0
        result = {}
        for key, nested in value.items():
            result[key], removed = truncate_long_strings(nested, max_chars)
            total += removed
        return result, total

    return value, 0


def truncate_tool_payloads(messages: list[Any] | None, max_chars: int) -> int:
    """
    Clip tool payloads inside a session's retained message list, in place.

    Returns:
        Total characters removed (0 when nothing could be freed)
    """
    if not isinstance(messages, list):
        return 0

    total = 0
    for idx, message in enumerate(messages):
        if not is_likely_tool_payload(message):
            continue
        messages[idx], removed = truncate_long_strings(message, max_chars)
        total += removed

    if total:
        logger.info(f"Truncated {total} chars of tool output retained in session")
    return total
