"""Notification text for a hook event.

An explicit `message` in the event wins. Otherwise the session transcript
(JSONL) is scanned backwards for the latest assistant text carrying a
`<!-- notify: ... -->` tag. The Stop hook fires slightly before the
transcript is flushed, so the read waits briefly first.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Response complete"
MAX_MESSAGE_LENGTH = 60
TRANSCRIPT_SETTLE_SECONDS = 0.3

_NOTIFY_TAG_RE = re.compile(r"<!--\s*notify:\s*(.+?)\s*-->", re.IGNORECASE)


def truncate(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


def _text_blocks(content: Any) -> list[str]:
    blocks = content if isinstance(content, list) else [content]
    texts = []
    for block in blocks:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, dict) and isinstance(block.get("text"), str):
            texts.append(block["text"])
    return texts


def find_notify_tag(lines: list[str]) -> str | None:
    """Latest notify tag in assistant entries, scanning from the end."""
    for line in reversed(lines):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict) or entry.get("type") != "assistant":
            continue
        message = entry.get("message")
        if not isinstance(message, dict) or not message.get("content"):
            continue
        for text in _text_blocks(message["content"]):
            match = _NOTIFY_TAG_RE.search(text)
            if match:
                return match.group(1).strip()
    return None


def extract_message(
    payload: dict[str, Any], *, settle_seconds: float = TRANSCRIPT_SETTLE_SECONDS
) -> str:
    """Pick the notification text for an event payload, truncated for a toast."""
    explicit = payload.get("message")
    if isinstance(explicit, str) and explicit.strip():
        logger.debug("Using event message directly: %s", explicit)
        return truncate(explicit.strip())

    transcript_path = payload.get("transcript_path")
    if not transcript_path or not Path(transcript_path).is_file():
        logger.debug("No transcript available (%s)", transcript_path or "not set")
        return DEFAULT_MESSAGE

    if settle_seconds > 0:
        time.sleep(settle_seconds)
    try:
        text = Path(transcript_path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Failed to read transcript %s: %s", transcript_path, e)
        return DEFAULT_MESSAGE

    tag = find_notify_tag(text.strip().splitlines())
    if tag:
        logger.debug("Found notify tag: %s", tag)
        return truncate(tag)
    return DEFAULT_MESSAGE
