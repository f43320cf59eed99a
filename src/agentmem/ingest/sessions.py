"""Session transcript rendering for the ``sessions`` source.

Transcripts are JSONL files, one record per line. Accepted shapes:

    {"role": "user", "content": "..."}
    {"type": "message", "message": {"role": "assistant", "content": [...]}}

``content`` is a string or a list of parts, of which ``{"type": "text"}``
parts are kept. Only user and assistant messages are indexed; each becomes a
single ``User: ...`` / ``Assistant: ...`` line, so chunk line numbers refer
to the rendered transcript.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from agentmem.db.models import Chunk
from agentmem.ingest.markdown import MarkdownChunker

logger = logging.getLogger(__name__)

_ROLE_LABELS = {"user": "User", "assistant": "Assistant"}
_WS_RE = re.compile(r"\s+")


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            p.get("text", "")
            for p in content
            if isinstance(p, dict) and p.get("type") == "text" and isinstance(p.get("text"), str)
        ]
        return " ".join(parts)
    return ""


def render_transcript(raw: str) -> str:
    """Render JSONL transcript *raw* as one ``Role: text`` line per message.

    Malformed lines and non-conversational records are skipped.
    """
    rendered: list[str] = []
    skipped = 0
    for line in raw.splitlines():
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(record, dict):
            continue
        message = record.get("message") if record.get("type") == "message" else record
        if not isinstance(message, dict):
            continue
        label = _ROLE_LABELS.get(str(message.get("role", "")))
        if label is None:
            continue
        text = _WS_RE.sub(" ", _message_text(message.get("content"))).strip()
        if text:
            rendered.append(f"{label}: {text}")
    if skipped:
        logger.debug("Skipped %d malformed transcript line(s)", skipped)
    return "\n".join(rendered)


class SessionChunker(MarkdownChunker):
    """Chunk a JSONL transcript via its rendered form."""

    def chunk(self, text: str, path: str, source: str = "sessions") -> list[Chunk]:
        return super().chunk(render_transcript(text), path, source)
