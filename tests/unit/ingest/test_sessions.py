"""Tests for session transcript rendering and chunking."""

from __future__ import annotations

import json

from agentmem.ingest.sessions import SessionChunker, render_transcript

TRANSCRIPT = "\n".join(
    [
        json.dumps({"role": "user", "content": "What is   the JWT\nexpiry?"}),
        json.dumps(
            {
                "type": "message",
                "message": {
                    "role": "assistant",
                    "content": [
                        {"type": "text", "text": "Tokens expire after 24h."},
                        {"type": "tool_use", "id": "t1"},
                    ],
                },
            }
        ),
        "not json at all",
        json.dumps({"role": "system", "content": "ignored"}),
        json.dumps({"type": "session", "id": "abc"}),
        "",
    ]
)


def test_render_transcript_keeps_user_and_assistant():
    assert render_transcript(TRANSCRIPT) == (
        "User: What is the JWT expiry?\nAssistant: Tokens expire after 24h."
    )


def test_render_transcript_skips_empty_messages():
    raw = json.dumps({"role": "user", "content": [{"type": "image"}]})
    assert render_transcript(raw) == ""


def test_render_transcript_ignores_non_objects():
    assert render_transcript("[1, 2]\n42") == ""


def test_session_chunker_uses_sessions_source():
    chunks = SessionChunker().chunk(TRANSCRIPT, "sessions/2024-01-01.jsonl")
    assert len(chunks) == 1
    assert chunks[0].source == "sessions"
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)
    assert chunks[0].text.startswith("User: What is the JWT expiry?")


def test_session_chunker_empty_transcript():
    assert SessionChunker().chunk("garbage\n", "sessions/x.jsonl") == []
