from __future__ import annotations

"""Normalize inference API bodies into content fragments.

Two shapes are accepted and reduced to the same "sequence of fragments":

- a single JSON object (OpenAI-style ``choices[].message.content`` or Ollama's
  non-streaming ``message.content``);
- newline-delimited JSON where each line carries an incremental
  ``message.content`` (Ollama) or ``choices[].delta.content`` (OpenAI stream).
"""

import json
import logging
import re
from typing import Any, Iterable, Iterator, Mapping

logger = logging.getLogger("vecinito.inference")

STAGE_DIRECTION_RE = re.compile(r"\*[^*]+\*")


def extract_fragments(payload: Mapping[str, Any]) -> Iterator[str]:
    """Purpose: Yield content strings carried by one decoded JSON object.
    Inputs/Outputs: Input is a decoded JSON object; yields non-empty content strings.
    Side Effects / State: None.
    Dependencies: None beyond built-ins; used by both body shapes.
    Failure Modes: Unexpected shapes yield nothing rather than raising.
    If Removed: Neither Ollama nor Groq replies can be read.
    Testing Notes: Check Ollama chunk, OpenAI object, and OpenAI delta shapes.
    """
    # Ollama puts content under message; OpenAI-compatible APIs under choices.
    message = payload.get("message")
    if isinstance(message, Mapping):
        content = message.get("content")
        if isinstance(content, str) and content:
            yield content
    choices = payload.get("choices")
    if isinstance(choices, list):
        for choice in choices[:1]:
            if not isinstance(choice, Mapping):
                continue
            for key in ("message", "delta"):
                part = choice.get(key)
                if isinstance(part, Mapping):
                    content = part.get("content")
                    if isinstance(content, str) and content:
                        yield content


def iter_content_fragments(lines: Iterable[str]) -> Iterator[str]:
    """Yield fragments from newline-delimited JSON, skipping lines that do not parse."""
    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        try:
            payload = json.loads(line)
        except ValueError:
            logger.debug("Ignoring non-JSON chat chunk: %s", line[:200])
            continue
        if not isinstance(payload, Mapping):
            continue
        yield from extract_fragments(payload)


def parse_response_body(text: str) -> Iterator[str]:
    """Purpose: Read fragments from a complete response body of either shape.
    Inputs/Outputs: Input is the raw body text; yields content fragments.
    Side Effects / State: None.
    Dependencies: Uses extract_fragments and iter_content_fragments.
    Failure Modes: A body that is neither JSON nor NDJSON yields nothing.
    If Removed: Buffered (non-streaming) upstream replies cannot be parsed.
    Testing Notes: A single object and an NDJSON body yield the same fragments.
    """
    # Try the single-object shape first, then fall back to line-by-line.
    try:
        payload = json.loads(text)
    except ValueError:
        return iter_content_fragments(text.splitlines())
    if isinstance(payload, Mapping):
        return extract_fragments(payload)
    return iter([])


def join_fragments(fragments: Iterable[str]) -> str:
    return "".join(fragments)


def clean_reply(text: str) -> str:
    """Remove ``*stage directions*`` and surrounding whitespace from a model reply."""
    return STAGE_DIRECTION_RE.sub("", text or "").strip()
