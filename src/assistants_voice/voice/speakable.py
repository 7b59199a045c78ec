"""Turn agent replies into text that sounds right when spoken.

Agent output is written for a terminal: markdown, code fences, links, tool
traces. None of that should reach the speech engine verbatim.
"""

from __future__ import annotations

import json
import re
from typing import Any

_TAG_REASONING_RE = re.compile(r"<(reasoning|thinking)>.*?</\1>", re.IGNORECASE | re.DOTALL)
_CODE_BLOCK_RE = re.compile(r"```.*?(```|$)", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`]*)`")
_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_URL_RE = re.compile(r"https?://\S+")
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+", re.MULTILINE)
_EMPHASIS_RE = re.compile(r"(\*\*|__|\*|_|~~)(?=\S)(.+?)(?<=\S)\1")
_TABLE_RULE_RE = re.compile(r"^\s*\|?\s*:?-{3,}.*$", re.MULTILINE)
_HTML_TAG_RE = re.compile(r"</?\w+[^>]*>")
_WS_RE = re.compile(r"[ \t]+")


def _looks_like_json(text: str) -> bool:
    t = text.strip()
    if not (t.startswith("{") or t.startswith("[")):
        return False
    try:
        json.loads(t)
    except ValueError:
        return False
    return True


def to_speakable(text: str, *, max_chars: int = 1200) -> tuple[str | None, dict[str, Any]]:
    """Return (speakable_text_or_None, debug_info).

    - <reasoning>/<thinking> blocks are dropped.
    - Fenced code blocks are dropped; inline code keeps its text.
    - Markdown links keep their label, bare URLs are dropped.
    - Headings, bullets, emphasis and table rules are flattened.
    - Pure JSON is not spoken.
    - Output is capped at ``max_chars`` on a sentence boundary when possible.
    """
    debug: dict[str, Any] = {
        "input_chars": len(text or ""),
        "dropped_code_blocks": 0,
        "truncated": False,
        "skip_reason": None,
    }

    raw = (text or "").strip()
    if not raw:
        debug["skip_reason"] = "empty"
        return None, debug

    if _looks_like_json(raw):
        debug["skip_reason"] = "json"
        return None, debug

    raw = _TAG_REASONING_RE.sub("", raw)
    raw, dropped = _CODE_BLOCK_RE.subn("", raw)
    debug["dropped_code_blocks"] = dropped

    raw = _LINK_RE.sub(r"\1", raw)
    raw = _URL_RE.sub("", raw)
    raw = _INLINE_CODE_RE.sub(r"\1", raw)
    raw = _TABLE_RULE_RE.sub("", raw)
    raw = _HEADING_RE.sub("", raw)
    raw = _BULLET_RE.sub("", raw)
    raw = _EMPHASIS_RE.sub(r"\2", raw)
    raw = _HTML_TAG_RE.sub("", raw)
    raw = raw.replace("|", " ")

    lines = [_WS_RE.sub(" ", ln).strip() for ln in raw.splitlines()]
    speak = "\n".join(ln for ln in lines if ln).strip()

    if len(speak) > max_chars:
        cut = speak[:max_chars]
        boundary = max(cut.rfind(". "), cut.rfind("? "), cut.rfind("! "))
        speak = cut[: boundary + 1] if boundary > 0 else cut.rstrip() + "…"
        debug["truncated"] = True

    if not speak:
        debug["skip_reason"] = "empty_after_filter"
        return None, debug

    debug["output_chars"] = len(speak)
    return speak, debug
