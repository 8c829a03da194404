from __future__ import annotations

import re

from markdown import markdown

_MARKDOWN_NOISE = re.compile(r"[#*_`>\[\]]|\(https?://[^)]*\)|\(/[^)]*\)")


def render_html(content: str) -> str:
    return markdown(content or "", extensions=["fenced_code", "tables"])


def excerpt(content: str, meta_description: str | None = None, limit: int = 160) -> str:
    if meta_description:
        return meta_description
    for block in (content or "").split("\n\n"):
        stripped = block.strip()
        if not stripped or stripped.startswith("#"):
            continue
        text = " ".join(_MARKDOWN_NOISE.sub("", stripped).split())
        if len(text) <= limit:
            return text
        return text[: limit - 3].rstrip() + "..."
    return ""
