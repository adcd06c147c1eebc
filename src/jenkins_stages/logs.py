# logs.py
# Console log helpers: pulling plain text out of Jenkins' HTML console page and
# trimming long logs for display.
from __future__ import annotations

import re
from typing import List, Sequence

from .errors import APIError

_ENTITIES = {
    "&lt;": "<",
    "&gt;": ">",
    "&amp;": "&",
    "&quot;": '"',
    "&#39;": "'",
    "&nbsp;": " ",
}
_ENTITY_RE = re.compile("|".join(re.escape(e) for e in _ENTITIES))


def extract_text_from_html(html: str, url: str = "console") -> str:
    """
    Extract the plain-text log from a Jenkins ``consoleFull`` HTML page.

    Jenkins wraps the log in ``<pre class="console-output">`` and decorates it
    with spans (ANSI colouring, timestamps). Tags are dropped, ``<br>`` becomes a
    newline and the common HTML entities are unescaped.

    Args:
        html: Page body
        url: Where the page came from, used in error messages

    Returns:
        Log text

    Raises:
        APIError: If the console block cannot be located
    """
    marker = html.find("console-output")
    if marker == -1:
        raise APIError(url, 'failed to find <pre class="console-output"> in response')

    open_pre = html.rfind("<pre", 0, marker)
    if open_pre == -1:
        raise APIError(url, "failed to locate opening <pre> tag")

    open_end = html.find(">", open_pre)
    if open_end == -1:
        raise APIError(url, "failed to locate end of <pre> opening tag")
    start = open_end + 1

    end = html.find("</pre>", start)
    if end == -1:
        raise APIError(url, "failed to locate closing </pre> tag")

    out: List[str] = []
    tag: List[str] = []
    in_tag = False
    for c in html[start:end]:
        if in_tag:
            if c == ">":
                in_tag = False
                name = "".join(tag).strip().lower()
                if name.startswith("br") or name.startswith("/br"):
                    out.append("\n")
                tag = []
            else:
                tag.append(c)
            continue
        if c == "<":
            in_tag = True
            continue
        out.append(c)

    return _ENTITY_RE.sub(lambda m: _ENTITIES[m.group(0)], "".join(out))


def head_lines(lines: Sequence[str], n: int) -> List[str]:
    if n <= 0 or n >= len(lines):
        return list(lines)
    return list(lines[:n])


def tail_lines(lines: Sequence[str], n: int) -> List[str]:
    if n <= 0 or n >= len(lines):
        return list(lines)
    return list(lines[-n:])


def elide_middle(lines: Sequence[str], limit: int) -> tuple[List[str], List[str], int]:
    """
    Split a long log into (head, tail, omitted) so at most ``limit`` lines show.

    A limit of 0 (or a log that already fits) keeps everything in ``head``.
    """
    if limit <= 0 or len(lines) <= limit:
        return list(lines), [], 0
    half = limit // 2
    omitted = len(lines) - limit
    tail = list(lines[len(lines) - half:]) if half else []
    return list(lines[:half]), tail, omitted
