"""Answer text helpers for the view layer."""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from markupsafe import Markup, escape

from .models import Source

# [title](url) (date)
CONCLUSION_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\) \(([^)]+)\)")


@dataclass
class CitedBullet:
    """One bullet of an answer and the source cited for it, if any."""
    text: str
    source: Optional[Source] = None


def split_bullets(text: Optional[str]) -> list[str]:
    """Split a provider answer on "- " markers, dropping blank pieces."""
    if not text:
        return []
    return [part.strip() for part in text.split("- ") if part.strip()]


def cite_bullets(text: Optional[str], sources: Sequence[Source]) -> list[CitedBullet]:
    """Pair bullet i with sources[i]; bullets past the end get no citation."""
    bullets = []
    for i, line in enumerate(split_bullets(text)):
        source = sources[i] if i < len(sources) else None
        bullets.append(CitedBullet(text=line, source=source))
    return bullets


def conclusion_lines(conclusion: Optional[str]) -> list[Markup]:
    """Render a conclusion as escaped lines with markdown citations linked."""
    lines = []
    for bullet in _split_outside_links(conclusion or ""):
        for raw in bullet.splitlines():
            if not raw.strip():
                continue
            lines.append(_link_citations(raw.strip()))
    return lines


def _split_outside_links(text: str) -> list[str]:
    """Split on "- " markers, leaving [title](url) (date) citations whole."""
    bullets = []
    current = ""
    pos = 0
    for match in CONCLUSION_LINK.finditer(text):
        parts = text[pos:match.start()].split("- ")
        current += parts[0]
        for part in parts[1:]:
            bullets.append(current)
            current = part
        current += match.group(0)
        pos = match.end()

    parts = text[pos:].split("- ")
    current += parts[0]
    for part in parts[1:]:
        bullets.append(current)
        current = part
    bullets.append(current)

    return [bullet.strip() for bullet in bullets if bullet.strip()]


def _link_citations(line: str) -> Markup:
    out = Markup("")
    pos = 0
    for match in CONCLUSION_LINK.finditer(line):
        title, url, date = match.groups()
        out += escape(line[pos:match.start()])
        out += Markup('<a href="{}" target="_blank" rel="noopener noreferrer">{} ({})</a>').format(url, title, date)
        pos = match.end()
    out += escape(line[pos:])
    return out
