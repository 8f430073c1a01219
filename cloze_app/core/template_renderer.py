"""Markdown rendering of cloze questions for the play and results views.

Blank markers are swapped for plain-text placeholders before the markdown pass
so that underscore runs are never read as emphasis or horizontal rules, then
the placeholders are replaced with slot elements in the produced HTML.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from html import escape

from markdown_it import MarkdownIt

from cloze_app.constants.quiz_constants import BLANK_DISPLAY, BLANK_PATTERN

_PLACEHOLDER = "@@cloze-blank-{index}@@"
_EMPTY_SLOT = "?"


def display_text(text: str) -> str:
    """Collapse every blank run to a fixed-width marker for result listings."""
    return BLANK_PATTERN.sub(BLANK_DISPLAY, text or "")


@dataclass(slots=True)
class ClozeRenderer:
    """Converts question markdown into an HTML fragment with numbered slots."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, text: str, slots: tuple[str, ...] | list[str] = ()) -> str:
        """Render ``text`` with each blank showing its current fill (or ``?``)."""
        source = (text or "").strip()
        if not source:
            return "<p><em>No content provided.</em></p>"

        counter = iter(range(len(BLANK_PATTERN.findall(source))))
        prepared = BLANK_PATTERN.sub(lambda _match: _PLACEHOLDER.format(index=next(counter)), source)
        html = self._markdown.render(prepared)

        for index in range(len(BLANK_PATTERN.findall(source))):
            filled = index < len(slots) and bool(slots[index])
            label = escape(slots[index]) if filled else _EMPTY_SLOT
            css = "cloze-slot filled" if filled else "cloze-slot"
            html = html.replace(
                _PLACEHOLDER.format(index=index),
                f'<span class="{css}" data-slot="{index}">{label}</span>',
            )
        return html


renderer = ClozeRenderer()
