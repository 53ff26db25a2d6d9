"""Restorer — the inverse pass.  Find our tokens in rendered content and
turn them back into the values they stand for.

Rendered chat content reaches us as many small text fragments (a page
re-render splits a message into arbitrary text nodes), so restoration
works fragment by fragment and never assumes a token spans two of them.
Anything that merely looks like a token but isn't in the map is left
alone — it may be the user's own text.
"""

from __future__ import annotations
import html
import logging
from collections.abc import Iterable
from html.parser import HTMLParser

from .exclusions import DEFAULT_MATCHER, ExclusionMatcher, add_exclusion, remove_exclusion
from .types import Chip, Literal, Node
from .vault import TOKEN_PATTERN, RedactionMap

logger = logging.getLogger(__name__)

CHIP_CLASS = "pg-placeholder-chip"

Fragment = str | Literal | Chip


def restore_fragment(
    text: str,
    redaction_map: RedactionMap,
    excluded: Iterable[str] = (),
    *,
    matcher: ExclusionMatcher = DEFAULT_MATCHER,
) -> list[Node]:
    """Split one text fragment into literals and chips.

    Concatenating the literal texts and chip placeholders gives back
    exactly the input.
    """
    excluded = list(excluded)
    nodes: list[Node] = []
    last = 0
    for m in TOKEN_PATTERN.finditer(text):
        entry = redaction_map.get(m.group())
        if entry is None:
            continue
        if m.start() > last:
            nodes.append(Literal(text[last:m.start()]))
        nodes.append(Chip(
            placeholder=m.group(),
            original_value=entry.original,
            pii_type=entry.type,
            is_excluded=matcher.is_excluded(entry.original, excluded),
        ))
        last = m.end()
    if last < len(text):
        nodes.append(Literal(text[last:]))
    return nodes


def restore(
    fragments: Iterable[Fragment],
    redaction_map: RedactionMap,
    excluded: Iterable[str] = (),
    *,
    matcher: ExclusionMatcher = DEFAULT_MATCHER,
) -> list[list[Node]]:
    """Restore every fragment.  Chips from an earlier pass pass through as-is."""
    excluded = list(excluded)
    out: list[list[Node]] = []
    for fragment in fragments:
        if isinstance(fragment, Chip):
            out.append([fragment])
            continue
        text = fragment.text if isinstance(fragment, Literal) else fragment
        if not redaction_map:
            out.append([Literal(text)] if text else [])
            continue
        out.append(restore_fragment(text, redaction_map, excluded, matcher=matcher))
    return out


def restore_text(text: str, redaction_map: RedactionMap) -> str:
    """Plain-text restoration: every known token becomes its original value."""
    return redaction_map.rehydrate(text)


def render_nodes(nodes: Iterable[Node]) -> str:
    """Nodes back to plain text, chips shown as their original values."""
    return "".join(n.original_value if isinstance(n, Chip) else n.text for n in nodes)


# ----------------------------------------------------------------------
# Chip toggling
# ----------------------------------------------------------------------

def toggle_chip(chip: Chip, excluded: Iterable[str]) -> tuple[Chip, list[str]]:
    """Flip a chip between protected and excluded.

    Only the exclusion list changes; the redaction map is never touched.
    """
    if chip.is_excluded:
        return chip.with_excluded(False), remove_exclusion(excluded, chip.original_value)
    return chip.with_excluded(True), add_exclusion(excluded, chip.original_value)


# ----------------------------------------------------------------------
# Markup
# ----------------------------------------------------------------------

def chip_html(chip: Chip) -> str:
    return (
        f'<span class="{CHIP_CLASS}"'
        f' data-placeholder="{html.escape(chip.placeholder)}"'
        f' data-pii-type="{chip.pii_type.value}"'
        f' data-status="{chip.status.value}"'
        f' title="{html.escape(chip.placeholder)}">'
        f"{html.escape(chip.original_value)}</span>"
    )


_VOID_TAGS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})
_RAW_TEXT_TAGS = frozenset({"script", "style", "textarea"})


class _MarkupRestorer(HTMLParser):
    """Re-emits markup verbatim, replacing tokens found in text nodes."""

    def __init__(self, redaction_map: RedactionMap, excluded: list[str],
                 matcher: ExclusionMatcher) -> None:
        super().__init__(convert_charrefs=False)
        self.redaction_map = redaction_map
        self.excluded = excluded
        self.matcher = matcher
        self.out: list[str] = []
        self.chips = 0
        self._text: list[str] = []
        self._skip_stack: list[str] = []   # open tags inside a chip / raw text element
        self._closing: bool | None = None   # None outside parse_endtag

    # -- text ----------------------------------------------------------

    def _flush(self) -> None:
        if not self._text:
            return
        raw = "".join(self._text)
        self._text.clear()
        if self._skip_stack:
            self.out.append(raw)
            return
        for node in restore_fragment(raw, self.redaction_map, self.excluded, matcher=self.matcher):
            if isinstance(node, Chip):
                self.out.append(chip_html(node))
                self.chips += 1
            else:
                self.out.append(node.text)

    def handle_data(self, data: str) -> None:
        self._text.append(data)

    def handle_entityref(self, name: str) -> None:
        self._text.append(f"&{name};")

    def handle_charref(self, name: str) -> None:
        self._text.append(f"&#{name};")

    # -- structure -----------------------------------------------------

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._flush()
        self.out.append(self.get_starttag_text() or "")
        if tag in _VOID_TAGS:
            return
        classes = (dict(attrs).get("class") or "").split()
        if self._skip_stack or CHIP_CLASS in classes or tag in _RAW_TEXT_TAGS:
            self._skip_stack.append(tag)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._flush()
        self.out.append(self.get_starttag_text() or "")

    def parse_endtag(self, i: int) -> int:
        # handle_endtag only sees the lower-cased name; copy the tag as written
        self._closing = False
        try:
            end = super().parse_endtag(i)
            if self._closing and end > i:
                self.out.append(self.rawdata[i:end])
        finally:
            self._closing = None
        return end

    def handle_endtag(self, tag: str) -> None:
        self._flush()
        if tag in self._skip_stack:
            while self._skip_stack and self._skip_stack.pop() != tag:
                pass
        if self._closing is None:
            self.out.append(f"</{tag}>")
        else:
            self._closing = True

    def handle_comment(self, data: str) -> None:
        self._flush()
        self.out.append(f"<!--{data}-->")

    def handle_decl(self, decl: str) -> None:
        self._flush()
        self.out.append(f"<!{decl}>")

    def handle_pi(self, data: str) -> None:
        self._flush()
        self.out.append(f"<?{data}>")

    def unknown_decl(self, data: str) -> None:
        self._flush()
        self.out.append(f"<![{data}]>")

    def close(self) -> None:
        super().close()
        self._flush()


def restore_html(
    markup: str,
    redaction_map: RedactionMap,
    excluded: Iterable[str] = (),
    *,
    matcher: ExclusionMatcher = DEFAULT_MATCHER,
) -> str:
    """Replace tokens in the text nodes of markup with chip elements.

    Text already inside a chip element is never re-scanned, so running
    this over its own output changes nothing.
    """
    if not markup or not redaction_map:
        return markup
    parser = _MarkupRestorer(redaction_map, list(excluded), matcher)
    parser.feed(markup)
    parser.close()
    logger.debug("restored %d chip(s) in markup", parser.chips)
    return "".join(parser.out)
