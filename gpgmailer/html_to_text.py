# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Plain-text rendering of HTML email content.

HTML bodies cannot be encrypted meaningfully, so the mailer replaces them
with a plain-text rendering before encryption.  Markup is dropped rather
than translated into another markup language:

- Paragraphs and headings → separated by blank lines
- Line breaks (<br>) → newline
- Unordered lists (<ul>/<li>) → - item
- Ordered lists (<ol>/<li>) → 1. item
- Links (<a href>) → text (url), or just text when both are equal
- Tables (<tr>/<td>) → one line per row, cells separated by tabs
- Preformatted (<pre>) → kept verbatim
- <script> and <style> → removed with their content
- HTML entities → decoded characters
"""

import html
import re
from html.parser import HTMLParser


_BLOCK_TAGS = frozenset(
    {"div", "blockquote", "section", "article", "header", "footer"}
)
_HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})


def html_to_text(html_content: str) -> str:
    """Convert HTML to plain text.

    Args:
        html_content: HTML string to convert.

    Returns:
        Plain text with block structure preserved as line breaks.
    """
    if not html_content:
        return ""

    parser = _HTMLToTextParser()
    parser.feed(html_content)
    parser.close()
    return parser.get_text()


def xml_to_raw(value: str) -> str:
    """Convert a possibly-marked-up string to raw text.

    Values containing a ``<`` are rendered with ``html_to_text``; anything
    else only has its entities decoded, so a subject like
    ``"Fish &amp; Chips"`` becomes ``"Fish & Chips"`` with its spacing
    untouched.
    """
    if "<" in value:
        return html_to_text(value)
    return html.unescape(value)


class _HTMLToTextParser(HTMLParser):
    """HTML parser that accumulates plain text."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._output: list[str] = []
        self._skip_depth = 0

        self._in_pre = False
        self._pre_content: list[str] = []

        self._link_href: str | None = None
        self._link_text: list[str] = []

        # List state
        self._list_stack: list[str] = []  # "ul" or "ol"
        self._ol_counters: list[int] = []

        # Table state
        self._in_cell = False
        self._current_row: list[str] = []
        self._current_cell: list[str] = []

    def handle_starttag(
        self, tag: str, attrs: list[tuple[str, str | None]]
    ) -> None:
        """Handle opening HTML tags."""
        tag = tag.lower()

        if tag in ("script", "style"):
            self._skip_depth += 1
            return
        if self._skip_depth:
            return

        if tag == "pre":
            self._in_pre = True
            self._pre_content = []
            self._ensure_newline()
        elif tag == "a":
            self._link_href = dict(attrs).get("href")
            self._link_text = []
        elif tag == "br":
            self._append("\n")
        elif tag == "p" or tag in _HEADING_TAGS:
            self._ensure_block_break()
        elif tag in _BLOCK_TAGS:
            self._ensure_newline()
        elif tag in ("ul", "ol"):
            self._ensure_newline()
            self._list_stack.append(tag)
            if tag == "ol":
                self._ol_counters.append(1)
        elif tag == "li":
            self._ensure_newline()
            depth = max(len(self._list_stack) - 1, 0)
            indent = "  " * depth
            if self._list_stack and self._list_stack[-1] == "ol":
                self._output.append(f"{indent}{self._ol_counters[-1]}. ")
            else:
                self._output.append(f"{indent}- ")
        elif tag == "tr":
            self._ensure_newline()
            self._current_row = []
        elif tag in ("td", "th"):
            self._in_cell = True
            self._current_cell = []
        elif tag == "hr":
            self._ensure_newline()
            self._output.append("-" * 20)
            self._output.append("\n")

    def handle_endtag(self, tag: str) -> None:
        """Handle closing HTML tags."""
        tag = tag.lower()

        if tag in ("script", "style"):
            self._skip_depth = max(self._skip_depth - 1, 0)
            return
        if self._skip_depth:
            return

        if tag == "pre":
            self._in_pre = False
            self._output.append("".join(self._pre_content).strip("\n"))
            self._output.append("\n")
        elif tag == "a":
            self._flush_link()
        elif tag == "p" or tag in _HEADING_TAGS:
            self._ensure_block_break()
        elif tag in _BLOCK_TAGS:
            self._ensure_newline()
        elif tag in ("ul", "ol"):
            if self._list_stack and self._list_stack[-1] == tag:
                self._list_stack.pop()
                if tag == "ol" and self._ol_counters:
                    self._ol_counters.pop()
            self._ensure_newline()
        elif tag == "li":
            if self._list_stack and self._list_stack[-1] == "ol":
                self._ol_counters[-1] += 1
            self._ensure_newline()
        elif tag in ("td", "th"):
            self._in_cell = False
            self._current_row.append(
                " ".join("".join(self._current_cell).split())
            )
            self._current_cell = []
        elif tag == "tr":
            if self._current_row:
                self._output.append("\t".join(self._current_row))
                self._output.append("\n")
            self._current_row = []

    def handle_data(self, data: str) -> None:
        """Handle text content."""
        if self._skip_depth:
            return

        if self._in_pre:
            self._pre_content.append(data)
            return

        if self._in_cell:
            self._current_cell.append(data)
            return

        data = re.sub(r"\s+", " ", data)
        if self._link_href is not None:
            self._link_text.append(data)
            return
        self._append(data)

    def get_text(self) -> str:
        """Return the accumulated plain text.

        Runs of three or more newlines collapse to one blank line and
        trailing spaces are removed from every line.
        """
        if self._link_href is not None:
            self._flush_link()
        text = "".join(self._output)
        text = re.sub(r"[ \t]+\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    def _flush_link(self) -> None:
        text = "".join(self._link_text).strip()
        href = self._link_href
        self._link_href = None
        self._link_text = []
        if href and text and href != text and not href.startswith("#"):
            self._append(f"{text} ({href})")
        else:
            self._append(text or href or "")

    def _append(self, data: str) -> None:
        # Drop leading spaces at line start
        if self._at_line_start():
            data = data.lstrip(" ")
        if data:
            self._output.append(data)

    def _ensure_newline(self) -> None:
        """Ensure output ends with at least one newline."""
        if self._output and not self._tail().endswith("\n"):
            self._output.append("\n")

    def _ensure_block_break(self) -> None:
        """Ensure a blank line for block-level elements."""
        if not self._output:
            return
        tail = self._tail()
        if tail.endswith("\n\n"):
            return
        self._output.append("\n" if tail.endswith("\n") else "\n\n")

    def _at_line_start(self) -> bool:
        return not self._output or self._tail().endswith("\n")

    def _tail(self) -> str:
        return "".join(self._output[-2:])
