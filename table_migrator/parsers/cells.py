"""
Normalization of legacy table header and cell values.

Historical ``customTable`` content stores a header or a cell in one of
several shapes.  :func:`normalize_cell` decodes them in a fixed order and
always returns a plain trimmed string:

1. a plain string;
2. an object with a ``text`` string;
3. an object with a printable ``content`` value (a scalar, or a list of
   rich text nodes whose text is joined with single spaces);
4. anything else falls back to ``"Header"`` in header position and to an
   empty string in a row cell.

The function never raises.
"""

from __future__ import annotations

from typing import Any, List, Optional

from bs4 import BeautifulSoup

HEADER_FALLBACK = "Header"
CELL_FALLBACK = ""


def _html_to_text(fragment: str) -> str:
    soup = BeautifulSoup(fragment, "html.parser")
    text = soup.get_text(" ")
    return " ".join(text.replace("\xa0", " ").split())


def _printable(value: Any) -> Optional[str]:
    """String form of a ``content`` value, or ``None`` when it has none."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        # 3.0 prints as "3", the way the editor renders JSON numbers
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            text = _node_text(item)
            if text:
                parts.append(text)
        return " ".join(parts)
    return None


def _node_text(node: Any) -> str:
    # Text of one item inside a rich ``content`` list.
    if isinstance(node, str):
        return node.strip()
    if isinstance(node, dict):
        if isinstance(node.get("text"), str):
            return node["text"].strip()
        if "content" in node:
            return (_printable(node["content"]) or "").strip()
    return ""


def normalize_cell(value: Any, *, header: bool = False, strip_html: bool = False) -> str:
    """Reduce a header or cell value to a trimmed string.

    :param value: The raw header/cell value read from the document.
    :param header: ``True`` when normalizing a header position; selects the
        ``"Header"`` fallback instead of the empty string.
    :param strip_html: Treat string ``content`` as an HTML fragment and keep
        only its text.
    :return: The normalized string.
    """
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        text = value.get("text")
        if isinstance(text, str):
            return text.strip()
        if "content" in value:
            content = value["content"]
            printable = _printable(content)
            if printable is not None:
                if strip_html and isinstance(content, str):
                    return _html_to_text(printable)
                return printable.strip()
    return HEADER_FALLBACK if header else CELL_FALLBACK


def normalize_header(value: Any, *, strip_html: bool = False) -> str:
    return normalize_cell(value, header=True, strip_html=strip_html)
