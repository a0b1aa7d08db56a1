"""
Suggestion Parser
==================
Recovers the suggested edit of an inline comment from a changeset
response. The API returns an empty body for these comments; the text only
exists in what the web UI renders.

Responses come in several shapes:
  - ``for (;;);{"payload": {"changeset": "<html>..."}}`` (JSON wrapping HTML)
  - JSON carrying an escaped ``suggestionText`` field somewhere in the tree
  - a plain HTML document

Strategies (first one that produces lines wins):
  1) Textual slice of the first table after ``inline-suggestion-view``
  2) ``suggestionText`` from the JSON tree (regex on the raw text if the
     JSON is malformed)
  3) Every old/new row of the embedded changeset HTML
  4) CSS selectors over each ``.inline-suggestion-view`` element
"""

import json
import logging
import re

from bs4 import BeautifulSoup

from config.settings import (
    DONE_MARKER_CLASS,
    INLINE_SUGGESTION_MARKER,
    SUGGESTION_TEXT_MARKER,
)
from utils.common import fence_diff, strip_json_prefix, unescape_text

logger = logging.getLogger(__name__)

HTML_PARSER = "html.parser"

# Characters that make a suggestionText look like an actual change
_DIFF_INDICATORS = ("+", "-", "@@")

_SUGGESTION_TEXT_RE = re.compile(r'"suggestionText"\s*:\s*"((?:[^"\\]|\\.)*)"')

# Tried in order per side; the first selector matching anything in the row wins
OLD_CELL_SELECTORS = ("td.left.old", "td.old", ".diff-old")
NEW_CELL_SELECTORS = ("td.right.new", "td.new", ".diff-new")


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def changeset_fragment(body: str) -> str | None:
    """Return ``payload.changeset`` HTML from a JSON changeset response."""
    try:
        data = json.loads(strip_json_prefix(body))
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    payload = data.get("payload")
    if not isinstance(payload, dict):
        return None
    html = payload.get("changeset")
    return html if isinstance(html, str) else None


def prune_done(html: str) -> str:
    """Drop every subtree marked as done from an HTML fragment."""
    if DONE_MARKER_CLASS not in html:
        return html
    soup = BeautifulSoup(html, HTML_PARSER)
    outermost = [
        el for el in soup.find_all(class_=DONE_MARKER_CLASS)
        if el.find_parent(class_=DONE_MARKER_CLASS) is None
    ]
    for el in outermost:
        el.decompose()
    return str(soup)


def _strip_marker(text: str, marker: str) -> str:
    text = text.strip()
    while text.startswith(marker):
        text = text[len(marker):].strip()
    return text


def _is_noise(text: str) -> bool:
    """Layout leftovers of the suggestion table (closing braces, break statements)."""
    return "}" in text or "break;" in text


def _has_classes(*classes):
    wanted = set(classes)

    def match(tag):
        return tag.name == "td" and wanted <= set(tag.get("class") or [])
    return match


def is_done(element) -> bool:
    """True if any ancestor of *element* carries the done marker class."""
    for parent in element.parents:
        if DONE_MARKER_CLASS in (parent.get("class") or []):
            return True
    return False


def find_suggestion_text(node) -> str | None:
    """Depth-first search of a JSON tree for a diff-like ``suggestionText``."""
    if isinstance(node, dict):
        text = node.get(SUGGESTION_TEXT_MARKER)
        if isinstance(text, str) and _looks_like_diff(text):
            return text
        for value in node.values():
            found = find_suggestion_text(value)
            if found is not None:
                return found
    elif isinstance(node, list):
        for item in node:
            found = find_suggestion_text(item)
            if found is not None:
                return found
    return None


def _looks_like_diff(text: str) -> bool:
    return bool(text.strip()) and any(ind in text for ind in _DIFF_INDICATORS)


# ──────────────────────────────────────────────
# Strategies
# ──────────────────────────────────────────────

def from_inline_suggestion_table(body: str, include_done: bool) -> str | None:
    if INLINE_SUGGESTION_MARKER not in body:
        return None
    html = changeset_fragment(body)
    if html is None:
        return None
    if not include_done:
        html = prune_done(html)

    start = html.find(INLINE_SUGGESTION_MARKER)
    if start == -1:
        return None
    area = html[start:]
    table_start = area.find("<table")
    table_end = area.find("</table>")
    if table_start == -1 or table_end < table_start:
        return None

    table = BeautifulSoup(area[table_start:table_end + len("</table>")], HTML_PARSER)
    lines = []
    for row in table.find_all("tr"):
        row_html = str(row)
        for classes, prefix in ((("left", "old"), "-"), (("right", "new"), "+")):
            if " ".join(classes) not in row_html:
                continue
            cell = row.find(_has_classes(*classes))
            text = _strip_marker((cell or row).get_text(), f"{prefix} ")
            if text and not _is_noise(text):
                lines.append(f"{prefix} {text}")

    return fence_diff(lines) if lines else None


def from_suggestion_text(body: str, include_done: bool) -> str | None:
    if SUGGESTION_TEXT_MARKER not in body:
        return None
    try:
        data = json.loads(strip_json_prefix(body))
    except ValueError as e:
        logger.debug("Changeset JSON is malformed (%s), scanning raw text", e)
        text = None
        for m in _SUGGESTION_TEXT_RE.finditer(body):
            if _looks_like_diff(m.group(1)):
                # raw JSON string contents, still escaped
                text = unescape_text(m.group(1))
                break
    else:
        text = find_suggestion_text(data)

    if text is None:
        return None
    text = text.strip()
    return fence_diff(text) if text else None


def from_changeset_rows(body: str, include_done: bool) -> str | None:
    html = changeset_fragment(body)
    if html is None:
        return None
    if not include_done:
        html = prune_done(html)

    soup = BeautifulSoup(html, HTML_PARSER)
    lines = []
    for row in soup.find_all("tr"):
        for selector, prefix in (("td.old", "-"), ("td.new", "+")):
            cell = row.select_one(selector)
            if cell is None:
                continue
            text = cell.get_text().strip()
            if text:
                lines.append(f"{prefix} {text}")
    return fence_diff(lines) if lines else None


def _first_cell(row, selectors):
    for selector in selectors:
        cells = row.select(selector)
        if cells:
            return cells[0]
    return None


def _lines_from_view(view) -> list[str]:
    table = view.find("table")
    if table is None:
        return []
    lines = []
    for row in table.find_all("tr"):
        for selectors, prefix in ((OLD_CELL_SELECTORS, "-"), (NEW_CELL_SELECTORS, "+")):
            cell = _first_cell(row, selectors)
            if cell is None:
                continue
            text = cell.get_text().strip()
            if not text or text == prefix:
                continue
            text = _strip_marker(text, f"{prefix} ")
            if text:
                lines.append(f"{prefix} {text}")
    return lines


def from_suggestion_views(body: str, include_done: bool) -> str | None:
    html = changeset_fragment(body)
    if html is None:
        html = strip_json_prefix(body)

    soup = BeautifulSoup(html, HTML_PARSER)
    for view in soup.select(f".{INLINE_SUGGESTION_MARKER}"):
        if not include_done and is_done(view):
            logger.debug("Skipping suggestion marked as done")
            continue
        lines = _lines_from_view(view)
        if lines:
            return fence_diff(lines)
    return None


SUGGESTION_STRATEGIES = [
    ("inline suggestion table", from_inline_suggestion_table),
    ("suggestionText", from_suggestion_text),
    ("changeset rows", from_changeset_rows),
    ("suggestion view selectors", from_suggestion_views),
]


def parse_suggestion(
    body: str,
    line_number: int = 0,
    file_path: str = "",
    include_done: bool = False,
) -> str | None:
    """Extract a fenced diff suggestion from a changeset response body.

    Returns None when no strategy recovers any line. *line_number* and
    *file_path* identify the comment in log output; the response is
    already scoped to the comment's changeset.
    """
    if not body:
        return None
    for name, strategy in SUGGESTION_STRATEGIES:
        try:
            result = strategy(body, include_done)
        except Exception as e:
            logger.debug("Strategy %r failed for %s:%s: %s", name, file_path, line_number, e)
            continue
        if result:
            logger.info("Extracted suggestion for %s:%s via %s", file_path, line_number, name)
            return result
    logger.debug("No suggestion recovered for %s:%s", file_path, line_number)
    return None
