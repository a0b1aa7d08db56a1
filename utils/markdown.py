"""
Markdown rendering of extracted review comments.
"""

from config.settings import NO_TEXT_PLACEHOLDER


def _line_info(comment) -> str:
    if comment.line_length > 1:
        return f"Line {comment.line_number}-{comment.line_number + comment.line_length - 1}"
    return f"Line {comment.line_number}"


def _entry(lines: list[str], heading: str, body: str):
    lines.extend([heading, "", body, "", "---", ""])


def group_inline_by_file(inline_comments) -> list[tuple[str, list]]:
    """Group inline comments per file.

    Comments are ordered by (time, path, line); files by their earliest comment."""
    ordered = sorted(inline_comments, key=lambda c: (c.timestamp, c.file_path, c.line_number))
    files: dict[str, list] = {}
    for c in ordered:
        files.setdefault(c.file_path, []).append(c)
    return sorted(files.items(), key=lambda item: min(c.timestamp for c in item[1]))


def format_as_markdown(data, base_url: str, revision_id: int) -> str:
    """Render a CommentsData as a chronologically ordered Markdown document."""
    lines = [f"# Phabricator Review Comments - {base_url.rstrip('/')}/D{revision_id}", ""]

    if data.general_comments:
        lines.extend(["## General Comments", ""])
        for c in sorted(data.general_comments, key=lambda c: c.timestamp):
            _entry(lines, f"### Comment by {c.author} ({c.date})", c.content)

    if data.inline_comments:
        lines.extend(["## Inline Comments", ""])
        for file_path, comments in group_inline_by_file(data.inline_comments):
            lines.extend([f"### File: `{file_path}`", ""])
            for c in comments:
                done = " [DONE]" if c.is_done else ""
                _entry(
                    lines,
                    f"#### {_line_info(c)} - {c.author} ({c.date}){done}",
                    c.content or NO_TEXT_PLACEHOLDER,
                )

    if data.review_actions:
        lines.extend(["## Review Actions", ""])
        for action in sorted(data.review_actions, key=lambda a: a.timestamp):
            body = "\n\n".join(action.comments) if action.comments else NO_TEXT_PLACEHOLDER
            _entry(lines, f"### {action.action} by {action.author} ({action.date})", body)

    return "\n".join(lines)
