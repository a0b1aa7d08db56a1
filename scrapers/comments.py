"""
Comment extraction: turns Conduit transactions into comment records.
"""

import logging
from dataclasses import dataclass, field

from config.settings import (
    EMPTY_COMMENT_PLACEHOLDER,
    REVIEW_ACTION_TYPES,
    SUGGESTION_PLACEHOLDER,
)
from scrapers.suggestions import InlineCommentRequest
from utils.common import format_timestamp, notify

logger = logging.getLogger(__name__)


@dataclass
class GeneralComment:
    author: str
    author_phid: str
    date: str
    timestamp: int
    content: str
    transaction_id: str = ""
    comment_id: str = ""


@dataclass
class InlineComment:
    author: str
    author_phid: str
    date: str
    timestamp: int
    content: str
    file_path: str
    line_number: int
    line_length: int = 1
    diff_id: str = ""
    is_done: bool = False
    transaction_id: str = ""
    comment_id: str = ""


@dataclass
class ReviewAction:
    author: str
    author_phid: str
    date: str
    timestamp: int
    action: str
    comments: list[str] = field(default_factory=list)
    transaction_id: str = ""


@dataclass
class CommentsData:
    general_comments: list[GeneralComment] = field(default_factory=list)
    inline_comments: list[InlineComment] = field(default_factory=list)
    review_actions: list[ReviewAction] = field(default_factory=list)


def _raw(comment: dict) -> str:
    content = comment.get("content") or {}
    return content.get("raw") or ""


def _as_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def extract_comments(
    transactions: list[dict],
    client,
    resolver,
    revision_id: int,
    include_done: bool = False,
    progress_callback=None,
) -> CommentsData:
    """Classify transactions into general comments, inline comments and review actions.

    Inline comments with an empty body go through *resolver* to recover
    their code suggestion. Done inline comments are dropped unless
    *include_done* is set.
    """
    data = CommentsData()
    total = len(transactions)

    for i, tx in enumerate(transactions):
        notify(progress_callback, f"Processing transaction {i + 1}/{total}")
        tx_type = tx.get("type") or "unknown"
        author_phid = tx.get("authorPHID") or "unknown"
        timestamp = _as_int(tx.get("dateCreated"))
        tx_id = str(tx.get("id", ""))
        comments = tx.get("comments") or []

        if tx_type not in ("comment", "inline") and tx_type not in REVIEW_ACTION_TYPES:
            continue

        author = client.get_user_display_name(author_phid)
        date = format_timestamp(timestamp)

        if tx_type == "comment":
            for c in comments:
                data.general_comments.append(GeneralComment(
                    author=author,
                    author_phid=author_phid,
                    date=date,
                    timestamp=timestamp,
                    content=_raw(c) or EMPTY_COMMENT_PLACEHOLDER,
                    transaction_id=tx_id,
                    comment_id=str(c.get("id", "")),
                ))

        elif tx_type == "inline":
            fields = tx.get("fields") or {}
            file_path = fields.get("path") or ""
            line_number = _as_int(fields.get("line"))
            is_done = bool(fields.get("isDone"))
            if is_done and not include_done:
                continue

            diff = fields.get("diff")
            diff_id = str(diff.get("id", "")) if isinstance(diff, dict) else ""

            for c in comments:
                content = _raw(c)
                if not content:
                    if resolver is not None:
                        content = resolver.resolve(InlineCommentRequest(
                            revision_id=revision_id,
                            line_number=line_number,
                            file_path=file_path,
                            include_done=include_done,
                        ))
                    else:
                        content = SUGGESTION_PLACEHOLDER

                data.inline_comments.append(InlineComment(
                    author=author,
                    author_phid=author_phid,
                    date=date,
                    timestamp=timestamp,
                    content=content,
                    file_path=file_path,
                    line_number=line_number,
                    line_length=_as_int(fields.get("length"), 1) or 1,
                    diff_id=diff_id,
                    is_done=is_done,
                    transaction_id=tx_id,
                    comment_id=str(c.get("id", "")),
                ))

        else:
            data.review_actions.append(ReviewAction(
                author=author,
                author_phid=author_phid,
                date=date,
                timestamp=timestamp,
                action=tx_type,
                comments=[_raw(c) for c in comments if _raw(c)],
                transaction_id=tx_id,
            ))

    logger.info(
        "Extracted %d general comment(s), %d inline comment(s), %d review action(s)",
        len(data.general_comments), len(data.inline_comments), len(data.review_actions),
    )
    return data
