#!/usr/bin/env python3
"""
phab-comments-to-md
====================
Extract comments from a Phabricator Differential revision and format them
as Markdown, sorted chronologically for natural reading flow.

Usage:
    python main.py --url https://phabricator.services.mozilla.com/D12345
    python main.py --diff-id D12345 --output review.md
    python main.py --diff-id 12345 --base-url https://phab.example.org --include-done

The API token comes from --token or PHABRICATOR_TOKEN. Code suggestions on
inline comments need a web session: PHABRICATOR_COOKIES="phsid=...; phusr=..."
or a logged-in Firefox profile.
"""

import argparse
import logging
import os
import re
import sys
from pathlib import Path
from urllib.parse import urlparse

import requests

from config.settings import (
    DEFAULT_BASE_URL,
    ENV_BASE_URL,
    ENV_LOG_LEVEL,
    ENV_TOKEN,
    REQUEST_TIMEOUT,
)
from scrapers.comments import extract_comments
from scrapers.credentials import SessionContext
from scrapers.phabricator import ConduitError, PhabricatorClient
from scrapers.suggestions import SuggestionResolver
from utils.markdown import format_as_markdown

logger = logging.getLogger("phab_comments")

_URL_REVISION = re.compile(r"/D(\d+)(?:\?|#|$)")


def parse_revision_id(value: str) -> int | None:
    """Parse ``12345``, ``D12345`` or ``d12345``."""
    cleaned = value.strip().lstrip("Dd")
    if not cleaned.isdigit() or int(cleaned) <= 0:
        return None
    return int(cleaned)


def revision_from_url(url: str) -> tuple[int, str] | None:
    """Split a revision URL into (revision id, base URL)."""
    m = _URL_REVISION.search(url)
    if not m:
        return None
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        return None
    return int(m.group(1)), f"{parsed.scheme}://{parsed.netloc}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phab-comments-to-md",
        description="Extract Phabricator review comments and format them as Markdown",
    )
    parser.add_argument("--url", help="Full Phabricator review URL")
    parser.add_argument(
        "--diff-id",
        help="Differential revision ID (with or without 'D' prefix, use with --base-url "
             f"or {ENV_BASE_URL})",
    )
    parser.add_argument(
        "--base-url",
        help=f"Base Phabricator URL (defaults to {DEFAULT_BASE_URL}, or set {ENV_BASE_URL})",
    )
    parser.add_argument("--token", help=f"Phabricator API token (or set {ENV_TOKEN})")
    parser.add_argument("--output", help="Output file path (defaults to stdout)")
    parser.add_argument(
        "--include-done", action="store_true",
        help="Include comments marked as 'done' (useful for verifying addressed feedback)",
    )
    parser.add_argument(
        "--timeout", type=float, default=REQUEST_TIMEOUT,
        help=f"Per-request timeout in seconds (default {REQUEST_TIMEOUT})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def setup_logging(verbose: bool = False):
    level = "DEBUG" if verbose else os.environ.get(ENV_LOG_LEVEL, "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def extract_and_format(
    base_url: str,
    revision_id: int,
    token: str,
    include_done: bool = False,
    http=None,
    context: SessionContext = None,
    timeout: float = REQUEST_TIMEOUT,
    progress_callback=None,
) -> str:
    """Fetch a revision's discussion and render it as Markdown.

    Raises ConduitError if the revision or its transactions cannot be read.
    """
    http = http or requests.Session()
    context = context or SessionContext()
    client = PhabricatorClient(base_url, token, http=http, context=context, timeout=timeout)
    resolver = SuggestionResolver(
        base_url, http=http, context=context, client=client,
        progress_callback=progress_callback, timeout=timeout,
    )

    phid = client.get_revision_phid(revision_id)
    transactions = client.get_transactions(phid)
    data = extract_comments(
        transactions, client, resolver, revision_id,
        include_done=include_done, progress_callback=progress_callback,
    )
    return format_as_markdown(data, base_url, revision_id)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    token = args.token or os.environ.get(ENV_TOKEN)
    if not token:
        print(
            "Phabricator API token required. Either:\n"
            "  1. Use --token <TOKEN>\n"
            f"  2. Set {ENV_TOKEN} environment variable\n\n"
            f"Get your token at: {DEFAULT_BASE_URL}/settings/user/<username>/page/apitokens/",
            file=sys.stderr,
        )
        return 1

    if args.url:
        parsed = revision_from_url(args.url)
        if parsed is None:
            print(f"Could not extract a revision ID from URL: {args.url}", file=sys.stderr)
            return 1
        revision_id, base_url = parsed
    elif args.diff_id:
        revision_id = parse_revision_id(args.diff_id)
        if revision_id is None:
            print(f"Invalid diff ID format: {args.diff_id}", file=sys.stderr)
            return 1
        base_url = args.base_url or os.environ.get(ENV_BASE_URL) or DEFAULT_BASE_URL
    else:
        print("Either --url or --diff-id must be provided. Use --help for more information.",
              file=sys.stderr)
        return 1

    logger.info("Starting extraction for D%d on %s (include_done=%s)",
                revision_id, base_url, args.include_done)
    try:
        markdown = extract_and_format(
            base_url, revision_id, token,
            include_done=args.include_done,
            timeout=args.timeout,
            progress_callback=logger.info,
        )
    except ConduitError as e:
        logger.error("Failed to extract and format: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(markdown, encoding="utf-8")
        print(f"Comments extracted and saved to {args.output}", file=sys.stderr)
    else:
        print(markdown)
    return 0


if __name__ == "__main__":
    sys.exit(main())
