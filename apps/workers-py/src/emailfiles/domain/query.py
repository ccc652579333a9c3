"""Mailbox search queries and their provider search-string rendering."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import List, Optional, Protocol


@dataclass(frozen=True)
class EmailQuery:
    """Provider-agnostic filter fields.

    ``on`` wins over ``after``/``before``. Relative filters are appended on
    top of whatever absolute filters are set.
    """

    sender: str = ""
    unread_only: bool = False
    after: Optional[dt.date] = None
    before: Optional[dt.date] = None
    on: Optional[dt.date] = None
    older_than_days: Optional[int] = None
    newer_than_days: Optional[int] = None


class QueryBuilder(Protocol):
    def build(self, query: EmailQuery) -> str: ...


def gmail_date(d: dt.date) -> str:
    # Gmail search uses YYYY/MM/DD
    return d.strftime("%Y/%m/%d")


def build_query_string(query: EmailQuery) -> str:
    parts: List[str] = []
    if query.sender and query.sender.strip():
        parts.append(f"from:{query.sender}")
    if query.unread_only:
        parts.append("in:unread")
    if query.on is not None:
        parts.append(f"after:{gmail_date(query.on)}")
        parts.append(f"before:{gmail_date(query.on + dt.timedelta(days=1))}")
    else:
        if query.after is not None:
            parts.append(f"after:{gmail_date(query.after)}")
        if query.before is not None:
            parts.append(f"before:{gmail_date(query.before)}")
    if query.older_than_days is not None:
        parts.append(f"older_than:{query.older_than_days}d")
    if query.newer_than_days is not None:
        parts.append(f"newer_than:{query.newer_than_days}d")
    return " ".join(parts)


@dataclass(frozen=True)
class GmailSearchOptions:
    label_id: Optional[str] = "INBOX"
    include_spam_trash: bool = False


class GmailQueryBuilder:
    """Renders queries with Gmail search operators."""

    def __init__(self, options: Optional[GmailSearchOptions] = None):
        self.options = options or GmailSearchOptions()

    def build(self, query: EmailQuery) -> str:
        return build_query_string(query)
