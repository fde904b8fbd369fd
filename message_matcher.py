"""
Task ↔ message association.

ProWorkflow lets people post on the project instead of the task, so most
tasks have no messages of their own. ``match_messages`` scores project-level
messages against a task (assignee mentions, title keywords, timing) and keeps
the ones likely to be about it. Everything here is pure.
"""

import html
import re
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from project_health import local_now, parse_date

STOP_WORDS = frozenset({
    # articles / conjunctions / prepositions
    "the", "and", "but", "for", "nor", "with", "from", "into", "onto", "this", "that",
    "these", "those", "are", "not", "its", "our", "your", "their",
    # auxiliary verbs
    "was", "were", "been", "being", "has", "have", "had", "does", "did", "will",
    "would", "should", "could", "can", "may", "might", "must", "shall",
    # generic project-management nouns
    "task", "tasks", "project", "projects", "update", "updates", "item", "items",
    "work", "new", "misc", "general",
})

REPLY_MARKERS = ("re:", "?", "please")

_TOKEN_SPLIT = re.compile(r"[^0-9a-z]+")
_TAG_RE = re.compile(r"<[^>]+>")


class MatcherWeights(NamedTuple):
    """Scoring weights and the inclusion threshold for ``match_messages``.

    The defaults were tuned by hand against real project threads.
    """
    assignee_named: int = 10
    assignee_mentioned: int = 15
    keyword: int = 3
    assignee_author: int = 8
    file_keyword: int = 5
    reply_marker: int = 2
    threshold: int = 5
    lookback_days: int = 7
    max_keywords: int = 5


DEFAULT_WEIGHTS = MatcherWeights()


# ============================================================================
# Messages
# ============================================================================

def strip_html(text: Optional[str]) -> str:
    """Remove tags and decode entities from a message body."""
    if not text:
        return ""
    text = _TAG_RE.sub(" ", text)
    return re.sub(r"\s+", " ", html.unescape(text)).strip()


def normalize_message(raw: dict) -> dict:
    """Map an upstream message record onto the fields the dashboard uses."""
    files = []
    for f in raw.get("files") or []:
        files.append({
            "name": f.get("name") or f.get("filename") or "",
            "link": f.get("link") or f.get("url"),
            "size": f.get("size") or 0,
        })
    return {
        "id": raw.get("id"),
        "date": raw.get("date"),
        "author_name": raw.get("authorname") or "",
        "author_type": raw.get("authortype") or "",
        "content": strip_html(raw.get("content")),
        "files": files,
        "parent_message_id": raw.get("originalmessageid") or None,
    }


def _message_date(message: dict) -> datetime:
    return parse_date(message.get("date")) or datetime.min


def latest_message(messages: List[dict]) -> Optional[dict]:
    """The most recent dated message, or None."""
    dated = [m for m in messages if parse_date(m.get("date"))]
    if not dated:
        return None
    return max(dated, key=_message_date)


def build_message_threads(messages: List[dict]) -> List[dict]:
    """Group replies under their parent message.

    Roots and replies are ordered oldest first. A reply whose parent is not
    in ``messages`` is shown as a root.
    """
    ordered = sorted(messages, key=_message_date)
    by_id = {m["id"]: dict(m, replies=[]) for m in ordered if m.get("id") is not None}

    roots = []
    for message in ordered:
        node = by_id.get(message.get("id")) if message.get("id") is not None else dict(message, replies=[])
        parent_id = message.get("parent_message_id")
        if parent_id is not None and parent_id != message.get("id") and parent_id in by_id:
            by_id[parent_id]["replies"].append(node)
        else:
            roots.append(node)
    return roots


# ============================================================================
# Relevance scoring
# ============================================================================

def extract_keywords(title: Optional[str], limit: int = 5) -> List[str]:
    """Distinctive words from a task title, in title order.

    Lower-cased, split on anything that isn't a letter or digit; drops
    words of two characters or fewer and stop words.
    """
    keywords = []
    for token in _TOKEN_SPLIT.split((title or "").lower()):
        if len(token) <= 2 or token in STOP_WORDS or token in keywords:
            continue
        keywords.append(token)
        if len(keywords) >= limit:
            break
    return keywords


def _in_window(message_date: Optional[datetime], task: dict, now: datetime, lookback_days: int) -> bool:
    if message_date is None:
        return False
    start = task.get("start_date")
    if start is not None and message_date < start - timedelta(days=lookback_days):
        return False
    completed = task.get("completed_date")
    if completed is not None:
        return message_date.date() <= completed.date()
    return message_date <= now


def score_message(message: dict, task: dict, keywords: List[str],
                  weights: MatcherWeights = DEFAULT_WEIGHTS) -> int:
    """Relevance score of one message for ``task``; no time-window check."""
    content = (message.get("content") or "").lower()
    author = (message.get("author_name") or "").strip().lower()
    assignees = [a.strip().lower() for a in task.get("assignees") or [] if a and a.strip()]

    score = 0

    for name in assignees:
        if name in content or name in author:
            score += weights.assignee_named
            break

    if "@" in content:
        for name in assignees:
            first_name = name.split()[0]
            if f"@{first_name}" in content or f"@{name}" in content:
                score += weights.assignee_mentioned
                break

    score += weights.keyword * sum(1 for word in keywords if word in content)

    if author and author in assignees:
        score += weights.assignee_author

    file_names = [(f.get("name") or "").lower() for f in message.get("files") or []]
    if any(word in file_name for file_name in file_names for word in keywords):
        score += weights.file_keyword

    if any(marker in content for marker in REPLY_MARKERS):
        score += weights.reply_marker

    return score


def match_messages(candidates: List[dict], task: dict, now: Optional[datetime] = None,
                   weights: MatcherWeights = DEFAULT_WEIGHTS) -> List[dict]:
    """Project messages that are probably about ``task``, in input order.

    ``candidates`` are normalized messages (see ``normalize_message``).
    ``task`` has ``title``, ``start_date``, ``completed_date`` (datetime or
    None) and ``assignees`` (list of full names).

    Messages outside the task's time window are dropped before scoring:
    more than ``lookback_days`` before the start, or after the completion
    date (after now for open tasks). The rest are kept when their score
    reaches ``weights.threshold``.
    """
    now = now or local_now()
    keywords = extract_keywords(task.get("title"), weights.max_keywords)

    matched = []
    for message in candidates:
        if not _in_window(parse_date(message.get("date")), task, now, weights.lookback_days):
            continue
        if score_message(message, task, keywords, weights) >= weights.threshold:
            matched.append(message)
    return matched
