"""
Mention token parser service.

Wire encodings embedded in message content:
- @[Display Name](emp:123)   employee mention
- #[Display Name](deal:456)  deal reference

The encoded form is what gets stored and sent; display text is always
derived from it. Parsing is total: anything that is not a token is kept
verbatim as plain text.
"""

import re
from dataclasses import dataclass
from enum import Enum

from discuss.models import ChannelMember, Deal

MENTION_PATTERN = re.compile(r"@\[([^\]]*)\]\(emp:(\d+)\)|#\[([^\]]*)\]\(deal:(\d+)\)")
EMPLOYEE_TRIGGER = re.compile(r"@(\w*)$")
DEAL_TRIGGER = re.compile(r"#(\w*)$")


class SegmentKind(str, Enum):
    """Kinds of parsed content segments."""
    TEXT = "text"
    EMPLOYEE = "employee"
    DEAL = "deal"


class TriggerKind(str, Enum):
    """Autocomplete modes opened by a trigger character."""
    EMPLOYEE = "employee"
    DEAL = "deal"


@dataclass(frozen=True)
class Segment:
    """One run of parsed content: plain text or a mention token."""

    kind: SegmentKind
    text: str
    ref_id: int | None = None


@dataclass(frozen=True)
class MentionQuery:
    """An open autocomplete trigger before the caret."""

    kind: TriggerKind
    query: str
    start: int  # index of the trigger character


@dataclass(frozen=True)
class Candidate:
    """An autocomplete entry."""

    kind: TriggerKind
    id: int
    name: str
    email: str | None = None


def _clean_name(name: str) -> str:
    # Brackets would terminate the token early and break round-tripping
    return name.replace("[", "").replace("]", "")


def encode_employee(name: str, emp_id: int) -> str:
    return f"@[{_clean_name(name)}](emp:{emp_id})"


def encode_deal(name: str, deal_id: int) -> str:
    return f"#[{_clean_name(name)}](deal:{deal_id})"


def encode_candidate(candidate: Candidate) -> str:
    if candidate.kind == TriggerKind.EMPLOYEE:
        return encode_employee(candidate.name, candidate.id)
    elif candidate.kind == TriggerKind.DEAL:
        return encode_deal(candidate.name, candidate.id)
    raise ValueError(f"Unhandled trigger kind: {candidate.kind}")


def parse(content: str | None) -> list[Segment]:
    """Split content into text and mention segments, in order."""
    if not content:
        return []

    segments: list[Segment] = []
    last_index = 0
    for match in MENTION_PATTERN.finditer(content):
        if match.start() > last_index:
            segments.append(Segment(SegmentKind.TEXT, content[last_index:match.start()]))
        if match.group(2) is not None:
            segments.append(Segment(SegmentKind.EMPLOYEE, match.group(1), int(match.group(2))))
        else:
            segments.append(Segment(SegmentKind.DEAL, match.group(3), int(match.group(4))))
        last_index = match.end()

    if last_index < len(content):
        segments.append(Segment(SegmentKind.TEXT, content[last_index:]))
    return segments


def render_segment(segment: Segment) -> str:
    """Display text for one segment."""
    if segment.kind == SegmentKind.TEXT:
        return segment.text
    elif segment.kind == SegmentKind.EMPLOYEE:
        return f"@{segment.text}"
    elif segment.kind == SegmentKind.DEAL:
        return f"#{segment.text}"
    raise ValueError(f"Unhandled segment kind: {segment.kind}")


def render_plain(content: str | None) -> str:
    """Render content with mention tokens shown as ``@Name`` / ``#Name``."""
    return "".join(render_segment(s) for s in parse(content))


def extract_mentions(content: str | None) -> tuple[list[int], list[int]]:
    """Return (employee ids, deal ids) referenced in content, in order."""
    employees: list[int] = []
    deals: list[int] = []
    for segment in parse(content):
        if segment.kind == SegmentKind.EMPLOYEE:
            employees.append(segment.ref_id)
        elif segment.kind == SegmentKind.DEAL:
            deals.append(segment.ref_id)
    return employees, deals


def detect_trigger(text: str, caret: int | None = None) -> MentionQuery | None:
    """Find an open ``@`` or ``#`` trigger immediately before the caret."""
    if caret is None:
        caret = len(text)
    before = text[:caret]

    at_match = EMPLOYEE_TRIGGER.search(before)
    if at_match:
        return MentionQuery(TriggerKind.EMPLOYEE, at_match.group(1).lower(), caret - len(at_match.group(0)))

    hash_match = DEAL_TRIGGER.search(before)
    if hash_match:
        return MentionQuery(TriggerKind.DEAL, hash_match.group(1).lower(), caret - len(hash_match.group(0)))

    return None


def filter_candidates(
    mention: MentionQuery | None,
    members: list[ChannelMember],
    deals: list[Deal],
    limit: int = 8,
) -> list[Candidate]:
    """Filter already-fetched members or deals for the open trigger."""
    if mention is None:
        return []
    q = mention.query.lower()

    if mention.kind == TriggerKind.EMPLOYEE:
        matches = [
            m for m in members
            if q in m.name.lower() or (m.email and q in m.email.lower())
        ]
        return [
            Candidate(TriggerKind.EMPLOYEE, m.emp_id, m.name, m.email)
            for m in matches[:limit]
        ]
    elif mention.kind == TriggerKind.DEAL:
        matches = [d for d in deals if d.name and q in d.name.lower()]
        return [Candidate(TriggerKind.DEAL, d.id, d.name) for d in matches[:limit]]
    raise ValueError(f"Unhandled trigger kind: {mention.kind}")
