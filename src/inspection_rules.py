"""
Inspection message rules

Pattern-driven classification of inspection chat messages. Turns a message line
such as "#Clean ABC Trucking LLC unit-1, not transferred" into a typed record,
folds a batch of records into grouped counts and renders the weekly summary.

Everything here is pure: no I/O, no clocks. The CLI in weekly_report.py wires
it to a message source and a report sink.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, NamedTuple


UNKNOWN = 'Unknown'
SNIPPET_LENGTH = 200
DEFAULT_WINDOW = timedelta(days=7)

LEGAL_SUFFIX_RE = re.compile(r'\s+(INC|LLC|CORP|INCORPORATED|CORPORATION)\.?$', re.IGNORECASE)
NON_ALNUM_RE = re.compile(r'[^A-Z0-9]')
CATEGORY_TAG_RE = re.compile(r'^#(\w+)', re.ASCII)
# "tra" + up to two of n/s + f+ + "e" + r+ + "ed": transferred, trasnferred,
# transffered, transfered, tranferred ...
TRANSFER_PHRASE_RE = re.compile(r'tra[ns]{0,2}f+er+ed', re.IGNORECASE)
NEGATION_RE = re.compile(r'\b(not|no)\s+', re.IGNORECASE)
UNIT_CODE_RE = re.compile(r'unit[\s-]*([DC12])', re.IGNORECASE)

CATEGORY_EXACT = {
    'clean': 'Clean',
    'hos': 'HOS',
}
CATEGORY_EXACT_AFTER_VIOLATION = {
    'citation': 'Citation',
    'warning': 'Warning',
    'ticket': 'Ticket',
}


class TransferState(str, Enum):
    TRANSFERRED = 'Transferred'
    NOT_TRANSFERRED = 'Not Transferred'
    UNKNOWN = UNKNOWN


# ── Pattern library ──────────────────────────────────────────────────────


class MatchEntry(NamedTuple):
    key: str
    name: str
    is_alias: bool


def normalize_text(text: str) -> str:
    return NON_ALNUM_RE.sub('', text.upper())


def match_key(name: str) -> str:
    # Suffix must come off while the words are still spaced, so only a whole
    # trailing word is dropped ("ACME ZINC" keeps its ZINC).
    upper = name.upper().strip()
    return NON_ALNUM_RE.sub('', LEGAL_SUFFIX_RE.sub('', upper, count=1))


def build_match_table(companies: Iterable[str], aliases: dict[str, str] = None) -> tuple[MatchEntry, ...]:
    """Build the priority-ordered match table.

    Aliases come first in their declared order, then every company in source
    order. The first entry whose key occurs in a message wins, so the order of
    the returned tuple is the matching priority.
    """
    entries = []
    for alias, name in (aliases or {}).items():
        entries.append(MatchEntry(normalize_text(alias), name, True))
    for name in companies:
        entries.append(MatchEntry(match_key(name), name, False))
    return tuple(entries)


# ── Field extractors ─────────────────────────────────────────────────────


def extract_category(text: str) -> str:
    match = CATEGORY_TAG_RE.match(text)
    if not match:
        return UNKNOWN
    tag = match.group(1).lower()
    if tag in CATEGORY_EXACT:
        return CATEGORY_EXACT[tag]
    if 'violation' in tag:
        return 'Violation'
    if tag in CATEGORY_EXACT_AFTER_VIOLATION:
        return CATEGORY_EXACT_AFTER_VIOLATION[tag]
    return tag[0].upper() + tag[1:]


def extract_company(text: str, table: tuple[MatchEntry, ...]) -> str:
    normalized = normalize_text(text)
    for entry in table:
        if entry.key in normalized:
            return entry.name
    return UNKNOWN


def extract_transfer_state(text: str) -> TransferState:
    if not TRANSFER_PHRASE_RE.search(text):
        return TransferState.UNKNOWN
    # Negation is checked anywhere in the message, not next to the phrase.
    if NEGATION_RE.search(text):
        return TransferState.NOT_TRANSFERRED
    return TransferState.TRANSFERRED


def find_unit_codes(text: str) -> list[str]:
    return sorted({m.group(1).upper() for m in UNIT_CODE_RE.finditer(text)})


def extract_unit_codes(text: str) -> str:
    return ', '.join(find_unit_codes(text))


# ── Record builder ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Message:
    timestamp: datetime
    text: str


@dataclass(frozen=True)
class InspectionRecord:
    timestamp: datetime
    category: str
    company: str
    transfer_state: TransferState
    unit_codes: str
    snippet: str


def classify_message(text: str, timestamp: datetime, table: tuple[MatchEntry, ...]) -> InspectionRecord:
    return InspectionRecord(
        timestamp=timestamp,
        category=extract_category(text),
        company=extract_company(text, table),
        transfer_state=extract_transfer_state(text),
        unit_codes=extract_unit_codes(text),
        snippet=text[:SNIPPET_LENGTH],
    )


def build_records(
    messages: Iterable[Message],
    table: tuple[MatchEntry, ...],
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> list[InspectionRecord]:
    since = now - window
    records = []
    for msg in messages:
        if not msg.text or not msg.text.strip():
            continue
        if msg.timestamp < since:
            continue
        text = msg.text.strip()
        if not text.startswith('#'):
            continue
        records.append(classify_message(text, msg.timestamp, table))
    return records


# ── Aggregation ──────────────────────────────────────────────────────────


@dataclass
class InspectionStats:
    total: int = 0
    by_category: Counter = field(default_factory=Counter)
    by_company: Counter = field(default_factory=Counter)
    by_transfer_state: Counter = field(default_factory=Counter)
    unknown_company: list[InspectionRecord] = field(default_factory=list)
    unknown_transfer: list[InspectionRecord] = field(default_factory=list)


def aggregate(records: list[InspectionRecord]) -> InspectionStats:
    stats = InspectionStats(total=len(records))
    for rec in records:
        stats.by_category[rec.category] += 1
        stats.by_company[rec.company] += 1
        stats.by_transfer_state[rec.transfer_state.value] += 1
        if rec.company == UNKNOWN:
            stats.unknown_company.append(rec)
        if rec.transfer_state is TransferState.UNKNOWN:
            stats.unknown_transfer.append(rec)
    return stats


# ── Rendering ────────────────────────────────────────────────────────────


def ranked(counts: Counter) -> list[tuple[str, int]]:
    # most_common() is a stable sort, so ties keep first-seen order.
    return counts.most_common()


def format_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def _section(counts: Counter) -> str:
    return '\n'.join(f"  {key}: {count}" for key, count in ranked(counts))


def render_report(stats: InspectionStats, start: datetime, end: datetime) -> str:
    return (
        "📊 WEEKLY INSPECTION REPORT\n"
        f"📅 {format_date(start)} - {format_date(end)}\n"
        "\n"
        f"📈 Total Inspections: {stats.total}\n"
        "\n"
        "📋 By Category:\n"
        f"{_section(stats.by_category)}\n"
        "\n"
        f"🏢 Companies ({len(stats.by_company)}):\n"
        f"{_section(stats.by_company)}\n"
        "\n"
        "📤 Transfer Status:\n"
        f"{_section(stats.by_transfer_state)}"
    )


def _listing(title: str, records: list[InspectionRecord]) -> list[str]:
    lines = [f"WARNING: {len(records)} inspections with {title}:"]
    for i, rec in enumerate(records, 1):
        lines.append(f"  --- {title} #{i} ---")
        lines.append(f"  Date: {rec.timestamp.isoformat()}")
        lines.append(f"  Text: {rec.snippet}")
    return lines


def render_diagnostics(stats: InspectionStats) -> str:
    """Operator listing of records the matchers could not resolve.

    Returns an empty string when every record has a company and a transfer
    state. Never part of the sent report.
    """
    lines = []
    if stats.unknown_company:
        lines.extend(_listing('Unknown company', stats.unknown_company))
    if stats.unknown_transfer:
        if lines:
            lines.append('')
        lines.extend(_listing('Unknown transfer state', stats.unknown_transfer))
    return '\n'.join(lines)
