"""
Run report — human-readable views of a RunRecord.

The record itself is the source of truth (and serializes with
``to_dict``); this module only formats it.
"""

from __future__ import annotations

from hostconverge.core.models.run import Outcome, RunRecord

_MARKERS = {Outcome.APPLIED: "✓", Outcome.SKIPPED: "⊘", Outcome.FAILED: "✗"}


def format_summary(record: RunRecord) -> str:
    """One line: ``<run_id> ok: 2 applied, 1 skipped, 0 failed``."""
    s = record.summary()
    line = f"{record.run_id} {record.status}: {s.applied} applied, {s.skipped} skipped, {s.failed} failed"
    if record.halted:
        line += f" ({record.planned - len(record.entries)} not reached)"
    return line


def format_entry(position: int, entry) -> str:
    line = f"{position:>3}. {_MARKERS[entry.outcome]} {entry.outcome.value:<8} {entry.action_key}"
    if entry.failed:
        origin = entry.collaborator or "engine"
        line += f"\n       [{origin}] {entry.error_type}: {entry.detail}"
    elif entry.detail:
        line += f"  ({entry.detail})"
    for warning in entry.warnings:
        line += f"\n       warning: {warning}"
    return line


def format_trace(record: RunRecord) -> str:
    """The full ordered trace, one entry per line, failure details indented."""
    lines = [f"Run {record.run_id} ({record.manifest or 'unnamed'})", f"  started {record.started_at}"]
    for i, entry in enumerate(record.entries, start=1):
        lines.append(format_entry(i, entry))
    if record.ended_at:
        lines.append(f"  ended   {record.ended_at}")
    lines.append(format_summary(record))
    return "\n".join(lines)
