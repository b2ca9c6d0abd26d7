from __future__ import annotations

"""
CLI rendering helpers for module listings, status and run results.

Kept separate from rites.cli so the output format is testable without argparse.
"""

from typing import Any, Dict, Iterable, List

from rites.core.modules.models import ModuleMetadata, ModuleOutcome, RunSummary


def modules_list_lines(metas: Iterable[ModuleMetadata]) -> List[str]:
    """
    Columns: module | version | state | description
    """
    lines = ["module | version | state | description"]
    for m in metas:
        state = m.state.value if m.state is not None else "-"
        desc = m.description if m.status == "ok" else f"<{m.status}: {m.error}>"
        lines.append(f"{m.name} | {m.version or '-'} | {state} | {desc}")
    return lines


def module_info_lines(meta: ModuleMetadata) -> List[str]:
    lines = [
        f"Module:       {meta.name}",
        f"Path:         {meta.path}",
        f"Status:       {meta.status}",
        f"Description:  {meta.description or '-'}",
        f"Version:      {meta.version or '-'}",
        f"Priority:     {meta.priority if meta.priority is not None else '-'}",
        f"Dependencies: {', '.join(meta.dependencies) if meta.dependencies else 'none declared'}",
    ]
    if meta.state is not None:
        lines.append(f"State:        {meta.state.value}")
    if meta.error:
        lines.append(f"Note:         {meta.error}")
    return lines


def status_lines(status: Dict[str, Dict[str, Any]]) -> List[str]:
    lines = ["module | state | source"]
    for name, st in status.items():
        suffix = " (skipped)" if st.get("skipped") else ""
        lines.append(f"{name} | {st.get('state')}{suffix} | {st.get('source')}")
    return lines


def outcome_lines(outcome: ModuleOutcome) -> List[str]:
    if outcome.skipped:
        return [f"{outcome.name}: skipped ({outcome.skip_reason})"]
    if outcome.blocked:
        return [f"{outcome.name}: blocked ({outcome.skip_reason})"]
    lines = [f"{outcome.name}: {outcome.state.value}"]
    if outcome.error:
        step = outcome.failed_step.value if outcome.failed_step is not None else "?"
        lines.append(f"  failed step: {step}")
        lines.append(f"  error: {outcome.error.get('user_message')}")
    if outcome.rollback_error:
        lines.append(f"  rollback: {outcome.rollback_error.get('user_message')}")
    if outcome.manual_intervention_required:
        lines.append("  MANUAL INTERVENTION REQUIRED")
    return lines


def summary_lines(summary: RunSummary) -> List[str]:
    lines: List[str] = []
    for o in summary.outcomes:
        lines.extend(outcome_lines(o))
    done = sum(1 for o in summary.outcomes if o.ok and not o.skipped)
    skipped = sum(1 for o in summary.outcomes if o.skipped)
    lines.append(f"Summary: {done} completed, {skipped} skipped, {len(summary.blocked)} blocked, {len(summary.outcomes) - done - skipped - len(summary.blocked)} failed")
    return lines
