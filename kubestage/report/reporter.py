"""Reconciliation reporter: turns per-resource outcomes into a DeploymentReport."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any

import click

from kubestage import __version__
from kubestage.graph.dependency_graph import DependencyGraph
from kubestage.models.outcomes import ApplyResult, ReadinessState, ReadinessStatus
from kubestage.models.report import DeploymentReport, ResourceReport, Verdict

_STATE_COLORS = {
    ReadinessState.READY.value: "green",
    ReadinessState.FAILED.value: "red",
    ReadinessState.TIMED_OUT.value: "yellow",
    ReadinessState.SKIPPED.value: "bright_black",
    ReadinessState.PENDING.value: "cyan",
}
_VERDICT_COLORS = {Verdict.SUCCESS: "green", Verdict.PARTIAL: "yellow", Verdict.FAILED: "red"}


def verdict_for(states: Iterable[ReadinessState]) -> Verdict:
    """success iff all ready, failed iff none ready, partial otherwise."""
    states = list(states)
    ready = sum(1 for s in states if s == ReadinessState.READY)
    if states and ready == len(states):
        return Verdict.SUCCESS
    if ready == 0:
        return Verdict.FAILED
    return Verdict.PARTIAL


def summarize(
    apply_results: Iterable[ApplyResult],
    statuses: Iterable[ReadinessStatus],
    graph: DependencyGraph | None = None,
    *,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
    fatal_error: str = "",
    cancelled: bool = False,
) -> DeploymentReport:
    """Build the immutable report for a run.

    Every status is reported, whatever its state. Messages are carried
    over verbatim. An empty run is ``failed``: nothing became ready.
    """
    results = {r.key: r for r in apply_results}
    status_list = sorted(statuses, key=lambda s: (_stage(graph, s), s.key))
    finished_at = finished_at or datetime.now(UTC)
    started_at = started_at or finished_at

    entries: list[ResourceReport] = []
    for status in status_list:
        result = results.get(status.key)
        error = status.as_error()
        entries.append(
            ResourceReport(
                resource=str(status.key),
                kind=status.key.kind,
                namespace=status.key.namespace,
                name=status.key.name,
                stage=_stage(graph, status),
                state=status.state.value,
                apply_outcome=result.outcome.value if result else "",
                apply_action=result.action.value if result else "",
                attempted=status.attempted,
                message=status.message,
                error=type(error).__name__ if error else "",
                elapsed_seconds=round(status.elapsed, 3),
                uid=result.uid if result else "",
            )
        )

    verdict = verdict_for(s.state for s in status_list)
    counts = Counter(e.state for e in entries)
    stages = tuple(tuple(str(key) for key in stage.keys) for stage in graph.stages) if graph else ()
    return DeploymentReport(
        verdict=verdict,
        resources=tuple(entries),
        stages=stages,
        started_at=started_at.isoformat(),
        finished_at=finished_at.isoformat(),
        duration_seconds=round((finished_at - started_at).total_seconds(), 3),
        fatal_error=fatal_error,
        cancelled=cancelled,
        kubestage_version=__version__,
        counts={state.value: counts.get(state.value, 0) for state in ReadinessState if state != ReadinessState.PENDING},
    )


def plan_report(graph: DependencyGraph) -> DeploymentReport:
    """Report for a dry run: every resource planned, nothing attempted."""
    now = datetime.now(UTC)
    entries = tuple(
        ResourceReport(
            resource=str(spec.key),
            kind=spec.kind,
            namespace=spec.namespace,
            name=spec.name,
            stage=graph.stage_of(spec.key),
            state=ReadinessState.PENDING.value,
            message="planned (dry run)",
        )
        for stage in graph.stages
        for spec in stage.resources
    )
    return DeploymentReport(
        verdict=Verdict.SUCCESS,
        resources=entries,
        stages=tuple(tuple(str(key) for key in stage.keys) for stage in graph.stages),
        started_at=now.isoformat(),
        finished_at=now.isoformat(),
        dry_run=True,
        kubestage_version=__version__,
        counts={"planned": len(entries)},
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def report_to_dict(report: DeploymentReport) -> dict[str, Any]:
    data = asdict(report)
    data["verdict"] = report.verdict.value
    data["stages"] = [list(stage) for stage in report.stages]
    data["resources"] = [asdict(r) for r in report.resources]
    return data


def render_json(report: DeploymentReport) -> str:
    return json.dumps(report_to_dict(report), indent=2, sort_keys=False)


def render_text(report: DeploymentReport, color: bool = False) -> str:
    """Aligned, human-readable rendering.

    Problem resources are repeated at the end with their full messages.
    """

    def style(text: str, fg: str, bold: bool = False) -> str:
        return click.style(text, fg=fg, bold=bold) if color else text

    lines: list[str] = []
    title = "Deployment plan" if report.dry_run else "Deployment report"
    lines.append(f"{title} (kubestage {report.kubestage_version})")

    width = max((len(r.resource) for r in report.resources), default=10)
    current_stage = None
    for entry in report.resources:
        if entry.stage != current_stage:
            current_stage = entry.stage
            lines.append("")
            lines.append(style(f"Stage {entry.stage}", "blue", bold=True))
        state = f"{entry.state:<9}"
        action = f" [{entry.apply_action}]" if entry.apply_action and entry.apply_action != "none" else ""
        summary = entry.message if entry.state in ("ready", "pending") else ""
        line = f"  {entry.resource:<{width}}  {style(state, _STATE_COLORS.get(entry.state, 'white'))}{action}"
        if summary:
            line += f"  {summary}"
        lines.append(line.rstrip())

    if report.fatal_error:
        lines.append("")
        lines.append(style(f"Fatal cluster error: {report.fatal_error}", "red", bold=True))
    if report.cancelled:
        lines.append("")
        lines.append(style("Run cancelled", "yellow", bold=True))

    problems = [] if report.dry_run else report.problems()
    if problems:
        lines.append("")
        lines.append("Problems:")
        for entry in problems:
            lines.append(f"  {entry.resource} ({entry.state}):")
            lines.append(f"    {entry.message or '(no message)'}")

    lines.append("")
    if report.dry_run:
        lines.append(f"{len(report.resources)} resources in {len(report.stages)} stages; nothing applied")
    else:
        counts = ", ".join(f"{n} {state}" for state, n in report.counts.items() if n)
        verdict = style(report.verdict.value.upper(), _VERDICT_COLORS[report.verdict], bold=True)
        lines.append(f"Verdict: {verdict} ({counts or 'no resources'}) in {report.duration_seconds:.1f}s")
    return "\n".join(lines)


def _stage(graph: DependencyGraph | None, status: ReadinessStatus) -> int:
    if graph is None or graph.get(status.key) is None:
        return 0
    return graph.stage_of(status.key)
