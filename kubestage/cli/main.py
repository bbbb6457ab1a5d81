"""``kubestage`` command group.

Exit codes for ``deploy``:
    0  success (every resource ready), or a successful dry run
    1  partial (some resources ready)
    2  failed (no resource ready, fatal cluster error included)
    3  configuration or validation error
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from kubestage import __version__
from kubestage.app import DeployApp, run_with_signals
from kubestage.config import parse_duration
from kubestage.errors import CycleError, ValidationError
from kubestage.models.report import DeploymentReport, Verdict
from kubestage.report.reporter import render_json, render_text

EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_FAILED = 2
EXIT_INVALID = 3

_VERDICT_EXIT = {
    Verdict.SUCCESS: EXIT_SUCCESS,
    Verdict.PARTIAL: EXIT_PARTIAL,
    Verdict.FAILED: EXIT_FAILED,
}


def exit_code_for(report: DeploymentReport) -> int:
    if report.dry_run:
        return EXIT_SUCCESS
    return _VERDICT_EXIT[report.verdict]


@click.group()
@click.version_option(__version__, prog_name="kubestage")
def cli() -> None:
    """Apply Kubernetes manifests in dependency order and wait for readiness."""


@cli.command()
@click.option(
    "--sources",
    "-f",
    "sources",
    multiple=True,
    required=True,
    help="Manifest file or directory. Repeatable; comma-separated lists are accepted.",
)
@click.option("--timeout", "timeout", default=None, help="Stage timeout, e.g. 90s, 5m, 1h.")
@click.option("--dry-run", is_flag=True, help="Validate and print the staged plan without contacting the cluster.")
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text", show_default=True)
@click.option("--report-file", type=click.Path(dir_okay=False), default=None, help="Also write the JSON report here.")
@click.option("--namespace", "-n", default=None, help="Namespace for manifests that do not declare one.")
@click.option("--context", default=None, help="kubeconfig context to use.")
@click.option("--kubeconfig", default=None, help="Path to a kubeconfig file.")
@click.option("--conflict-policy", type=click.Choice(["patch", "fail"]), default=None)
@click.pass_context
def deploy(
    ctx: click.Context,
    sources: tuple[str, ...],
    timeout: str | None,
    dry_run: bool,
    output: str,
    report_file: str | None,
    namespace: str | None,
    context: str | None,
    kubeconfig: str | None,
    conflict_policy: str | None,
) -> None:
    """Deploy the resources declared in SOURCES."""
    obj = ctx.obj or {}
    try:
        app = DeployApp.from_env(client_factory=obj.get("client_factory"))
        if timeout is not None:
            app.config.apply.stage_timeout = parse_duration(timeout)
    except ValueError as exc:
        click.echo(f"error: {exc}", err=True)
        ctx.exit(EXIT_INVALID)

    cfg = app.config
    if namespace:
        cfg.cluster.default_namespace = namespace
    if context:
        cfg.cluster.context = context
    if kubeconfig:
        cfg.cluster.kubeconfig = kubeconfig
    if conflict_policy:
        cfg.apply.conflict_policy = conflict_policy

    paths = [part.strip() for source in sources for part in source.split(",") if part.strip()]
    try:
        report = asyncio.run(run_with_signals(app, paths, dry_run=dry_run))
    except (ValidationError, CycleError) as exc:
        click.echo(f"error: {exc}", err=True)
        ctx.exit(EXIT_INVALID)

    if output == "json":
        click.echo(render_json(report))
    else:
        click.echo(render_text(report, color=True))
    if report_file:
        try:
            Path(report_file).write_text(render_json(report) + "\n", encoding="utf-8")
        except OSError as exc:
            click.echo(f"warning: cannot write report file: {exc}", err=True)
    ctx.exit(exit_code_for(report))


def main() -> None:
    """Console-script entry point; usage errors exit with the validation code."""
    try:
        code = cli.main(standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        raise SystemExit(EXIT_INVALID) from None
    except click.Abort:
        click.echo("Aborted!", err=True)
        raise SystemExit(EXIT_FAILED) from None
    raise SystemExit(code if isinstance(code, int) else EXIT_SUCCESS)
