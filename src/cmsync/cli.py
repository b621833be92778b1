"""Command line interface for cmsync."""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Any, Sequence

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from cmsync.config import (
    TEXT_KEYS,
    TIMESTAMP_PREFIX,
    CmsyncConfig,
    ConfigError,
    ConfigManager,
    resolve_with_precedence,
)
from cmsync.definitions import CollectionSpec, DefinitionError, load_definitions
from cmsync.logs import configure_logging
from cmsync.reconcile import ItemReport, ItemStatus, ReconcileEngine, RunReport
from cmsync.store import (
    AdminServiceStore,
    SiteConnectionError,
    SnapshotCollectionStore,
    StoreError,
    open_store,
)

LOGGER = logging.getLogger(__name__)

console = Console()

_STATUS_STYLES = {
    ItemStatus.CREATED: "green",
    ItemStatus.RECONCILED: "cyan",
    ItemStatus.IN_SYNC: "dim",
    ItemStatus.SKIPPED: "dim",
    ItemStatus.PARTIAL: "yellow",
    ItemStatus.FAILED: "red",
}


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    original: Exception | None = None,
) -> None:
    """Report a failed command and stop with a non-zero exit status.

    In JSON mode the error is printed as `{"error": {"code", "message"}}` so
    scripted callers can branch on `code`; otherwise a `ClickException` is raised.

    Raises:
        SystemExit: In JSON mode, after printing the payload.
        click.ClickException: In text mode.
    """

    if json_output:
        console.print_json(data={"error": {"code": code, "message": message}})
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original
    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Print `message` unless the output mode filters it out.

    `mode` is one of `detail`, `summary` or `error`. Errors are always shown,
    quiet mode hides everything else and summary mode keeps only summary lines.
    """

    if mode == "error":
        console.print(message)
    elif not quiet and (mode == "summary" or not summary_only):
        console.print(message)


def _format_summary_line(command: str, target: Path | str, metrics: dict[str, Any]) -> str:
    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {target}: {parts}.[/green]"


def _resolve_output_modes(
    ctx: click.Context,
    config: CmsyncConfig,
    *,
    quiet: bool,
    summary_mode: bool,
    json_output: bool,
) -> tuple[bool, bool]:
    """Combine CLI flags with configured defaults into (quiet, summary_only)."""

    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


def _select_specs(specs: list[CollectionSpec], only: Sequence[str]) -> list[CollectionSpec]:
    if not only:
        return specs
    declared = {spec.name for spec in specs}
    unknown = [name for name in only if name not in declared]
    if unknown:
        raise click.ClickException(
            f"Not declared in the definition file: {', '.join(sorted(unknown))}"
        )
    return [spec for spec in specs if spec.name in set(only)]


def _item_row(item: ItemReport) -> tuple[str, str, str, str]:
    style = _STATUS_STYLES[item.status]
    changes = ", ".join(f"{action.action} {action.target}".strip() for action in item.changes)
    errors = "; ".join(f"{action.action}: {action.message}" for action in item.failures)
    return (item.name, f"[{style}]{item.status.value}[/{style}]", changes or "-", errors or "-")


def _emit_run_report(
    report: RunReport,
    definitions: Path,
    *,
    quiet: bool,
    summary_only: bool,
) -> None:
    title = "Planned changes" if report.dry_run else "Collection results"
    table = Table(title=f"{title} for {definitions.name}")
    table.add_column("Collection", overflow="fold")
    table.add_column("Status")
    table.add_column("Changes", overflow="fold")
    table.add_column("Errors", overflow="fold")
    for item in report.items:
        table.add_row(*_item_row(item))
    _emit_message(table, mode="detail", quiet=quiet, summary_only=summary_only)

    failed = [item for item in report.items if item.failures]
    if failed:
        _emit_message(
            "[red]Errors encountered:[/red]", mode="error", quiet=quiet, summary_only=summary_only
        )
        for item in failed:
            for action in item.failures:
                _emit_message(
                    f"  - {item.name}: {action.action} ({action.error_kind.value}): "
                    f"{action.message}",
                    mode="error",
                    quiet=quiet,
                    summary_only=summary_only,
                )

    metrics: dict[str, Any] = dict(report.counts())
    if report.dry_run:
        metrics = {"dry_run": True, **metrics}
    _emit_message(
        _format_summary_line("Sync", definitions, metrics),
        mode="summary",
        quiet=quiet,
        summary_only=summary_only,
    )


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="cmsync")
def cli() -> None:
    """cmsync keeps ConfigMgr device collections in line with an XML definition."""


@cli.command()
@click.argument("definitions", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--server", type=str, help="SMS Provider host serving the AdminService.")
@click.option("--site-code", type=str, help="Site code expected on the provider.")
@click.option(
    "--provider",
    type=click.Choice(["adminservice", "snapshot"]),
    help="Store backend (defaults to site.provider in the config file).",
)
@click.option(
    "--snapshot",
    "snapshot_path",
    type=click.Path(dir_okay=False, path_type=str),
    help="JSON site snapshot; implies --provider snapshot.",
)
@click.option("--username", type=str, help="Account used to authenticate to the AdminService.")
@click.option("--maintain", is_flag=True, help="Correct drift on collections that already exist.")
@click.option("--dry-run", is_flag=True, help="Report planned changes without applying them.")
@click.option(
    "--only",
    "only_names",
    multiple=True,
    help="Limit the run to the named collection (repeatable).",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=str),
    help="Append the run log here instead of logging.file.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit the run report as JSON.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def sync(
    ctx: click.Context,
    definitions: str,
    server: str | None,
    site_code: str | None,
    provider: str | None,
    snapshot_path: str | None,
    username: str | None,
    maintain: bool,
    dry_run: bool,
    only_names: tuple[str, ...],
    log_file: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Create and optionally maintain the collections declared in DEFINITIONS.

    Collections that do not exist are created with their declared rules. With
    --maintain, existing collections are compared against their declaration and
    corrected; otherwise they are skipped.
    """

    if snapshot_path and provider is None:
        provider = "snapshot"

    store = None
    try:
        manager = ConfigManager()
        manager.ensure_exists()
        config = manager.load(
            cli_overrides={
                "site.server": server,
                "site.site_code": site_code,
                "site.provider": provider,
                "site.snapshot_path": snapshot_path,
                "site.username": username,
            }
        )
        quiet_enabled, summary_only = _resolve_output_modes(
            ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )

        log_path = configure_logging(
            config.logging, log_file=Path(log_file) if log_file else None
        )
        definitions_path = Path(definitions).expanduser().resolve()
        specs = _select_specs(load_definitions(definitions_path), only_names)
        LOGGER.info(
            "Starting run for %s: %d collection(s), maintain=%s, dry_run=%s",
            definitions_path,
            len(specs),
            maintain,
            dry_run,
        )

        store = open_store(config.site)
        store.ping()

        engine = ReconcileEngine(store, config.defaults, maintain=maintain, dry_run=dry_run)
        report = engine.run(specs)

        if isinstance(store, SnapshotCollectionStore) and not dry_run:
            store.save()

        counts = report.counts()
        LOGGER.info(
            "Run finished: %s", ", ".join(f"{key}={value}" for key, value in counts.items())
        )

        if json_output:
            payload = report.model_dump(mode="json")
            payload["counts"] = counts
            payload["context"] = {
                "definitions": definitions_path.as_posix(),
                "log_file": log_path.as_posix(),
            }
            console.print_json(data=payload)
            return

        _emit_run_report(
            report, definitions_path, quiet=quiet_enabled, summary_only=summary_only
        )
        _emit_message(
            f"Run log appended to {log_path}",
            mode="detail",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except DefinitionError as exc:
        _handle_cli_error(str(exc), code="definition_error", json_output=json_output, original=exc)
    except SiteConnectionError as exc:
        LOGGER.error("Cannot connect to site: %s", exc)
        _handle_cli_error(str(exc), code="connection_error", json_output=json_output, original=exc)
    except StoreError as exc:
        LOGGER.error("Site store error: %s", exc)
        _handle_cli_error(str(exc), code="store_error", json_output=json_output, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
    finally:
        if isinstance(store, AdminServiceStore):
            store.close()


@cli.command()
@click.argument("definitions", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit parsed definitions as JSON.")
def validate(definitions: str, json_output: bool) -> None:
    """Check that DEFINITIONS parses and list the collections it declares."""

    try:
        specs = load_definitions(Path(definitions))
    except DefinitionError as exc:
        _handle_cli_error(str(exc), code="definition_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(
            data={"collections": [spec.model_dump(mode="json") for spec in specs]}
        )
        return

    table = Table(title=f"Collections declared in {Path(definitions).name}")
    table.add_column("Name", overflow="fold")
    table.add_column("Folder")
    table.add_column("Limiting")
    table.add_column("Rules", justify="right")
    table.add_column("Schedule")
    table.add_column("Refresh")
    for spec in specs:
        schedule = (
            f"{spec.recur_count or 'default'} {spec.recur_interval.value if spec.recur_interval else ''}"
        ).strip()
        table.add_row(
            spec.name,
            spec.folder_path or "\\",
            spec.limiting,
            f"{len(spec.queries)}q/{len(spec.includes)}i/{len(spec.excludes)}e",
            schedule,
            spec.refresh_type.value if spec.refresh_type else "default",
        )
    console.print(table)
    console.print(f"[green]{len(specs)} collection(s) declared.[/green]")


@cli.group()
def config() -> None:
    """Inspect and edit ~/.cmsync/config.yaml."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Show the file values without CMSYNC__ overrides.")
def config_view(no_env: bool) -> None:
    """Print the effective configuration; the site password is masked."""
    try:
        settings = ConfigManager().load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    data = settings.model_dump(mode="json")
    if data["site"].get("password"):
        data["site"]["password"] = "********"
    console.print(Syntax(yaml.safe_dump(data, sort_keys=False), "yaml", word_wrap=True))


@config.command("path")
def config_path() -> None:
    """Print the location of the configuration file."""
    click.echo(str(ConfigManager().config_path))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML literal assigned to KEY.")
def config_set(key: str, value: str) -> None:
    """Write VALUE to KEY (SECTION.FIELD, e.g. `site.server`) and show the diff.

    The file is only rewritten when the resulting configuration validates.
    """
    segments = [segment.strip() for segment in key.split(".")]
    if len(segments) != 2 or not all(segments):
        raise click.ClickException("KEY must be SECTION.FIELD, such as 'site.server'.")
    section_name, field = segments
    dotted = f"{section_name}.{field}"

    parsed: Any = value
    if dotted not in TEXT_KEYS:
        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError as exc:
            raise click.ClickException(f"Unable to parse value: {exc}") from exc

    manager = ConfigManager()
    try:
        manager.ensure_exists()
        stored = manager.load_file_overrides()
        section = stored.setdefault(section_name, {})
        if not isinstance(section, dict):
            raise ConfigError(f"'{section_name}' in {manager.config_path} is not a mapping.")
        section[field] = parsed
        resolve_with_precedence(defaults=CmsyncConfig(), file_overrides=stored)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    before = manager.read_text().splitlines()
    manager.save(stored)
    after = manager.read_text().splitlines()

    diff = list(
        difflib.unified_diff(
            [line for line in before if not line.startswith(TIMESTAMP_PREFIX)],
            [line for line in after if not line.startswith(TIMESTAMP_PREFIX)],
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if not diff:
        console.print(f"[yellow]{dotted} already set; nothing written.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {dotted}.[/green]")


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
