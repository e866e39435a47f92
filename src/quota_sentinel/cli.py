"""Click-based CLI for quota-sentinel.

Thin wrapper around library modules. No business logic; every operation
delegates to the monitor, history, or account modules.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from quota_sentinel.core import (
    AccountRepository,
    ConfigSource,
    FetchResult,
    PredictionResult,
    QuotaSentinelError,
    UsageSnapshot,
)
from quota_sentinel.core.config import DEFAULT_CONFIG_FILENAME

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


def _config_path(ctx: click.Context) -> str:
    """The file account commands edit: --config, $QUOTA_SENTINEL_CONFIG, or the default."""
    return ctx.obj.get("config_path") or DEFAULT_CONFIG_FILENAME


def _load_source(ctx: click.Context) -> ConfigSource:
    """Load config lazily, caching on first call."""
    if "source" not in ctx.obj:
        try:
            ctx.obj["source"] = ConfigSource(ctx.obj.get("config_path"))
        except QuotaSentinelError as e:
            _fail(f"Configuration error: {e}")
    return ctx.obj["source"]


def _repository(ctx: click.Context) -> AccountRepository:
    return AccountRepository(_config_path(ctx))


def _history_store(source: ConfigSource):
    from quota_sentinel.history import HistoryStore, JsonFileKeyValueStore

    config = source.current()
    return HistoryStore(
        JsonFileKeyValueStore(config.storage.resolved_history_path),
        retention_days=config.prediction.max_history_days,
    )


def _parse_settings(pairs: tuple[str, ...]) -> dict:
    """Convert repeated ``--set key=value`` options to a config dict."""
    from quota_sentinel.core.config import _auto_cast

    settings: dict = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.UsageError(f"Expected key=value, got {pair!r}")
        settings[key.strip()] = _auto_cast(value)
    return settings


def _checked_settings(platform, config: dict) -> dict:
    """Validate account settings against PLATFORM before anything is written."""
    unknown = set(config) - {f.key for f in platform.config_schema}
    if unknown:
        raise click.UsageError(
            f"Unknown setting(s) for {platform.id}: {', '.join(sorted(unknown))}"
        )
    try:
        return platform.validate_config(config)
    except QuotaSentinelError as e:
        raise click.UsageError(str(e)) from e


def _format_amount(snapshot: UsageSnapshot) -> str:
    unit = f" {snapshot.unit}" if snapshot.unit else ""
    if snapshot.total > 0:
        return f"{snapshot.remaining:,.2f} / {snapshot.total:,.2f}{unit}"
    return f"{snapshot.remaining:,.2f}{unit}"


def _format_percentage(snapshot: UsageSnapshot) -> str:
    if snapshot.is_balance_only:
        return "-"
    return f"{snapshot.percentage:.1f}%"


def _format_prediction(prediction: PredictionResult | None) -> str:
    if prediction is None:
        return ""
    if not prediction.available:
        return f"[dim]{prediction.reason}[/dim]"
    date_str = prediction.estimated_depletion_date.strftime("%Y-%m-%d %H:%M")
    return f"{prediction.days_until_depletion:.1f}d ({date_str})"


def _is_low(snapshot: UsageSnapshot, threshold: float) -> bool:
    return not snapshot.is_balance_only and snapshot.percentage <= threshold


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False),
    envvar="QUOTA_SENTINEL_CONFIG",
    default=None,
    help="Path to quota-sentinel.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="quota-sentinel")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Quota Sentinel: remaining API quota across accounts and platforms."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# refresh / watch
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Write JSON to stdout.")
@click.pass_context
def refresh(ctx: click.Context, as_json: bool) -> None:
    """Fetch every enabled account once and show remaining quota."""
    source = _load_source(ctx)

    async def _run():
        from quota_sentinel.monitor import build_monitor

        monitor = build_monitor(config_source=source)
        try:
            monitor.reload_accounts()
            report = await monitor.refresh_all()
        finally:
            await monitor.shutdown()

        if not report.results:
            console.print("[yellow]No enabled accounts. Add one with 'accounts add'.[/yellow]")
            if as_json:
                click.echo("[]")
            return

        names = {a.account_id: a.display_name for a in monitor.registry.get_all()}
        if as_json:
            _output_report_json(report, names)
        else:
            _output_report_table(report, names, source.current().alerts.low_usage_threshold)

    _run_async(_run())


def _output_report_table(report, names: dict[str, str], threshold: float) -> None:
    """Render one refresh cycle as a Rich table."""
    table = Table(title="Remaining Quota")
    table.add_column("Account", style="bold")
    table.add_column("Metric")
    table.add_column("Remaining", justify="right")
    table.add_column("Left", justify="right")
    table.add_column("Depletion")

    for account_id, result in report.results.items():
        name = names.get(account_id, account_id)
        if not result.ok:
            table.add_row(name, "", f"[red]{result.error}[/red]", "", "")
            continue
        prediction = report.predictions.get(account_id)
        for i, snapshot in enumerate(result.usage.snapshots):
            style = "red" if _is_low(snapshot, threshold) else None
            table.add_row(
                name if i == 0 else "",
                snapshot.label,
                _format_amount(snapshot),
                _format_percentage(snapshot),
                _format_prediction(prediction) if i == 0 else "",
                style=style,
            )

    console.print(table)


def _output_report_json(report, names: dict[str, str]) -> None:
    """Write one refresh cycle as JSON to stdout."""
    output = []
    for account_id, result in report.results.items():
        prediction = report.predictions.get(account_id)
        output.append(
            {
                "account_id": account_id,
                "display_name": names.get(account_id, account_id),
                "ok": result.ok,
                "error": result.error,
                "snapshots": (
                    [s.model_dump(mode="json") for s in result.usage.snapshots]
                    if result.usage
                    else []
                ),
                "prediction": prediction.model_dump(mode="json") if prediction else None,
            }
        )
    click.echo(json.dumps(output, indent=2, default=str))


class _ConsoleListener:
    """Prints a table after every scheduled refresh."""

    def __init__(self, monitor, threshold_provider) -> None:
        self._monitor = monitor
        self._threshold = threshold_provider

    def on_fetch_result(self, account_id: str, result: FetchResult) -> None:
        if result.configured and result.error:
            console.print(f"[red]{account_id}: {result.error}[/red]")

    def on_refresh_complete(self, report) -> None:
        names = {a.account_id: a.display_name for a in self._monitor.registry.get_all()}
        _output_report_table(report, names, self._threshold())


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Refresh on the configured interval until interrupted."""
    source = _load_source(ctx)

    async def _run():
        from quota_sentinel.monitor import build_monitor

        monitor = build_monitor(config_source=source)
        monitor.add_listener(
            _ConsoleListener(monitor, lambda: source.current().alerts.low_usage_threshold)
        )
        try:
            await monitor.start()
            interval = monitor.scheduler.current_interval()
            if interval <= 0:
                console.print("[yellow]refresh_interval <= 0, auto refresh disabled.[/yellow]")
                return
            console.print(f"Refreshing every [bold]{interval:g}s[/bold]. Press Ctrl-C to stop.")
            await asyncio.Event().wait()
        finally:
            await monitor.shutdown()

    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")


# ---------------------------------------------------------------------------
# platforms
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Write JSON to stdout.")
def platforms(as_json: bool) -> None:
    """List supported platform types, their settings, and usage console links."""
    from quota_sentinel.adapters import default_platform_types

    types = default_platform_types().get_all()
    if as_json:
        output = [
            {
                "id": p.id,
                "display_name": p.display_name,
                "console_url": p.console_url,
                "fields": [f.model_dump(mode="json") for f in p.config_schema],
            }
            for p in types
        ]
        click.echo(json.dumps(output, indent=2))
        return

    table = Table(title="Platforms")
    table.add_column("Type", style="bold", no_wrap=True)
    table.add_column("Name")
    table.add_column("Fields")
    table.add_column("Console", overflow="fold")

    for platform in types:
        fields = ", ".join(
            f"{f.key}{' (secret)' if f.secret else ''}" for f in platform.config_schema
        )
        table.add_row(platform.id, platform.display_name, fields, platform.console_url or "")

    console.print(table)


# ---------------------------------------------------------------------------
# accounts
# ---------------------------------------------------------------------------


@cli.group()
def accounts() -> None:
    """Manage configured accounts."""


@accounts.command("list")
@click.pass_context
def accounts_list(ctx: click.Context) -> None:
    """Show every configured account."""
    try:
        records = _repository(ctx).list_accounts()
    except QuotaSentinelError as e:
        _fail(str(e))

    if not records:
        console.print("[yellow]No accounts configured.[/yellow]")
        return

    table = Table(title="Accounts")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Platform")
    table.add_column("Enabled")
    for record in records:
        table.add_row(
            record.id,
            record.display_name,
            record.platform_type,
            "[green]yes[/green]" if record.enabled else "[dim]no[/dim]",
        )
    console.print(table)


@accounts.command("add")
@click.argument("platform_type")
@click.argument("name")
@click.option(
    "--set",
    "settings",
    multiple=True,
    metavar="KEY=VALUE",
    help="Platform setting, repeatable (e.g. --set api_key=sk-...).",
)
@click.option("--disabled", is_flag=True, default=False, help="Add the account disabled.")
@click.pass_context
def accounts_add(
    ctx: click.Context,
    platform_type: str,
    name: str,
    settings: tuple[str, ...],
    disabled: bool,
) -> None:
    """Add an account for PLATFORM_TYPE named NAME."""
    from quota_sentinel.adapters import default_platform_types

    try:
        platform = default_platform_types().require(platform_type)
    except QuotaSentinelError as e:
        raise click.UsageError(f"{e}. See 'quota-sentinel platforms'.") from e

    config = _checked_settings(
        platform, {**platform.default_config(), **_parse_settings(settings)}
    )

    try:
        record = _repository(ctx).add(platform_type, name, config, enabled=not disabled)
    except QuotaSentinelError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Added {record.display_name} ({record.id})")


@accounts.command("rename")
@click.argument("account_id")
@click.argument("name")
@click.pass_context
def accounts_rename(ctx: click.Context, account_id: str, name: str) -> None:
    """Rename an account."""
    try:
        record = _repository(ctx).rename(account_id, name)
    except QuotaSentinelError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Renamed {record.id} to {record.display_name}")


@accounts.command("remove")
@click.argument("account_id")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.option("--keep-history", is_flag=True, default=False, help="Keep recorded usage history.")
@click.pass_context
def accounts_remove(ctx: click.Context, account_id: str, yes: bool, keep_history: bool) -> None:
    """Delete an account (and its usage history)."""
    repo = _repository(ctx)
    try:
        record = repo.get(account_id)
    except QuotaSentinelError as e:
        _fail(str(e))

    if not yes:
        click.confirm(f"Delete account {record.display_name} ({record.id})?", abort=True)

    try:
        repo.remove(account_id)
    except QuotaSentinelError as e:
        _fail(str(e))
    if not keep_history:
        _history_store(_load_source(ctx)).clear_history(account_id)
    console.print(f"[green]✓[/green] Removed {record.display_name}")


@accounts.command("duplicate")
@click.argument("account_id")
@click.option("--name", default=None, help="Name for the copy. Default: '<name> (copy)'.")
@click.pass_context
def accounts_duplicate(ctx: click.Context, account_id: str, name: str | None) -> None:
    """Copy an account's platform and settings under a new id."""
    try:
        record = _repository(ctx).duplicate(account_id, name)
    except QuotaSentinelError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Created {record.display_name} ({record.id})")


@accounts.command("set")
@click.argument("account_id")
@click.argument("settings", nargs=-1, required=True, metavar="KEY=VALUE...")
@click.pass_context
def accounts_set(ctx: click.Context, account_id: str, settings: tuple[str, ...]) -> None:
    """Change platform settings of an existing account."""
    from quota_sentinel.adapters import default_platform_types

    repo = _repository(ctx)
    try:
        record = repo.get(account_id)
        platform = default_platform_types().require(record.platform_type)
    except QuotaSentinelError as e:
        _fail(str(e))

    changes = _parse_settings(settings)
    config = _checked_settings(platform, {**record.config, **changes})

    try:
        record = repo.update_config(account_id, config)
    except QuotaSentinelError as e:
        _fail(str(e))
    console.print(
        f"[green]✓[/green] Updated {record.display_name}: {', '.join(sorted(changes))}"
    )


def _set_enabled(ctx: click.Context, account_id: str, enabled: bool) -> None:
    try:
        record = _repository(ctx).set_enabled(account_id, enabled)
    except QuotaSentinelError as e:
        _fail(str(e))
    state = "enabled" if record.enabled else "disabled"
    console.print(f"[green]✓[/green] {record.display_name} {state}")


@accounts.command("enable")
@click.argument("account_id")
@click.pass_context
def accounts_enable(ctx: click.Context, account_id: str) -> None:
    """Include an account in refreshes."""
    _set_enabled(ctx, account_id, True)


@accounts.command("disable")
@click.argument("account_id")
@click.pass_context
def accounts_disable(ctx: click.Context, account_id: str) -> None:
    """Exclude an account from refreshes."""
    _set_enabled(ctx, account_id, False)


# ---------------------------------------------------------------------------
# history / predict
# ---------------------------------------------------------------------------


@cli.group()
def history() -> None:
    """Inspect or clear recorded usage history."""


@history.command("show")
@click.argument("account_id")
@click.option("--json", "as_json", is_flag=True, default=False, help="Write JSON to stdout.")
@click.pass_context
def history_show(ctx: click.Context, account_id: str, as_json: bool) -> None:
    """Show recorded data points for an account."""
    points = _history_store(_load_source(ctx)).get_history(account_id)

    if as_json:
        click.echo(json.dumps([p.to_json() for p in points], indent=2))
        return
    if not points:
        console.print(f"[yellow]No history for {account_id}.[/yellow]")
        return

    table = Table(title=f"History: {account_id}")
    table.add_column("Time")
    table.add_column("Remaining", justify="right")
    table.add_column("Total", justify="right")
    for point in points:
        table.add_row(
            point.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"{point.remaining:,.2f}",
            f"{point.total:,.2f}",
        )
    console.print(table)


@history.command("clear")
@click.argument("account_id", required=False)
@click.option("--all", "clear_all", is_flag=True, default=False, help="Clear every account.")
@click.pass_context
def history_clear(ctx: click.Context, account_id: str | None, clear_all: bool) -> None:
    """Clear history for ACCOUNT_ID, or for every account with --all."""
    if clear_all == bool(account_id):
        raise click.UsageError("Pass exactly one of ACCOUNT_ID or --all")

    store = _history_store(_load_source(ctx))
    if clear_all:
        store.clear_all()
        console.print("[green]✓[/green] Cleared all history")
    else:
        store.clear_history(account_id)
        console.print(f"[green]✓[/green] Cleared history for {account_id}")


@cli.command()
@click.argument("account_id", required=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Write JSON to stdout.")
@click.pass_context
def predict(ctx: click.Context, account_id: str | None, as_json: bool) -> None:
    """Forecast quota depletion from recorded history."""
    from quota_sentinel.history import DepletionPredictor

    source = _load_source(ctx)
    store = _history_store(source)
    predictor = DepletionPredictor.from_config(source.current().prediction)

    if account_id:
        account_ids = [account_id]
    else:
        account_ids = [a.id for a in source.list_accounts()]
        account_ids += [a for a in store.account_ids() if a not in account_ids]

    predictions = {a: predictor.predict(store.get_history(a)) for a in account_ids}

    if as_json:
        output = {a: p.model_dump(mode="json") for a, p in predictions.items()}
        click.echo(json.dumps(output, indent=2, default=str))
        return
    if not predictions:
        console.print("[yellow]No accounts configured.[/yellow]")
        return

    table = Table(title="Depletion Forecast")
    table.add_column("Account", style="bold")
    table.add_column("Rate / day", justify="right")
    table.add_column("Depletion")
    for a, p in predictions.items():
        table.add_row(
            a,
            f"{p.daily_usage_rate:,.2f}" if p.available else "",
            _format_prediction(p),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
