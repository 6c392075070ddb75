#!/usr/bin/env python3
"""TokenWatch - CLI Entry Point."""
import sys
import time
import logging
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()
logger = logging.getLogger("tokenwatch.cli")


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from utils.clock import SystemClock
    from utils.log_throttle import LogThrottle
    from config import load_config
    from models.database import Database
    from monitor.observations import build_source
    from monitor.pipeline import RulePipeline
    from monitor.scheduler import TickScheduler
    from alerts.channels import ConsoleChannel, FileChannel
    from alerts.dispatch import DispatchHub
    from notifications.stream_hub import StreamHub

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))

    db = Database(config["database"]["path"])
    db.connect()

    clock = SystemClock()
    source = build_source(config, clock=clock)

    sinks = []
    sink_cfg = config.get("sinks", {})
    if sink_cfg.get("file"):
        Path(sink_cfg["file"]).parent.mkdir(parents=True, exist_ok=True)
        sinks.append(FileChannel(sink_cfg["file"]))
    # Console only if running interactively
    if sink_cfg.get("console", True) and sys.stdout.isatty():
        sinks.append(ConsoleChannel(console))

    # Telegram (optional): per-owner push plus an operator feed chat
    telegram_bot = None
    push = None
    tg_config = config.get("telegram", {})
    if tg_config.get("enabled") and tg_config.get("bot_token"):
        from notifications.telegram_bot import TelegramBot
        from notifications.push import PushSender
        from alerts.channels import TelegramChannel
        telegram_bot = TelegramBot(tg_config["bot_token"], tg_config.get("chat_id"))
        push = PushSender(telegram_bot, db)
        if tg_config.get("chat_id"):
            sinks.append(TelegramChannel(telegram_bot))

    stream = StreamHub(config.get("stream", {}).get("queue_size", 100))
    dispatcher = DispatchHub(stream=stream, push=push, sinks=sinks)

    sched_cfg = config["scheduler"]
    pipeline = RulePipeline(
        db, source, dispatcher,
        fetch_timeout=sched_cfg["fetch_timeout"],
        fetch_workers=sched_cfg["workers"],
    )
    scheduler = TickScheduler(
        db, pipeline,
        clock=clock,
        batch_size=sched_cfg["batch_size"],
        workers=sched_cfg["workers"],
        retention_days=sched_cfg["retention_days"],
        cleanup_every_ticks=sched_cfg.get("cleanup_every_ticks", 60),
        throttle=LogThrottle(sched_cfg.get("error_suppression_minutes", 10) * 60),
        interval_seconds=sched_cfg["tick_interval"],
    )

    return {
        "config": config, "db": db, "clock": clock, "source": source,
        "dispatcher": dispatcher, "stream": stream, "pipeline": pipeline,
        "scheduler": scheduler, "telegram_bot": telegram_bot,
    }


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="tokenwatch")
@click.pass_context
def cli(ctx, config_path, verbose):
    """TokenWatch - threshold, confirmation and session alerts for market data."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(ctx.obj.get("config_path"), ctx.obj.get("verbose"))
    return ctx.obj["_components"]


def _ts(dt):
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


# ──────────────────────────────────────────────────────
# SCHEDULER
# ──────────────────────────────────────────────────────
@cli.command()
@click.pass_context
def run(ctx):
    """Run the tick scheduler until interrupted."""
    c = _get_components(ctx)
    scheduler = c["scheduler"]
    console.print(f"[bold cyan]TokenWatch {__version__}[/bold cyan] "
                  f"ticking every {scheduler.interval}s (Ctrl+C to stop)")
    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping...[/dim]")
    finally:
        scheduler.stop()
        c["pipeline"].close()
        c["db"].close()


@cli.command()
@click.pass_context
def tick(ctx):
    """Run a single evaluation pass and print the report."""
    c = _get_components(ctx)
    report = c["scheduler"].run_tick()
    c["pipeline"].close()

    table = Table(title=f"Tick {report.tick}", show_header=False)
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    table.add_row("Due", str(report.due))
    table.add_row("Evaluated", str(report.evaluated))
    table.add_row("Events", str(report.events))
    table.add_row("Failures", str(report.failures))
    table.add_row("Quarantined", str(report.quarantined))
    table.add_row("Duration", f"{report.duration:.2f}s")
    for category, count in sorted(report.errors.items()):
        table.add_row(f"  {category}", str(count))
    console.print(table)


@cli.command()
@click.option("--days", default=None, type=int, help="Retention in days (default from config)")
@click.pass_context
def cleanup(ctx, days):
    """Delete events older than the retention window."""
    c = _get_components(ctx)
    days = days or c["config"]["scheduler"]["retention_days"]
    removed = c["db"].delete_events_older_than(days, now=c["clock"].now())
    console.print(f"[green]Removed {removed} events older than {days} days[/green]")


# ──────────────────────────────────────────────────────
# RULES
# ──────────────────────────────────────────────────────
@cli.group()
def rules():
    """Create and manage watch rules."""
    pass


@rules.command("list")
@click.option("--status", type=click.Choice(["active", "paused", "triggered"]), default=None)
@click.pass_context
def rules_list(ctx, status):
    """List stored rules."""
    c = _get_components(ctx)
    items = c["db"].list_rules(status=status)
    if not items:
        console.print("[dim]No rules[/dim]")
        return
    status_styles = {"active": "green", "paused": "dim", "triggered": "bold yellow"}
    table = Table(title="Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Kind")
    table.add_column("Subject")
    table.add_column("Name")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Cooldown until", style="dim")
    table.add_column("Last evaluated", style="dim")
    for r in items:
        style = status_styles.get(r.status.value, "")
        table.add_row(
            r.id, r.kind.value, str(r.subject), r.name, r.stage.value,
            f"[{style}]{r.status.value}[/{style}]",
            _ts(r.cooldown_until), _ts(r.last_evaluated_at),
        )
    console.print(table)


@rules.command("load")
@click.argument("path", required=False)
@click.pass_context
def rules_load(ctx, path):
    """Create rules from a YAML definitions file."""
    from alerts.rules_manager import RulesManager
    c = _get_components(ctx)
    rules_cfg = c["config"].get("rules", {})
    manager = RulesManager(path or rules_cfg.get("path", "config/rules.yaml"),
                           default_owner=rules_cfg.get("default_owner", "local"))
    created, skipped = manager.sync(c["db"], c["clock"].now())
    console.print(f"[green]Created {len(created)} rules[/green]"
                  + (f", [dim]{len(skipped)} already existed[/dim]" if skipped else ""))


def _require(rule, rule_id):
    if rule is None:
        console.print(f"[red]No rule with id {rule_id}[/red]")
        raise SystemExit(1)
    return rule


@rules.command("enable")
@click.argument("rule_id")
@click.pass_context
def rules_enable(ctx, rule_id):
    """Enable a rule."""
    c = _get_components(ctx)
    rule = _require(c["db"].set_enabled(rule_id, True), rule_id)
    console.print(f"[green]Enabled {rule.id}[/green] ({rule.status.value})")


@rules.command("disable")
@click.argument("rule_id")
@click.pass_context
def rules_disable(ctx, rule_id):
    """Disable a rule."""
    c = _get_components(ctx)
    rule = _require(c["db"].set_enabled(rule_id, False), rule_id)
    console.print(f"[yellow]Disabled {rule.id}[/yellow]")


@rules.command("cancel")
@click.argument("rule_id")
@click.pass_context
def rules_cancel(ctx, rule_id):
    """Cancel a rule; it stays listed but is never evaluated again."""
    c = _get_components(ctx)
    rule = _require(c["db"].cancel_rule(rule_id), rule_id)
    console.print(f"[yellow]Cancelled {rule.id}[/yellow]")


@rules.command("delete")
@click.argument("rule_id")
@click.confirmation_option(prompt="Delete this rule?")
@click.pass_context
def rules_delete(ctx, rule_id):
    """Delete a rule (its events stay in the log)."""
    c = _get_components(ctx)
    if not c["db"].delete_rule(rule_id):
        console.print(f"[red]No rule with id {rule_id}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Deleted {rule_id}[/green]")


# ──────────────────────────────────────────────────────
# EVENTS
# ──────────────────────────────────────────────────────
@cli.group()
def events():
    """Browse and follow emitted events."""
    pass


@events.command("list")
@click.option("--since", "since_minutes", default=60, help="Look back this many minutes")
@click.option("--limit", default=50, help="Maximum events to show")
@click.pass_context
def events_list(ctx, since_minutes, limit):
    """Show events emitted in the last N minutes."""
    from alerts.channels import format_event_body
    c = _get_components(ctx)
    since = c["clock"].now() - timedelta(minutes=since_minutes)
    items = c["db"].query_events_after(since, limit=limit)
    if not items:
        console.print(f"[dim]No events in the last {since_minutes} minutes[/dim]")
        return
    table = Table(title=f"Events (last {since_minutes}m)", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Type")
    table.add_column("Rule")
    table.add_column("Subject")
    table.add_column("Detail")
    for e in items:
        table.add_row(_ts(e.occurred_at), e.type.value, e.rule_name or e.rule_id,
                      str(e.subject), format_event_body(e)[:70])
    console.print(table)


@events.command("follow")
@click.option("--name", default=None, help="Watermark name (default from config)")
@click.pass_context
def events_follow(ctx, name):
    """Print new events as they are committed."""
    from alerts.channels import ConsoleChannel
    from monitor.event_feed import EventFeed
    c = _get_components(ctx)
    feed_cfg = c["config"].get("feed", {})
    feed = EventFeed(c["db"], c["db"], name=name or feed_cfg.get("name", "cli"),
                     dedupe_ttl=feed_cfg.get("dedupe_ttl", 3600), clock=c["clock"])
    channel = ConsoleChannel(console)
    console.print(f"[dim]Following events from {_ts(feed.watermark)} (Ctrl+C to stop)[/dim]")
    try:
        while True:
            feed.poll(channel.send)
            time.sleep(feed_cfg.get("poll_interval", 2))
    except KeyboardInterrupt:
        pass


# ──────────────────────────────────────────────────────
# PUSH
# ──────────────────────────────────────────────────────
@cli.group()
def push():
    """Manage Telegram push endpoints per owner."""
    pass


@push.command("add")
@click.argument("owner_id")
@click.argument("chat_id")
@click.pass_context
def push_add(ctx, owner_id, chat_id):
    """Register a Telegram chat as a push endpoint for OWNER_ID."""
    c = _get_components(ctx)
    endpoint_id = c["db"].add_push_endpoint(owner_id, chat_id)
    console.print(f"[green]Endpoint {endpoint_id} registered for {owner_id}[/green]")
    if c["telegram_bot"] is None:
        console.print("[yellow]Telegram is not enabled; nothing will be sent until it is.[/yellow]")


@push.command("list")
@click.option("--owner", default=None, help="Only this owner")
@click.option("--all", "show_all", is_flag=True, help="Include disabled endpoints")
@click.pass_context
def push_list(ctx, owner, show_all):
    """List push endpoints."""
    c = _get_components(ctx)
    items = c["db"].list_push_endpoints(owner, enabled_only=not show_all)
    if not items:
        console.print("[dim]No push endpoints[/dim]")
        return
    table = Table(title="Push Endpoints", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Owner")
    table.add_column("Chat")
    table.add_column("Enabled")
    for ep in items:
        table.add_row(str(ep["id"]), ep["owner_id"], ep["address"],
                      "[green]✓[/green]" if ep["enabled"] else "[red]✗[/red]")
    console.print(table)


if __name__ == "__main__":
    cli()
