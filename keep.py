#!/usr/bin/env python3
"""Keepsake CLI — story permanence scoring from the command line.

Commands:
    create        Register a newly published story
    event         Record an engagement event (view, like, comment, share, watch_time)
    evaluate      Re-score one story now (or at --at)
    state         Show a story's visibility state (evaluates on read)
    sweep         Evaluate every active/fading story
    archive       List an owner's archived milestones, newest first
    insights      Engagement analytics and time to expiry for a story
    expire        Administrative takedown (force Expired)
    status        Database health and state counts
    check-config  Validate a config file without starting anything
"""

import json
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path

import click

from keepsake.config import default_db_path, load_config
from keepsake.errors import KeepsakeError


def _engine(ctx):
    from keepsake.db_bridge import KeepsakeDB
    from keepsake.engine import PermanenceEngine

    if "engine" not in ctx.obj:
        config = load_config(ctx.obj["config_path"])
        db_path = ctx.obj["db_path"]
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        ctx.obj["engine"] = PermanenceEngine(KeepsakeDB(db_path), config)
        ctx.call_on_close(ctx.obj["engine"].db.close)
    return ctx.obj["engine"]


def engine_command(fn):
    """Turn engine errors into a one-line message and exit status 1."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except KeepsakeError as e:
            raise click.ClickException(f"{type(e).__name__}: {e}")
    return wrapper


def _fmt_ts(ts) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


@click.group()
@click.option("--db", default=default_db_path, show_default="$KEEPSAKE_DB or ~/.keepsake/keepsake.db",
              help="Path to the keepsake database")
@click.option("--config", "config_path", type=click.Path(), default=None, help="JSON engine config")
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to stderr")
@click.pass_context
def cli(ctx, db, config_path, verbose):
    """Keepsake — decide how long stories stay visible."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("item_id")
@click.option("--kind", required=True, help="Classifier label: routine, tip, achievement, milestone")
@click.option("--owner", required=True, help="Owner (user) id")
@click.option("--at", type=float, default=None, help="Creation time, unix seconds (default: now)")
@click.pass_context
@engine_command
def create(ctx, item_id, kind, owner, at):
    """Register a newly published story."""
    item = _engine(ctx).create_item(item_id, kind, created_at=at, owner_id=owner)
    click.echo(f"Created {item.id} ({item.kind.value}) -> {item.state.value}")


@cli.command()
@click.argument("item_id")
@click.argument("event_type")
@click.option("--ratio", type=float, default=None, help="Watch ratio in [0, 1] for watch_time")
@click.option("--count", type=int, default=None, help="Repeat count for batched events")
@click.option("--viewer", default=None, help="Viewer id (views only)")
@click.option("--at", type=float, default=None, help="Event time, unix seconds (default: now)")
@click.pass_context
@engine_command
def event(ctx, item_id, event_type, ratio, count, viewer, at):
    """Record an engagement event on a story."""
    weight = ratio if event_type.lower().replace("-", "_") == "watch_time" else count
    metric = _engine(ctx).record_event(item_id, event_type, weight, at=at, viewer_id=viewer)
    click.echo(f"{item_id}: engagement {metric:.4f}")


@cli.command()
@click.argument("item_id")
@click.option("--at", type=float, default=None, help="Evaluation time, unix seconds (default: now)")
@click.pass_context
@engine_command
def evaluate(ctx, item_id, at):
    """Re-score one story and apply its lifecycle transition."""
    vis = _engine(ctx).evaluate(item_id, now=at)
    click.echo(f"{item_id}: {vis.state.value} (score {vis.current_score:.4f})")


@cli.command()
@click.argument("item_id")
@click.option("--at", type=float, default=None, help="Read time, unix seconds (default: now)")
@click.option("--no-evaluate", is_flag=True, help="Report the stored state without re-scoring")
@click.pass_context
@engine_command
def state(ctx, item_id, at, no_evaluate):
    """Show a story's visibility state."""
    vis = _engine(ctx).get_visibility_state(item_id, now=at, evaluate=not no_evaluate)
    click.echo(f"{item_id}: {vis.state.value} (score {vis.current_score:.4f})")
    click.echo(f"  Visible until: {_fmt_ts(vis.window_ends_at)}")


@cli.command()
@click.option("--at", type=float, default=None, help="Sweep time, unix seconds (default: now)")
@click.option("--start-after", default=None, help="Resume after this item id")
@click.option("--json", "as_json", is_flag=True, help="Print the sweep report as JSON")
@click.pass_context
@engine_command
def sweep(ctx, at, start_after, as_json):
    """Evaluate every active/fading story."""
    report = _engine(ctx).sweep(now=at if at is not None else time.time(), start_after=start_after)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    click.echo("=== Keepsake Sweep ===")
    click.echo(f"  Evaluated:  {report.evaluated}")
    click.echo(f"  Archived:   {len(report.archived)}")
    click.echo(f"  Expired:    {len(report.expired)}")
    click.echo(f"  Skipped:    {len(report.skipped)}")
    for key, n in sorted(report.transitions.items()):
        click.echo(f"    {key:20s} {n}")
    if report.failed:
        click.echo(f"\n  Failed ({len(report.failed)}):")
        for item_id, message in report.failed.items():
            click.echo(f"    {item_id}: {message}")


@cli.command()
@click.argument("owner_id")
@click.option("--limit", type=int, default=20, help="Maximum entries to show")
@click.pass_context
@engine_command
def archive(ctx, owner_id, limit):
    """List an owner's archived milestones, newest first."""
    engine = _engine(ctx)
    listing = engine.archive.list(owner_id)
    click.echo(f"=== Archive: {owner_id} ({len(listing)} items) ===")
    for i, item in enumerate(listing):
        if i >= limit:
            click.echo("  ...")
            break
        reason = item.archive_reason.value if item.archive_reason else "-"
        click.echo(f"  {_fmt_ts(item.created_at)}  {item.id}  [{item.kind.value}, {reason}]")


@cli.command()
@click.argument("item_id")
@click.option("--at", type=float, default=None, help="Reference time, unix seconds (default: now)")
@click.pass_context
@engine_command
def insights(ctx, item_id, at):
    """Engagement analytics and time to expiry for a story."""
    click.echo(json.dumps(_engine(ctx).get_insights(item_id, now=at), indent=2))


@cli.command()
@click.argument("item_id")
@click.pass_context
@engine_command
def expire(ctx, item_id):
    """Administrative takedown: force a story to Expired."""
    new_state = _engine(ctx).force_state(item_id, "expired")
    click.echo(f"{item_id}: {new_state.value}")


@cli.command()
@click.pass_context
@engine_command
def status(ctx):
    """Show database health and state counts."""
    stats = _engine(ctx).db.get_stats()
    click.echo("=== Keepsake Status ===")
    for state_name, n in stats["states"].items():
        click.echo(f"  {state_name:10s} {n}")
    click.echo(f"  Archive entries: {stats['archive_entries']}")
    click.echo(f"  DB size:         {stats['db_size_mb']:.1f} MB")


@cli.command(name="check-config")
@click.argument("path", type=click.Path(exists=True))
@engine_command
def check_config(path):
    """Validate a JSON config file."""
    config = load_config(Path(path)).validate()
    w = config.weights
    click.echo(f"Config OK: weights {w.engagement}/{w.significance}/{w.recency}/{w.temporal}")


if __name__ == "__main__":
    cli()
