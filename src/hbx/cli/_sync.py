"""Remote sync commands: pull and push."""

from __future__ import annotations

import click
import paramiko

from ..config import REMOTE_BIN_ENV
from ..exceptions import HbxError
from ._helpers import main, _home_option, _dry_run_option, _open_store, _status


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_plan(plan, direction: str) -> None:
    """Pretty-print a SyncPlan to stdout."""
    if plan.in_sync:
        click.echo(f"Nothing to {direction} — already in sync.")
        return
    for name in plan.items:
        click.echo(f"  merge   {name}")
    for name in plan.skipped:
        click.echo(f"  skip    {name}  (already present)")
    for fp in plan.blobs:
        click.echo(f"  blob    {fp}")
    click.echo(f"{len(plan.items)} item(s), {len(plan.blobs)} blob(s) would be transferred.")


def _progress_cb(ctx):
    """Return a progress callback if verbose mode is on, else None."""
    if not ctx.obj.get("verbose"):
        return None

    def _on_progress(msg):
        click.echo(msg, err=True)
    return _on_progress


def _sync_options(f):
    """Options shared by pull and push."""
    f = click.option("--remote-bin", envvar=REMOTE_BIN_ENV, default=None,
                     help=f"Path of hbx on the remote host (or set {REMOTE_BIN_ENV}).")(f)
    f = click.option("--all", "all_", is_flag=True, default=False,
                     help="Select every item; NAMES are ignored.")(f)
    f = click.option("-p", "--port", type=int, default=None,
                     help="SSH port (default: from ADDRESS, else 22).")(f)
    return f


def _require_selection(names, all_):
    if not names and not all_:
        raise click.UsageError("Give at least one NAME, or --all.")


# ---------------------------------------------------------------------------
# pull
# ---------------------------------------------------------------------------

@main.command()
@_home_option
@click.argument("names", nargs=-1)
@click.argument("address")
@_sync_options
@_dry_run_option
@click.pass_context
def pull(ctx, names, address, port, all_, remote_bin, dry_run):
    """Fetch items NAMES from the store at ADDRESS ([user@]host[:port]).

    Only blobs missing locally are downloaded.  Items whose name already
    exists locally are left unchanged.
    """
    from ..sync import pull as do_pull

    _require_selection(names, all_)
    store = _open_store(ctx)
    try:
        plan = do_pull(store, address, names, all_=all_, port=port, dry_run=dry_run,
                       remote_bin=remote_bin, progress=_progress_cb(ctx))
    except (HbxError, ValueError, OSError, paramiko.SSHException) as exc:
        raise click.ClickException(str(exc))
    if dry_run:
        _print_plan(plan, "pull")
    else:
        _status(ctx, f"Pulled {len(plan.items)} item(s), {len(plan.blobs)} blob(s) from {address}")


# ---------------------------------------------------------------------------
# push
# ---------------------------------------------------------------------------

@main.command()
@_home_option
@click.argument("names", nargs=-1)
@click.argument("address")
@_sync_options
@click.option("--install", is_flag=True, default=False,
              help="Upload the local hbx executable if the remote lacks it.")
@_dry_run_option
@click.pass_context
def push(ctx, names, address, port, all_, remote_bin, install, dry_run):
    """Send items NAMES to the store at ADDRESS ([user@]host[:port]).

    Only blobs missing remotely are uploaded.  Items whose name already
    exists remotely are left unchanged.
    """
    from ..sync import push as do_push

    _require_selection(names, all_)
    store = _open_store(ctx)
    try:
        plan = do_push(store, address, names, all_=all_, port=port, install=install,
                       dry_run=dry_run, remote_bin=remote_bin, progress=_progress_cb(ctx))
    except (HbxError, ValueError, OSError, paramiko.SSHException) as exc:
        raise click.ClickException(str(exc))
    if dry_run:
        _print_plan(plan, "push")
    else:
        _status(ctx, f"Pushed {len(plan.items)} item(s), {len(plan.blobs)} blob(s) to {address}")
