"""Local commands: add, get, delete, list, info, clear."""

from __future__ import annotations

import json

import click

from ..exceptions import HbxError
from ._helpers import main, _home_option, _open_store, _status


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------

@main.command()
@_home_option
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@click.pass_context
def add(ctx, paths):
    """Store files or directories, each under its own name.

    Paths that do not exist, or whose name is already stored, are skipped.
    """
    store = _open_store(ctx)
    for path in paths:
        try:
            node = store.add(path)
        except (HbxError, OSError) as exc:
            raise click.ClickException(str(exc))
        if node is None:
            _status(ctx, f"Skipped {path}")
        else:
            _status(ctx, f"Added {node.name}")


# ---------------------------------------------------------------------------
# get
# ---------------------------------------------------------------------------

@main.command()
@_home_option
@click.argument("name")
@click.argument("dest", required=False, default=".", type=click.Path())
@click.pass_context
def get(ctx, name, dest):
    """Restore item NAME into directory DEST (default: current directory)."""
    store = _open_store(ctx)
    try:
        target = store.get(name, dest)
    except (HbxError, OSError) as exc:
        raise click.ClickException(str(exc))
    _status(ctx, f"Restored {name} to {target}")


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------

@main.command()
@_home_option
@click.argument("name")
@click.pass_context
def delete(ctx, name):
    """Delete item NAME and reclaim blobs nothing else uses."""
    store = _open_store(ctx)
    if store.delete(name):
        _status(ctx, f"Deleted {name}")
    else:
        _status(ctx, f"No item named {name}")


# ---------------------------------------------------------------------------
# list / info
# ---------------------------------------------------------------------------

@main.command("list")
@_home_option
@click.pass_context
def list_cmd(ctx):
    """List stored item names."""
    store = _open_store(ctx)
    for name in store.list():
        click.echo(name)


@main.command()
@_home_option
@click.pass_context
def info(ctx):
    """Print the config file and blob directory paths as JSON."""
    store = _open_store(ctx)
    click.echo(json.dumps(store.info()))


# ---------------------------------------------------------------------------
# clear
# ---------------------------------------------------------------------------

@main.command()
@_home_option
@click.pass_context
def clear(ctx):
    """Remove blobs that no stored item references."""
    store = _open_store(ctx)
    removed = store.clear()
    _status(ctx, f"Removed {len(removed)} unreferenced blob(s)")
