"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import logging
import sys

import click

from ..config import HOME_ENV, StoreConfig
from ..exceptions import HbxError
from ..store import Store


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _setup_logging(verbose: int) -> None:
    """Route library logging to stderr: -v for INFO, -vv for DEBUG."""
    if not verbose:
        return
    level = logging.DEBUG if verbose > 1 else logging.INFO
    logging.basicConfig(
        level=level, stream=sys.stderr, force=True,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _store_home(ctx, param, value):
    """Click callback: store --home value in the context."""
    ctx.ensure_object(dict)
    if value is not None:
        ctx.obj["home"] = value
    return value


def _home_option(f):
    """Shared --home/-H option decorator for all commands."""
    return click.option(
        "--home", "-H", type=click.Path(file_okay=False), envvar=HOME_ENV,
        help=f"Store home directory (or set {HOME_ENV}; default ~/.hbx).",
        expose_value=False, callback=_store_home, is_eager=True,
    )(f)


def _open_store(ctx) -> Store:
    """Open the store selected by --home / HBX_HOME, or ~/.hbx."""
    config = StoreConfig.from_env(ctx.obj.get("home"))
    try:
        return Store.open(config=config)
    except HbxError as exc:
        raise click.ClickException(str(exc))


def _dry_run_option(f):
    """Shared --dry-run/-n flag."""
    return click.option(
        "-n", "--dry-run", is_flag=True, default=False,
        help="Show what would change without changing anything.",
    )(f)


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--home", "-H", type=click.Path(file_okay=False), envvar=HOME_ENV,
              help=f"Store home directory (or set {HOME_ENV}; default ~/.hbx).",
              expose_value=False, callback=_store_home, is_eager=True)
@click.option("-v", "--verbose", count=True, help="Verbose output on stderr (-vv for debug).")
@click.version_option(package_name="hbx")
@click.pass_context
def main(ctx, verbose):
    """hbx — a personal content-addressed file store.

    Snapshot files and directories under a name, restore them anywhere,
    and exchange them with another machine over SSH.  Identical content
    is stored once and hard-linked.

    \b
    Quick start:
      hbx add ~/dotfiles
      hbx list
      hbx get dotfiles /tmp/restore
      hbx push dotfiles me@server

    \b
    Set HBX_HOME to use a store other than ~/.hbx.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)
