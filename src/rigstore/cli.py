"""rigs CLI: file-backed issue tracker federated across rigs.

Commands:
    rigs init                      create .store/config.toml + data dirs
    rigs create TITLE              create an issue (--parent for a child id)
    rigs show ID                   dump one issue (routed)
    rigs list                      list local issues
    rigs children ID               list a parent's children (routed)
    rigs close ID... [--reason R]  close issues (routed)
    rigs reopen ID                 reopen a closed issue (routed)
    rigs delete ID                 drop an issue and its edges (routed)
    rigs ready                     open top-level issues with no open blockers
    rigs blocked                   open issues waiting on blockers
    rigs dep add ISSUE DEPENDS_ON  add a dependency edge
    rigs dep rm ISSUE DEPENDS_ON   remove a dependency edge
    rigs route ID                  show which rig owns ID
    rigs routes                    show the routing manifest
    rigs doctor [--fix]            check / repair the local rig
    rigs slot ...                  merge slot: create, check, acquire, release
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click

from rigstore import mergeslot
from rigstore.config import STORAGE_DIR_NAME, RigConfig, find_storage_dir, init_config, load_config
from rigstore.errors import RigError
from rigstore.federation import FederatedStore
from rigstore.filestore import FileStore
from rigstore.kv import KVStore
from rigstore.models import DEPENDENCY_TYPES, ISSUE_TYPES, PARENT_CHILD, STATUSES, Issue, ListFilter
from rigstore.routing import Router

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _rig_errors() -> Iterator[None]:
    try:
        yield
    except RigError as exc:
        raise click.ClickException(str(exc)) from exc


def _load_cfg() -> RigConfig:
    storage_dir = find_storage_dir()
    if storage_dir is None:
        raise click.ClickException("No .store/config.toml found; run `rigs init` first")
    with _rig_errors():
        return load_config(storage_dir)


def _open_store() -> tuple[RigConfig, FederatedStore]:
    cfg = _load_cfg()
    with _rig_errors():
        router = Router.discover(cfg.storage_dir)
    local = FileStore(cfg.data_dir, cfg.prefix, cfg.max_hierarchy_depth)
    return cfg, FederatedStore(router, local)


def _issue_line(issue: Issue) -> str:
    return f"{issue.id:<16} [{issue.status}] P{issue.priority} {issue.type:<8} {issue.title}"


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="rigstore")
@click.option("-v", "--verbose", is_flag=True, help="Log routing and repair activity")
def cli(verbose: bool) -> None:
    """rigs: file-backed issue tracker with cross-rig routing."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(message)s",
    )


# ---------------------------------------------------------------------------
# rigs init
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--prefix", default="bd-", show_default=True, help="ID prefix for this rig")
@click.option("--dir", "root", default=".", show_default=True, help="Rig root")
def init(prefix: str, root: str) -> None:
    """Create .store/config.toml and the data directories."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, prefix=prefix)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("config.toml already exists, skipping")

    with _rig_errors():
        cfg = load_config(root_path / STORAGE_DIR_NAME)
    FileStore(cfg.data_dir, cfg.prefix, cfg.max_hierarchy_depth).init()
    mergeslot.create_slot(mergeslot.slot_store(cfg.storage_dir))
    click.echo(f"Data dir : {cfg.data_dir}")
    click.echo(f"Prefix   : {cfg.prefix}")


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("title")
@click.option("-d", "--description", default="", help="Issue body")
@click.option("--parent", default=None, help="Create as a child of this issue")
@click.option("--type", "issue_type", type=click.Choice(ISSUE_TYPES), default="task", show_default=True)
@click.option("-p", "--priority", type=click.IntRange(0, 4), default=2, show_default=True)
def create(title: str, description: str, parent: str | None, issue_type: str, priority: int) -> None:
    """Create an issue in the local rig and print its id."""
    cfg, store = _open_store()
    issue = Issue(
        title=title,
        description=description,
        type=issue_type,
        priority=priority,
        created_by=cfg.actor,
    )
    with _rig_errors():
        if parent:
            if store.store_for(parent) is not store.local:
                msg = f"parent {parent} lives in another rig; children must be created there"
                raise click.ClickException(msg)
            issue.id = store.get_next_child_id(parent)
        issue_id = store.create(issue)
        if parent:
            store.add_dependency(issue_id, parent, PARENT_CHILD)
    click.echo(issue_id)


@cli.command()
@click.argument("issue_id")
def show(issue_id: str) -> None:
    """Show one issue, wherever it lives."""
    _, store = _open_store()
    with _rig_errors():
        issue = store.get(issue_id)

    click.echo(f"{issue.id}  {issue.title}")
    click.echo(f"  status   : {issue.status}")
    if issue.close_reason:
        click.echo(f"  reason   : {issue.close_reason}")
    click.echo(f"  type     : {issue.type}  priority: P{issue.priority}")
    if issue.parent:
        click.echo(f"  parent   : {issue.parent}")
    if issue.assignee:
        click.echo(f"  assignee : {issue.assignee}")
    if issue.labels:
        click.echo(f"  labels   : {', '.join(issue.labels)}")
    for dep in issue.dependencies:
        click.echo(f"  depends on {dep.id} ({dep.type})")
    for dep in issue.dependents:
        click.echo(f"  needed by  {dep.id} ({dep.type})")
    if issue.description:
        click.echo("")
        click.echo(issue.description)


@cli.command("list")
@click.option("--status", type=click.Choice(STATUSES), default=None)
@click.option("--parent", default=None, help='Only children of this issue ("" for roots)')
def list_issues(status: str | None, parent: str | None) -> None:
    """List issues in the local rig, oldest first."""
    _, store = _open_store()
    with _rig_errors():
        issues = store.list(ListFilter(status=status, parent=parent))
    if not issues:
        click.echo("No issues.")
        return
    for issue in issues:
        click.echo(_issue_line(issue))


@cli.command()
@click.argument("parent_id")
def children(parent_id: str) -> None:
    """List the children of PARENT_ID."""
    _, store = _open_store()
    with _rig_errors():
        kids = store.children(parent_id)
    for issue in kids:
        click.echo(_issue_line(issue))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("issue_ids", nargs=-1, required=True)
@click.option("--reason", default="", help="Close reason")
def close(issue_ids: tuple[str, ...], reason: str) -> None:
    """Close one or more issues."""
    _, store = _open_store()
    for issue_id in issue_ids:
        with _rig_errors():
            store.close(issue_id, reason)
        click.echo(f"Closed {issue_id}")


@cli.command()
@click.argument("issue_id")
def reopen(issue_id: str) -> None:
    """Reopen a closed issue."""
    _, store = _open_store()
    with _rig_errors():
        store.reopen(issue_id)
    click.echo(f"Reopened {issue_id}")


@cli.command()
@click.argument("issue_id")
def delete(issue_id: str) -> None:
    """Delete an issue after dropping its edges from its neighbours."""
    _, store = _open_store()
    with _rig_errors():
        store.detach(issue_id)
        store.delete(issue_id)
    click.echo(f"Deleted {issue_id}")


@cli.command()
def ready() -> None:
    """List open top-level issues with no open blockers."""
    _, store = _open_store()
    with _rig_errors():
        issues = store.ready()
    if not issues:
        click.echo("No ready issues.")
        return
    for issue in issues:
        click.echo(_issue_line(issue))


@cli.command()
def blocked() -> None:
    """List open issues and the blockers they are waiting on."""
    _, store = _open_store()
    with _rig_errors():
        pairs = store.blocked()
    if not pairs:
        click.echo("No blocked issues.")
        return
    for issue, waiting in pairs:
        click.echo(_issue_line(issue))
        click.echo(f"    waiting on: {', '.join(waiting)}")


# ---------------------------------------------------------------------------
# rigs dep
# ---------------------------------------------------------------------------


@cli.group()
def dep() -> None:
    """Add or remove dependency edges."""


@dep.command("add")
@click.argument("issue_id")
@click.argument("depends_on_id")
@click.option("-t", "--type", "dep_type", type=click.Choice(DEPENDENCY_TYPES), default="blocks", show_default=True)
def dep_add(issue_id: str, depends_on_id: str, dep_type: str) -> None:
    """ISSUE_ID depends on DEPENDS_ON_ID.

    \b
    rigs dep add bd-a1b bd-c2d
    rigs dep add bd-a1b.1 bd-a1b --type parent-child
    """
    _, store = _open_store()
    with _rig_errors():
        store.add_dependency(issue_id, depends_on_id, dep_type)
    click.echo(f"{issue_id} -> {depends_on_id} ({dep_type})")


@dep.command("rm")
@click.argument("issue_id")
@click.argument("depends_on_id")
def dep_rm(issue_id: str, depends_on_id: str) -> None:
    """Remove the edge ISSUE_ID -> DEPENDS_ON_ID from both issues."""
    _, store = _open_store()
    with _rig_errors():
        store.remove_dependency(issue_id, depends_on_id)
    click.echo(f"removed {issue_id} -> {depends_on_id}")


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("issue_id")
def route(issue_id: str) -> None:
    """Show which rig owns ISSUE_ID."""
    cfg = _load_cfg()
    with _rig_errors():
        resolution = Router.discover(cfg.storage_dir).resolve(issue_id)
    if resolution.location is None:
        click.echo(f"{issue_id}: local (no route)")
    elif resolution.is_remote:
        click.echo(f"{issue_id}: {resolution.prefix} -> {resolution.location}")
    else:
        click.echo(f"{issue_id}: {resolution.prefix} -> local")


@cli.command()
def routes() -> None:
    """Show the routing manifest in effect for this rig."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    with _rig_errors():
        router = Router.discover(cfg.storage_dir)
    if router.is_absent:
        click.echo("No routes configured.")
        return

    table = Table(title=f"routes ({router.town_root})", show_header=True, header_style="bold")
    table.add_column("Prefix", no_wrap=True)
    table.add_column("Path")
    table.add_column("Location", style="dim")
    for r in router.routes:
        try:
            location = str(router.resolve(r.prefix).location)
        except RigError as exc:
            location = f"[red]{exc}[/red]"
        table.add_row(r.prefix, r.path, location)
    Console().print(table)


# ---------------------------------------------------------------------------
# rigs doctor
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--fix", is_flag=True, help="Repair the problems found")
def doctor(fix: bool) -> None:
    """Check the local rig for on-disk and dependency-graph problems."""
    _, store = _open_store()
    with _rig_errors():
        problems = store.doctor(fix=fix)
    if not problems:
        click.echo("No problems found.")
        return
    for problem in problems:
        click.echo(f"  {problem}")
    verb = "Fixed" if fix else "Found"
    click.echo(f"{verb} {len(problems)} problem(s)")
    if not fix:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# rigs slot
# ---------------------------------------------------------------------------


@cli.group()
def slot() -> None:
    """Merge slot: one holder at a time per rig."""


def _slot_store() -> KVStore:
    return mergeslot.slot_store(_load_cfg().storage_dir)


@slot.command("create")
def slot_create() -> None:
    with _rig_errors():
        mergeslot.create_slot(_slot_store())
    click.echo("merge slot ready")


@slot.command("check")
def slot_check() -> None:
    with _rig_errors():
        state = mergeslot.check_slot(_slot_store())
    line = state.status
    if state.holder:
        line += f" (holder: {state.holder})"
    if state.waiters:
        line += f" waiters: {', '.join(state.waiters)}"
    click.echo(line)


@slot.command("acquire")
@click.argument("requester")
@click.option("--wait", is_flag=True, help="Queue as a waiter if the slot is held")
def slot_acquire(requester: str, wait: bool) -> None:
    with _rig_errors():
        mergeslot.acquire(_slot_store(), requester, wait=wait)
    click.echo(f"acquired by {requester}")


@slot.command("release")
@click.option("--holder", default="", help="Fail unless the slot is held by this holder")
def slot_release(holder: str) -> None:
    with _rig_errors():
        _, first_waiter = mergeslot.release(_slot_store(), holder)
    click.echo("released")
    if first_waiter:
        click.echo(f"next waiter: {first_waiter}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
