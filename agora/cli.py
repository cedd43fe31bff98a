"""Agora CLI: operator commands for accounts, login contexts, roles and audit."""

import click
from rich.console import Console
from rich.table import Table

from agora import __version__
from agora.errors import AgoraError

console = Console()


def _settings(ctx):
    from agora.config import configure_logging, load_settings

    if "settings" not in ctx.obj:
        ctx.obj["settings"] = load_settings(ctx.obj.get("home"))
        configure_logging(ctx.obj["settings"])
    return ctx.obj["settings"]


def _user_store(ctx):
    from agora.auth.store import UserStore

    settings = _settings(ctx)
    return UserStore(str(settings.auth_dir), lock_timeout=settings.store_timeout_seconds)


def _audit(ctx):
    from agora.security.audit_log import AuditLogger

    return AuditLogger(_settings(ctx).audit_dir)


def _engine(ctx):
    from agora.auth.trust import ContextTrustEngine

    return ContextTrustEngine(_user_store(ctx), _settings(ctx), _audit(ctx))


def _record_owner(ctx, record_id: str) -> str:
    record = _user_store(ctx).get_suspicious_login(record_id)
    if record is None:
        raise click.ClickException(f"No context record with id {record_id}")
    return record.user_id


@click.group()
@click.version_option(version=__version__)
@click.option("--home", envvar="AGORA_HOME", default=None, help="Data directory (default ~/.agora)")
@click.pass_context
def main(ctx, home):
    """Agora: context-based login trust and community moderation.

    Operator tools for the data directory used by the web service.
    """
    ctx.ensure_object(dict)
    ctx.obj["home"] = home


# ── Users ────────────────────────────────────────────────────────────


@main.group()
def users():
    """Manage user accounts."""


@users.command(name="create-admin")
@click.argument("email")
@click.argument("name")
@click.password_option("--password", prompt=True, help="Password for the new admin")
@click.pass_context
def create_admin(ctx, email: str, name: str, password: str):
    """Create an administrator account."""
    from agora.auth.models import Role

    try:
        user = _engine(ctx).register(name, email, password, role=Role.admin)
    except AgoraError as e:
        raise click.ClickException(e.message)
    console.print(f"[green]Created admin[/] {user.email} ({user.id})")


# ── Contexts ─────────────────────────────────────────────────────────


@main.group()
def contexts():
    """Inspect and manage tracked login contexts."""


@contexts.command(name="list")
@click.argument("email")
@click.option("--blocked", "state", flag_value="blocked", help="Only blocked contexts")
@click.option("--trusted", "state", flag_value="trusted", help="Only trusted contexts")
@click.pass_context
def list_contexts(ctx, email: str, state):
    """List the tracked login contexts of a user."""
    store = _user_store(ctx)
    try:
        user = store.get_user_by_email(email)
        if user is None:
            raise click.ClickException(f"No user with email {email}")

        if state == "blocked":
            records = store.list_suspicious_logins(user.id, is_blocked=True)
        elif state == "trusted":
            records = store.list_suspicious_logins(user.id, is_trusted=True)
        else:
            records = store.list_suspicious_logins(user.id)
    except AgoraError as e:
        raise click.ClickException(e.message)

    if not records:
        console.print("[yellow]No tracked contexts.[/]")
        return

    table = Table(title=f"Contexts for {user.email} ({len(records)})")
    table.add_column("ID", style="dim")
    table.add_column("State", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("IP")
    table.add_column("Location")
    table.add_column("Browser")
    table.add_column("OS")
    table.add_column("Device")
    table.add_column("Seen")

    styles = {"blocked": "[red]blocked[/]", "trusted": "[green]trusted[/]"}
    for r in records:
        table.add_row(
            r.id,
            styles.get(r.state, r.state),
            str(r.unverified_attempts),
            r.ip or "",
            f"{r.city or '?'}, {r.country or '?'}",
            r.browser or "",
            r.os or "",
            f"{r.device or ''} / {r.device_type or ''}",
            r.last_seen[:19],
        )

    console.print(table)


@contexts.command()
@click.argument("record_id")
@click.pass_context
def block(ctx, record_id: str):
    """Block a context so logins from it are refused."""
    try:
        _engine(ctx).block_context(_record_owner(ctx, record_id), record_id)
    except AgoraError as e:
        raise click.ClickException(e.message)
    console.print(f"[red]Blocked[/] {record_id}")


@contexts.command()
@click.argument("record_id")
@click.pass_context
def unblock(ctx, record_id: str):
    """Unblock a context and mark it trusted."""
    try:
        _engine(ctx).unblock_context(_record_owner(ctx, record_id), record_id)
    except AgoraError as e:
        raise click.ClickException(e.message)
    console.print(f"[green]Unblocked[/] {record_id}")


@contexts.command()
@click.argument("record_id")
@click.pass_context
def delete(ctx, record_id: str):
    """Delete a tracked context record."""
    try:
        _engine(ctx).delete_context(_record_owner(ctx, record_id), record_id)
    except AgoraError as e:
        raise click.ClickException(e.message)
    console.print(f"Deleted {record_id}")


@contexts.command()
@click.option("--older-than", "older_than", type=int, required=True, help="Age in days")
@click.pass_context
def prune(ctx, older_than: int):
    """Remove untrusted, unblocked contexts older than N days."""
    try:
        removed = _engine(ctx).prune_stale_contexts(older_than)
    except AgoraError as e:
        raise click.ClickException(e.message)
    console.print(f"Pruned {removed} stale context record(s)")


# ── Roles ────────────────────────────────────────────────────────────


@main.group()
def roles():
    """Maintain user roles."""


@roles.command()
@click.pass_context
def reconcile(ctx):
    """Recompute moderator roles from community moderator lists."""
    from agora.communities.moderation import CommunityModerator
    from agora.communities.store import CommunityStore

    settings = _settings(ctx)
    moderator = CommunityModerator(
        CommunityStore(str(settings.communities_dir), lock_timeout=settings.store_timeout_seconds),
        _user_store(ctx),
        _audit(ctx),
    )
    try:
        changed = moderator.reconcile_roles(acting_user_id="cli")
    except AgoraError as e:
        raise click.ClickException(e.message)

    if not changed:
        console.print("[green]All roles are consistent.[/]")
        return
    console.print(f"[yellow]Updated {len(changed)} role(s):[/]")
    for user_id in changed:
        console.print(f"  {user_id}")


# ── Audit ────────────────────────────────────────────────────────────


@main.command()
@click.option("--actor", default=None, help="Filter by actor id")
@click.option("--action", default=None, help="Filter by action, e.g. login.blocked")
@click.option("--format", "fmt", default="table", type=click.Choice(["table", "json", "csv"]))
@click.option("--limit", default=50, show_default=True, help="Maximum number of events")
@click.pass_context
def audit(ctx, actor, action, fmt: str, limit: int):
    """Show or export audit events, newest first."""
    logger = _audit(ctx)

    if fmt != "table":
        click.echo(logger.export_events(fmt, actor=actor, action=action, limit=limit))
        return

    events = logger.get_events(actor=actor, action=action, limit=limit)
    if not events:
        console.print("[yellow]No audit events.[/]")
        return

    table = Table(title=f"Audit events ({len(events)})")
    table.add_column("Time", style="dim")
    table.add_column("Actor")
    table.add_column("Action", style="cyan")
    table.add_column("Resource")
    table.add_column("OK", justify="center")

    for e in events:
        ok = "[green]Y[/]" if e.success else "[red]N[/]"
        table.add_row(e.timestamp[:19], e.actor, e.action, f"{e.resource_type}:{e.resource_id}", ok)

    console.print(table)


if __name__ == "__main__":
    main()
