"""Session commands -- inspect and remove stored logins."""

from __future__ import annotations

import typer

from izcli.commands import config_store, is_forced, reporting_errors, session_store
from izcli.output import info, print_table, success, suggest, warning


sessions_app = typer.Typer(no_args_is_help=True)


@sessions_app.command("list")
def sessions_list(ctx: typer.Context) -> None:
    """List stored sessions.

    Sessions older than 24 hours are flagged ``expired``; the server has
    the final say, so an expired session may still work.
    """
    with reporting_errors():
        doc = session_store(ctx).load()

    if not doc.sessions:
        info("No sessions stored")
        suggest("Log in with: iz login <url> <username>")
        return

    rows = []
    for name in sorted(doc.sessions):
        session = doc.sessions[name]
        if not session.jwt_token:
            status = "logged out"
        elif session.is_expired():
            status = "expired"
        else:
            status = "active"
        rows.append(
            [
                name,
                session.url,
                session.username,
                session.effective_auth_method.value,
                session.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                status,
            ]
        )
    print_table(["NAME", "URL", "USERNAME", "METHOD", "CREATED", "STATUS"], rows)


@sessions_app.command("delete")
def sessions_delete(
    ctx: typer.Context,
    name: str = typer.Argument(help="Session to delete."),
) -> None:
    """Delete a session.

    Profiles that reference it are left in place and reported; log in
    again to give them a new session.
    """
    store = session_store(ctx)
    with reporting_errors():
        store.get_session(name)
        holders = [
            profile_name
            for profile_name, profile in config_store(ctx).list_profiles().items()
            if profile.session == name
        ]
        if holders and not is_forced(ctx):
            warning(f"Session '{name}' is used by profile(s): {', '.join(holders)}")
            if not typer.confirm("Delete it anyway?"):
                info("Cancelled.")
                raise typer.Exit()
        store.delete_session(name)
    success(f"✓ Session '{name}' deleted")
