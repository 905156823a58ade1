import click
from flask import current_app

from adiva.services.auth_service import AuthService


def register_commands(app):
    """Attach maintenance commands to `flask`."""

    @app.cli.command("purge-guests")
    def purge_guests():
        """Delete guest usage records past their expiry."""
        gate = current_app.extensions["adiva.chat_service"].quota_gate
        removed = gate.purge_expired()
        click.echo(f"Removed {removed} expired guest records")

    @app.cli.command("create-admin")
    @click.option("--name", required=True)
    @click.option("--email", required=True)
    @click.password_option()
    def create_admin(name, email, password):
        """Register an account with the admin role."""
        user = AuthService.register(name, email, password, role="admin")
        click.echo(f"Created admin {user.email} (id {user.id})")
