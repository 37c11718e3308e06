"""
VIP membership commands.

# Membership expiry (run daily at midnight)
0 0 * * * cd /app && flask vip expire
"""
import click
from flask.cli import with_appcontext

from ..services.vip_service import VIPService


@click.group('vip')
def vip_cli():
    """VIP membership commands."""
    pass


@vip_cli.command('expire')
@with_appcontext
def expire_memberships():
    """Mark active memberships past their end date as expired."""
    count = VIPService().expire_lapsed()
    click.echo(f"Expired {count} VIP memberships")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(vip_cli)
