"""
CLI Commands for the rewards engine.

Usage:
    flask ledger reconcile                 # Report wallet/account drift for every user
    flask ledger reconcile --user-id 42    # One user
    flask ledger reconcile --fix           # Overwrite drifted totals from the journal

    flask vip expire                       # Mark lapsed memberships expired (daily cron)
"""
from .ledger import init_app as init_ledger_commands
from .vip import init_app as init_vip_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_ledger_commands(app)
    init_vip_commands(app)
