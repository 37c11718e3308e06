"""
Ledger maintenance commands.

# Nightly drift report
0 3 * * * cd /app && flask ledger reconcile
"""
import click
from flask.cli import with_appcontext

from ..services.reconciliation_service import LedgerReconciler
from ..utils.exceptions import AccountNotFoundError


@click.group('ledger')
def ledger_cli():
    """Wallet ledger commands."""
    pass


def _print_report(report):
    status = 'FIXED' if report['fixed'] else ('ok' if report['consistent'] else 'DRIFT')
    click.echo(f"  User {report['user_id']}: {status}")
    for field, values in report['drift'].items():
        click.echo(f"    {field}: stored {values['actual']:.2f}, journal says {values['expected']:.2f}")


@ledger_cli.command('reconcile')
@click.option('--user-id', type=int, help='Specific user ID (or all if not specified)')
@click.option('--fix', is_flag=True, help='Overwrite drifted totals with the recomputed values')
@with_appcontext
def reconcile(user_id, fix):
    """
    Recompute wallet and account totals from the journal and report drift.
    """
    reconciler = LedgerReconciler()

    if user_id:
        try:
            report = reconciler.reconcile_user(user_id, fix=fix)
        except AccountNotFoundError as e:
            click.echo(e.message)
            raise SystemExit(1)
        _print_report(report)
        if not report['consistent'] and not fix:
            raise SystemExit(1)
        return

    summary = reconciler.reconcile_all(fix=fix)
    click.echo(f"\n{'[FIX] ' if fix else ''}Checked {summary['checked']} users, "
               f"{summary['inconsistent']} inconsistent")
    for report in summary['reports']:
        _print_report(report)

    if summary['inconsistent'] and not fix:
        raise SystemExit(1)


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(ledger_cli)
