"""
Operational CLI commands: flask payments <command>
"""
import click
from flask import current_app
from flask.cli import AppGroup

payments_cli = AppGroup('payments', help='M-Pesa payment maintenance.')


@payments_cli.command('expire-pending')
@click.option('--minutes', type=int, default=None,
              help='Age in minutes after which a pending STK Push is resolved. '
                   'Defaults to MPESA_PENDING_TIMEOUT_MINUTES.')
def expire_pending(minutes):
    """Resolve STK Push transactions stuck in pending (no callback received)."""
    service = current_app.extensions['stk_push']
    if minutes is not None and minutes < 0:
        raise click.BadParameter('must be zero or more', param_hint='--minutes')
    expired = service.expire_stale_pending(minutes)
    click.echo(f"Expired {expired} pending transaction(s).")
