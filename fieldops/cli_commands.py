"""
Flask CLI commands for inspecting proposals in the remote store.

Commands:
- flask change-orders DEAL_ID: List a deal's change orders with totals
- flask quote-totals QUOTE_ID: Show a saved quote's line items and totals
"""

import click
from flask import current_app

from fieldops.exceptions import PersistenceError
from fieldops.services.change_order_service import (
    calculate_active_sequence, change_order_totals, format_change_order_label
)
from fieldops.services.totals_service import compute_totals
from fieldops.utils.formatters import accepted_date, money


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('change-orders')
    @click.argument('deal_id')
    @click.option('--quote-id', default=None, help='Only show change orders of this quote')
    @click.option('--tax-rate', default=None, type=float, help='Tax percentage (defaults to DEFAULT_TAX_RATE)')
    def list_change_orders(deal_id, quote_id, tax_rate):
        """List the change orders of a deal."""
        client = current_app.extensions['store_client']
        rate = tax_rate if tax_rate is not None else current_app.config.get('DEFAULT_TAX_RATE', 0)

        try:
            orders = client.list_change_orders(deal_id)
        except PersistenceError as e:
            click.echo(click.style(f'Could not load change orders: {e.message}', fg='red'))
            raise SystemExit(1)

        deal_orders = orders
        if quote_id:
            orders = [order for order in orders if order.quote_id == quote_id]

        if not orders:
            click.echo(f'No change orders for deal {deal_id}.')
        for order in orders:
            totals = change_order_totals(order, rate)
            color = 'green' if order.is_accepted else 'yellow'
            status = order.status.value
            if order.is_accepted and order.accepted_at:
                status = f'{status} {accepted_date(order.accepted_at)}'
            click.echo(click.style(f'{order.change_order_number}  [{status}]', fg=color, bold=True))
            for item in order.items:
                click.echo(f'   {item.name:<40} {money(item.unit_price):>14}')
            click.echo(f'   {"Total":<40} {money(totals.total):>14}')

        if quote_id:
            quote = client.get_quote(quote_id)
            label = format_change_order_label(quote.quote_number, calculate_active_sequence(deal_orders, quote.quote_number))
            click.echo(f'\nNext change order: {label}')

    @app.cli.command('quote-totals')
    @click.argument('quote_id')
    @click.option('--tax-rate', default=None, type=float, help='Tax percentage (defaults to DEFAULT_TAX_RATE)')
    def quote_totals(quote_id, tax_rate):
        """Show a quote's line items and totals."""
        client = current_app.extensions['store_client']
        rate = tax_rate if tax_rate is not None else current_app.config.get('DEFAULT_TAX_RATE', 0)

        try:
            quote = client.get_quote(quote_id)
        except PersistenceError as e:
            click.echo(click.style(f'Could not load quote {quote_id}: {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f'Quote {quote.quote_number} [{quote.status.value}]', bold=True))
        for item in quote.line_items:
            click.echo(f'   {item.name:<40} {money(item.unit_price):>14}')

        totals = compute_totals(quote.line_items, rate)
        click.echo(f'   {"Subtotal":<40} {money(totals.subtotal):>14}')
        click.echo(f'   {"Tax":<40} {money(totals.tax_amount):>14}')
        click.echo(click.style(f'   {"Total":<40} {money(totals.total):>14}', fg='green'))
