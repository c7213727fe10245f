# storefront/cli.py
import click
from flask.cli import with_appcontext

from .container import get_services


@click.command("reconcile-coupon-usage")
@click.option("--dry-run", is_flag=True, help="Report drift without fixing it.")
@with_appcontext
def reconcile_coupon_usage(dry_run):
    drift = get_services().ledger.reconcile_usage_counts(dry_run=dry_run)
    if not drift:
        click.echo("Coupon usage counts are consistent")
        return
    for row in drift:
        click.echo(f"{row['code']}: cached={row['cached']} actual={row['actual']}")
    verb = "would fix" if dry_run else "fixed"
    click.echo(f"{len(drift)} coupon(s) {verb}")


@click.command("prune-cart-coupons")
@with_appcontext
def prune_cart_coupons():
    removed = get_services().coupons.prune_attached_coupons()
    click.echo(f"Detached {removed} coupon(s) from active carts")


@click.command("expire-carts")
@with_appcontext
def expire_carts():
    expired = get_services().carts.expire_stale_carts()
    click.echo(f"Expired {expired} cart(s)")


def register_cli(app):
    app.cli.add_command(reconcile_coupon_usage)
    app.cli.add_command(prune_cart_coupons)
    app.cli.add_command(expire_carts)
