import click
import stripe
from flask.cli import with_appcontext
from billing_bridge.billing.presenters import format_amount, interval_suffix
from billing_bridge.services import profiles, stripe_client, webhooks
from billing_bridge.services.billing import get_billing_plans_with_stripe_pricing


@click.group()
def billing():
    """Billing ops utilities."""


@billing.command("plans")
@with_appcontext
def billing_plans():
    """Print the plan catalog with live Stripe pricing."""
    for plan in get_billing_plans_with_stripe_pricing():
        price = format_amount(plan.amount, plan.currency) + interval_suffix(plan.interval)
        click.echo(
            f"{plan.id:<14} {price:<12} price_id={plan.price_id or '-'} flags={','.join(plan.flags)}"
        )


def _resync_customer(client, customer_id: str) -> str:
    subs = client.subscriptions.list(params={"customer": customer_id, "status": "all", "limit": 1})
    data = stripe_client.as_dict(subs).get("data") or []
    if not data:
        return "no subscriptions"
    sub = stripe_client.as_dict(data[0])
    if sub.get("status") in ("canceled", "incomplete_expired"):
        webhooks.handle_subscription_deleted(sub)
    else:
        webhooks.handle_subscription_update(sub)
    return f"{sub.get('id')} {sub.get('status')}"


@billing.command("resync")
@click.option("--customer", "customer_id", help="Stripe customer id (cus_...)")
@click.option("--all", "resync_all", is_flag=True, help="Every profile with a Stripe customer")
@with_appcontext
def billing_resync(customer_id, resync_all):
    """Re-reconcile profiles from Stripe's current subscription state."""
    if not customer_id and not resync_all:
        raise click.UsageError("Pass --customer or --all")

    customer_ids = profiles.find_customer_ids() if resync_all else [customer_id]
    client = stripe_client.get_client()
    failures = 0
    for cid in customer_ids:
        try:
            outcome = _resync_customer(client, cid)
        except (stripe.StripeError, LookupError) as e:
            failures += 1
            click.echo(f"{cid}: failed ({type(e).__name__}: {e})", err=True)
            continue
        click.echo(f"{cid}: {outcome}")

    if failures:
        raise click.ClickException(f"{failures} customer(s) failed to resync")


def register_cli(app):
    app.cli.add_command(billing)
