"""
Billing error taxonomy.

Actions raise these internally; the action boundary turns them into
``{"error": message, "code": code}`` results and routes map ``code`` to an
HTTP status.
"""


class BillingError(Exception):
    code = "billing_error"
    status = 400
    default_message = "Billing request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_result(self) -> dict:
        return {"error": self.message, "code": self.code}


class NotAuthenticated(BillingError):
    code = "not_authenticated"
    status = 401
    default_message = "Not authenticated."


class InvalidPlanSelection(BillingError):
    code = "invalid_plan"
    status = 400
    default_message = "Invalid price selection."


class PriceConfigurationError(BillingError):
    code = "price_configuration"
    status = 502
    default_message = "Price configuration error."


class ProviderError(BillingError):
    code = "provider_error"
    status = 502
    default_message = "Payment provider request failed."


class DatastoreError(BillingError):
    code = "datastore_error"
    status = 503
    default_message = "Could not access billing profile."


class NoCustomer(BillingError):
    code = "no_customer"
    status = 404
    default_message = "No Stripe customer found. Please make a purchase first."


class NoSubscription(BillingError):
    code = "no_subscription"
    status = 404
    default_message = "No active subscription found."


class InactiveSubscription(BillingError):
    code = "inactive_subscription"
    status = 409
    default_message = "Cannot change plans for inactive subscriptions."


class AlreadyOnPlan(BillingError):
    code = "already_on_plan"
    status = 409
    default_message = "You are already on this plan."


class SubscriptionAlreadyActive(BillingError):
    code = "subscription_active"
    status = 409
    default_message = "Subscription already active. Change plan instead."


class ProfileNotFound(LookupError):
    """No profile row for a Stripe customer (webhook path; surfaces as a 500)."""


STATUS_BY_CODE = {
    cls.code: cls.status
    for cls in (
        BillingError,
        NotAuthenticated,
        InvalidPlanSelection,
        PriceConfigurationError,
        ProviderError,
        DatastoreError,
        NoCustomer,
        NoSubscription,
        InactiveSubscription,
        AlreadyOnPlan,
        SubscriptionAlreadyActive,
    )
}


def status_for(result: dict) -> int:
    """HTTP status for an action result (200 when it carries no error)."""
    if not result.get("error"):
        return 200
    return STATUS_BY_CODE.get(result.get("code"), 400)
