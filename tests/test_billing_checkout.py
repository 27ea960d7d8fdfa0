from types import SimpleNamespace

import stripe
from flask_login import login_user
from billing_bridge.extensions import db
from billing_bridge.models import User, Profile
from billing_bridge.services import billing


def _as_user(app, uid):
    ctx = app.test_request_context("/billing")
    ctx.push()
    login_user(db.session.get(User, uid))
    return ctx


def _one_time_price(price_id):
    return {"id": price_id, "unit_amount": 1500, "currency": "gbp", "type": "one_time"}


def test_actions_require_signed_in_user(app, fake_stripe):
    with app.test_request_context("/billing"):
        result = billing.create_payment_intent("price_content_pack")
    assert result["code"] == "not_authenticated"
    assert "error" in result
    assert fake_stripe.calls == []


def test_payment_intent_creates_and_persists_customer(app, make_user, fake_stripe):
    uid = make_user()
    fake_stripe.customers.responses["create"] = SimpleNamespace(id="cus_new")
    fake_stripe.prices.responses["retrieve"] = _one_time_price
    fake_stripe.payment_intents.responses["create"] = SimpleNamespace(client_secret="pi_secret_1")

    ctx = _as_user(app, uid)
    try:
        result = billing.create_payment_intent("price_content_pack")
    finally:
        ctx.pop()

    assert result == {"client_secret": "pi_secret_1"}
    (_, _, kwargs), = fake_stripe.called("payment_intents.create")
    params = kwargs["params"]
    assert params["amount"] == 1500
    assert params["currency"] == "gbp"
    assert params["customer"] == "cus_new"
    assert params["metadata"] == {"price_id": "price_content_pack", "user_id": str(uid)}

    with app.app_context():
        assert db.session.get(Profile, uid).stripe_customer_id == "cus_new"


def test_existing_customer_is_reused(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_existing")
    fake_stripe.prices.responses["retrieve"] = _one_time_price
    fake_stripe.payment_intents.responses["create"] = SimpleNamespace(client_secret="pi_secret_2")

    ctx = _as_user(app, uid)
    try:
        result = billing.create_payment_intent("price_content_pack")
    finally:
        ctx.pop()

    assert result == {"client_secret": "pi_secret_2"}
    assert fake_stripe.called("customers.create") == []


def test_payment_intent_rejects_recurring_price(app, make_user, fake_stripe):
    uid = make_user()
    ctx = _as_user(app, uid)
    try:
        result = billing.create_payment_intent("price_pro_monthly")
    finally:
        ctx.pop()
    assert result["code"] == "invalid_plan"
    assert fake_stripe.calls == []


def test_payment_intent_price_mismatch(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_m")
    fake_stripe.prices.responses["retrieve"] = {"unit_amount": 1500, "currency": "usd", "type": "one_time"}

    ctx = _as_user(app, uid)
    try:
        result = billing.create_payment_intent("price_content_pack")
    finally:
        ctx.pop()

    assert result["code"] == "price_configuration"
    assert fake_stripe.called("payment_intents.create") == []


def test_provider_failure_becomes_result(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_p")
    fake_stripe.prices.responses["retrieve"] = stripe.APIConnectionError("network down")

    ctx = _as_user(app, uid)
    try:
        result = billing.create_payment_intent("price_content_pack")
    finally:
        ctx.pop()

    assert result["code"] == "provider_error"
    assert result["error"]


def test_subscription_rejects_one_time_price(app, make_user, fake_stripe):
    uid = make_user()
    ctx = _as_user(app, uid)
    try:
        result = billing.create_subscription("price_content_pack")
    finally:
        ctx.pop()
    assert result["code"] == "invalid_plan"
    assert fake_stripe.called("subscriptions.create") == []


def test_subscription_returns_first_invoice_secret(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_s")
    fake_stripe.subscriptions.responses["create"] = {
        "id": "sub_new",
        "status": "incomplete",
        "latest_invoice": {"id": "in_1", "payment_intent": {"id": "pi_1", "client_secret": "pi_1_secret"}},
    }

    ctx = _as_user(app, uid)
    try:
        result = billing.create_subscription("price_pro_monthly")
    finally:
        ctx.pop()

    assert result == {"client_secret": "pi_1_secret", "subscription_id": "sub_new"}
    (_, _, kwargs), = fake_stripe.called("subscriptions.create")
    params = kwargs["params"]
    assert params["payment_behavior"] == "default_incomplete"
    assert params["items"] == [{"price": "price_pro_monthly"}]
    assert "latest_invoice.payment_intent" in params["expand"]


def test_subscription_blocked_while_one_is_active(app, make_user, fake_stripe):
    uid = make_user(
        stripe_customer_id="cus_a",
        stripe_subscription_id="sub_a",
        stripe_subscription_status="active",
        stripe_price_id="price_pro_monthly",
    )
    ctx = _as_user(app, uid)
    try:
        result = billing.create_subscription("price_pro_annual")
    finally:
        ctx.pop()
    assert result["code"] == "subscription_active"
    assert fake_stripe.calls == []


def test_checkout_session_modes_and_metadata(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_c")
    fake_stripe.checkout.sessions.responses["create"] = SimpleNamespace(
        id="cs_1", url="https://checkout.stripe.test/cs_1"
    )

    ctx = _as_user(app, uid)
    try:
        one_time = billing.create_checkout_session("price_content_pack")
        recurring = billing.create_checkout_session("price_pro_annual")
    finally:
        ctx.pop()

    assert one_time == {"url": "https://checkout.stripe.test/cs_1"}
    assert recurring == {"url": "https://checkout.stripe.test/cs_1"}

    first, second = fake_stripe.called("checkout.sessions.create")
    p1, p2 = first[2]["params"], second[2]["params"]
    assert p1["mode"] == "payment"
    assert p1["payment_intent_data"]["metadata"]["price_id"] == "price_content_pack"
    assert p1["success_url"] == "http://example.test/billing?success=true"
    assert p1["cancel_url"] == "http://example.test/billing?canceled=true"
    assert p2["mode"] == "subscription"
    assert p2["subscription_data"]["metadata"] == {"price_id": "price_pro_annual", "user_id": str(uid)}
    assert first[2]["options"]["idempotency_key"].startswith("checkout:")
    assert first[2]["options"]["idempotency_key"] != second[2]["options"]["idempotency_key"]


def test_checkout_unknown_price(app, make_user, fake_stripe):
    uid = make_user()
    ctx = _as_user(app, uid)
    try:
        result = billing.create_checkout_session("price_nope")
    finally:
        ctx.pop()
    assert result["code"] == "invalid_plan"


def test_get_billing_profile(app, make_user):
    with_profile = make_user(
        email="a@example.com", stripe_customer_id="cus_g", feature_flags=["content_pack"]
    )
    without_profile = make_user(email="b@example.com")

    ctx = _as_user(app, with_profile)
    try:
        result = billing.get_billing_profile()
    finally:
        ctx.pop()
    assert result["profile"]["feature_flags"] == ["content_pack"]
    assert "stripe_customer_id" not in result["profile"]

    ctx = _as_user(app, without_profile)
    try:
        assert billing.get_billing_profile() == {"profile": None}
    finally:
        ctx.pop()


def test_cancel_requires_subscription(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_n")
    ctx = _as_user(app, uid)
    try:
        result = billing.cancel_subscription()
    finally:
        ctx.pop()
    assert result["code"] == "no_subscription"
    assert fake_stripe.calls == []


def test_cancel_at_period_end(app, make_user, fake_stripe):
    uid = make_user(
        stripe_customer_id="cus_x",
        stripe_subscription_id="sub_x",
        stripe_subscription_status="active",
    )
    fake_stripe.subscriptions.responses["update"] = SimpleNamespace(id="sub_x", cancel_at=1700000000)

    ctx = _as_user(app, uid)
    try:
        result = billing.cancel_subscription()
    finally:
        ctx.pop()

    assert result == {"success": True, "cancel_at": "2023-11-14T22:13:20+00:00"}
    (_, args, kwargs), = fake_stripe.called("subscriptions.update")
    assert args == ("sub_x",)
    assert kwargs["params"] == {"cancel_at_period_end": True}


def test_update_to_same_plan_makes_no_provider_call(app, make_user, fake_stripe):
    uid = make_user(
        stripe_customer_id="cus_u",
        stripe_subscription_id="sub_u",
        stripe_subscription_status="active",
        stripe_price_id="price_pro_monthly",
    )
    ctx = _as_user(app, uid)
    try:
        result = billing.update_subscription("price_pro_monthly")
    finally:
        ctx.pop()
    assert result["code"] == "already_on_plan"
    assert fake_stripe.calls == []


def test_update_rejects_one_time_and_inactive(app, make_user, fake_stripe):
    uid = make_user(
        stripe_customer_id="cus_i",
        stripe_subscription_id="sub_i",
        stripe_subscription_status="past_due",
        stripe_price_id="price_pro_monthly",
    )
    ctx = _as_user(app, uid)
    try:
        assert billing.update_subscription("price_content_pack")["code"] == "invalid_plan"
        assert billing.update_subscription("price_pro_annual")["code"] == "inactive_subscription"
    finally:
        ctx.pop()
    assert fake_stripe.calls == []


def test_update_swaps_first_item_with_proration(app, make_user, fake_stripe):
    uid = make_user(
        stripe_customer_id="cus_w",
        stripe_subscription_id="sub_w",
        stripe_subscription_status="active",
        stripe_price_id="price_pro_monthly",
    )
    fake_stripe.subscriptions.responses["retrieve"] = {
        "id": "sub_w", "items": {"data": [{"id": "si_1", "price": {"id": "price_pro_monthly"}}]},
    }
    fake_stripe.subscriptions.responses["update"] = SimpleNamespace(id="sub_w", current_period_end=1700000000)

    ctx = _as_user(app, uid)
    try:
        result = billing.update_subscription("price_pro_annual")
    finally:
        ctx.pop()

    assert result == {"success": True, "new_period_end": "2023-11-14T22:13:20+00:00"}
    (_, args, kwargs), = fake_stripe.called("subscriptions.update")
    assert args == ("sub_w",)
    assert kwargs["params"]["items"] == [{"id": "si_1", "price": "price_pro_annual"}]
    assert kwargs["params"]["proration_behavior"] == "create_prorations"


def test_portal_requires_customer(app, make_user, fake_stripe):
    uid = make_user()
    ctx = _as_user(app, uid)
    try:
        result = billing.create_portal_session("http://example.test/billing")
    finally:
        ctx.pop()
    assert result["code"] == "no_customer"


def test_portal_session_url(app, make_user, fake_stripe):
    uid = make_user(stripe_customer_id="cus_portal")
    fake_stripe.billing_portal.sessions.responses["create"] = SimpleNamespace(url="https://billing.stripe.test/p")

    ctx = _as_user(app, uid)
    try:
        result = billing.create_portal_session("http://example.test/billing")
    finally:
        ctx.pop()

    assert result == {"url": "https://billing.stripe.test/p"}
    (_, _, kwargs), = fake_stripe.called("billing_portal.sessions.create")
    assert kwargs["params"] == {"customer": "cus_portal", "return_url": "http://example.test/billing"}


def test_plans_fall_back_to_catalog_amount(app, fake_stripe):
    def _price(price_id):
        if price_id == "price_pro_annual":
            raise stripe.APIConnectionError("timeout")
        return {"id": price_id, "unit_amount": 999}

    fake_stripe.prices.responses["retrieve"] = _price
    with app.app_context():
        amounts = {p.id: p.amount for p in billing.get_billing_plans_with_stripe_pricing()}
    assert amounts == {"content_pack": 999, "pro_monthly": 999, "pro_annual": 12000}
