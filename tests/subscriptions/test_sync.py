"""Tests for SubscriptionSyncService: status mapping, plan resolution, credit resets."""
from unittest.mock import MagicMock

import pytest

from app.models.profile import Profile
from app.models.subscription import Subscription
from app.services.subscriptions.service import (
    SubscriptionSyncService,
    is_annual,
    map_status,
    subscription_plan,
)


def _stripe_sub(sub_id="sub_1", customer="cus_1", status="active", price_id="price_advanced", nickname=None, **kwargs):
    data = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": False,
        "current_period_start": 1_700_000_000,
        "current_period_end": 1_702_592_000,
        "items": {
            "data": [
                {
                    "price": {
                        "id": price_id,
                        "nickname": nickname,
                        "recurring": {"interval": kwargs.pop("interval", "month")},
                    }
                }
            ]
        },
    }
    data.update(kwargs)
    return data


def _checkout(user_id="user-1", plan="basic", sub_id="sub_1", customer="cus_1"):
    return {
        "id": "cs_sub_1",
        "mode": "subscription",
        "subscription": sub_id,
        "customer": customer,
        "customer_details": {"email": f"{user_id}@example.com"},
        "metadata": {"userId": user_id, "plan": plan},
    }


def _profile(db, user_id="user-1"):
    db.expire_all()
    return db.query(Profile).filter(Profile.id == user_id).one()


class TestHelpers:
    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("active", "active"),
            ("canceled", "canceled"),
            ("incomplete", "unpaid"),
            ("incomplete_expired", "canceled"),
            ("past_due", "past_due"),
            ("trialing", "trialing"),
            ("unpaid", "unpaid"),
            ("paused", "unpaid"),
            (None, "unpaid"),
        ],
    )
    def test_map_status(self, stripe_status, expected):
        assert map_status(stripe_status) == expected

    def test_plan_from_catalog_price(self):
        assert subscription_plan(_stripe_sub(price_id="price_ultimate")) == "ultimate"

    def test_plan_falls_back_to_nickname(self):
        assert subscription_plan(_stripe_sub(price_id="price_unknown", nickname="Advanced Monthly")) == "advanced"

    def test_plan_defaults_to_basic(self):
        assert subscription_plan(_stripe_sub(price_id="price_unknown")) == "basic"

    def test_is_annual(self):
        assert is_annual(_stripe_sub(interval="year")) is True
        assert is_annual(_stripe_sub(nickname="Basic Yearly")) is True
        assert is_annual(_stripe_sub()) is False


class TestCheckoutCompleted:
    def test_resets_credits_and_activates(self, db, make_profile):
        make_profile("user-1", credits=37)
        svc = SubscriptionSyncService(db)

        assert svc.handle_checkout_completed(_checkout(plan="basic")) is True

        profile = _profile(db)
        assert profile.remaining_credits == 50
        assert profile.subscription_status == "active"
        assert profile.subscription_plan == "basic"
        assert profile.stripe_customer_id == "cus_1"
        assert profile.subscription_period_end is not None
        row = db.query(Subscription).one()
        assert row.stripe_subscription_id == "sub_1"
        assert row.status == "active"
        assert row.is_annual is False

    def test_yearly_plan_marked_annual(self, db, make_profile):
        make_profile("user-1")
        SubscriptionSyncService(db).handle_checkout_completed(_checkout(plan="Advanced Yearly"))

        row = db.query(Subscription).one()
        assert row.is_annual is True
        assert row.plan == "advanced"
        assert _profile(db).remaining_credits == 150

    def test_replayed_event_upserts(self, db, make_profile):
        make_profile("user-1")
        svc = SubscriptionSyncService(db)
        svc.handle_checkout_completed(_checkout())
        svc.handle_checkout_completed(_checkout())

        assert db.query(Subscription).count() == 1
        assert _profile(db).remaining_credits == 50

    def test_missing_user_ignored(self, db):
        session = _checkout()
        session["metadata"] = {}
        assert SubscriptionSyncService(db).handle_checkout_completed(session) is False


class TestSubscriptionUpdated:
    def test_existing_row_updated_and_credits_reset(self, db, make_profile):
        make_profile("user-1", credits=3)
        svc = SubscriptionSyncService(db)
        svc.handle_checkout_completed(_checkout(plan="basic"))

        assert svc.handle_subscription_updated(_stripe_sub(price_id="price_advanced")) is True

        profile = _profile(db)
        assert profile.subscription_plan == "advanced"
        assert profile.remaining_credits == 150
        assert db.query(Subscription).one().plan == "advanced"

    def test_new_row_created_for_customer_owner(self, db, make_profile):
        make_profile("user-1", stripe_customer_id="cus_9")

        SubscriptionSyncService(db).handle_subscription_updated(
            _stripe_sub(sub_id="sub_9", customer="cus_9", status="trialing", price_id="price_basic")
        )

        row = db.query(Subscription).one()
        assert row.user_id == "user-1"
        assert row.status == "trialing"
        profile = _profile(db)
        assert profile.subscription_status == "trialing"
        assert profile.remaining_credits == 50

    def test_unknown_owner_ignored(self, db):
        result = SubscriptionSyncService(db).handle_subscription_updated(_stripe_sub(customer="cus_nobody"))
        assert result is False
        assert db.query(Subscription).count() == 0

    def test_subscription_resets_instead_of_accumulating(self, db, make_profile):
        make_profile("user-1", credits=500)
        SubscriptionSyncService(db).handle_checkout_completed(_checkout(plan="basic"))
        assert _profile(db).remaining_credits == 50


class TestSubscriptionDeleted:
    def test_cancel_zeroes_credits(self, db, make_profile):
        make_profile("user-1")
        svc = SubscriptionSyncService(db)
        svc.handle_checkout_completed(_checkout(plan="advanced"))

        assert svc.handle_subscription_deleted(_stripe_sub(status="canceled")) is True

        profile = _profile(db)
        assert profile.remaining_credits == 0
        assert profile.subscription_status == "canceled"
        assert profile.subscription_plan is None
        assert profile.subscription_period_end is None
        row = db.query(Subscription).one()
        assert row.status == "canceled"
        assert row.cancel_at_period_end is True
        assert row.canceled_at is not None


class TestInvoicePaid:
    def test_renewal_refills_credits(self, db, make_profile):
        make_profile("user-1")
        svc = SubscriptionSyncService(db)
        svc.handle_checkout_completed(_checkout(plan="basic"))
        profile = _profile(db)
        profile.remaining_credits = 4
        db.commit()
        gateway = MagicMock()
        gateway.retrieve_subscription.return_value = _stripe_sub(price_id="price_basic")

        assert svc.handle_invoice_paid({"id": "in_1", "subscription": "sub_1"}, gateway) is True

        gateway.retrieve_subscription.assert_called_once_with("sub_1")
        assert _profile(db).remaining_credits == 50

    def test_invoice_without_subscription_ignored(self, db):
        gateway = MagicMock()
        assert SubscriptionSyncService(db).handle_invoice_paid({"id": "in_2"}, gateway) is False
        gateway.retrieve_subscription.assert_not_called()

    def test_subscription_id_from_invoice_parent(self, db, make_profile):
        make_profile("user-1", stripe_customer_id="cus_1")
        gateway = MagicMock()
        gateway.retrieve_subscription.return_value = _stripe_sub(price_id="price_ultimate")
        invoice = {"id": "in_3", "parent": {"subscription_details": {"subscription": "sub_1"}}}

        assert SubscriptionSyncService(db).handle_invoice_paid(invoice, gateway) is True
        assert _profile(db).remaining_credits == 999999
