"""Member directory: buyers, plans and memberships."""

from datetime import timedelta
from decimal import Decimal

import pytest

from fitpay.common.errors import ValidationFailed
from fitpay.services.orchestrator.members import MemberDirectory
from fitpay.services.orchestrator.schemas import BuyerData


@pytest.fixture
def members(session_factory, audit, clock) -> MemberDirectory:
    return MemberDirectory(session_factory, audit=audit, clock=clock, tz_name="America/Lima")


def buyer(**overrides) -> BuyerData:
    values = {"first_name": "Luis", "email": "luis@example.com", "document_number": "11223344"}
    values.update(overrides)
    return BuyerData(**values)


def test_user_resolved_by_document_then_email(members):
    """Buyers are matched by document first, then by email."""
    user, created = members.find_or_create_user(buyer())
    assert created

    same, created_again = members.find_or_create_user(buyer(email="other@example.com"))
    assert not created_again
    assert same.user_id == user.user_id

    by_email, _ = members.find_or_create_user(buyer(document_number="99887766"))
    assert by_email.user_id == user.user_id


def test_create_and_list_plans(members):
    """Plans are listed per gateway or all together."""
    monthly = members.create_plan(1, "pln_m", "Mensual", "99.90", "MEMB-30")
    members.create_plan(1, "pln_q", "Trimestral", "249.00", "MEMB-90", duration_days=90, repeat_every=3)
    members.create_plan(2, "pln_x", "Otro gateway", "10.00", "MEMB-X")

    assert [p.name for p in members.list_plans(1)] == ["Mensual", "Trimestral"]
    assert len(members.list_plans()) == 3
    assert members.get_plan(monthly.plan_id).price == Decimal("99.90")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"repeat_unit": "fortnight"},
        {"repeat_every": 0},
        {"duration_days": 0},
        {"fee_rate": Decimal("1.5")},
        {"currency": "EUR"},
    ],
)
def test_invalid_plans_rejected(members, kwargs):
    """Plans with a bad unit, interval, duration, fee rate or currency are refused."""
    with pytest.raises(ValidationFailed):
        members.create_plan(1, "pln_bad", "Bad", "10.00", "MEMB-BAD", **kwargs)


def test_membership_window_and_active_lookup(members, plan, clock):
    """Memberships span their duration and are found while active."""
    user, _ = members.find_or_create_user(buyer())

    sale, membership = members.create_sale_and_membership(user, plan, "11223344", "tx-1", None, "sub_0001")

    assert sale.total == Decimal("99.90")
    assert membership.ends_on - membership.starts_on == timedelta(days=30)
    assert members.active_membership("11223344").membership_id == membership.membership_id

    clock.advance(31 * 24 * 3600)
    assert members.active_membership("11223344") is None


def test_unknown_plan(members):
    """Looking up a missing plan fails validation."""
    with pytest.raises(ValidationFailed) as exc_info:
        members.get_plan("pln_missing")
    assert exc_info.value.code == "PLAN_NOT_FOUND"
