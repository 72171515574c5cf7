"""Members, plans and the commercial records created after a settled payment."""

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from fitpay.common.clock import Clock, business_day, utcnow
from fitpay.common.config import settings
from fitpay.common.errors import ValidationFailed
from fitpay.common.logging import logger
from fitpay.common.validation import (
    require_id,
    sanitize_string,
    to_money,
    validate_amount,
    validate_currency,
    validate_repeat_unit,
)
from fitpay.services.gateway.audit import AuditTrail
from fitpay.services.gateway.schemas import AuditContext
from fitpay.services.orchestrator.models import (
    GatewayCustomer,
    GatewaySubscription,
    GatewayTransaction,
    Membership,
    Sale,
    SaleLine,
    SubscriptionPlan,
    User,
)
from fitpay.services.orchestrator.schemas import BuyerData

MEMBERSHIP_ACTIVE = "ACTIVE"


class MemberDirectory:
    def __init__(
        self,
        session_factory,
        audit: AuditTrail | None = None,
        clock: Clock = utcnow,
        tz_name: str = settings.business_timezone,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit or AuditTrail(session_factory, clock=clock)
        self.clock = clock
        self.tz_name = tz_name

    def today(self) -> date:
        return business_day(self.clock(), self.tz_name)

    # -- users -------------------------------------------------------------

    def find_or_create_user(self, buyer: BuyerData) -> tuple[User, bool]:
        """Resolve the buyer by document number, then e-mail; create when unknown.

        Returns the user and whether it was created.
        """

        with self.session_factory() as db:
            user = db.execute(select(User).where(User.document_number == buyer.document_number)).scalar_one_or_none()
            if user is None:
                user = db.execute(select(User).where(User.email == buyer.email)).scalars().first()
            if user is not None:
                return user, False

            user = User(
                first_name=buyer.first_name,
                last_name=buyer.last_name,
                email=buyer.email,
                phone=buyer.phone,
                document_type=buyer.document_type,
                document_number=buyer.document_number,
                is_active=True,
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                user = db.execute(
                    select(User).where(User.document_number == buyer.document_number)
                ).scalar_one_or_none()
                if user is None:
                    raise
                return user, False
        logger.info("user created user_id=%s", user.user_id)
        return user, True

    # -- plans -------------------------------------------------------------

    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        plan_id = require_id(plan_id, "plan_id")
        with self.session_factory() as db:
            plan = db.get(SubscriptionPlan, plan_id)
        if plan is None or not plan.is_active:
            raise ValidationFailed("plan not found or inactive", "PLAN_NOT_FOUND")
        return plan

    def list_plans(self, gateway_id: int | None = None) -> list[SubscriptionPlan]:
        query = select(SubscriptionPlan).where(SubscriptionPlan.is_active.is_(True))
        if gateway_id is not None:
            query = query.where(SubscriptionPlan.gateway_id == gateway_id)
        with self.session_factory() as db:
            return list(db.execute(query.order_by(SubscriptionPlan.price)).scalars())

    def create_plan(
        self,
        gateway_id: int,
        external_plan_code: str,
        name: str,
        price,
        product_code: str,
        currency: str = "PEN",
        repeat_every: int = 1,
        repeat_unit: str = "month",
        trial_days: int = 0,
        duration_days: int = 30,
        fee_rate: Decimal = Decimal("0.0399"),
    ) -> SubscriptionPlan:
        """Register a plan already defined at the gateway."""

        if repeat_every < 1 or trial_days < 0 or duration_days < 1:
            raise ValidationFailed("invalid plan frequency or duration", "INVALID_PLAN")
        if not Decimal("0") <= Decimal(fee_rate) < Decimal("1"):
            raise ValidationFailed("fee rate must be between 0 and 1", "INVALID_PLAN")
        plan = SubscriptionPlan(
            gateway_id=gateway_id,
            external_plan_code=require_id(external_plan_code, "external_plan_code"),
            name=sanitize_string(name, 100),
            price=validate_amount(price),
            currency=validate_currency(currency),
            repeat_every=repeat_every,
            repeat_unit=validate_repeat_unit(repeat_unit),
            trial_days=trial_days,
            duration_days=duration_days,
            product_code=require_id(product_code, "product_code"),
            fee_rate=Decimal(fee_rate),
            is_active=True,
        )
        with self.session_factory() as db:
            db.add(plan)
            db.commit()
        return plan

    # -- memberships -------------------------------------------------------

    def active_membership(self, document_number: str) -> Membership | None:
        with self.session_factory() as db:
            return (
                db.execute(
                    select(Membership)
                    .where(
                        Membership.document_number == document_number,
                        Membership.state == MEMBERSHIP_ACTIVE,
                        Membership.ends_on >= self.today(),
                    )
                    .order_by(Membership.ends_on.desc())
                )
                .scalars()
                .first()
            )

    def create_sale_and_membership(
        self,
        user: User,
        plan: SubscriptionPlan,
        document_number: str,
        transaction_id: str,
        subscription_id: str | None,
        payment_reference: str | None,
        context: AuditContext | None = None,
    ) -> tuple[Sale, Membership]:
        """Write sale, sale line and membership, and back-link the transaction, in one commit."""

        starts_on = self.today()
        now = self.clock()
        total = to_money(plan.price)
        with self.session_factory() as db:
            sale = Sale(
                user_id=user.user_id,
                total=total,
                currency=plan.currency,
                payment_method="CARD",
                payment_reference=payment_reference,
                state="PAID",
                created_at=now,
            )
            db.add(sale)
            db.flush()
            db.add(
                SaleLine(
                    sale_id=sale.sale_id,
                    product_code=plan.product_code,
                    description=plan.name,
                    quantity=1,
                    unit_price=total,
                    line_total=total,
                )
            )
            membership = Membership(
                user_id=user.user_id,
                document_number=document_number,
                plan_id=plan.plan_id,
                product_code=plan.product_code,
                sale_id=sale.sale_id,
                subscription_id=subscription_id,
                starts_on=starts_on,
                ends_on=starts_on + timedelta(days=plan.duration_days),
                duration_days=plan.duration_days,
                state=MEMBERSHIP_ACTIVE,
                created_at=now,
            )
            db.add(membership)
            db.flush()
            db.execute(
                update(GatewayTransaction)
                .where(GatewayTransaction.transaction_id == transaction_id)
                .values(sale_id=sale.sale_id, membership_id=membership.membership_id)
            )
            if subscription_id:
                db.execute(
                    update(GatewaySubscription)
                    .where(GatewaySubscription.subscription_id == subscription_id)
                    .values(membership_id=membership.membership_id)
                )
            db.commit()

        self.audit.record(
            "memberships",
            membership.membership_id,
            "INSERT",
            {
                "document_number": document_number,
                "product_code": plan.product_code,
                "duration_days": plan.duration_days,
                "sale_id": sale.sale_id,
            },
            context=context,
            user_id=user.user_id,
        )
        logger.info("membership created membership_id=%s sale_id=%s", membership.membership_id, sale.sale_id)
        return sale, membership

    def subscription_history(self, document_number: str) -> list[dict]:
        """Subscriptions bought under a document number, newest first."""

        document_number = sanitize_string(document_number, 12)
        if not document_number:
            return []
        with self.session_factory() as db:
            rows = db.execute(
                select(GatewaySubscription, SubscriptionPlan, Membership)
                .join(GatewayCustomer, GatewaySubscription.customer_id == GatewayCustomer.customer_id)
                .join(SubscriptionPlan, GatewaySubscription.plan_id == SubscriptionPlan.plan_id)
                .outerjoin(Membership, Membership.membership_id == GatewaySubscription.membership_id)
                .where(GatewayCustomer.document_number == document_number)
                .order_by(GatewaySubscription.created_at.desc())
            ).all()
        return [
            {
                "subscription_id": subscription.subscription_id,
                "external_subscription_id": subscription.external_subscription_id,
                "state": subscription.state,
                "next_charge_date": subscription.next_charge_date,
                "period_end_date": subscription.period_end_date,
                "plan_name": plan.name,
                "price": str(plan.price),
                "repeat_every": plan.repeat_every,
                "repeat_unit": plan.repeat_unit,
                "membership_id": membership.membership_id if membership else None,
                "membership_ends_on": membership.ends_on.isoformat() if membership else None,
                "membership_state": membership.state if membership else None,
            }
            for subscription, plan, membership in rows
        ]
