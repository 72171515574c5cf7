"""Subscription purchase saga.

Runs five phases in order: open a payment session, resolve the buyer and the
gateway customer, attach the card, create the gateway subscription, then
record the transaction and settle it into today's cash register. Any error
after the session is open lands at the boundary in `process_purchase`, which
marks the session FAILED and returns a structured result. Gateway-side
resources already created are left in place; they are reused on the next
attempt.
"""

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from fitpay.common.clock import Clock, utcnow
from fitpay.common.config import settings
from fitpay.common.errors import ErrorKind, FitPayError, GatewayError, GatewayRejected, ValidationFailed
from fitpay.common.logging import logger, session_id_ctx
from fitpay.common.masking import mask_sensitive
from fitpay.common.metrics import (
    purchase_failure_total,
    purchase_latency_seconds,
    purchase_requests_total,
    purchase_success_total,
)
from fitpay.common.validation import to_money
from fitpay.services.gateway.audit import AuditTrail
from fitpay.services.gateway.schemas import (
    AuditContext,
    Card,
    CardRequest,
    Customer,
    CustomerRequest,
    Subscription,
    SubscriptionRequest,
    build,
)
from fitpay.services.gateway.service import GatewayService
from fitpay.services.ledger.service import CashRegisterLedger
from fitpay.services.orchestrator.members import MemberDirectory
from fitpay.services.orchestrator.models import (
    GatewayCard,
    GatewayCustomer,
    GatewaySubscription,
    GatewayTransaction,
    SubscriptionPlan,
    User,
)
from fitpay.services.orchestrator.schemas import BuyerData, PurchaseRequest, PurchaseResult
from fitpay.services.sessions.service import (
    CARD_ATTACHED,
    CUSTOMER_RESOLVED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CREATED,
    TRANSACTION_RECORDED,
    PaymentSessionService,
)

SUBSCRIPTION_STATES = {
    "active": "ACTIVE",
    "trial": "ACTIVE",
    "past_due": "PAUSED",
    "unpaid": "PAUSED",
    "cancelled": "CANCELLED",
}

TX_SETTLED = "SETTLED"
TX_PENDING = "PENDING"


def subscription_state(external_status: str | None) -> str:
    return SUBSCRIPTION_STATES.get((external_status or "").lower(), "PAUSED")


def split_amount(gross, fee_rate, tax_rate) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    """Return (gross, fee, tax, net) rounded to cents; net is derived, never stored alone."""

    gross = to_money(gross)
    fee = to_money(gross * Decimal(fee_rate))
    tax = to_money(fee * Decimal(tax_rate))
    return gross, fee, tax, gross - fee - tax


class SubscriptionOrchestrator:
    """Drives one membership purchase against the gateway and local records."""

    def __init__(
        self,
        session_factory,
        gateway: GatewayService,
        sessions: PaymentSessionService | None = None,
        ledger: CashRegisterLedger | None = None,
        members: MemberDirectory | None = None,
        audit: AuditTrail | None = None,
        clock: Clock = utcnow,
        commission_tax_rate: Decimal = settings.commission_tax_rate,
        service_name: str = settings.service_name,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.clock = clock
        self.audit = audit or AuditTrail(session_factory, clock=clock)
        self.sessions = sessions or PaymentSessionService(session_factory, clock=clock)
        self.ledger = ledger or CashRegisterLedger(session_factory, clock=clock)
        self.members = members or MemberDirectory(session_factory, audit=self.audit, clock=clock)
        self.commission_tax_rate = commission_tax_rate
        self.service_name = service_name

    async def process_purchase(self, request: PurchaseRequest, context: AuditContext | None = None) -> PurchaseResult:
        """Run the saga; never raises once the payment session exists."""

        context = context or AuditContext()
        purchase_requests_total.labels(service=self.service_name).inc()
        with purchase_latency_seconds.labels(service=self.service_name).time():
            session = self.sessions.open(
                gateway_id=self.gateway.client.gateway_id,
                document_number=request.buyer.document_number,
                device_session_id=request.device_session_id,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            token = session_id_ctx.set(session.session_id)
            context = context.model_copy(update={"session_id": session.session_id})
            try:
                return await self._run(session.session_id, request, context)
            except FitPayError as exc:
                return self._fail(session.session_id, exc, context)
            except Exception as exc:
                logger.exception("purchase crashed session_id=%s", session.session_id)
                return self._fail(session.session_id, exc, context)
            finally:
                session_id_ctx.reset(token)

    async def _run(self, session_id: str, request: PurchaseRequest, context: AuditContext) -> PurchaseResult:
        buyer = request.buyer

        # Phase 2: buyer, plan and gateway customer.
        credentials = await self.gateway.client.ensure_initialized()
        gateway_id = credentials.gateway_id
        self.sessions.assign_gateway(session_id, gateway_id)
        user, created = self.members.find_or_create_user(buyer)
        self.sessions.attach_user(session_id, user.user_id)
        context = context.model_copy(update={"user_id": user.user_id})
        logger.info("buyer resolved user_id=%s created=%s", user.user_id, created)

        membership = self.members.active_membership(buyer.document_number)
        if membership is not None:
            raise ValidationFailed(
                f"buyer already holds an active membership until {membership.ends_on.isoformat()}",
                "ACTIVE_MEMBERSHIP",
            )
        plan = self.members.get_plan(request.plan_id)
        if to_money(request.amount) != to_money(plan.price):
            raise ValidationFailed(f"amount {request.amount} does not match plan price {plan.price}", "AMOUNT_MISMATCH")
        self.sessions.set_attempted_amount(session_id, to_money(plan.price))

        customer_row = await self._resolve_customer(user, buyer, gateway_id, context)
        self.sessions.record(
            session_id,
            CUSTOMER_RESOLVED,
            f"customer {customer_row.external_customer_id}",
            context.ip_address,
        )

        # Phase 3: card.
        card = await self.gateway.attach_card(
            customer_row.external_customer_id,
            build(CardRequest, token_id=request.token_id, device_session_id=request.device_session_id),
            context,
        )
        card_row = self._save_card(customer_row, card, context)
        self.sessions.record(session_id, CARD_ATTACHED, f"card ****{card.last4 or ''}", context.ip_address)

        # Phase 4: subscription.
        self.sessions.register_attempt(session_id, card.log_id)
        subscription = await self.gateway.create_subscription(
            customer_row.external_customer_id,
            build(SubscriptionRequest, plan_id=plan.external_plan_code, source_id=card.id),
            context,
        )
        subscription_row = self._save_subscription(customer_row, card_row, plan, user, subscription, context)
        self.sessions.record(session_id, SUBSCRIPTION_CREATED, f"subscription {subscription.id}", context.ip_address)

        # Phase 5: transaction and settlement.
        settled = subscription_state(subscription.status) == "ACTIVE"
        gross, fee, tax, net = split_amount(plan.price, plan.fee_rate, self.commission_tax_rate)
        # A subscription already mirrored by an earlier attempt keeps its transaction.
        transaction = self._transaction_for(subscription_row.subscription_id)
        apply_to_register = settled
        if transaction is None:
            register = self.ledger.obtain_or_open_today(gateway_id)
            transaction = self._save_transaction(
                gateway_id=gateway_id,
                register_id=register.register_id,
                session_id=session_id,
                subscription_row=subscription_row,
                user=user,
                subscription=subscription,
                amounts=(gross, fee, tax, net),
                currency=plan.currency,
                state=TX_SETTLED if settled else TX_PENDING,
                context=context,
            )
            detail = f"transaction {transaction.transaction_id}"
        else:
            apply_to_register = settled and transaction.state != TX_SETTLED
            if apply_to_register:
                register = self.ledger.obtain_or_open_today(gateway_id)
                self._mark_settled(transaction, register.register_id, context)
            gross, fee, tax = transaction.gross_amount, transaction.fee_amount, transaction.tax_amount
            detail = f"transaction {transaction.transaction_id} reused"
            logger.info("reusing transaction %s for subscription %s", transaction.transaction_id, subscription.id)
        self.sessions.record(session_id, TRANSACTION_RECORDED, detail, context.ip_address)

        if not settled:
            message = f"subscription was created with status {subscription.status}, payment not confirmed"
            self.sessions.record(
                session_id,
                PAYMENT_FAILED,
                message,
                context.ip_address,
                {"subscription_status": subscription.status, "log_id": subscription.log_id},
            )
            self.sessions.fail(session_id, transaction.transaction_id)
            purchase_failure_total.labels(service=self.service_name, error_kind=ErrorKind.NON_RETRYABLE.value).inc()
            return PurchaseResult(
                success=False,
                message=message,
                session_id=session_id,
                user_id=user.user_id,
                customer_id=customer_row.customer_id,
                card_id=card_row.card_id,
                subscription_id=subscription_row.subscription_id,
                transaction_id=transaction.transaction_id,
                subscription_status=subscription.status,
                error_kind=ErrorKind.NON_RETRYABLE.value,
                error_code="SUBSCRIPTION_NOT_ACTIVE",
                log_id=subscription.log_id,
            )

        if apply_to_register:
            self.ledger.apply_transaction(transaction.register_id, gross, fee, tax)
        sale, membership = self.members.create_sale_and_membership(
            user,
            plan,
            buyer.document_number,
            transaction.transaction_id,
            subscription_row.subscription_id,
            subscription.id,
            context,
        )
        self.sessions.complete(session_id, transaction.transaction_id)
        self.sessions.record(
            session_id,
            PAYMENT_SUCCEEDED,
            f"membership {membership.membership_id} created",
            context.ip_address,
        )
        purchase_success_total.labels(service=self.service_name).inc()
        logger.info("purchase completed session_id=%s membership_id=%s", session_id, membership.membership_id)

        return PurchaseResult(
            success=True,
            message="subscription created",
            session_id=session_id,
            user_id=user.user_id,
            customer_id=customer_row.customer_id,
            card_id=card_row.card_id,
            subscription_id=subscription_row.subscription_id,
            transaction_id=transaction.transaction_id,
            sale_id=sale.sale_id,
            membership_id=membership.membership_id,
            external_customer_id=customer_row.external_customer_id,
            external_subscription_id=subscription.id,
            card_brand=card.brand,
            card_last4=card.last4,
            subscription_status=subscription.status,
            next_charge_date=subscription.charge_date,
            period_end_date=subscription.period_end_date,
            membership_starts_on=membership.starts_on,
            membership_ends_on=membership.ends_on,
            duration_days=membership.duration_days,
        )

    def _fail(self, session_id: str, exc: Exception, context: AuditContext) -> PurchaseResult:
        if isinstance(exc, FitPayError):
            kind, code, message = exc.kind, exc.code, exc.message
        else:
            kind, code, message = ErrorKind.INTERNAL, "INTERNAL_ERROR", "unexpected error while processing the purchase"
        log_id = getattr(exc, "log_id", None)
        http_status = exc.http_status if isinstance(exc, GatewayError) else None

        self.sessions.record(
            session_id,
            PAYMENT_FAILED,
            message,
            context.ip_address,
            {"error_kind": kind.value, "error_code": code, "http_status": http_status, "log_id": log_id},
        )
        try:
            self.sessions.fail(session_id)
        except Exception as close_exc:
            logger.error("could not mark session failed session_id=%s error=%s", session_id, close_exc)
        purchase_failure_total.labels(service=self.service_name, error_kind=kind.value).inc()
        logger.warning("purchase failed session_id=%s kind=%s code=%s", session_id, kind.value, code)
        return PurchaseResult(
            success=False,
            message=message,
            session_id=session_id,
            user_id=context.user_id,
            error_kind=kind.value,
            error_code=code,
            log_id=log_id,
        )

    # ------------------------------------------------------------------
    # Gateway customer
    # ------------------------------------------------------------------

    async def _resolve_customer(
        self,
        user: User,
        buyer: BuyerData,
        gateway_id: int,
        context: AuditContext,
    ) -> GatewayCustomer:
        """Reuse the active gateway customer if the gateway still knows it, else create one."""

        existing = self._active_customer(user.user_id, gateway_id)
        if existing is not None:
            try:
                await self.gateway.get_customer(existing.external_customer_id, context)
                return existing
            except GatewayRejected as exc:
                logger.warning(
                    "gateway customer %s no longer valid (%s), creating a new one",
                    existing.external_customer_id,
                    exc.code,
                )
                self._deactivate_customer(existing, context)

        customer = await self.gateway.create_customer(
            build(
                CustomerRequest,
                name=buyer.first_name or user.first_name,
                last_name=buyer.last_name or user.last_name,
                email=buyer.email or user.email,
                phone_number=buyer.phone or user.phone,
                external_id=f"FIT-{buyer.document_number}",
            ),
            context,
        )
        return self._save_customer(user, buyer, gateway_id, customer, context)

    def _active_customer(self, user_id: int, gateway_id: int) -> GatewayCustomer | None:
        with self.session_factory() as db:
            return db.execute(
                select(GatewayCustomer).where(
                    GatewayCustomer.user_id == user_id,
                    GatewayCustomer.gateway_id == gateway_id,
                    GatewayCustomer.is_active.is_(True),
                )
            ).scalar_one_or_none()

    def _deactivate_customer(self, row: GatewayCustomer, context: AuditContext) -> None:
        with self.session_factory() as db:
            db.execute(
                update(GatewayCustomer)
                .where(GatewayCustomer.customer_id == row.customer_id, GatewayCustomer.is_active.is_(True))
                .values(is_active=False, deactivated_at=self.clock())
            )
            db.commit()
        self.audit.record("gateway_customers", row.customer_id, "DEACTIVATE", {"is_active": False}, context=context)

    def _save_customer(
        self,
        user: User,
        buyer: BuyerData,
        gateway_id: int,
        customer: Customer,
        context: AuditContext,
    ) -> GatewayCustomer:
        row = GatewayCustomer(
            user_id=user.user_id,
            gateway_id=gateway_id,
            external_customer_id=customer.id,
            document_number=buyer.document_number,
            email=buyer.email,
            phone=buyer.phone,
            is_active=True,
            log_id=customer.log_id,
            created_at=self.clock(),
        )
        with self.session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # A concurrent checkout for the same user saved its customer first.
                db.rollback()
                existing = self._active_customer(user.user_id, gateway_id)
                if existing is None:
                    raise
                return existing
        self.audit.record(
            "gateway_customers",
            row.customer_id,
            "INSERT",
            {"external_customer_id": customer.id, "log_id": customer.log_id},
            context=context,
        )
        return row

    # ------------------------------------------------------------------
    # Card, subscription and transaction mirrors
    # ------------------------------------------------------------------

    def _save_card(self, customer_row: GatewayCustomer, card: Card, context: AuditContext) -> GatewayCard:
        row = GatewayCard(
            customer_id=customer_row.customer_id,
            external_card_id=card.id,
            brand=card.brand,
            last4=card.last4,
            expiration_month=card.expiration_month,
            expiration_year=card.expiration_year,
            holder_name=card.holder_name,
            bank_name=card.bank_name,
            is_active=True,
            log_id=card.log_id,
            created_at=self.clock(),
        )
        with self.session_factory() as db:
            db.add(row)
            db.commit()
        self.audit.record(
            "gateway_cards",
            row.card_id,
            "INSERT",
            {"brand": card.brand, "last4": card.last4, "log_id": card.log_id},
            context=context,
        )
        return row

    def _save_subscription(
        self,
        customer_row: GatewayCustomer,
        card_row: GatewayCard,
        plan: SubscriptionPlan,
        user: User,
        subscription: Subscription,
        context: AuditContext,
    ) -> GatewaySubscription:
        existing = self._subscription_by_external_id(subscription.id)
        if existing is not None:
            logger.info("gateway subscription %s already mirrored as %s", subscription.id, existing.subscription_id)
            return existing

        row = GatewaySubscription(
            customer_id=customer_row.customer_id,
            card_id=card_row.card_id,
            plan_id=plan.plan_id,
            user_id=user.user_id,
            external_subscription_id=subscription.id,
            state=subscription_state(subscription.status),
            external_status=subscription.status,
            started_on=subscription.creation_date,
            next_charge_date=subscription.charge_date,
            period_end_date=subscription.period_end_date,
            log_id=subscription.log_id,
            created_at=self.clock(),
        )
        with self.session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._subscription_by_external_id(subscription.id)
                if existing is None:
                    raise
                return existing
        self.audit.record(
            "gateway_subscriptions",
            row.subscription_id,
            "INSERT",
            {"external_subscription_id": subscription.id, "status": subscription.status, "log_id": subscription.log_id},
            context=context,
        )
        return row

    def _subscription_by_external_id(self, external_subscription_id: str) -> GatewaySubscription | None:
        with self.session_factory() as db:
            return db.execute(
                select(GatewaySubscription).where(
                    GatewaySubscription.external_subscription_id == external_subscription_id
                )
            ).scalar_one_or_none()

    def _transaction_for(self, subscription_id: str) -> GatewayTransaction | None:
        with self.session_factory() as db:
            return db.execute(
                select(GatewayTransaction)
                .where(GatewayTransaction.subscription_id == subscription_id)
                .order_by(GatewayTransaction.created_at)
                .limit(1)
            ).scalar_one_or_none()

    def _mark_settled(self, transaction: GatewayTransaction, register_id: str, context: AuditContext) -> None:
        with self.session_factory() as db:
            db.execute(
                update(GatewayTransaction)
                .where(GatewayTransaction.transaction_id == transaction.transaction_id)
                .values(state=TX_SETTLED, register_id=register_id)
            )
            db.commit()
        transaction.state, transaction.register_id = TX_SETTLED, register_id
        self.audit.record(
            "gateway_transactions",
            transaction.transaction_id,
            "SETTLE",
            {"state": TX_SETTLED, "register_id": register_id},
            context=context,
            user_id=transaction.user_id,
        )

    def _save_transaction(
        self,
        gateway_id: int,
        register_id: str,
        session_id: str,
        subscription_row: GatewaySubscription,
        user: User,
        subscription: Subscription,
        amounts: tuple[Decimal, Decimal, Decimal, Decimal],
        currency: str,
        state: str,
        context: AuditContext,
    ) -> GatewayTransaction:
        gross, fee, tax, net = amounts
        row = GatewayTransaction(
            gateway_id=gateway_id,
            register_id=register_id,
            session_id=session_id,
            subscription_id=subscription_row.subscription_id,
            card_id=subscription_row.card_id,
            user_id=user.user_id,
            document_number=user.document_number,
            external_transaction_id=subscription.id,
            order_reference=f"SUB-{subscription.id}"[:50],
            transaction_type="SUBSCRIPTION",
            gross_amount=gross,
            fee_amount=fee,
            tax_amount=tax,
            net_amount=net,
            currency=currency,
            state=state,
            response_payload=mask_sensitive(subscription.model_dump(mode="json", exclude={"log_id"})),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            log_id=subscription.log_id,
            created_at=self.clock(),
        )
        with self.session_factory() as db:
            db.add(row)
            db.commit()
        self.audit.record(
            "gateway_transactions",
            row.transaction_id,
            "INSERT",
            {"external_transaction_id": subscription.id, "gross_amount": str(gross), "state": state},
            context=context,
            user_id=user.user_id,
        )
        return row

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_subscription(self, subscription_id: str, context: AuditContext | None = None) -> GatewaySubscription:
        """Cancel a local subscription at the gateway and mark it CANCELLED."""

        context = context or AuditContext()
        with self.session_factory() as db:
            row = db.get(GatewaySubscription, subscription_id)
            customer = db.get(GatewayCustomer, row.customer_id) if row is not None else None
        if row is None or customer is None:
            raise ValidationFailed("subscription not found", "SUBSCRIPTION_NOT_FOUND")
        if row.state == "CANCELLED":
            return row

        await self.gateway.cancel_subscription(customer.external_customer_id, row.external_subscription_id, context)
        with self.session_factory() as db:
            db.execute(
                update(GatewaySubscription)
                .where(GatewaySubscription.subscription_id == subscription_id)
                .values(state="CANCELLED", external_status="cancelled")
            )
            db.commit()
        row.state, row.external_status = "CANCELLED", "cancelled"
        self.audit.record("gateway_subscriptions", subscription_id, "CANCEL", {"state": "CANCELLED"}, context=context)
        logger.info("subscription cancelled subscription_id=%s", subscription_id)
        return row
