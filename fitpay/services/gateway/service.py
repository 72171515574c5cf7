"""Typed gateway operations.

Each operation consumes one unit of the rate-limit budget, sanitizes its ids,
and goes through `AuditedCallExecutor`. Creates of customers and
subscriptions are remembered in the idempotency cache, so a repeat within the
TTL returns the first result without another gateway call.
"""

from typing import TypeVar

from fitpay.common.errors import GatewayUnavailable
from fitpay.common.logging import logger
from fitpay.common.metrics import idempotency_hits_total
from fitpay.common.validation import require_id
from fitpay.services.gateway.executor import AuditedCallExecutor
from fitpay.services.gateway.idempotency import fingerprint
from fitpay.services.gateway.schemas import (
    AuditContext,
    Card,
    CardRequest,
    Charge,
    ChargeRequest,
    Customer,
    CustomerRequest,
    GatewayRequest,
    GatewayResource,
    GatewayResponse,
    Plan,
    Subscription,
    SubscriptionRequest,
)

R = TypeVar("R", bound=GatewayResource)


def _parse(model: type[R], response: GatewayResponse, operation: str) -> R:
    if not response.body.get("id"):
        raise GatewayUnavailable(f"invalid gateway response for {operation}", "INVALID_RESPONSE", response.status_code)
    resource = model.model_validate(response.body)
    resource.log_id = response.log_id
    return resource


class GatewayService:
    def __init__(self, client, executor: AuditedCallExecutor) -> None:
        self.client = client
        self.executor = executor

    @property
    def idempotency(self):
        return self.client.idempotency

    def _cached(self, model: type[R], key: str, operation: str) -> R | None:
        cached = self.idempotency.check(key)
        if cached is None:
            return None
        idempotency_hits_total.labels(operation=operation).inc()
        logger.info("returning cached result operation=%s", operation)
        return model.model_validate(cached)

    async def _send(
        self,
        model: type[R],
        method: str,
        path: str,
        operation: str,
        body: dict | None,
        context: AuditContext | None,
    ) -> R:
        response = await self.executor.call(
            GatewayRequest(method=method, path=path, operation=operation, body=body),
            context,
        )
        return _parse(model, response, operation)

    # -- customers ---------------------------------------------------------

    async def create_customer(self, request: CustomerRequest, context: AuditContext | None = None) -> Customer:
        self.client.check_rate_limit()
        key = fingerprint({"operation": "CREATE_CUSTOMER", "email": request.email, "external_id": request.external_id})
        cached = self._cached(Customer, key, "create_customer")
        if cached is not None:
            return cached

        body = request.model_dump(exclude_none=True)
        customer = await self._send(Customer, "POST", "/customers", "create_customer", body, context)
        self.idempotency.register(key, customer.model_dump(mode="json"))
        logger.info("gateway customer created customer_id=%s", customer.id)
        return customer

    async def get_customer(self, customer_id: str, context: AuditContext | None = None) -> Customer:
        self.client.check_rate_limit()
        customer_id = require_id(customer_id, "customer_id", min_length=5)
        return await self._send(Customer, "GET", f"/customers/{customer_id}", "get_customer", None, context)

    # -- cards -------------------------------------------------------------

    async def attach_card(self, customer_id: str, request: CardRequest, context: AuditContext | None = None) -> Card:
        self.client.check_rate_limit()
        customer_id = require_id(customer_id, "customer_id")
        body = request.model_dump()
        card = await self._send(Card, "POST", f"/customers/{customer_id}/cards", "attach_card", body, context)
        logger.info("card attached customer_id=%s brand=%s", customer_id, card.brand)
        return card

    # -- subscriptions -----------------------------------------------------

    async def create_subscription(
        self,
        customer_id: str,
        request: SubscriptionRequest,
        context: AuditContext | None = None,
    ) -> Subscription:
        self.client.check_rate_limit()
        customer_id = require_id(customer_id, "customer_id")
        key = fingerprint({"operation": "CREATE_SUBSCRIPTION", "customer_id": customer_id, "plan_id": request.plan_id})
        cached = self._cached(Subscription, key, "create_subscription")
        if cached is not None:
            return cached

        body = request.model_dump(exclude_none=True)
        subscription = await self._send(
            Subscription,
            "POST",
            f"/customers/{customer_id}/subscriptions",
            "create_subscription",
            body,
            context,
        )
        self.idempotency.register(key, subscription.model_dump(mode="json"))
        logger.info("subscription created subscription_id=%s status=%s", subscription.id, subscription.status)
        return subscription

    async def get_subscription(
        self,
        customer_id: str,
        subscription_id: str,
        context: AuditContext | None = None,
    ) -> Subscription:
        self.client.check_rate_limit()
        customer_id = require_id(customer_id, "customer_id")
        subscription_id = require_id(subscription_id, "subscription_id")
        return await self._send(
            Subscription,
            "GET",
            f"/customers/{customer_id}/subscriptions/{subscription_id}",
            "get_subscription",
            None,
            context,
        )

    async def cancel_subscription(
        self,
        customer_id: str,
        subscription_id: str,
        context: AuditContext | None = None,
    ) -> str:
        """Cancel at the gateway; returns the cancelled subscription id."""

        self.client.check_rate_limit()
        customer_id = require_id(customer_id, "customer_id")
        subscription_id = require_id(subscription_id, "subscription_id")
        await self.executor.call(
            GatewayRequest(
                method="DELETE",
                path=f"/customers/{customer_id}/subscriptions/{subscription_id}",
                operation="cancel_subscription",
            ),
            context,
        )
        logger.info("subscription cancelled subscription_id=%s", subscription_id)
        return subscription_id

    # -- charges and plans -------------------------------------------------

    async def create_charge(self, request: ChargeRequest, context: AuditContext | None = None) -> Charge:
        self.client.check_rate_limit()
        body = request.model_dump(mode="json", exclude_none=True)
        charge = await self._send(Charge, "POST", "/charges", "create_charge", body, context)
        logger.info("charge created charge_id=%s status=%s 3ds=%s", charge.id, charge.status, charge.requires_3d_secure)
        return charge

    async def get_charge(self, charge_id: str, context: AuditContext | None = None) -> Charge:
        self.client.check_rate_limit()
        charge_id = require_id(charge_id, "charge_id")
        return await self._send(Charge, "GET", f"/charges/{charge_id}", "get_charge", None, context)

    async def get_plan(self, plan_id: str, context: AuditContext | None = None) -> Plan:
        self.client.check_rate_limit()
        plan_id = require_id(plan_id, "plan_id")
        return await self._send(Plan, "GET", f"/plans/{plan_id}", "get_plan", None, context)
