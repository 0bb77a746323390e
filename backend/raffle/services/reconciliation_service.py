"""
Webhook reconciler: applies payment notifications to orders.

DELIVERY MODEL
==============

The provider delivers notifications at least once, possibly several times,
possibly concurrently, in any order, and retries anything that is not
answered with 200. The reconciler therefore never fails the HTTP layer: it
returns an outcome for logs and metrics and the endpoint always says 200.

Exactly-once application rests on two layers:

  1. A short processing claim per payment id keeps concurrent duplicates
     apart. It is released when the invocation ends, whatever happened.
  2. The order's unique payment_id column, stamped by the approving
     conditional update, is the permanent record. A later delivery finds
     the approved order and stops before touching anything.

Transient failures (gateway down, store error) end the invocation without
mutation and rely on redelivery. Structural failures (unreadable reference,
order mismatch) are logged and dropped because no retry can fix them.
"""

import enum
import uuid

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.config import Settings, get_settings
from raffle.core.errors import ConflictError, GatewayUnavailable, StructuralError
from raffle.core.logging import get_logger
from raffle.core.metrics import claim_contention, record_webhook_outcome
from raffle.models import Order, OrderStatus, ReleaseReason, ACTIVE_STATUSES
from raffle.schemas.notification import MerchantOrderNotification, Notification
from raffle.schemas.order import OrderDescriptor
from raffle.services.cache_service import invalidate_availability_cache
from raffle.services.interfaces.claims import ClaimStore
from raffle.services.interfaces.payment_gateway import PaymentDetails, PaymentGateway, PaymentOutcome
from raffle.services.inventory import (
    count_sold_numbers,
    find_order_by_payment,
    load_order,
    release_order,
    transition_order,
    utcnow,
)

logger = get_logger(__name__)

# Claim stores live in the database or in Redis
STORE_ERRORS = (SQLAlchemyError, RedisError)


class ReconcileOutcome(str, enum.Enum):
    IGNORED = "ignored"
    DUPLICATE_IN_FLIGHT = "duplicate_in_flight"
    ALREADY_APPLIED = "already_applied"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    PENDING = "pending"
    NO_ACTION = "no_action"
    APPROVED = "approved"
    RELEASED = "released"
    CONFLICT = "conflict"
    STRUCTURAL_ERROR = "structural_error"
    STORE_ERROR = "store_error"
    UNEXPECTED = "unexpected"


class WebhookReconciler:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        claims: ClaimStore,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.claims = claims
        self.settings = settings or get_settings()

    async def handle(self, notification: Notification | None) -> ReconcileOutcome:
        try:
            outcome = await self._handle(notification)
        except Exception:
            # Anything unlisted is still answered with 200; redelivery retries it
            logger.exception("webhook_unexpected_error", notification=notification)
            outcome = ReconcileOutcome.UNEXPECTED
        record_webhook_outcome(outcome.value)
        return outcome

    async def _handle(self, notification: Notification | None) -> ReconcileOutcome:
        try:
            payment_id = await self._resolve_payment_id(notification)
        except GatewayUnavailable as e:
            logger.warning("merchant_order_lookup_failed", error=e.detail)
            return ReconcileOutcome.GATEWAY_UNAVAILABLE

        if not payment_id:
            logger.info("webhook_without_payment_id", notification=notification)
            return ReconcileOutcome.IGNORED

        log = logger.bind(payment_id=payment_id)
        owner = uuid.uuid4().hex
        try:
            claimed = await self.claims.acquire(payment_id, owner)
        except STORE_ERRORS as e:
            log.error("payment_claim_failed", error=str(e))
            return ReconcileOutcome.STORE_ERROR

        if not claimed:
            claim_contention.inc()
            log.info("payment_already_in_flight")
            return ReconcileOutcome.DUPLICATE_IN_FLIGHT

        try:
            return await self._reconcile(payment_id, log)
        except GatewayUnavailable as e:
            log.warning("payment_lookup_unavailable", error=e.detail)
            return ReconcileOutcome.GATEWAY_UNAVAILABLE
        except StructuralError as e:
            log.error("payment_structural_error", error=e.detail, **e.extra)
            return ReconcileOutcome.STRUCTURAL_ERROR
        except ConflictError as e:
            log.warning("payment_apply_conflict", error=e.detail, **e.extra)
            return ReconcileOutcome.CONFLICT
        except SQLAlchemyError as e:
            log.error("payment_store_error", error=str(e))
            return ReconcileOutcome.STORE_ERROR
        finally:
            try:
                await self.claims.release(payment_id, owner)
            except STORE_ERRORS as e:
                # Lease expiry frees it
                log.error("payment_claim_release_failed", error=str(e))

    async def _resolve_payment_id(self, notification: Notification | None) -> str | None:
        if notification is None:
            return None
        if isinstance(notification, MerchantOrderNotification):
            return await self.gateway.search_by_merchant_order(notification.merchant_order_id)
        return notification.payment_id

    async def _reconcile(self, payment_id: str, log) -> ReconcileOutcome:
        async with self.session_factory() as db:
            settled = await find_order_by_payment(db, payment_id)
            if settled is not None and settled.status == OrderStatus.APPROVED.value:
                log.info("payment_already_applied", order_id=settled.id)
                return ReconcileOutcome.ALREADY_APPLIED

            payment = await self.gateway.get_payment(payment_id)
            log = log.bind(payment_status=payment.status)

            if payment.outcome is PaymentOutcome.PENDING:
                log.info("payment_not_final")
                return ReconcileOutcome.PENDING
            if payment.outcome is PaymentOutcome.REVERSED:
                log.warning("payment_reversed_after_settlement")
                return ReconcileOutcome.NO_ACTION

            descriptor = OrderDescriptor.from_reference(payment.external_reference)
            log = log.bind(order_id=descriptor.order_id)
            order = await load_order(db, descriptor.order_id)
            if (
                order is not None
                and order.status == OrderStatus.RELEASED.value
                and payment.outcome is PaymentOutcome.REJECTED
            ):
                log.info("rejected_payment_for_released_order")
                return ReconcileOutcome.NO_ACTION
            self._validate(order, descriptor, payment)

            if payment.outcome is PaymentOutcome.APPROVED:
                await self._approve(db, order, descriptor, payment, payment_id)
                log.info("order_approved", numbers=order.numbers)
                outcome = ReconcileOutcome.APPROVED
            else:
                if not await release_order(db, order.id, ReleaseReason.PAYMENT_REJECTED.value):
                    await db.rollback()
                    raise ConflictError("Order left reserved/pending before release")
                await db.commit()
                log.info("order_released_after_rejection", numbers=order.numbers)
                outcome = ReconcileOutcome.RELEASED

        await invalidate_availability_cache()
        return outcome

    @staticmethod
    def _validate(order: Order | None, descriptor: OrderDescriptor, payment: PaymentDetails) -> None:
        if order is None:
            raise StructuralError("Referenced order does not exist")
        if order.status not in ACTIVE_STATUSES:
            if payment.outcome is PaymentOutcome.APPROVED:
                # Money taken for numbers we no longer hold; needs a manual refund
                raise StructuralError(
                    "Approved payment for an order that is no longer held",
                    order_status=order.status,
                    needs_refund=True,
                )
            raise StructuralError("Order is no longer held", order_status=order.status)
        if order.buyer_id != descriptor.buyer_id:
            raise StructuralError("Buyer does not match the order")
        numbers = set(descriptor.numbers)
        if not numbers or not numbers.issubset(order.numbers):
            raise StructuralError(
                "Paid numbers are not part of the order",
                paid=sorted(numbers),
                held=list(order.numbers),
            )

    async def _approve(
        self,
        db: AsyncSession,
        order: Order,
        descriptor: OrderDescriptor,
        payment: PaymentDetails,
        payment_id: str,
    ) -> None:
        sold = await count_sold_numbers(db)
        if sold + len(order.numbers) > self.settings.TOTAL_SUPPLY:
            raise StructuralError(
                "Approval would exceed total supply",
                sold=sold,
                requested=len(order.numbers),
            )

        approved = await transition_order(
            db,
            order.id,
            ACTIVE_STATUSES,
            {
                "status": OrderStatus.APPROVED.value,
                "payment_id": payment_id,
                "approved_at": payment.approved_at or utcnow(),
                "provider_reference": payment.provider_reference,
                "buyer_name": descriptor.buyer_name or order.buyer_name,
                "buyer_phone": descriptor.buyer_phone or order.buyer_phone,
                "buyer_id": None,
                "hold_expires_at": None,
            },
        )
        if not approved:
            await db.rollback()
            raise ConflictError("Order left reserved/pending before approval")
        await db.commit()
