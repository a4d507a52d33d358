"""Stripe integration: checkout sessions and payment event ingestion.

Payment records change state only through ``ingest``, and a canceled
record never changes again.  Events are
verified against the webhook secret before anything is read from them,
and every handler tolerates redelivery of the same event.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.config import Settings, get_settings
from lorastudio.db.models import PaymentRecord, PaymentStatus, User
from lorastudio.errors import (
    InvalidRequest,
    InvalidSignature,
    MissingUserReference,
    PaymentRecordNotFound,
    PaymentServiceError,
)
from lorastudio.services.audit_service import AuditAction, audit_service

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


@dataclass
class IngestResult:
    """What happened to an event: processed, duplicate, unchanged or ignored."""

    status: str
    event_type: str
    payment_record_id: Optional[int] = None


class BillingService:
    """Checkout creation and payment event ingestion."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def _get_stripe(self) -> Any:
        """Configure the Stripe library with the secret key."""
        stripe.api_key = self.settings.stripe_secret_key.get_secret_value()
        return stripe

    # -- Event ingestion ----------------------------------------------------

    def verify_event(self, raw_payload: bytes, signature: str) -> dict[str, Any]:
        """
        Check the signature header and parse the event.

        Raises:
            InvalidSignature: header missing, stale or not matching the secret
        """
        if not signature:
            raise InvalidSignature("Missing payment event signature")

        try:
            payload = (
                raw_payload.decode("utf-8") if isinstance(raw_payload, bytes) else raw_payload
            )
        except UnicodeDecodeError as e:
            raise InvalidSignature("Payment event payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.settings.stripe_webhook_secret.get_secret_value(),
                tolerance=self.settings.stripe_webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Payment event signature verification failed: {e}")
            raise InvalidSignature() from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidSignature("Signed payload is not valid JSON") from e
        if not isinstance(event, dict):
            raise InvalidSignature("Signed payload is not an event object")
        return event

    async def ingest(self, db: AsyncSession, raw_payload: bytes, signature: str) -> IngestResult:
        """
        Verify and apply a payment processor event.

        Args:
            db: Database session
            raw_payload: Request body exactly as received
            signature: Value of the ``Stripe-Signature`` header

        Returns:
            IngestResult describing the outcome
        """
        event = self.verify_event(raw_payload, signature)
        event_type = event.get("type", "")
        data_object = (event.get("data") or {}).get("object") or {}

        if event_type == CHECKOUT_COMPLETED:
            return await self._handle_checkout_completed(db, data_object)
        if event_type == SUBSCRIPTION_UPDATED:
            return await self._handle_subscription_status(
                db,
                data_object,
                event_type,
                new_status=data_object.get("status") or "unknown",
                action=AuditAction.SUBSCRIPTION_UPDATED,
            )
        if event_type == SUBSCRIPTION_DELETED:
            return await self._handle_subscription_status(
                db,
                data_object,
                event_type,
                new_status=PaymentStatus.CANCELED,
                action=AuditAction.SUBSCRIPTION_CANCELED,
            )

        logger.debug(f"Ignoring payment event type: {event_type}")
        return IngestResult(status="ignored", event_type=event_type)

    async def _handle_checkout_completed(
        self, db: AsyncSession, session: dict[str, Any]
    ) -> IngestResult:
        metadata = session.get("metadata") or {}
        try:
            user_id = int(metadata["userId"])
        except (KeyError, TypeError, ValueError):
            logger.error(f"Checkout session {session.get('id')} carries no user id")
            raise MissingUserReference() from None

        if await db.get(User, user_id) is None:
            raise MissingUserReference(f"Checkout session references unknown user {user_id}")

        charge_ref = session.get("id")
        if not charge_ref:
            raise InvalidRequest("Checkout session has no id")

        existing = await self._find_by_charge_ref(db, charge_ref)
        if existing is not None:
            logger.info(f"Checkout {charge_ref} already recorded as payment {existing.id}")
            return IngestResult("duplicate", CHECKOUT_COMPLETED, existing.id)

        amount_total = session.get("amount_total")
        amount = Decimal(amount_total) / 100 if amount_total is not None else None
        record = PaymentRecord(
            user_id=user_id,
            charge_ref=charge_ref,
            processor_customer_id=session.get("customer"),
            processor_subscription_id=session.get("subscription"),
            status=PaymentStatus.ACTIVE,
            amount=amount,
            currency=session.get("currency"),
        )
        db.add(record)
        try:
            await db.flush()
        except IntegrityError:
            # Concurrent redelivery inserted the same charge first
            await db.rollback()
            existing = await self._find_by_charge_ref(db, charge_ref)
            return IngestResult(
                "duplicate", CHECKOUT_COMPLETED, existing.id if existing else None
            )

        await audit_service.record(
            db,
            AuditAction.PAYMENT_SUCCESSFUL,
            user_id=user_id,
            details={
                "payment_id": record.id,
                "charge_ref": charge_ref,
                "amount": str(amount) if amount is not None else None,
                "currency": record.currency,
            },
        )
        await db.commit()

        logger.info(f"Recorded payment {record.id} for user {user_id}")
        return IngestResult("processed", CHECKOUT_COMPLETED, record.id)

    async def _handle_subscription_status(
        self,
        db: AsyncSession,
        subscription: dict[str, Any],
        event_type: str,
        new_status: str,
        action: str,
    ) -> IngestResult:
        record = await self._find_subscription_record(db, subscription)
        if record is None:
            logger.warning(
                f"Subscription event for unknown subscription {subscription.get('id')} "
                f"(customer {subscription.get('customer')})"
            )
            raise PaymentRecordNotFound()

        if record.status == new_status:
            return IngestResult("unchanged", event_type, record.id)
        if record.status == PaymentStatus.CANCELED:
            # Canceled is terminal; late or reordered updates are dropped
            logger.info(
                f"Ignoring {event_type} ({new_status}) for canceled payment {record.id}"
            )
            return IngestResult("unchanged", event_type, record.id)

        old_status = record.status
        record.status = new_status
        if subscription.get("id") and not record.processor_subscription_id:
            record.processor_subscription_id = subscription["id"]

        await audit_service.record(
            db,
            action,
            user_id=record.user_id,
            details={
                "payment_id": record.id,
                "subscription_id": subscription.get("id"),
                "old_status": old_status,
                "status": new_status,
            },
        )
        await db.commit()

        logger.info(f"Payment {record.id} status {old_status} -> {new_status}")
        return IngestResult("processed", event_type, record.id)

    async def _find_by_charge_ref(self, db: AsyncSession, charge_ref: str) -> Optional[PaymentRecord]:
        result = await db.execute(
            select(PaymentRecord).where(PaymentRecord.charge_ref == charge_ref)
        )
        return result.scalar_one_or_none()

    async def _find_subscription_record(
        self, db: AsyncSession, subscription: dict[str, Any]
    ) -> Optional[PaymentRecord]:
        """Match by subscription id, then by the newest record of the customer."""
        subscription_id = subscription.get("id")
        if subscription_id:
            result = await db.execute(
                select(PaymentRecord).where(
                    PaymentRecord.processor_subscription_id == subscription_id
                )
            )
            record = result.scalars().first()
            if record is not None:
                return record

        customer_id = subscription.get("customer")
        if not customer_id:
            return None
        result = await db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.processor_customer_id == customer_id)
            .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # -- Checkout -----------------------------------------------------------

    async def create_checkout_session(self, db: AsyncSession, user: User, plan: str) -> str:
        """
        Create a subscription checkout session for ``plan``.

        Returns:
            The checkout URL to redirect the user to
        """
        price_id = self.settings.stripe_price_ids.get(plan)
        if not price_id:
            raise InvalidRequest(f"Invalid plan selected: {plan}")

        app_url = self.settings.app_url.rstrip("/")
        params = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{app_url}/dashboard?payment=success",
            "cancel_url": f"{app_url}/subscription?payment=canceled",
            "metadata": {"userId": str(user.id), "subject": user.subject},
        }
        if user.email:
            params["customer_email"] = user.email

        client = self._get_stripe()
        try:
            session = await asyncio.to_thread(client.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Checkout session creation failed for user {user.id}: {e}")
            raise PaymentServiceError(str(e)) from e

        await audit_service.record(
            db,
            AuditAction.SUBSCRIPTION_INITIATED,
            user_id=user.id,
            details={"plan": plan, "session_id": session["id"]},
        )
        await db.commit()
        return session["url"]


# Singleton instance
billing_service = BillingService()
