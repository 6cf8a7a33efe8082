import logging
import time
from datetime import datetime, timedelta

import aiohttp

from medquiz.config import Config
from medquiz.errors import BackendError, PaymentError, ValidationError
from medquiz.utils.time_utils import isoformat, utc_now

logger = logging.getLogger(__name__)


class PaystackClient:
    def __init__(self, secret_key: str = None, base_url: str = None):
        self.secret_key = secret_key or Config.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or Config.PAYSTACK_BASE_URL).rstrip("/")

    def _headers(self) -> dict:
        if not self.secret_key:
            logger.error("PAYSTACK_SECRET_KEY not configured")
            raise PaymentError("Payment service not configured")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, payload: dict = None) -> dict:
        headers = self._headers()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(method, f"{self.base_url}{path}", json=payload, headers=headers) as response:
                    body = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"Paystack request {path} failed: {e}")
            raise BackendError("Payment gateway unreachable") from e

        if not isinstance(body, dict) or not body.get("status"):
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"Paystack rejected {path}: {message}")
            raise PaymentError(message or "Payment gateway rejected the request")
        return body.get("data") or {}

    async def initialize_transaction(self, email: str, amount: int, reference: str,
                                     callback_url: str, metadata: dict) -> dict:
        """
        Returns {"authorization_url", "access_code", "reference"}.
        Amount is in kobo.
        """
        return await self._request("POST", "/transaction/initialize", {
            "email": email,
            "amount": amount,
            "currency": "NGN",
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
        })

    async def verify_transaction(self, reference: str) -> dict:
        return await self._request("GET", f"/transaction/verify/{reference}")


class PaymentService:
    def __init__(self, db, gateway: PaystackClient):
        self.db = db
        self.gateway = gateway

    async def initialize(self, user_id: str, email: str, amount: int = None, plan_name: str = None,
                         callback_url: str = None) -> dict:
        if not email:
            raise ValidationError("User not authenticated or email missing")

        amount = amount or Config.SUBSCRIPTION_AMOUNT
        plan_name = plan_name or Config.SUBSCRIPTION_PLAN_NAME
        reference = f"sub_{user_id}_{int(time.time() * 1000)}"

        logger.info(f"Payment request: {amount} kobo ({plan_name}) for {email}")
        data = await self.gateway.initialize_transaction(
            email=email,
            amount=amount,
            reference=reference,
            callback_url=callback_url or f"{Config.FRONTEND_URL}/payment-success",
            metadata={"user_id": user_id, "plan_name": plan_name},
        )
        return {
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
            "reference": data.get("reference", reference),
        }

    async def verify_and_activate(self, user_id: str, reference: str, now: datetime = None) -> dict:
        """
        Verifies the transaction with the gateway and, only on success, records
        a new active subscription for SUBSCRIPTION_DAYS. On any failure the
        previous subscription is left as it was. A reference is applied once.
        """
        if not reference:
            raise ValidationError("Payment reference is required")

        transaction = await self.gateway.verify_transaction(reference)
        if transaction.get("status") != "success":
            logger.warning(f"Payment {reference} not successful: {transaction.get('status')}")
            raise PaymentError("Payment verification failed")

        metadata = transaction.get("metadata")
        owner = metadata.get("user_id") if isinstance(metadata, dict) else None
        if owner and owner != user_id:
            logger.warning(f"Payment {reference} belongs to {owner}, not {user_id}")
            raise PaymentError("Payment does not belong to this account")

        summary = {
            "reference": transaction.get("reference", reference),
            "amount": transaction.get("amount"),
            "currency": transaction.get("currency"),
            "status": transaction.get("status"),
        }

        # Every verified payment keeps its own row, so any reference seen
        # before is already applied and must never extend access again.
        history = await self.db.list_subscriptions(user_id)
        applied = next((row for row in history if row.get("payment_reference") == reference), None)
        if applied:
            logger.info(f"Payment {reference} already applied for {user_id}")
            return {"subscription": applied, "transaction": summary, "already_applied": True}

        now = now or utc_now()
        row = await self.db.insert_subscription({
            "user_id": user_id,
            "subscription_status": "active",
            "is_trial": False,
            "trial_end": None,
            "subscription_start": isoformat(now),
            "subscription_end": isoformat(now + timedelta(days=Config.SUBSCRIPTION_DAYS)),
            "amount": transaction.get("amount"),
            "payment_reference": reference,
            "created_at": isoformat(now),
            "updated_at": isoformat(now),
        })

        logger.info(f"💰 PAYMENT: {summary['amount']} kobo from {user_id}, subscription active")
        return {"subscription": row, "transaction": summary, "already_applied": False}
