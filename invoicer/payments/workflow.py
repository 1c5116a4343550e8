"""Credit purchase workflow: one M-Pesa checkout from prompt to credit grant."""
from __future__ import annotations

import enum
import logging
import re
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update

from ..errors import (
    DuplicateLedgerEntryError,
    PaymentGatewayError,
    PaymentInProgressError,
    PaymentNotFoundError,
    ValidationError,
)
from ..models import PaymentRequest

logger = logging.getLogger(__name__)

PHONE_NUMBER = re.compile(r"254[0-9]{9}")


class WorkflowState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    INITIATING = "initiating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


_OUTCOMES = {
    "succeeded": WorkflowState.SUCCEEDED,
    "cancelled": WorkflowState.CANCELLED,
    "timed_out": WorkflowState.TIMED_OUT,
    "failed": WorkflowState.FAILED,
}


def validate_phone_number(phone_number) -> str:
    if not isinstance(phone_number, str) or not PHONE_NUMBER.fullmatch(phone_number):
        raise ValidationError("Please enter a valid M-Pesa number (254XXXXXXXXX)")
    return phone_number


def validate_amount(amount, credit_price: int = 10) -> int:
    if isinstance(amount, bool) or not isinstance(amount, (int, str)):
        raise ValidationError("amount must be a whole number of KES")
    try:
        amount = int(amount)
    except ValueError:
        raise ValidationError("amount must be a whole number of KES")
    if amount < credit_price:
        raise ValidationError(f"Minimum purchase is KES {credit_price}")
    return amount


class PaymentWorkflow:
    """Drives one checkout through the purchase state machine.

    ``start`` validates the input and sends the push prompt, ``poll`` runs a
    single status check and ``run`` repeats polls with a cancellable wait in
    between. Once a checkout terminates the outcome is kept in
    ``last_outcome`` and the workflow returns to ``IDLE``.

    Credits are granted only on the pending -> succeeded edge, which is a
    compare-and-set on the stored status, so repeated or racing polls of the
    same checkout credit it once.
    """

    def __init__(self, context, gateway, config=None):
        config = config or {}
        self.context = context
        self.gateway = gateway
        self.credit_price = int(config.get("CREDIT_PRICE", 10))
        self.max_attempts = int(config.get("PAYMENT_MAX_ATTEMPTS", 30))
        self.poll_interval = float(config.get("PAYMENT_POLL_INTERVAL", 10))
        self.state = WorkflowState.IDLE
        self.last_outcome: Optional[WorkflowState] = None
        self.request: Optional[PaymentRequest] = None

    @property
    def session(self):
        return self.context.session

    @classmethod
    def resume(cls, context, gateway, checkout_id, config=None):
        request = context.session.execute(
            select(PaymentRequest).where(
                PaymentRequest.checkout_id == checkout_id,
                PaymentRequest.user_id == context.user_id,
            )
        ).scalar_one_or_none()
        if request is None:
            raise PaymentNotFoundError(f"Unknown checkout {checkout_id}")
        workflow = cls(context, gateway, config)
        workflow.request = request
        if request.status == "pending":
            workflow.state = WorkflowState.AWAITING_CONFIRMATION
        else:
            workflow.last_outcome = _OUTCOMES.get(request.status, WorkflowState.FAILED)
        return workflow

    def _has_pending_request(self) -> bool:
        pending = self.session.execute(
            select(PaymentRequest.id)
            .where(PaymentRequest.user_id == self.context.user_id, PaymentRequest.status == "pending")
            .limit(1)
        ).scalar_one_or_none()
        return pending is not None

    def open(self):
        """Accept purchase input; one checkout per user may await confirmation at a time."""
        if self.state is WorkflowState.AWAITING_CONFIRMATION or self._has_pending_request():
            raise PaymentInProgressError()
        self.state = WorkflowState.AWAITING_INPUT
        return self.state

    def start(self, phone_number, amount) -> PaymentRequest:
        if self.state is not WorkflowState.AWAITING_INPUT:
            self.open()
        phone_number = validate_phone_number(phone_number)
        amount = validate_amount(amount, self.credit_price)

        self.state = WorkflowState.INITIATING
        request = PaymentRequest(
            user_id=self.context.user_id,
            phone_number=phone_number,
            amount_requested=amount,
            credits_to_grant=amount // self.credit_price,
            attempt_count=0,
            status="initiated",
        )
        self.session.add(request)
        self.session.commit()
        self.request = request

        try:
            result = self.gateway.initiate(phone_number, amount, f"INV_CREDITS_{self.context.user_id}")
        except PaymentGatewayError as exc:
            request.status = "failed"
            request.result_desc = exc.message[:255]
            request.updated_at = datetime.utcnow()
            self.session.commit()
            self.context.log(exc, "M-Pesa payment initiation", "error")
            self._finish(WorkflowState.FAILED)
            raise

        request.checkout_id = result.checkout_id
        request.status = "pending"
        request.result_desc = result.message[:255]
        request.updated_at = datetime.utcnow()
        self.session.commit()
        self.state = WorkflowState.AWAITING_CONFIRMATION
        return request

    def poll(self) -> WorkflowState:
        """Run one status check and return the resulting state.

        ``AWAITING_CONFIRMATION`` means another poll is due; anything else is
        the terminal outcome. A checkout that already terminated (or was
        abandoned) is reported without contacting the gateway.
        """
        if self.request is None:
            raise PaymentNotFoundError("No payment has been started")
        request = self.request
        self.session.refresh(request)
        if request.status != "pending":
            return self._settle()

        self.state = WorkflowState.AWAITING_CONFIRMATION
        request.attempt_count += 1
        try:
            result = self.gateway.check_status(request.checkout_id)
        except PaymentGatewayError as exc:
            self._close("failed", desc=exc.message)
            self.session.commit()
            self.context.log(exc, "Payment status polling", "error")
            return self._settle()

        if result.is_success:
            return self._grant(result)

        if result.is_cancelled:
            changed = self._close("cancelled", result)
            self.session.commit()
            if changed:
                self.context.log("Payment was cancelled by user", "Payment status polling", "error")
            return self._settle()

        if request.attempt_count >= self.max_attempts:
            changed = self._close("timed_out", result)
            self.session.commit()
            if changed:
                self.context.log(
                    "Payment confirmation timeout. Please try again.", "Payment status polling", "warning"
                )
            return self._settle()

        request.result_code = result.result_code
        request.result_desc = result.result_desc[:255]
        request.updated_at = datetime.utcnow()
        self.session.commit()
        return self.state

    def run(self, cancel_event: Optional[threading.Event] = None) -> WorkflowState:
        """Poll until the checkout terminates; setting ``cancel_event`` abandons it."""
        cancel_event = cancel_event or threading.Event()
        if cancel_event.is_set():
            return self.abandon()
        outcome = self.poll()
        while outcome is WorkflowState.AWAITING_CONFIRMATION:
            if cancel_event.wait(self.poll_interval):
                return self.abandon()
            outcome = self.poll()
        return outcome

    def abandon(self) -> Optional[WorkflowState]:
        if self.request is None:
            self.state = WorkflowState.IDLE
            return None
        changed = self._close("cancelled", desc="Abandoned by client")
        self.session.commit()
        if changed:
            self.context.log("Payment abandoned before confirmation", "Payment status polling", "warning")
        return self._settle()

    def fail(self, desc: str) -> WorkflowState:
        """Give up on a pending checkout without touching the ledger."""
        changed = self._close("failed", desc=desc)
        self.session.commit()
        if changed:
            self.context.log(desc, "Payment status polling", "error")
        return self._settle()

    def _grant(self, result) -> WorkflowState:
        request = self.request
        ledger = self.context.ledger
        ledger.get_balance(request.user_id)

        if not self._close("succeeded", result):
            self.session.commit()
            return self._settle()
        try:
            ledger.adjust(
                request.user_id,
                request.credits_to_grant,
                entry_type="purchase",
                reason=f"M-Pesa payment of KES {request.amount_requested}",
                reference_type="checkout",
                reference_id=request.checkout_id,
            )
        except DuplicateLedgerEntryError:
            # the status change was rolled back together with the entry
            logger.warning("Checkout %s was already credited", request.checkout_id)
            return self._settle()

        self.context.log(
            f"Payment successful: {request.amount_requested} KES, {request.credits_to_grant} credits added",
            "payment_success",
            "info",
        )
        return self._finish(WorkflowState.SUCCEEDED)

    def _close(self, status, result=None, desc=None) -> bool:
        """Move the stored request out of ``pending``; False if it already left."""
        request = self.request
        values = {"status": status, "attempt_count": request.attempt_count, "updated_at": datetime.utcnow()}
        if result is not None:
            values["result_code"] = result.result_code
            values["result_desc"] = result.result_desc[:255]
        if desc is not None:
            values["result_desc"] = desc[:255]
        changed = self.session.execute(
            update(PaymentRequest)
            .where(PaymentRequest.id == request.id, PaymentRequest.status == "pending")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return changed.rowcount == 1

    def _settle(self) -> WorkflowState:
        self.session.refresh(self.request)
        if self.request.status == "pending":
            self.state = WorkflowState.AWAITING_CONFIRMATION
            return self.state
        return self._finish(_OUTCOMES.get(self.request.status, WorkflowState.FAILED))

    def _finish(self, outcome: WorkflowState) -> WorkflowState:
        self.last_outcome = outcome
        self.state = WorkflowState.IDLE
        return outcome


def describe_payment(request: PaymentRequest, max_attempts: int) -> str:
    if request.status == "pending":
        return f"Waiting for payment confirmation... ({request.attempt_count}/{max_attempts})"
    if request.status == "succeeded":
        return f"Payment successful! {request.credits_to_grant} credits added."
    if request.status == "cancelled":
        return "Payment was cancelled"
    if request.status == "timed_out":
        return "Payment confirmation timeout. Please try again."
    if request.status == "failed":
        return f"Payment failed: {request.result_desc or 'unknown error'}"
    return "Initiating M-Pesa payment..."


def payment_to_dict(request: PaymentRequest, max_attempts: int):
    return {
        "checkout_id": request.checkout_id,
        "status": request.status,
        "phone_number": request.phone_number,
        "amount": request.amount_requested,
        "credits_to_grant": request.credits_to_grant,
        "attempt_count": request.attempt_count,
        "max_attempts": max_attempts,
        "result_code": request.result_code,
        "result_desc": request.result_desc,
        "message": describe_payment(request, max_attempts),
    }
