from datetime import datetime
from . import db

PAYMENT_STATUSES = ("initiated", "pending", "succeeded", "cancelled", "timed_out", "failed")
SEVERITIES = ("info", "warning", "error")


class CreditBalance(db.Model):
    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),
    )

    user_id = db.Column(db.String(64), primary_key=True)
    balance = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)


class CreditEntry(db.Model):
    """Append-only history of balance changes."""

    __table_args__ = (
        db.UniqueConstraint("reference_type", "reference_id", name="uq_credit_entry_reference"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    entry_type = db.Column(db.String(16), nullable=False)  # grant|charge|refund|purchase|adjustment
    delta = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(160))
    reference_type = db.Column(db.String(32))
    reference_id = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)


class PaymentRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    checkout_id = db.Column(db.String(64), unique=True, index=True)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    phone_number = db.Column(db.String(16), nullable=False)
    amount_requested = db.Column(db.Integer, nullable=False)
    credits_to_grant = db.Column(db.Integer, nullable=False)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="initiated", index=True)
    result_code = db.Column(db.String(32))
    result_desc = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)


class ErrorLogEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    message = db.Column(db.String(500), nullable=False)
    context = db.Column(db.String(120), default="")
    severity = db.Column(db.String(8), nullable=False, default="error")  # info|warning|error
