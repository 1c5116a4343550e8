"""Mobile-money push payment collaborators.

``DarajaGateway`` talks to the Safaricom Daraja M-Pesa Express API;
``SimulatedGateway`` is the deterministic stand-in used for development and
tests. Both report status with Daraja result codes.
"""
from __future__ import annotations

import abc
import base64
import itertools
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

import httpx

from ..errors import PaymentGatewayError

logger = logging.getLogger(__name__)

RESULT_SUCCESS = "0"
RESULT_CANCELLED = "1032"
RESULT_PENDING = "pending"

# Daraja answers the status query with HTTP 500 and this code while the
# customer has not yet acted on the STK prompt.
_STILL_PROCESSING = "500.001.1001"


@dataclass(frozen=True)
class InitiateResult:
    checkout_id: str
    message: str = ""


@dataclass(frozen=True)
class StatusResult:
    result_code: str
    result_desc: str = ""

    @property
    def is_success(self) -> bool:
        return self.result_code == RESULT_SUCCESS

    @property
    def is_cancelled(self) -> bool:
        return self.result_code == RESULT_CANCELLED


class PaymentGateway(abc.ABC):
    @abc.abstractmethod
    def initiate(self, phone_number: str, amount: int, reference: str) -> InitiateResult:
        """Send the push prompt; raise PaymentGatewayError if it was refused."""

    @abc.abstractmethod
    def check_status(self, checkout_id: str) -> StatusResult:
        """Query a checkout; raise PaymentGatewayError on transport or parse failure."""


class SimulatedGateway(PaymentGateway):
    """Deterministic gateway.

    Without ``outcomes`` every checkout succeeds on its ``succeed_after``-th
    status check (never, when ``succeed_after`` is None). ``outcomes`` scripts
    the status checks instead: each item is a result code or an exception to
    raise, and the last item repeats once the script runs out.
    """

    def __init__(
        self,
        succeed_after: Optional[int] = 3,
        outcomes: Optional[Iterable] = None,
        initiate_error: Optional[str] = None,
    ):
        self.succeed_after = succeed_after
        self.outcomes = list(outcomes) if outcomes is not None else None
        self.initiate_error = initiate_error
        self.attempts: Dict[str, int] = {}
        self.initiated = []
        self._ids = itertools.count(1)

    def initiate(self, phone_number, amount, reference):
        if self.initiate_error:
            raise PaymentGatewayError(self.initiate_error)
        checkout_id = f"ws_CO_{int(time.time())}{next(self._ids):04d}"
        self.initiated.append({"phone_number": phone_number, "amount": amount, "reference": reference})
        return InitiateResult(checkout_id=checkout_id, message="STK Push sent successfully")

    def check_status(self, checkout_id):
        attempt = self.attempts.get(checkout_id, 0) + 1
        self.attempts[checkout_id] = attempt

        if self.outcomes is not None:
            outcome = self.outcomes[min(attempt, len(self.outcomes)) - 1]
            if isinstance(outcome, BaseException):
                raise outcome
            return StatusResult(str(outcome), f"Simulated result {outcome}")

        if self.succeed_after is not None and attempt >= self.succeed_after:
            return StatusResult(RESULT_SUCCESS, "The service request is processed successfully.")
        return StatusResult(RESULT_PENDING, "Payment pending")


class DarajaGateway(PaymentGateway):
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            resp = self.http.get(
                "/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self.consumer_key, self.consumer_secret),
            )
            resp.raise_for_status()
            data = resp.json()
            self._token = data["access_token"]
            expires_in = int(data.get("expires_in", 3599))
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise PaymentGatewayError(f"M-Pesa authentication failed: {exc}") from exc
        # refresh a minute early
        self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
        return self._token

    def _credentials(self):
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode()
        return base64.b64encode(raw).decode(), timestamp

    def _post(self, path: str, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            return self.http.post(path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"M-Pesa request failed: {exc}") from exc

    def initiate(self, phone_number, amount, reference):
        password, timestamp = self._credentials()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": reference,
            "TransactionDesc": "Invoice Processing Credits",
        }
        resp = self._post("/mpesa/stkpush/v1/processrequest", payload)
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentGatewayError(f"Unreadable M-Pesa response (HTTP {resp.status_code})") from exc

        if resp.is_error or str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            message = data.get("errorMessage") or data.get("CustomerMessage") or data.get("ResponseDescription")
            raise PaymentGatewayError(message or f"Payment initiation failed (HTTP {resp.status_code})")
        logger.info("STK push sent", extra={"checkout_id": data["CheckoutRequestID"], "reference": reference})
        return InitiateResult(checkout_id=data["CheckoutRequestID"], message=data.get("CustomerMessage", ""))

    def check_status(self, checkout_id):
        password, timestamp = self._credentials()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_id,
        }
        resp = self._post("/mpesa/stkpushquery/v1/query", payload)
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentGatewayError(f"Unreadable M-Pesa status (HTTP {resp.status_code})") from exc

        if data.get("errorCode") == _STILL_PROCESSING:
            return StatusResult(RESULT_PENDING, data.get("errorMessage", "The transaction is being processed"))
        if resp.is_error or "ResultCode" not in data:
            raise PaymentGatewayError(data.get("errorMessage") or f"Status query failed (HTTP {resp.status_code})")
        return StatusResult(str(data["ResultCode"]), data.get("ResultDesc", ""))


def build_gateway(config) -> PaymentGateway:
    kind = config.get("PAYMENT_GATEWAY", "simulated")
    if kind == "simulated":
        return SimulatedGateway(succeed_after=config.get("SIMULATED_SUCCESS_AFTER", 3))
    if kind == "daraja":
        return DarajaGateway(
            base_url=config["MPESA_BASE_URL"],
            consumer_key=config["MPESA_CONSUMER_KEY"],
            consumer_secret=config["MPESA_CONSUMER_SECRET"],
            shortcode=config["MPESA_SHORTCODE"],
            passkey=config["MPESA_PASSKEY"],
            callback_url=config["MPESA_CALLBACK_URL"],
            timeout=config.get("MPESA_TIMEOUT", 30.0),
        )
    raise ValueError(f"Unknown PAYMENT_GATEWAY {kind!r}")
