"""Per-session state and the app-wide collaborators.

A ``SessionContext`` is built for each request (or worker job) from the
session user id; nothing about a user lives in module globals.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass

import redis
from flask import current_app

from . import db
from .export import LoggingSheetExporter, SheetExporter
from .ledger import CreditLedger
from .logs import ErrorLog
from .ocr import HttpOcrClient, OcrClient
from .payments.gateway import PaymentGateway, build_gateway
from .payments.scheduler import PollScheduler
from .structured import AnthropicExtractor, StructuredExtractor


def new_user_id() -> str:
    return "user_" + uuid.uuid4().hex[:9]


@dataclass
class SessionContext:
    user_id: str
    ledger: CreditLedger
    error_log: ErrorLog

    @classmethod
    def open(cls, user_id, config):
        return cls(
            user_id=user_id,
            ledger=CreditLedger(db.session, free_credits=config.get("FREE_CREDITS", 5)),
            error_log=ErrorLog(db.session, limit=config.get("ERROR_LOG_LIMIT", 50)),
        )

    @property
    def session(self):
        return self.ledger.session

    def log(self, error, context="", severity="error"):
        return self.error_log.record(self.user_id, error, context, severity)


@dataclass
class Collaborators:
    gateway: PaymentGateway
    ocr_client: OcrClient
    extractor: StructuredExtractor
    exporter: SheetExporter
    scheduler: PollScheduler

    @classmethod
    def from_config(cls, config, gateway=None, ocr_client=None, extractor=None, exporter=None, redis_conn=None):
        if redis_conn is None:
            redis_conn = redis.Redis.from_url(config["REDIS_URL"])
        return cls(
            gateway=gateway or build_gateway(config),
            ocr_client=ocr_client or HttpOcrClient(config["OCR_SERVICE_URL"], timeout=config["OCR_TIMEOUT"]),
            extractor=extractor
            or AnthropicExtractor(
                api_key=config["ANTHROPIC_API_KEY"],
                model=config["EXTRACTION_MODEL"],
                max_tokens=config["EXTRACTION_MAX_TOKENS"],
            ),
            exporter=exporter or LoggingSheetExporter(),
            scheduler=PollScheduler(redis_conn, queue_name=config["PAYMENT_POLL_QUEUE"]),
        )


def get_collaborators() -> Collaborators:
    return current_app.extensions["invoicer"]
