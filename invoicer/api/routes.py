from flask import Blueprint, current_app, jsonify, request, session

from ..context import SessionContext, get_collaborators, new_user_id
from ..errors import InvoicerError, ValidationError
from ..export import export_invoice
from ..ledger import entry_to_dict
from ..logs import entry_to_dict as log_entry_to_dict
from ..payments.workflow import PaymentWorkflow, payment_to_dict
from ..pipeline import ExtractionPipeline

api_bp = Blueprint("api", __name__)


def _success(data=None, message=None, status=200):
    payload = {"success": True}
    if data is not None:
        payload["data"] = data
    if message:
        payload["message"] = message
    return jsonify(payload), status


def _error(message, status=400, errors=None):
    payload = {"success": False, "message": message}
    if errors:
        payload["errors"] = errors
    return jsonify(payload), status


def _context():
    return SessionContext.open(session["user_id"], current_app.config)


def _poll_job(ctx, checkout_id):
    return {"checkout_id": checkout_id, "user_id": ctx.user_id}


@api_bp.before_request
def ensure_session_user():
    if "user_id" not in session:
        session["user_id"] = new_user_id()
        session.permanent = True


@api_bp.errorhandler(InvoicerError)
def handle_invoicer_error(exc):
    if not exc.logged:
        _context().log(exc, request.endpoint or "", "warning")
    return _error(exc.message, status=exc.status_code)


@api_bp.get("/health")
def health():
    return jsonify({"status": "ok"})


# --- Credits ---

@api_bp.get("/credits")
def credits_summary():
    ctx = _context()
    return _success({
        "user_id": ctx.user_id,
        "balance": ctx.ledger.get_balance(ctx.user_id),
        "credit_price": current_app.config["CREDIT_PRICE"],
        "free_credits": current_app.config["FREE_CREDITS"],
    })


@api_bp.get("/credits/history")
def credits_history():
    ctx = _context()
    limit = request.args.get("limit", default=30, type=int)
    return _success([entry_to_dict(e) for e in ctx.ledger.history(ctx.user_id, limit=limit)])


# --- Payments ---

@api_bp.post("/payments")
def payments_start():
    ctx = _context()
    data = request.get_json(silent=True) or {}
    collaborators = get_collaborators()
    workflow = PaymentWorkflow(ctx, collaborators.gateway, current_app.config)
    payment = workflow.start(data.get("phone_number"), data.get("amount", 50))
    collaborators.scheduler.schedule(_poll_job(ctx, payment.checkout_id))
    return _success(
        payment_to_dict(payment, workflow.max_attempts),
        message="Payment request sent to your phone. Please complete the payment.",
        status=202,
    )


@api_bp.get("/payments/<checkout_id>")
def payments_get(checkout_id):
    ctx = _context()
    workflow = PaymentWorkflow.resume(ctx, get_collaborators().gateway, checkout_id, current_app.config)
    return _success(payment_to_dict(workflow.request, workflow.max_attempts))


@api_bp.post("/payments/<checkout_id>/abandon")
def payments_abandon(checkout_id):
    ctx = _context()
    collaborators = get_collaborators()
    workflow = PaymentWorkflow.resume(ctx, collaborators.gateway, checkout_id, current_app.config)
    workflow.abandon()
    collaborators.scheduler.cancel(_poll_job(ctx, checkout_id))
    return _success(payment_to_dict(workflow.request, workflow.max_attempts))


# --- Invoices ---

@api_bp.post("/invoices")
def invoices_submit():
    f = request.files.get("file")
    if not f:
        return _error("No file uploaded", status=400)
    ctx = _context()
    collaborators = get_collaborators()
    pipeline = ExtractionPipeline(ctx.ledger, ctx.error_log, collaborators.ocr_client, collaborators.extractor)
    record = pipeline.submit(f.read(), f.mimetype, ctx.user_id, filename=f.filename or "invoice")
    data = record.to_dict()
    data["balance"] = ctx.ledger.get_balance(ctx.user_id)
    return _success(data)


@api_bp.post("/invoices/export")
def invoices_export():
    ctx = _context()
    data = request.get_json(silent=True) or {}
    if "fields" not in data:
        raise ValidationError("fields are required")
    row = export_invoice(get_collaborators().exporter, data.get("sheet_url"), data["fields"])
    ctx.log("Invoice successfully processed and sent to Google Sheets", "processing_success", "info")
    return _success({"row": row}, message="Data successfully sent to Google Sheets!")


# --- Error log ---

@api_bp.get("/logs")
def logs_list():
    ctx = _context()
    return _success([log_entry_to_dict(e) for e in ctx.error_log.recent(ctx.user_id)])
