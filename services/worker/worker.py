import os
import json
import time
import logging

from invoicer.context import SessionContext
from invoicer.errors import PaymentNotFoundError
from invoicer.payments import PaymentWorkflow, WorkflowState

logger = logging.getLogger(__name__)

DEAD_LETTER_QUEUE = os.getenv("PAYMENT_DEAD_LETTER_QUEUE", "payments:dead")
MAX_RETRIES = int(os.getenv("PAYMENT_POLL_RETRIES", "3"))
IDLE_SLEEP = float(os.getenv("PAYMENT_WORKER_IDLE_SLEEP", "1"))


def process_poll(
    job: dict,
    redis_conn,
    scheduler,
    gateway,
    config,
    max_retries: int = MAX_RETRIES,
    dead_letter_queue: str = DEAD_LETTER_QUEUE,
):
    """Run one status poll for a checkout and requeue it while it is pending.

    Parameters
    ----------
    job: dict
        ``{"checkout_id": ..., "user_id": ...}`` as scheduled by the API.
    redis_conn: object
        Redis-like connection used for the retry counter and dead letters.
    scheduler: PollScheduler
        Queue the job is put back on when another poll is due.
    gateway: PaymentGateway
        Gateway the checkout was initiated with.
    config: mapping
        Flask config, read for the poll interval and attempt cap.

    Returns the workflow state after the poll, or ``None`` when the checkout
    no longer exists. Unexpected errors are retried after the poll interval
    and dead-lettered after ``max_retries`` failures.
    """
    checkout_id = job["checkout_id"]
    retries_key = f"retries:{checkout_id}"
    attempt = int(redis_conn.get(retries_key) or 0)

    try:
        ctx = SessionContext.open(job["user_id"], config)
        workflow = PaymentWorkflow.resume(ctx, gateway, checkout_id, config)
        outcome = workflow.poll()
    except PaymentNotFoundError:
        logger.warning("Dropping poll for unknown checkout %s", checkout_id)
        redis_conn.delete(retries_key)
        return None
    except Exception:
        attempt += 1
        if attempt >= max_retries:
            redis_conn.lpush(dead_letter_queue, json.dumps(job))
            redis_conn.delete(retries_key)
            _give_up(job, gateway, config)
        else:
            redis_conn.set(retries_key, attempt)
            scheduler.schedule(job, _poll_interval(config))
        raise

    redis_conn.delete(retries_key)
    if outcome is WorkflowState.AWAITING_CONFIRMATION:
        scheduler.schedule(job, workflow.poll_interval)
    else:
        logger.info("Checkout %s finished: %s", checkout_id, outcome.value)
    return outcome


def _give_up(job, gateway, config):
    """Mark a dead-lettered checkout as failed so it stops reading as pending."""
    ctx = SessionContext.open(job["user_id"], config)
    ctx.session.rollback()
    try:
        workflow = PaymentWorkflow.resume(ctx, gateway, job["checkout_id"], config)
        workflow.fail("Payment status could not be confirmed. Please try again.")
    except Exception:
        ctx.session.rollback()
        logger.exception("Could not mark checkout %s as failed", job["checkout_id"])


def _poll_interval(config):
    return float(config.get("PAYMENT_POLL_INTERVAL", 10))


def run():
    """Run worker loop draining due polls from Redis."""
    from invoicer import create_app, db
    from invoicer.context import get_collaborators

    app = create_app()
    with app.app_context():
        collaborators = get_collaborators()
        scheduler = collaborators.scheduler
        logger.info("Worker started, polling %s", scheduler.queue_name)
        while True:
            jobs = scheduler.claim_due()
            if not jobs:
                time.sleep(IDLE_SLEEP)
                continue
            for job in jobs:
                try:
                    process_poll(job, scheduler.redis, scheduler, collaborators.gateway, app.config)
                except Exception:
                    logger.exception("Failed to poll checkout %s", job.get("checkout_id"))
                finally:
                    db.session.remove()


if __name__ == "__main__":
    run()
