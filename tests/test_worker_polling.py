import json

import pytest

from invoicer.context import SessionContext
from invoicer.payments import PaymentWorkflow, PollScheduler, SimulatedGateway, WorkflowState
from services.worker.worker import process_poll


class ExplodingGateway(SimulatedGateway):
    def check_status(self, checkout_id):
        raise RuntimeError('boom')


@pytest.fixture
def scheduler(fake_redis):
    return PollScheduler(fake_redis, queue_name='polls', clock=lambda: 1000.0)


def _pending_job(ctx, gateway, app):
    workflow = PaymentWorkflow(ctx, gateway, app.config)
    workflow.start('254712345678', 50)
    return {'checkout_id': workflow.request.checkout_id, 'user_id': ctx.user_id}


def test_pending_poll_is_rescheduled(ctx, app, fake_redis, scheduler):
    gateway = SimulatedGateway(succeed_after=3)
    job = _pending_job(ctx, gateway, app)

    assert process_poll(job, fake_redis, scheduler, gateway, app.config) is WorkflowState.AWAITING_CONFIRMATION
    assert scheduler.claim_due() == [job]


def test_terminal_poll_is_dropped_and_credits_granted(ctx, app, fake_redis, scheduler):
    gateway = SimulatedGateway(succeed_after=1)
    job = _pending_job(ctx, gateway, app)

    assert process_poll(job, fake_redis, scheduler, gateway, app.config) is WorkflowState.SUCCEEDED
    assert scheduler.claim_due() == []
    assert ctx.ledger.get_balance(ctx.user_id) == 10


def test_worker_drains_queue_until_success(ctx, app, fake_redis, scheduler):
    gateway = SimulatedGateway(succeed_after=3)
    scheduler.schedule(_pending_job(ctx, gateway, app))

    outcomes = []
    while True:
        jobs = scheduler.claim_due()
        if not jobs:
            break
        for job in jobs:
            outcomes.append(process_poll(job, fake_redis, scheduler, gateway, app.config))
    assert outcomes[-1] is WorkflowState.SUCCEEDED
    assert len(outcomes) == 3
    assert ctx.ledger.get_balance(ctx.user_id) == 10


def test_claimed_job_goes_to_one_worker(scheduler):
    job = {'checkout_id': 'ws_CO_1', 'user_id': 'user_x'}
    scheduler.schedule(job)
    assert scheduler.claim_due() == [job]
    assert scheduler.claim_due() == []


def test_future_jobs_are_not_due(scheduler):
    scheduler.schedule({'checkout_id': 'ws_CO_2', 'user_id': 'user_x'}, delay=10)
    assert scheduler.claim_due() == []


def test_unknown_checkout_is_dropped(ctx, app, fake_redis, scheduler):
    job = {'checkout_id': 'ws_CO_gone', 'user_id': ctx.user_id}
    assert process_poll(job, fake_redis, scheduler, SimulatedGateway(), app.config) is None
    assert scheduler.claim_due() == []


def test_retry_and_dead_letter(ctx, app, fake_redis, scheduler):
    gateway = ExplodingGateway()
    job = _pending_job(ctx, gateway, app)

    with pytest.raises(RuntimeError):
        process_poll(job, fake_redis, scheduler, gateway, app.config, max_retries=2, dead_letter_queue='dead')
    assert scheduler.claim_due() == [job]
    assert fake_redis.get(f"retries:{job['checkout_id']}") == '1'

    with pytest.raises(RuntimeError):
        process_poll(job, fake_redis, scheduler, gateway, app.config, max_retries=2, dead_letter_queue='dead')
    assert scheduler.claim_due() == []
    assert json.loads(fake_redis.queues['dead'][0]) == job
    assert fake_redis.get(f"retries:{job['checkout_id']}") is None

    payment = PaymentWorkflow.resume(ctx, gateway, job['checkout_id'], app.config).request
    assert payment.status == 'failed'
    assert payment.result_desc == 'Payment status could not be confirmed. Please try again.'
    assert ctx.ledger.get_balance(ctx.user_id) == 5
    entry = ctx.error_log.recent(ctx.user_id)[0]
    assert entry.context == 'Payment status polling'
    assert entry.severity == 'error'
