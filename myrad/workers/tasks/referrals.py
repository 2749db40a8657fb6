from __future__ import annotations

from myrad.core.config import get_settings
from myrad.db.session import Store
from myrad.referrals.reconciliation import run_referral_reconciliation
from myrad.workers.asyncio_runner import run_async_job
from myrad.workers.celery_app import celery_app

RECONCILE_TASK_NAME = "myrad.referrals.reconcile"


async def run_referral_reconciliation_async(store: Store) -> dict[str, int]:
    return await run_referral_reconciliation(store, settings=get_settings())


@celery_app.task(name=RECONCILE_TASK_NAME)
def reconcile_referrals() -> dict[str, int]:
    return run_async_job(run_referral_reconciliation_async)


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "referral-reconciliation": {
            "task": RECONCILE_TASK_NAME,
            "schedule": get_settings().referral_reconcile_interval_seconds,
            "options": {"queue": "q_normal"},
        },
    }
)
