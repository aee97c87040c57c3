from celery import Celery
from .config import settings
import logging

logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

celery_app = Celery(
    "examproctor_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        'examproctor.tasks.maintenance',
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    task_soft_time_limit=120,
    task_time_limit=300,

    result_expires=3600,
    broker_connection_retry_on_startup=True,

    task_default_retry_delay=30,
    task_max_retries=3,

    beat_schedule={
        'auto-submit-expired-sessions': {
            'task': 'examproctor.tasks.maintenance.auto_submit_expired_sessions',
            'schedule': settings.expired_session_sweep_seconds,
        },
    },
)

if __name__ == '__main__':
    celery_app.start()
