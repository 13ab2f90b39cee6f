from dotenv import find_dotenv, load_dotenv
load_dotenv(find_dotenv(usecwd=True))

from celery import Celery
from celery.signals import after_setup_logger
import os
from utils.logging_config import init_worker_logging

CELERY_BROKER_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery_app = Celery(
    "study_assistant",
    broker=CELERY_BROKER_URL,
    backend=CELERY_BROKER_URL,
    include=["tasks.processing"]
)

celery_app.conf.update(
    task_always_eager=os.getenv("CELERY_TASK_ALWAYS_EAGER", "0") == "1",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@after_setup_logger.connect
def _setup_worker_logging(logger=None, **kwargs):
    init_worker_logging()
