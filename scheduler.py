"""
Delayed task queue backed by APScheduler.

Jobs are one-shot ``date`` triggers persisted in a SQLAlchemy job store, so a
scheduled continuation survives process restarts and redeploys. The queue is
a Flask extension: ``init_app`` binds it to an application, ``start`` and
``shutdown`` are called by the process that owns it.
"""
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


def run_task(task_name, payload):
    """
    Job entry point. Persisted jobs reference this function by name, so it
    must stay importable as ``scheduler:run_task``.
    """
    from extensions import task_queue
    task_queue.dispatch(task_name, payload)


class TaskQueue:
    def __init__(self, app=None):
        self.app = None
        self.scheduler = None
        self._handlers = {}
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        jobstore_url = app.config.get("SCHEDULER_JOBSTORE_URL")
        if jobstore_url:
            jobstore = SQLAlchemyJobStore(url=jobstore_url, tablename="scheduled_tasks")
        else:
            jobstore = MemoryJobStore()

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        self.app = app
        self._handlers = {}
        self.scheduler = BackgroundScheduler(
            jobstores={"default": jobstore},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
            timezone=app.config.get("SCHEDULER_TIMEZONE", "UTC"),
        )
        app.extensions["task_queue"] = self

    def register(self, task_name, handler):
        self._handlers[task_name] = handler

    def enqueue(self, task_name, payload, delay_ms=0, job_id=None):
        """
        Schedule ``task_name`` to fire ``delay_ms`` milliseconds from now.
        Re-enqueueing with the same ``job_id`` replaces the pending job.
        """
        run_date = datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms)
        job = self.scheduler.add_job(
            run_task,
            trigger="date",
            run_date=run_date,
            args=[task_name, dict(payload)],
            id=job_id,
            name=task_name,
            replace_existing=job_id is not None,
        )
        logger.debug("Enqueued %s as job %s, due %s", task_name, job.id, run_date.isoformat())
        return job.id

    def cancel(self, job_id):
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("Removed queued job %s", job_id)
        return True

    def jobs(self):
        return self.scheduler.get_jobs()

    def dispatch(self, task_name, payload):
        handler = self._handlers.get(task_name)
        if handler is None:
            logger.error("No handler registered for task %s, dropping payload %s", task_name, payload)
            return
        with self.app.app_context():
            handler(payload)

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Task queue started")

    def shutdown(self, wait=False):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Task queue stopped")
