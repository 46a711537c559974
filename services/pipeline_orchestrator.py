"""
Execution orchestrator.

Each PipelineExecution advances as a chain: scheduling step N enqueues one
delayed ``execute-step`` task, and only that task's handler advances the
execution to step N+1. Nothing is held in memory between steps; the
StepExecution row and the queued job are the whole state.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app

from models.crm import ActivityType
from models.pipeline import ExecutionStatus, StepExecutionStatus
from services.errors import NotFound, NotFoundOrInactive
from services.pipeline_store import PipelineStore

logger = logging.getLogger(__name__)

EXECUTE_STEP_TASK = 'execute-step'
MS_PER_HOUR = 60 * 60 * 1000


def hours_to_ms(hours):
    return int(round(hours * MS_PER_HOUR))


def step_job_id(step_execution_id, attempt=0):
    if attempt:
        return f"{EXECUTE_STEP_TASK}:{step_execution_id}:{attempt}"
    return f"{EXECUTE_STEP_TASK}:{step_execution_id}"


def step_payload(step_execution):
    return {
        "stepExecutionId": step_execution.id,
        "executionId": step_execution.pipeline_execution_id,
        "stepIndex": step_execution.step_index,
    }


class PipelineOrchestrator:
    def __init__(self, store, queue, max_attempts=3, retry_backoff_seconds=300):
        self.store = store
        self.queue = queue
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds

    # 1. Start
    def start(self, pipeline_id, lead_ids, company_id=None):
        """
        Create one RUNNING execution per lead and schedule its first step.

        The pipeline is checked once for the whole batch. After that each lead
        is independent: an error scheduling one lead is logged and the rest of
        the batch still runs.
        """
        pipeline = self.store.get_pipeline(pipeline_id)
        if pipeline is None or not pipeline.is_active:
            raise NotFoundOrInactive()
        if company_id is not None and pipeline.company_id != company_id:
            raise NotFoundOrInactive()

        pipeline_name = pipeline.name
        executions = []
        for lead_id in lead_ids:
            try:
                execution = self.store.create_execution(pipeline_id, lead_id)
            except Exception:
                self.store.session.rollback()
                logger.exception("Could not create execution of pipeline %s for lead %s", pipeline_id, lead_id)
                continue
            executions.append(execution)

            try:
                self.store.record_activity(
                    lead_id, ActivityType.PIPELINE_STARTED,
                    f"Pipeline '{pipeline_name}' started",
                    {"pipelineId": pipeline_id, "executionId": execution.id}
                )
                self.advance(execution.id, 0)
            except Exception:
                self.store.session.rollback()
                logger.exception("Could not schedule first step of execution %s (lead %s)", execution.id, lead_id)

        logger.info("Pipeline %s started for %d leads", pipeline_id, len(lead_ids))
        return {
            "message": f"Pipeline started for {len(lead_ids)} leads",
            "executions": executions,
        }

    # 2. Advance
    def advance(self, execution_id, step_index):
        """
        Schedule ``step_index`` of an execution, or complete it when there are
        no steps left. Returns the new StepExecution, or None.
        """
        execution = self.store.get_execution_with_context(execution_id)
        if execution is None:
            logger.warning("Execution %s not found, dropping advance to step %s", execution_id, step_index)
            return None
        if execution.status != ExecutionStatus.RUNNING:
            logger.info("Execution %s is %s, not advancing to step %s", execution_id, execution.status, step_index)
            return None

        steps = execution.pipeline.steps
        if step_index >= len(steps):
            self._complete(execution)
            return None

        step = steps[step_index]
        delay_ms = hours_to_ms(step.delay_hours)
        scheduled_at = datetime.utcnow() + timedelta(milliseconds=delay_ms)

        step_execution = self.store.create_step_execution(execution_id, step, step_index, scheduled_at)
        if step_execution is None:
            return None

        self.queue.enqueue(
            EXECUTE_STEP_TASK,
            step_payload(step_execution),
            delay_ms=delay_ms,
            job_id=step_job_id(step_execution.id)
        )
        logger.info(
            "Scheduled step %s of execution %s for %s",
            step_index, execution_id, scheduled_at.isoformat()
        )
        return step_execution

    def _complete(self, execution):
        execution_id, lead_id = execution.id, execution.lead_id
        if not self.store.update_execution_status(execution_id, ExecutionStatus.COMPLETED, completed_at=datetime.utcnow()):
            return
        self.store.record_activity(
            lead_id, ActivityType.PIPELINE_COMPLETED,
            "Pipeline completed",
            {"pipelineId": execution.pipeline_id, "executionId": execution_id}
        )
        logger.info("Execution %s completed", execution_id)

    # 3. Step outcomes
    def record_step_success(self, step_execution, result=None):
        execution_id = step_execution.pipeline_execution_id
        next_index = step_execution.step_index + 1
        self.store.update_step_execution(
            step_execution,
            status=StepExecutionStatus.EXECUTED,
            executed_at=datetime.utcnow(),
            attempts=step_execution.attempts + 1,
            result=result or {}
        )
        return self.advance(execution_id, next_index)

    def record_step_failure(self, step_execution, error, retry=True):
        """
        Retry the step with exponential backoff, or fail the whole execution
        once ``max_attempts`` is reached or the error is not retryable.
        Returns True if the execution failed.
        """
        attempts = step_execution.attempts + 1
        execution_id = step_execution.pipeline_execution_id
        now = datetime.utcnow()

        if retry and attempts < self.max_attempts:
            delay_seconds = self.retry_backoff_seconds * (2 ** (attempts - 1))
            self.store.update_step_execution(
                step_execution,
                status=StepExecutionStatus.SCHEDULED,
                attempts=attempts,
                scheduled_at=now + timedelta(seconds=delay_seconds),
                result={"error": str(error)}
            )
            self.queue.enqueue(
                EXECUTE_STEP_TASK,
                step_payload(step_execution),
                delay_ms=delay_seconds * 1000,
                job_id=step_job_id(step_execution.id, attempts)
            )
            logger.warning(
                "Step %s of execution %s failed (attempt %d/%d), retrying in %ss: %s",
                step_execution.step_index, execution_id, attempts, self.max_attempts, delay_seconds, error
            )
            return False

        self.store.update_step_execution(
            step_execution,
            status=StepExecutionStatus.FAILED,
            attempts=attempts,
            executed_at=now,
            result={"error": str(error)}
        )
        logger.error(
            "Step %s of execution %s failed after %d attempts: %s",
            step_execution.step_index, execution_id, attempts, error
        )
        self.fail_execution(execution_id, step_execution.step_index, error)
        return True

    def fail_execution(self, execution_id, step_index, error):
        """Mark a RUNNING execution FAILED. Returns False if it had already ended."""
        execution = self.store.get_execution_with_context(execution_id)
        if execution is None:
            return False
        if not self.store.update_execution_status(execution_id, ExecutionStatus.FAILED, completed_at=datetime.utcnow()):
            return False
        self.store.record_activity(
            execution.lead_id, ActivityType.PIPELINE_FAILED,
            f"Pipeline failed at step {step_index + 1}",
            {"pipelineId": execution.pipeline_id, "executionId": execution_id, "error": str(error)}
        )
        logger.error("Execution %s marked FAILED at step %s", execution_id, step_index)
        return True

    # 4. Cancel
    def cancel(self, execution_id, company_id=None, reason=None):
        execution = self.store.get_execution_with_context(execution_id)
        if execution is None:
            raise NotFound("Execution not found")
        if company_id is not None and execution.pipeline.company_id != company_id:
            raise NotFound("Execution not found")
        if execution.status != ExecutionStatus.RUNNING:
            return execution

        if not self.store.update_execution_status(execution_id, ExecutionStatus.CANCELLED, completed_at=datetime.utcnow()):
            return self.store.get_execution_with_context(execution_id)

        for pending in self.store.pending_step_executions(execution_id):
            self.queue.cancel(step_job_id(pending.id, pending.attempts))
            self.store.update_step_execution(
                pending,
                status=StepExecutionStatus.SKIPPED,
                result={"reason": reason or "cancelled"}
            )

        self.store.record_activity(
            execution.lead_id, ActivityType.PIPELINE_CANCELLED,
            "Pipeline cancelled",
            {"pipelineId": execution.pipeline_id, "executionId": execution_id, "reason": reason}
        )
        logger.info("Execution %s cancelled (%s)", execution_id, reason or "no reason given")
        return self.store.get_execution_with_context(execution_id)


def get_orchestrator():
    """Orchestrator wired to the current app's session, task queue and retry policy."""
    return PipelineOrchestrator(
        store=PipelineStore(),
        queue=current_app.extensions['task_queue'],
        max_attempts=current_app.config.get('PIPELINE_MAX_ATTEMPTS', 3),
        retry_backoff_seconds=current_app.config.get('PIPELINE_RETRY_BACKOFF_SECONDS', 300)
    )
