import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from extensions import db
from models.crm import Lead, LeadActivity
from models.email import Email, EmailTemplate
from models.pipeline import (
    Pipeline,
    PipelineExecution,
    StepExecution,
    ExecutionStatus,
    StepExecutionStatus,
)

logger = logging.getLogger(__name__)


class PipelineStore:
    """
    Persistence operations used by the execution engine.

    Every write commits before returning: a queued task may fire as soon as
    it is enqueued, so the rows it depends on must already be durable.
    """

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # --- Pipelines ---
    def get_pipeline(self, pipeline_id):
        return (
            self.session.query(Pipeline)
            .options(selectinload(Pipeline.steps))
            .filter(Pipeline.id == pipeline_id)
            .first()
        )

    # --- Executions ---
    def create_execution(self, pipeline_id, lead_id):
        execution = PipelineExecution(
            pipeline_id=pipeline_id,
            lead_id=lead_id,
            status=ExecutionStatus.RUNNING,
            started_at=datetime.utcnow()
        )
        self.session.add(execution)
        self.session.commit()
        return execution

    def get_execution_with_context(self, execution_id):
        return (
            self.session.query(PipelineExecution)
            .options(selectinload(PipelineExecution.pipeline).selectinload(Pipeline.steps))
            .filter(PipelineExecution.id == execution_id)
            .first()
        )

    def update_execution_status(self, execution_id, status, completed_at=None,
                                expected_status=ExecutionStatus.RUNNING):
        """
        Move an execution to ``status`` only if it is still in
        ``expected_status``. Returns False when another writer got there first.
        """
        result = self.session.execute(
            update(PipelineExecution)
            .where(
                PipelineExecution.id == execution_id,
                PipelineExecution.status == expected_status
            )
            .values(status=status, completed_at=completed_at)
        )
        self.session.commit()
        return result.rowcount == 1

    # --- Step executions ---
    def create_step_execution(self, execution_id, step, step_index, scheduled_at):
        """
        Insert the scheduling record for one step. Returns None if a record for
        the same (execution, step_index) already exists.
        """
        step_execution = StepExecution(
            pipeline_execution_id=execution_id,
            step_id=step.id,
            step_index=step_index,
            status=StepExecutionStatus.SCHEDULED,
            scheduled_at=scheduled_at,
            step_type=step.step_type,
            template_id=step.template_id,
            delay_hours=step.delay_hours
        )
        self.session.add(step_execution)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.warning(
                "Step %s of execution %s is already scheduled, ignoring duplicate advance",
                step_index, execution_id
            )
            return None
        return step_execution

    def get_step_execution(self, step_execution_id):
        return self.session.get(StepExecution, step_execution_id)

    def claim_step_execution(self, step_execution_id):
        """
        Atomically move a step execution from SCHEDULED to EXECUTING.
        Returns the claimed row, or None if it is missing or already claimed.
        """
        result = self.session.execute(
            update(StepExecution)
            .where(
                StepExecution.id == step_execution_id,
                StepExecution.status == StepExecutionStatus.SCHEDULED
            )
            .values(status=StepExecutionStatus.EXECUTING)
        )
        self.session.commit()
        if result.rowcount != 1:
            return None
        return self.session.get(StepExecution, step_execution_id)

    def update_step_execution(self, step_execution, **fields):
        for key, value in fields.items():
            setattr(step_execution, key, value)
        self.session.commit()
        return step_execution

    def pending_step_executions(self, execution_id):
        return (
            self.session.query(StepExecution)
            .filter_by(pipeline_execution_id=execution_id, status=StepExecutionStatus.SCHEDULED)
            .all()
        )

    # --- Leads, templates, delivery records ---
    def get_lead(self, lead_id):
        return self.session.get(Lead, lead_id)

    def get_template(self, template_id):
        return self.session.get(EmailTemplate, template_id)

    def record_email(self, **fields):
        email = Email(**fields)
        self.session.add(email)
        self.session.commit()
        return email

    def record_activity(self, lead_id, activity_type, description, details=None):
        if self.get_lead(lead_id) is None:
            return None
        activity = LeadActivity(
            lead_id=lead_id,
            activity_type=activity_type,
            description=description,
            details=details or {}
        )
        self.session.add(activity)
        self.session.commit()
        return activity
