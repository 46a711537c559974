import logging
from datetime import datetime

from models.crm import ActivityType, LeadStatus
from models.email import EmailStatus
from models.pipeline import ExecutionStatus, StepExecutionStatus, StepType
from services.email_service import lead_variables, replace_variables, send_email
from services.errors import EmailDeliveryError
from services.pipeline_orchestrator import get_orchestrator

logger = logging.getLogger(__name__)


class StepExecutor:
    """
    Handles ``execute-step`` tasks fired by the delayed queue.

    Deliveries are at-least-once, so every run starts by claiming the
    StepExecution (SCHEDULED -> EXECUTING). A delivery that loses the claim
    does nothing.
    """

    def __init__(self, store, orchestrator, send=send_email):
        self.store = store
        self.orchestrator = orchestrator
        self.send = send

    def execute(self, payload):
        step_execution_id = payload.get("stepExecutionId")
        step_execution = self.store.claim_step_execution(step_execution_id)
        if step_execution is None:
            logger.info("Step execution %s is missing or already handled, ignoring delivery", step_execution_id)
            return None

        execution = self.store.get_execution_with_context(step_execution.pipeline_execution_id)
        if execution is None or execution.status != ExecutionStatus.RUNNING:
            status = execution.status if execution else "missing"
            self.store.update_step_execution(
                step_execution,
                status=StepExecutionStatus.SKIPPED,
                result={"reason": f"execution {status.lower()}"}
            )
            logger.info("Skipped step execution %s, execution is %s", step_execution_id, status)
            return step_execution

        pipeline = execution.pipeline
        lead = self.store.get_lead(execution.lead_id)
        reason = None
        if lead is None or lead.company_id != pipeline.company_id:
            reason = "lead not found"
        elif lead.status in LeadStatus.DO_NOT_CONTACT:
            reason = f"lead {lead.status.lower()}"
        if reason:
            self.store.update_step_execution(step_execution, status=StepExecutionStatus.SKIPPED, result={"reason": reason})
            self.orchestrator.cancel(execution.id, reason=reason)
            return step_execution

        try:
            self._perform(step_execution, execution, lead)
        except Exception as e:
            self.store.session.rollback()
            logger.exception("Step execution %s failed unexpectedly", step_execution_id)
            self._recover(step_execution, e)
        return step_execution

    def _recover(self, step_execution, error):
        # Re-read after the rollback to see how far the step got
        step_execution = self.store.get_step_execution(step_execution.id)
        if step_execution.status == StepExecutionStatus.EXECUTING:
            self.orchestrator.record_step_failure(step_execution, error)
        elif step_execution.status == StepExecutionStatus.EXECUTED:
            # Sent and recorded, but the next step could not be scheduled
            self.orchestrator.fail_execution(step_execution.pipeline_execution_id, step_execution.step_index, error)

    def _perform(self, step_execution, execution, lead):
        pipeline = execution.pipeline
        if step_execution.step_type == StepType.DELAY:
            self.orchestrator.record_step_success(step_execution, {"type": StepType.DELAY})
            return

        template = self.store.get_template(step_execution.template_id) if step_execution.template_id else None
        if template is None:
            self.orchestrator.record_step_failure(
                step_execution, f"Email template {step_execution.template_id} not found", retry=False
            )
            return

        variables = lead_variables(lead, pipeline.company)
        subject = replace_variables(template.subject, variables)
        content = replace_variables(template.content, variables)

        try:
            message_id = self.send(lead.email, subject, content)
        except EmailDeliveryError as e:
            self.store.record_email(
                lead_id=lead.id, template_id=template.id, step_execution_id=step_execution.id,
                subject=subject, content=content, status=EmailStatus.FAILED, error=str(e)
            )
            self.orchestrator.record_step_failure(step_execution, e)
            return

        email = self.store.record_email(
            lead_id=lead.id, template_id=template.id, step_execution_id=step_execution.id,
            subject=subject, content=content, status=EmailStatus.SENT,
            message_id=message_id, sent_at=datetime.utcnow()
        )
        self.store.record_activity(
            lead.id, ActivityType.EMAIL_SENT,
            f"Email sent: {subject}",
            {"emailId": email.id, "executionId": execution.id, "stepIndex": step_execution.step_index}
        )
        self.orchestrator.record_step_success(step_execution, {"emailId": email.id, "messageId": message_id})


def execute_step(payload):
    """Task handler registered on the queue for ``execute-step``."""
    orchestrator = get_orchestrator()
    return StepExecutor(orchestrator.store, orchestrator).execute(payload)
