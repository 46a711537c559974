from .company import Company
from .crm import Lead, LeadActivity, LeadStatus, ActivityType
from .email import EmailTemplate, Email, EmailStatus
from .pipeline import (
    Pipeline,
    PipelineStep,
    PipelineExecution,
    StepExecution,
    StepType,
    ExecutionStatus,
    StepExecutionStatus,
)

# Ensure all models are imported here so SQLAlchemy knows about them
