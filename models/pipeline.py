from extensions import db
from datetime import datetime
import uuid


class StepType:
    EMAIL = 'EMAIL'
    DELAY = 'DELAY'

    ALL = (EMAIL, DELAY)


class ExecutionStatus:
    RUNNING = 'RUNNING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    CANCELLED = 'CANCELLED'

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class StepExecutionStatus:
    SCHEDULED = 'SCHEDULED'
    EXECUTING = 'EXECUTING'
    EXECUTED = 'EXECUTED'
    FAILED = 'FAILED'
    SKIPPED = 'SKIPPED'


class Pipeline(db.Model):
    __tablename__ = 'pipelines'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = db.Column(db.String(36), db.ForeignKey('companies.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    steps = db.relationship('PipelineStep', backref='pipeline', cascade="all, delete-orphan", order_by='PipelineStep.order')
    executions = db.relationship('PipelineExecution', backref='pipeline', cascade="all, delete-orphan")


class PipelineStep(db.Model):
    __tablename__ = 'pipeline_steps'
    __table_args__ = (db.UniqueConstraint('pipeline_id', 'order', name='uq_pipeline_step_order'),)

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pipeline_id = db.Column(db.String(36), db.ForeignKey('pipelines.id'), nullable=False, index=True)
    order = db.Column(db.Integer, nullable=False)
    delay_hours = db.Column(db.Float, default=0, nullable=False)
    step_type = db.Column(db.String(20), default=StepType.EMAIL, nullable=False)
    template_id = db.Column(db.String(36), db.ForeignKey('email_templates.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    template = db.relationship('EmailTemplate')


class PipelineExecution(db.Model):
    __tablename__ = 'pipeline_executions'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pipeline_id = db.Column(db.String(36), db.ForeignKey('pipelines.id'), nullable=False, index=True)
    # Not a foreign key: leads are resolved when a step fires, not when the run starts
    lead_id = db.Column(db.String(36), nullable=False, index=True)
    status = db.Column(db.String(20), default=ExecutionStatus.RUNNING, nullable=False)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)

    lead = db.relationship('Lead', primaryjoin='foreign(PipelineExecution.lead_id) == Lead.id', viewonly=True)
    step_executions = db.relationship(
        'StepExecution', backref='pipeline_execution', cascade="all, delete-orphan",
        order_by='StepExecution.step_index'
    )

    @property
    def is_terminal(self):
        return self.status in ExecutionStatus.TERMINAL


class StepExecution(db.Model):
    __tablename__ = 'step_executions'
    __table_args__ = (
        db.UniqueConstraint('pipeline_execution_id', 'step_index', name='uq_step_execution_index'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pipeline_execution_id = db.Column(db.String(36), db.ForeignKey('pipeline_executions.id'), nullable=False, index=True)
    step_id = db.Column(db.String(36), nullable=False)
    step_index = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default=StepExecutionStatus.SCHEDULED, nullable=False)
    scheduled_at = db.Column(db.DateTime)
    executed_at = db.Column(db.DateTime)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    result = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Step content captured when the step was scheduled
    step_type = db.Column(db.String(20), nullable=False)
    template_id = db.Column(db.String(36))
    delay_hours = db.Column(db.Float, nullable=False)
