"""Tenant-scoped CRUD over pipeline definitions and read views over their runs."""
import math

from extensions import db
from models.email import EmailTemplate
from models.pipeline import Pipeline, PipelineStep, PipelineExecution, ExecutionStatus, StepType
from services.errors import NotFound, ValidationError

RECENT_EXECUTIONS_LIMIT = 10
EXECUTION_STATUSES = (ExecutionStatus.RUNNING,) + ExecutionStatus.TERMINAL
# Ten years; keeps every scheduled run date representable
MAX_DELAY_HOURS = 24 * 365 * 10


def _field(data, camel, snake, default=None):
    if camel in data:
        return data[camel]
    return data.get(snake, default)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_steps(company_id, raw_steps):
    if not isinstance(raw_steps, list):
        raise ValidationError("steps must be a list")

    steps = []
    seen_orders = set()
    for position, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            raise ValidationError(f"Step {position + 1} must be an object")

        order = raw.get('order', position)
        if not isinstance(order, int) or isinstance(order, bool):
            raise ValidationError(f"Step {position + 1}: order must be an integer")
        if order in seen_orders:
            raise ValidationError(f"Step {position + 1}: order {order} is used by another step")
        seen_orders.add(order)

        delay_hours = _field(raw, 'delayHours', 'delay_hours', 0)
        if not _is_number(delay_hours) or not math.isfinite(delay_hours) or delay_hours < 0:
            raise ValidationError(f"Step {position + 1}: delayHours must be a non-negative number")
        if delay_hours > MAX_DELAY_HOURS:
            raise ValidationError(f"Step {position + 1}: delayHours must be at most {MAX_DELAY_HOURS}")

        step_type = str(_field(raw, 'type', 'step_type', StepType.EMAIL)).upper()
        if step_type not in StepType.ALL:
            raise ValidationError(f"Step {position + 1}: type must be one of {', '.join(StepType.ALL)}")

        template_id = _field(raw, 'templateId', 'template_id')
        if step_type == StepType.EMAIL:
            if not template_id:
                raise ValidationError(f"Step {position + 1}: templateId is required for EMAIL steps")
            template = EmailTemplate.query.filter_by(id=template_id, company_id=company_id).first()
            if not template:
                raise ValidationError(f"Step {position + 1}: email template {template_id} not found")

        steps.append(PipelineStep(
            order=order,
            delay_hours=float(delay_hours),
            step_type=step_type,
            template_id=template_id
        ))
    return steps


def _apply_fields(pipeline, data):
    if 'name' in data:
        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required")
        pipeline.name = name.strip()
    if 'description' in data:
        pipeline.description = data.get('description')
    is_active = _field(data, 'isActive', 'is_active')
    if is_active is not None:
        if not isinstance(is_active, bool):
            raise ValidationError("isActive must be a boolean")
        pipeline.is_active = is_active


# --- Pipelines ---
def create_pipeline(company_id, data):
    if not isinstance(data.get('name'), str) or not data['name'].strip():
        raise ValidationError("name is required")

    pipeline = Pipeline(company_id=company_id, is_active=True)
    _apply_fields(pipeline, data)
    pipeline.steps = _parse_steps(company_id, data.get('steps', []))

    db.session.add(pipeline)
    db.session.commit()
    return pipeline


def list_pipelines(company_id):
    return Pipeline.query.filter_by(company_id=company_id).order_by(Pipeline.created_at.desc()).all()


def get_pipeline(company_id, pipeline_id):
    pipeline = Pipeline.query.filter_by(id=pipeline_id, company_id=company_id).first()
    if not pipeline:
        raise NotFound("Pipeline not found")
    return pipeline


def recent_executions(pipeline, limit=RECENT_EXECUTIONS_LIMIT):
    return (
        PipelineExecution.query
        .filter_by(pipeline_id=pipeline.id)
        .order_by(PipelineExecution.started_at.desc())
        .limit(limit)
        .all()
    )


def update_pipeline(company_id, pipeline_id, data):
    """
    Updates name, description and isActive. A ``steps`` list replaces the
    pipeline's steps; runs already in flight pick up the new list on their
    next advance.
    """
    pipeline = get_pipeline(company_id, pipeline_id)
    _apply_fields(pipeline, data)

    if 'steps' in data:
        new_steps = _parse_steps(company_id, data['steps'])
        pipeline.steps = []
        # Old rows must be gone before new ones reuse their order values
        db.session.flush()
        pipeline.steps = new_steps

    db.session.commit()
    return pipeline


def delete_pipeline(company_id, pipeline_id):
    pipeline = get_pipeline(company_id, pipeline_id)
    db.session.delete(pipeline)
    db.session.commit()
    return {"message": "Pipeline deleted successfully"}


# --- Executions ---
def list_executions(company_id, pipeline_id, status=None):
    pipeline = get_pipeline(company_id, pipeline_id)
    query = PipelineExecution.query.filter_by(pipeline_id=pipeline.id)
    if status:
        status = status.upper()
        if status not in EXECUTION_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(EXECUTION_STATUSES)}")
        query = query.filter_by(status=status)
    return query.order_by(PipelineExecution.started_at.desc()).all()


def get_execution(company_id, execution_id):
    execution = (
        PipelineExecution.query
        .join(Pipeline, Pipeline.id == PipelineExecution.pipeline_id)
        .filter(PipelineExecution.id == execution_id, Pipeline.company_id == company_id)
        .first()
    )
    if not execution:
        raise NotFound("Execution not found")
    return execution
