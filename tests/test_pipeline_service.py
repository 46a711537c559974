import pytest

from extensions import db
from models import (
    EmailTemplate,
    ExecutionStatus,
    Pipeline,
    PipelineExecution,
    PipelineStep,
    StepExecution,
    StepType,
)
from services import pipeline_service
from services.errors import NotFound, ValidationError


def _definition(template, **overrides):
    data = {
        "name": "Onboarding",
        "description": "Three touch onboarding",
        "steps": [
            {"order": 1, "delayHours": 0, "type": "EMAIL", "templateId": template.id},
            {"order": 2, "delayHours": 24, "type": "delay"},
            {"order": 3, "delayHours": 48, "type": "EMAIL", "templateId": template.id},
        ],
    }
    data.update(overrides)
    return data


def test_create_pipeline_with_steps(company, template):
    pipeline = pipeline_service.create_pipeline(company.id, _definition(template))

    assert pipeline.company_id == company.id
    assert pipeline.is_active is True
    assert [s.order for s in pipeline.steps] == [1, 2, 3]
    assert [s.step_type for s in pipeline.steps] == [StepType.EMAIL, StepType.DELAY, StepType.EMAIL]
    assert pipeline.steps[1].template_id is None
    assert pipeline.steps[2].delay_hours == 48


def test_steps_are_ordered_by_order_not_by_position(company, template):
    data = _definition(template, steps=[
        {"order": 5, "delayHours": 72, "templateId": template.id},
        {"order": 2, "delayHours": 0, "templateId": template.id},
    ])

    pipeline = pipeline_service.create_pipeline(company.id, data)
    db.session.expire_all()

    assert [s.delay_hours for s in db.session.get(Pipeline, pipeline.id).steps] == [0, 72]


@pytest.mark.parametrize("steps, message", [
    ([{"order": 1, "delayHours": -1, "type": "DELAY"}], "delayHours"),
    ([{"order": 1, "delayHours": "soon", "type": "DELAY"}], "delayHours"),
    ([{"order": 1, "delayHours": float("inf"), "type": "DELAY"}], "delayHours"),
    ([{"order": 1, "delayHours": float("nan"), "type": "DELAY"}], "delayHours"),
    ([{"order": 1, "delayHours": 1e12, "type": "DELAY"}], "delayHours must be at most"),
    ([{"order": 1, "type": "DELAY"}, {"order": 1, "type": "DELAY"}], "order 1"),
    ([{"order": 1, "type": "EMAIL"}], "templateId is required"),
    ([{"order": 1, "type": "SMS"}], "type must be one of"),
    ("not-a-list", "steps must be a list"),
])
def test_create_rejects_invalid_steps(company, template, steps, message):
    with pytest.raises(ValidationError) as exc:
        pipeline_service.create_pipeline(company.id, _definition(template, steps=steps))

    assert message in exc.value.message
    assert Pipeline.query.count() == 0


def test_create_requires_name(company, template):
    with pytest.raises(ValidationError):
        pipeline_service.create_pipeline(company.id, _definition(template, name="  "))


def test_create_rejects_template_of_another_company(company, other_company):
    foreign = EmailTemplate(company_id=other_company.id, name="Theirs", subject="Hi", content="Hello")
    db.session.add(foreign)
    db.session.commit()

    with pytest.raises(ValidationError) as exc:
        pipeline_service.create_pipeline(company.id, {
            "name": "Borrowed",
            "steps": [{"order": 1, "delayHours": 0, "templateId": foreign.id}],
        })

    assert "not found" in exc.value.message


def test_list_and_get_are_scoped_to_company(company, other_company, make_pipeline):
    ours = make_pipeline()
    theirs = make_pipeline(company_id=other_company.id)

    assert [p.id for p in pipeline_service.list_pipelines(company.id)] == [ours.id]
    assert pipeline_service.get_pipeline(company.id, ours.id) is ours
    with pytest.raises(NotFound):
        pipeline_service.get_pipeline(company.id, theirs.id)


def test_update_replaces_steps_and_reuses_orders(company, template, make_pipeline):
    pipeline = make_pipeline(delays=(0, 24))
    old_step_ids = {s.id for s in pipeline.steps}

    updated = pipeline_service.update_pipeline(company.id, pipeline.id, {
        "name": "Renamed",
        "steps": [
            {"order": 1, "delayHours": 6, "type": "DELAY"},
            {"order": 2, "delayHours": 12, "templateId": template.id},
            {"order": 3, "delayHours": 36, "templateId": template.id},
        ],
    })

    assert updated.name == "Renamed"
    assert [s.delay_hours for s in updated.steps] == [6, 12, 36]
    assert PipelineStep.query.count() == 3
    assert old_step_ids.isdisjoint(s.id for s in updated.steps)


def test_update_without_steps_keeps_steps(company, make_pipeline):
    pipeline = make_pipeline(delays=(0, 24))

    updated = pipeline_service.update_pipeline(company.id, pipeline.id, {"isActive": False})

    assert updated.is_active is False
    assert len(updated.steps) == 2


def test_update_rejects_non_boolean_is_active(company, make_pipeline):
    pipeline = make_pipeline()

    with pytest.raises(ValidationError):
        pipeline_service.update_pipeline(company.id, pipeline.id, {"isActive": "no"})


def test_delete_removes_steps_and_executions(company, make_pipeline, orchestrator):
    pipeline = make_pipeline()
    orchestrator.start(pipeline.id, ["lead-1", "lead-2"])

    assert pipeline_service.delete_pipeline(company.id, pipeline.id) == {"message": "Pipeline deleted successfully"}

    assert Pipeline.query.count() == 0
    assert PipelineStep.query.count() == 0
    assert PipelineExecution.query.count() == 0
    assert StepExecution.query.count() == 0


def test_delete_of_another_company_is_not_found(other_company, make_pipeline):
    pipeline = make_pipeline()

    with pytest.raises(NotFound):
        pipeline_service.delete_pipeline(other_company.id, pipeline.id)
    assert Pipeline.query.count() == 1


def test_list_executions_filters_by_status(company, make_pipeline, orchestrator):
    pipeline = make_pipeline()
    first, second = orchestrator.start(pipeline.id, ["lead-1", "lead-2"])["executions"]
    orchestrator.cancel(first.id)

    assert len(pipeline_service.list_executions(company.id, pipeline.id)) == 2
    running = pipeline_service.list_executions(company.id, pipeline.id, status="running")
    assert [e.id for e in running] == [second.id]
    cancelled = pipeline_service.list_executions(company.id, pipeline.id, status=ExecutionStatus.CANCELLED)
    assert [e.id for e in cancelled] == [first.id]


def test_list_executions_rejects_unknown_status(company, make_pipeline):
    pipeline = make_pipeline()

    with pytest.raises(ValidationError):
        pipeline_service.list_executions(company.id, pipeline.id, status="PAUSED")


def test_get_execution_is_scoped_to_company(company, other_company, make_pipeline, orchestrator):
    pipeline = make_pipeline()
    execution = orchestrator.start(pipeline.id, ["lead-1"])["executions"][0]

    assert pipeline_service.get_execution(company.id, execution.id).id == execution.id
    with pytest.raises(NotFound):
        pipeline_service.get_execution(other_company.id, execution.id)
