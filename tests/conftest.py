import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import TestingConfig
from extensions import db
from models import Company, EmailTemplate, Lead, Pipeline, PipelineStep, StepType
from services.pipeline_orchestrator import PipelineOrchestrator
from services.pipeline_store import PipelineStore
from services.step_executor import StepExecutor
from tests.fakes import FakeSender, RecordingTaskQueue


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def queue(app):
    fake = RecordingTaskQueue()
    app.extensions['task_queue'] = fake
    return fake


@pytest.fixture
def company(app_ctx):
    company = Company(name="Acme Corp")
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def other_company(app_ctx):
    company = Company(name="Globex")
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def template(company):
    template = EmailTemplate(
        company_id=company.id,
        name="Welcome",
        subject="Welcome, {{firstName}}",
        content="Hi {{firstName}}, thanks for your interest in {{senderCompany}}."
    )
    db.session.add(template)
    db.session.commit()
    return template


@pytest.fixture
def make_lead(company):
    def _make(email="jane@example.com", first_name="Jane", **fields):
        fields.setdefault('company_id', company.id)
        lead = Lead(email=email, first_name=first_name, **fields)
        db.session.add(lead)
        db.session.commit()
        return lead
    return _make


@pytest.fixture
def make_pipeline(company, template):
    def _make(delays=(0, 24), is_active=True, step_type=StepType.EMAIL, company_id=None):
        pipeline = Pipeline(
            company_id=company_id or company.id,
            name="Welcome Series",
            description="New customer welcome pipeline",
            is_active=is_active
        )
        pipeline.steps = [
            PipelineStep(
                order=index + 1,
                delay_hours=delay,
                step_type=step_type,
                template_id=template.id if step_type == StepType.EMAIL else None
            )
            for index, delay in enumerate(delays)
        ]
        db.session.add(pipeline)
        db.session.commit()
        return pipeline
    return _make


@pytest.fixture
def store(app_ctx):
    return PipelineStore()


@pytest.fixture
def orchestrator(store, queue):
    return PipelineOrchestrator(store, queue, max_attempts=3, retry_backoff_seconds=60)


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def executor(store, orchestrator, sender):
    return StepExecutor(store, orchestrator, send=sender)


@pytest.fixture
def fire(queue, executor):
    """Fire the oldest pending task, as the delayed queue would once it is due."""
    def _fire():
        job = queue.pop_next()
        assert job is not None, "no pending task to fire"
        return executor.execute(job["payload"])
    return _fire


@pytest.fixture
def auth_headers(company):
    token = create_access_token(identity="user-1", additional_claims={"company_id": company.id})
    return {"Authorization": f"Bearer {token}"}
