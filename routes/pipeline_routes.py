from flask import Blueprint, request, jsonify
from services import pipeline_service
from services.auth import token_required
from services.pipeline_orchestrator import get_orchestrator

pipeline_bp = Blueprint('pipelines', __name__, url_prefix="/api/pipelines")


def _iso(value):
    return value.isoformat() if value else None


def serialize_step(step):
    return {
        "id": step.id,
        "order": step.order,
        "delayHours": step.delay_hours,
        "type": step.step_type,
        "templateId": step.template_id,
    }


def serialize_step_execution(step_execution):
    return {
        "id": step_execution.id,
        "stepId": step_execution.step_id,
        "stepIndex": step_execution.step_index,
        "type": step_execution.step_type,
        "templateId": step_execution.template_id,
        "delayHours": step_execution.delay_hours,
        "status": step_execution.status,
        "attempts": step_execution.attempts,
        "scheduledAt": _iso(step_execution.scheduled_at),
        "executedAt": _iso(step_execution.executed_at),
        "result": step_execution.result,
    }


def serialize_execution(execution, include_steps=False):
    lead = execution.lead
    result = {
        "id": execution.id,
        "pipelineId": execution.pipeline_id,
        "leadId": execution.lead_id,
        "lead": {"id": lead.id, "email": lead.email, "firstName": lead.first_name} if lead else None,
        "status": execution.status,
        "startedAt": _iso(execution.started_at),
        "completedAt": _iso(execution.completed_at),
    }
    if include_steps:
        result["stepExecutions"] = [serialize_step_execution(s) for s in execution.step_executions]
    return result


def serialize_pipeline(pipeline, executions=None):
    result = {
        "id": pipeline.id,
        "companyId": pipeline.company_id,
        "name": pipeline.name,
        "description": pipeline.description,
        "isActive": pipeline.is_active,
        "steps": [serialize_step(s) for s in pipeline.steps],
        "createdAt": _iso(pipeline.created_at),
        "updatedAt": _iso(pipeline.updated_at),
    }
    if executions is not None:
        result["executions"] = [serialize_execution(e) for e in executions]
    return result


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# 1. Pipeline CRUD
@pipeline_bp.route('', methods=['POST'])
@token_required
def create_pipeline(current_user):
    data = _json_body()
    if data is None:
        return jsonify({"error": "Invalid JSON data"}), 400
    pipeline = pipeline_service.create_pipeline(current_user.company_id, data)
    return jsonify(serialize_pipeline(pipeline)), 201


@pipeline_bp.route('', methods=['GET'])
@token_required
def get_pipelines(current_user):
    pipelines = pipeline_service.list_pipelines(current_user.company_id)
    return jsonify([serialize_pipeline(p) for p in pipelines]), 200


@pipeline_bp.route('/<pipeline_id>', methods=['GET'])
@token_required
def get_pipeline(current_user, pipeline_id):
    pipeline = pipeline_service.get_pipeline(current_user.company_id, pipeline_id)
    executions = pipeline_service.recent_executions(pipeline)
    return jsonify(serialize_pipeline(pipeline, executions=executions)), 200


@pipeline_bp.route('/<pipeline_id>', methods=['PUT'])
@token_required
def update_pipeline(current_user, pipeline_id):
    data = _json_body()
    if data is None:
        return jsonify({"error": "Invalid JSON data"}), 400
    pipeline = pipeline_service.update_pipeline(current_user.company_id, pipeline_id, data)
    return jsonify(serialize_pipeline(pipeline)), 200


@pipeline_bp.route('/<pipeline_id>', methods=['DELETE'])
@token_required
def delete_pipeline(current_user, pipeline_id):
    return jsonify(pipeline_service.delete_pipeline(current_user.company_id, pipeline_id)), 200


# 2. Execution
@pipeline_bp.route('/<pipeline_id>/start', methods=['POST'])
@token_required
def start_pipeline(current_user, pipeline_id):
    data = _json_body() or {}
    lead_ids = data.get('leadIds')
    if not isinstance(lead_ids, list) or not all(isinstance(lead_id, str) and lead_id for lead_id in lead_ids):
        return jsonify({"error": "leadIds must be a list of lead ids"}), 400

    result = get_orchestrator().start(pipeline_id, lead_ids, company_id=current_user.company_id)
    return jsonify({
        "message": result["message"],
        "executions": [serialize_execution(e) for e in result["executions"]]
    }), 201


@pipeline_bp.route('/<pipeline_id>/executions', methods=['GET'])
@token_required
def get_pipeline_executions(current_user, pipeline_id):
    executions = pipeline_service.list_executions(
        current_user.company_id, pipeline_id, status=request.args.get('status')
    )
    return jsonify([serialize_execution(e) for e in executions]), 200


@pipeline_bp.route('/executions/<execution_id>', methods=['GET'])
@token_required
def get_execution(current_user, execution_id):
    execution = pipeline_service.get_execution(current_user.company_id, execution_id)
    return jsonify(serialize_execution(execution, include_steps=True)), 200


@pipeline_bp.route('/executions/<execution_id>/cancel', methods=['POST'])
@token_required
def cancel_execution(current_user, execution_id):
    data = _json_body() or {}
    execution = get_orchestrator().cancel(
        execution_id, company_id=current_user.company_id, reason=data.get('reason')
    )
    return jsonify(serialize_execution(execution, include_steps=True)), 200
