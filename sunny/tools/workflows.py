"""
Sunny - Workflow tools: creation, edits and client enrollment.

Enrolling a client schedules one ``workflow_queue`` row per step, due
``delay_hours`` after enrollment, with the step's template already rendered
for that client.
"""

from datetime import timedelta
from typing import Any

from ..database import (
    ClientModel,
    ClientNoteModel,
    MessageTemplateModel,
    WorkflowQueueModel,
    WorkflowStepModel,
    WorkflowTemplateModel,
    utcnow,
)
from ..models import ToolContext, ToolResultEnvelope
from ..templates import render_template
from .clients import display_name
from .common import get_owned, get_tenant, resolve_by_name
from .registry import HandlerTable, Mutation

handlers = HandlerTable()

ACTIVE_QUEUE_STATUSES = ("pending", "ready")


def _match(workflow: WorkflowTemplateModel) -> dict[str, Any]:
    return {"id": workflow.id, "name": workflow.name, "active": workflow.is_active}


def normalize_steps(steps: Any) -> list[dict[str, Any]]:
    """Validate step dicts and fill defaults. Raises ValueError."""
    if not isinstance(steps, list) or not steps:
        raise ValueError("A workflow needs at least one step")
    normalized = []
    for i, step in enumerate(steps, start=1):
        if not isinstance(step, dict):
            raise ValueError(f"Step {i} must be an object")
        delay = step.get("delay_hours") or 0
        if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
            raise ValueError(f"Step {i} has an invalid delay_hours")
        channel = step.get("channel") or "sms"
        if channel not in ("sms", "email"):
            raise ValueError(f"Step {i} channel must be sms or email")
        normalized.append(
            {
                "delay_hours": delay,
                "channel": channel,
                "template_name": step.get("template_name"),
                "description": step.get("description"),
            }
        )
    return normalized


def _build_steps(steps: list[dict[str, Any]]) -> list[WorkflowStepModel]:
    return [WorkflowStepModel(step_order=i, **step) for i, step in enumerate(steps, start=1)]


@handlers.register("create_workflow")
async def create_workflow(ctx: ToolContext, args: dict[str, Any]):
    try:
        steps = normalize_steps(args["steps"])
    except ValueError as e:
        return ToolResultEnvelope.error(str(e))
    name = args["name"].strip()
    trigger_type = args["trigger_type"]

    async def apply():
        with ctx.db.session_scope() as session:
            workflow = WorkflowTemplateModel(
                tenant_id=ctx.tenant_id, name=name, trigger_type=trigger_type, is_active=True
            )
            workflow.steps.extend(_build_steps(steps))
            session.add(workflow)
            session.flush()
            return {
                "workflow": {"id": workflow.id, "name": workflow.name},
                "steps_created": len(steps),
            }

    preview = {
        "action": "create_workflow",
        "name": name,
        "trigger_type": trigger_type,
        "steps": [{"step_order": i, **s} for i, s in enumerate(steps, start=1)],
    }
    return Mutation(preview=preview, apply=apply)


@handlers.register("update_workflow")
async def update_workflow(ctx: ToolContext, args: dict[str, Any]):
    raw = args.get("updates") or {}
    updates: dict[str, Any] = {}
    if raw.get("name"):
        updates["name"] = raw["name"].strip()
    if isinstance(raw.get("is_active"), bool):
        updates["is_active"] = raw["is_active"]
    steps = None
    if raw.get("steps") is not None:
        try:
            steps = normalize_steps(raw["steps"])
        except ValueError as e:
            return ToolResultEnvelope.error(str(e))

    with ctx.db.session_scope() as session:
        workflow = resolve_by_name(
            session,
            WorkflowTemplateModel,
            ctx.tenant_id,
            args["workflow_name"],
            [WorkflowTemplateModel.name],
            entity="workflow",
            describe=_match,
        )
        if isinstance(workflow, ToolResultEnvelope):
            return workflow
        if not updates and steps is None:
            return ToolResultEnvelope.error("No valid updates provided")

        workflow_id, workflow_name = workflow.id, workflow.name
        preview = {
            "action": "update_workflow",
            "workflow_id": workflow_id,
            "workflow_name": workflow_name,
            "changes": {
                key: {"from": getattr(workflow, key), "to": value}
                for key, value in updates.items()
            },
        }
        if steps is not None:
            preview["replace_steps"] = {"from": len(workflow.steps), "to": steps}

    async def apply():
        with ctx.db.session_scope() as session:
            row = get_owned(session, WorkflowTemplateModel, ctx.tenant_id, workflow_id)
            if row is None:
                raise LookupError("Workflow no longer exists")
            for key, value in updates.items():
                setattr(row, key, value)
            if steps is not None:
                row.steps.clear()
                session.flush()
                row.steps.extend(_build_steps(steps))
        applied = dict(updates)
        if steps is not None:
            applied["steps"] = len(steps)
        return {"workflow_name": workflow_name, "updates_applied": applied}

    return Mutation(preview=preview, apply=apply)


@handlers.register("enroll_in_workflow")
async def enroll_in_workflow(ctx: ToolContext, args: dict[str, Any]):
    with ctx.db.session_scope() as session:
        workflow = get_owned(session, WorkflowTemplateModel, ctx.tenant_id, args["workflow_id"])
        if workflow is None:
            return ToolResultEnvelope.error("Workflow not found")
        if not workflow.is_active:
            return ToolResultEnvelope.error("Workflow is not active")
        steps = list(workflow.steps)
        if not steps:
            return ToolResultEnvelope.error("Workflow has no steps")

        client = get_owned(session, ClientModel, ctx.tenant_id, args["client_id"])
        if client is None:
            return ToolResultEnvelope.error("Client not found")

        step_ids = [s.id for s in steps]
        already = (
            session.query(WorkflowQueueModel.id)
            .filter(
                WorkflowQueueModel.tenant_id == ctx.tenant_id,
                WorkflowQueueModel.client_id == client.id,
                WorkflowQueueModel.status.in_(ACTIVE_QUEUE_STATUSES),
                WorkflowQueueModel.workflow_step_id.in_(step_ids),
            )
            .first()
        )
        if already is not None:
            return ToolResultEnvelope.error("Client is already enrolled in this workflow")

        tenant = get_tenant(session, ctx.tenant_id)
        variables = {
            "client_name": client.full_name or "there",
            "client_first_name": client.first_name or "there",
            "business_name": (tenant.name if tenant else None) or "our studio",
            "business_phone": (tenant.phone if tenant else None) or "",
        }
        bodies = {
            t.name: t.body
            for t in session.query(MessageTemplateModel).filter(
                MessageTemplateModel.tenant_id == ctx.tenant_id
            )
        }

        plan = [
            {
                "workflow_step_id": s.id,
                "template_name": s.template_name,
                "channel": s.channel,
                "delay_hours": s.delay_hours or 0,
                "message_body": render_template(
                    bodies.get(s.template_name) or s.template_name or "", variables
                ),
                "description": s.description,
            }
            for s in steps
        ]
        workflow_id, workflow_name = workflow.id, workflow.name
        client_id, client_name = client.id, display_name(client)

    async def apply():
        now = utcnow()
        with ctx.db.session_scope() as session:
            for step in plan:
                session.add(
                    WorkflowQueueModel(
                        tenant_id=ctx.tenant_id,
                        client_id=client_id,
                        workflow_step_id=step["workflow_step_id"],
                        template_name=step["template_name"],
                        channel=step["channel"],
                        scheduled_for=now + timedelta(hours=step["delay_hours"]),
                        status="pending",
                        message_body=step["message_body"],
                        description=step["description"],
                    )
                )
            session.add(
                ClientNoteModel(
                    tenant_id=ctx.tenant_id,
                    client_id=client_id,
                    created_by=ctx.user_id,
                    body=f"Enrolled in {workflow_name} (via Sunny)",
                )
            )
        return {"workflow": workflow_name, "steps_created": len(plan)}

    preview = {
        "action": "enroll_in_workflow",
        "workflow_id": workflow_id,
        "workflow": workflow_name,
        "client_id": client_id,
        "client_name": client_name,
        "steps": [
            {
                "delay_hours": p["delay_hours"],
                "channel": p["channel"],
                "template_name": p["template_name"],
                "message_body": p["message_body"],
            }
            for p in plan
        ],
    }
    return Mutation(preview=preview, apply=apply)
