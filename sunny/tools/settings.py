"""
Sunny - Business settings and tax profile tools.
"""

from typing import Any

from ..database import TaxProfileModel
from ..models import ToolContext, ToolResultEnvelope
from .common import get_tenant, isoformat
from .registry import HandlerTable, Mutation

handlers = HandlerTable()

DEFAULT_TAX_PROFILE_NAME = "Default Tax"

# update_settings input field -> tenant column
_TENANT_FIELDS = {
    "business_name": "name",
    "phone": "phone",
    "theme_id": "theme_id",
}


def _default_profile(session, tenant_id: str):
    return (
        session.query(TaxProfileModel)
        .filter(TaxProfileModel.tenant_id == tenant_id, TaxProfileModel.is_default.is_(True))
        .first()
    )


def _profile_dict(profile: TaxProfileModel) -> dict[str, Any]:
    return {
        "id": profile.id,
        "name": profile.name,
        "rate": float(profile.rate),
        "is_default": profile.is_default,
    }


@handlers.register("get_settings")
async def get_settings(ctx: ToolContext, args: dict[str, Any]):
    with ctx.db.session_scope() as session:
        tenant = get_tenant(session, ctx.tenant_id)
        if tenant is None:
            return ToolResultEnvelope.error("Business not found")
        profiles = (
            session.query(TaxProfileModel)
            .filter(TaxProfileModel.tenant_id == ctx.tenant_id)
            .order_by(TaxProfileModel.is_default.desc(), TaxProfileModel.name)
            .all()
        )
        return {
            "business_name": tenant.name,
            "phone": tenant.phone,
            "tier": tenant.subscription_tier,
            "theme": tenant.theme_id,
            "fee_handling": tenant.fee_handling,
            "member_since": isoformat(tenant.created_at),
            "tax_profiles": [
                {"name": p.name, "rate": float(p.rate), "is_default": p.is_default}
                for p in profiles
            ],
        }


@handlers.register("update_settings")
async def update_settings(ctx: ToolContext, args: dict[str, Any]):
    updates = {
        column: args[key] for key, column in _TENANT_FIELDS.items() if args.get(key)
    }
    tax_rate = args.get("tax_rate")
    if tax_rate is not None and tax_rate < 0:
        return ToolResultEnvelope.error("tax_rate must not be negative")
    if not updates and tax_rate is None:
        return ToolResultEnvelope.error("No valid updates provided")

    with ctx.db.session_scope() as session:
        tenant = get_tenant(session, ctx.tenant_id)
        if tenant is None:
            return ToolResultEnvelope.error("Business not found")
        preview = {
            "action": "update_settings",
            "changes": {
                column: {"from": getattr(tenant, column), "to": value}
                for column, value in updates.items()
            },
        }
        if tax_rate is not None:
            current = _default_profile(session, ctx.tenant_id)
            preview["tax_rate"] = {
                "from": float(current.rate) if current else None,
                "to": tax_rate,
            }

    async def apply():
        with ctx.db.session_scope() as session:
            tenant = get_tenant(session, ctx.tenant_id)
            if tenant is None:
                raise LookupError("Business not found")
            for column, value in updates.items():
                setattr(tenant, column, value)

            if tax_rate is not None:
                profile = _default_profile(session, ctx.tenant_id)
                if profile is not None:
                    profile.rate = tax_rate
                else:
                    session.add(
                        TaxProfileModel(
                            tenant_id=ctx.tenant_id,
                            name=DEFAULT_TAX_PROFILE_NAME,
                            rate=tax_rate,
                            is_default=True,
                        )
                    )
        return {"updated": {**updates, "tax_rate": tax_rate}}

    return Mutation(preview=preview, apply=apply)


@handlers.register("create_tax_profile")
async def create_tax_profile(ctx: ToolContext, args: dict[str, Any]):
    name = args["name"].strip()
    rate = args["rate"]
    is_default = bool(args.get("is_default"))
    if rate < 0:
        return ToolResultEnvelope.error("rate must not be negative")

    with ctx.db.session_scope() as session:
        current = _default_profile(session, ctx.tenant_id) if is_default else None
        replaces = current.name if current else None

    async def apply():
        with ctx.db.session_scope() as session:
            if is_default:
                session.query(TaxProfileModel).filter(
                    TaxProfileModel.tenant_id == ctx.tenant_id,
                    TaxProfileModel.is_default.is_(True),
                ).update({TaxProfileModel.is_default: False}, synchronize_session=False)
            profile = TaxProfileModel(
                tenant_id=ctx.tenant_id, name=name, rate=rate, is_default=is_default
            )
            session.add(profile)
            session.flush()
            return {"tax_profile": _profile_dict(profile)}

    preview = {
        "action": "create_tax_profile",
        "name": name,
        "rate": rate,
        "is_default": is_default,
        "replaces_default": replaces,
    }
    return Mutation(preview=preview, apply=apply)
