"""
Sunny - Helpers shared by the tool handlers.

Name resolution follows one rule everywhere: a case-insensitive partial
match scoped to the tenant. No match is an error, one match proceeds, and
two or more ask the artist which one they meant.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..database import ClientModel, TenantModel, utcnow
from ..models import ToolResultEnvelope

MAX_MATCHES = 5

Resolved = Union[Any, ToolResultEnvelope]


def get_owned(session: Session, model: Any, tenant_id: str, row_id: Any) -> Optional[Any]:
    """Fetch one row by id, only if it belongs to *tenant_id*."""
    if not isinstance(row_id, str) or not row_id:
        return None
    return (
        session.query(model)
        .filter(model.id == row_id, model.tenant_id == tenant_id)
        .first()
    )


def get_tenant(session: Session, tenant_id: str) -> Optional[TenantModel]:
    return session.query(TenantModel).filter(TenantModel.id == tenant_id).first()


def name_matches(column: Any, term: str) -> Any:
    return column.icontains(term, autoescape=True)


def client_full_name(model: Any = ClientModel) -> Any:
    return func.coalesce(model.first_name, "") + " " + func.coalesce(model.last_name, "")


def find_matches(
    session: Session,
    model: Any,
    tenant_id: str,
    term: str,
    columns: Sequence[Any],
    limit: int = MAX_MATCHES,
    order_by: Any = None,
) -> list[Any]:
    query = session.query(model).filter(
        model.tenant_id == tenant_id,
        or_(*(name_matches(c, term) for c in columns)),
    )
    if order_by is not None:
        query = query.order_by(order_by)
    return query.limit(limit).all()


def resolve_by_name(
    session: Session,
    model: Any,
    tenant_id: str,
    term: str,
    columns: Sequence[Any],
    entity: str,
    describe: Callable[[Any], dict[str, Any]],
    plural: Optional[str] = None,
    limit: int = MAX_MATCHES,
    order_by: Any = None,
) -> Resolved:
    """Resolve *term* to exactly one row, or an envelope explaining why not."""
    term = (term or "").strip()
    if not term:
        return ToolResultEnvelope.error(f"Provide a {entity} name to search for")

    matches = find_matches(session, model, tenant_id, term, columns, limit, order_by)
    if not matches:
        return ToolResultEnvelope.error(f'No {entity} found matching "{term}"')
    if len(matches) > 1:
        return ToolResultEnvelope.clarify(
            f'Multiple {plural or entity + "s"} match "{term}". Which one?',
            [describe(m) for m in matches],
        )
    return matches[0]


def resolve_target(
    session: Session,
    model: Any,
    tenant_id: str,
    args: dict[str, Any],
    id_key: str,
    name_key: str,
    columns: Sequence[Any],
    entity: str,
    describe: Callable[[Any], dict[str, Any]],
) -> Resolved:
    """Resolve by ``args[id_key]`` when given, else by ``args[name_key]``."""
    if args.get(id_key):
        row = get_owned(session, model, tenant_id, args[id_key])
        if row is None:
            return ToolResultEnvelope.error(f"{entity.capitalize()} not found")
        return row
    if args.get(name_key):
        return resolve_by_name(
            session, model, tenant_id, args[name_key], columns, entity, describe
        )
    return ToolResultEnvelope.error(
        f"Provide {id_key} or {name_key} to find the {entity}"
    )


def parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """Parse an ISO 8601 string to a naive UTC datetime."""
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValueError(f"Invalid {field}: expected an ISO 8601 string")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid {field}: {value}") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def money(value: Optional[float]) -> float:
    return round(float(value or 0), 2)


def clamp_limit(value: Any, default: int, maximum: int = 50) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(1, min(int(value), maximum))


def start_of_day(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def changes(row: Any, updates: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Describe each update as ``{field: {"from": old, "to": new}}``."""
    return {
        key: {"from": _plain(getattr(row, key, None)), "to": _plain(value)}
        for key, value in updates.items()
    }


def _plain(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value
