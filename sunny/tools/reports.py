"""
Sunny - Sales reporting tools.
"""

from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from typing import Any, Optional

from ..database import SaleItemModel, SaleModel, utcnow
from ..models import ToolContext, ToolResultEnvelope
from .common import clamp_limit, isoformat, money, start_of_day
from .registry import HandlerTable

handlers = HandlerTable()


def revenue_period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Start of a revenue report period. Weeks start on Sunday."""
    today = start_of_day(now or utcnow())
    if period == "today":
        return today
    if period == "week":
        # Monday is 0, so Sunday maps to 0 days back.
        return today - timedelta(days=(today.weekday() + 1) % 7)
    if period == "month":
        return today.replace(day=1)
    if period == "year":
        return today.replace(month=1, day=1)
    raise ValueError(f"Unknown period: {period}")


def products_period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of a top-products period; ``all`` has no start."""
    now = now or utcnow()
    if period == "all":
        return None
    if period == "week":
        return now - timedelta(days=7)
    return revenue_period_start(period, now)


def _completed_sales(session, tenant_id: str, since: Optional[datetime]):
    query = session.query(SaleModel).filter(
        SaleModel.tenant_id == tenant_id,
        SaleModel.status == "completed",
    )
    if since is not None:
        query = query.filter(SaleModel.created_at >= since)
    return query


@handlers.register("get_revenue_report")
async def get_revenue_report(ctx: ToolContext, args: dict[str, Any]):
    period = args["period"]
    try:
        start = revenue_period_start(period)
    except ValueError as e:
        return ToolResultEnvelope.error(str(e))

    with ctx.db.session_scope() as session:
        sales = _completed_sales(session, ctx.tenant_id, start).all()

    return {
        "period": period,
        "start_date": isoformat(start),
        "sales_count": len(sales),
        "revenue": money(sum(s.subtotal or 0 for s in sales)),
        "tax": money(sum(s.tax_amount or 0 for s in sales)),
        "tips": money(sum(s.tip_amount or 0 for s in sales)),
        "total": money(sum(s.total or 0 for s in sales)),
        "payment_breakdown": dict(Counter(s.payment_method or "other" for s in sales)),
    }


@handlers.register("get_top_products")
async def get_top_products(ctx: ToolContext, args: dict[str, Any]):
    period = args.get("period") or "all"
    limit = clamp_limit(args.get("limit"), default=10)
    try:
        start = products_period_start(period)
    except ValueError as e:
        return ToolResultEnvelope.error(str(e))

    with ctx.db.session_scope() as session:
        sale_ids = [s.id for s in _completed_sales(session, ctx.tenant_id, start)]
        if not sale_ids:
            return {"products": [], "message": "No sales in this period"}

        items = (
            session.query(SaleItemModel)
            .filter(SaleItemModel.sale_id.in_(sale_ids))
            .all()
        )

    totals: "OrderedDict[str, dict[str, float]]" = OrderedDict()
    for item in items:
        entry = totals.setdefault(item.name, {"quantity": 0, "revenue": 0.0})
        entry["quantity"] += item.quantity or 0
        entry["revenue"] += item.line_total or 0

    ranked = sorted(totals.items(), key=lambda pair: pair[1]["quantity"], reverse=True)
    return {
        "period": period,
        "products": [
            {"name": name, "quantity": stats["quantity"], "revenue": money(stats["revenue"])}
            for name, stats in ranked[:limit]
        ],
    }
