"""Report endpoints proxying paginated ERP queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from erp_gateway.api.v1.dependencies import ErpSessionDep
from erp_gateway.api.v1.gateway import GatewayContext, RequestGateway
from erp_gateway.core.errors import AuthError
from erp_gateway.core.result import Err
from erp_gateway.core.settings import settings
from erp_gateway.schemas.common import Pagination
from erp_gateway.schemas.reports import ReportQuery
from erp_gateway.services.erp_session import ErpSession
from erp_gateway.services.rate_limit import REPORTS_POLICY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

ReportGatewayDep = Annotated[
    GatewayContext[ReportQuery],
    Depends(RequestGateway(REPORTS_POLICY, body=ReportQuery)),
]


@dataclass(frozen=True)
class ReportSource:
    """ERP model and query shape behind one report."""

    label: str
    model: str
    date_field: str
    fields: tuple[str, ...]
    base_domain: tuple[tuple[str, str, Any], ...] = ()
    default_state: str | None = None
    datetime_field: bool = False

    @property
    def order(self) -> str:
        return f"{self.date_field} desc"

    def domain(self, query: ReportQuery) -> list[list[Any]]:
        start, end = query.start_date, query.end_date
        if self.datetime_field:
            start, end = f"{start} 00:00:00", f"{end} 23:59:59"
        domain = [list(term) for term in self.base_domain]
        domain.append([self.date_field, ">=", start])
        domain.append([self.date_field, "<=", end])
        state = query.state or self.default_state
        if state:
            domain.append(["state", "=", state])
        return domain


INVOICES = ReportSource(
    label="invoices",
    model="account.move",
    date_field="invoice_date",
    fields=(
        "id", "name", "invoice_date", "invoice_date_due", "partner_id",
        "amount_total", "amount_residual", "amount_tax", "currency_id",
        "state", "move_type", "ref", "invoice_origin", "invoice_payment_term_id",
        "user_id", "team_id", "company_id", "create_date", "write_date",
    ),
    base_domain=(("move_type", "in", ["out_invoice", "out_refund"]),),
)

PAYMENTS = ReportSource(
    label="payments",
    model="account.payment",
    date_field="date",
    fields=(
        "id", "name", "date", "amount", "currency_id", "partner_id",
        "journal_id", "state", "ref", "payment_type",
        "amount_company_currency_signed",
    ),
    default_state="posted",
)

QUOTATIONS = ReportSource(
    label="quotations",
    model="sale.order",
    date_field="date_order",
    fields=(
        "id", "name", "date_order", "partner_id",
        "amount_total", "amount_untaxed", "amount_tax", "currency_id",
        "state", "user_id", "team_id", "company_id",
        "create_date", "write_date", "validity_date", "commitment_date",
    ),
    datetime_field=True,
)


def _report_failure(source: ReportSource, error: AuthError) -> HTTPException:
    logger.error("Fetching %s from the ERP failed: %s", source.label, error)
    detail: dict[str, Any] = {"message": f"Error fetching {source.label} data"}
    if settings.debug:
        detail["details"] = str(error)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


async def run_report(source: ReportSource, query: ReportQuery, session: ErpSession) -> dict[str, Any]:
    """Count and fetch one page of ``source`` records matching ``query``."""
    domain = source.domain(query)

    total = await session.search_count(source.model, domain)
    if isinstance(total, Err):
        raise _report_failure(source, total.error)

    rows = await session.search_read(
        source.model,
        domain,
        source.fields,
        offset=query.offset,
        limit=query.page_size,
        order=source.order,
    )
    if isinstance(rows, Err):
        raise _report_failure(source, rows.error)

    pagination = Pagination.build(query.page, query.page_size, total.value)
    logger.info(
        "Fetched %d %s (page %d of %d)",
        len(rows.value), source.label, query.page, pagination.total_pages,
    )
    return {
        "success": True,
        "message": f"{source.label.capitalize()} fetched",
        "data": rows.value,
        "pagination": pagination.model_dump(by_alias=True),
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.post("/invoices")
async def invoices_report(gateway: ReportGatewayDep, session: ErpSessionDep) -> dict[str, Any]:
    """Return a page of customer invoices and credit notes."""
    return await run_report(INVOICES, gateway.require_body(), session)


@router.post("/payments")
async def payments_report(gateway: ReportGatewayDep, session: ErpSessionDep) -> dict[str, Any]:
    """Return a page of payments (posted only unless a state is given)."""
    return await run_report(PAYMENTS, gateway.require_body(), session)


@router.post("/quotations")
async def quotations_report(gateway: ReportGatewayDep, session: ErpSessionDep) -> dict[str, Any]:
    """Return a page of sale quotations and orders."""
    return await run_report(QUOTATIONS, gateway.require_body(), session)
