from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.crm.errors import Conflict, Forbidden, ImportFailed, PersistenceFailure, ValidationFailed
from app.crm.modules.customers.models import Customer
from app.crm.modules.lead_import.columns import infer_columns
from app.crm.modules.lead_import.parsers.csv import decode_csv_bytes, parse_csv
from app.crm.modules.lead_import.validation import CustomerDraft, RowError, validate_row
from app.crm.modules.sales_reps.models import SalesRep
from app.crm.tenancy import RequestContext
from app.crm.utils import utcnow

logger = logging.getLogger(__name__)

IMPORT_MODES = ("insert", "upsert")
ERROR_SUMMARY_LIMIT = 5
_EMAIL_CHUNK = 500


@dataclass
class ImportResult:
    imported: int
    skipped: int
    errors: list[str] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0

    @property
    def message(self) -> str:
        msg = f"Successfully imported {self.imported} customers"
        if self.skipped:
            msg += f" ({self.skipped} rows skipped due to errors)"
        return msg

    def to_payload(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "imported": self.imported,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def summarize_errors(errors: list[str], *, limit: int = ERROR_SUMMARY_LIMIT) -> str:
    summary = "; ".join(errors[:limit])
    if len(errors) > limit:
        summary += f" ...and {len(errors) - limit} more"
    return summary


def build_drafts(text: str) -> tuple[list[CustomerDraft], list[RowError]]:
    """
    Parse CSV text and validate every data row.

    Returns:
      (drafts, errors)
    """
    rows = parse_csv(text)
    if not rows:
        return [], []
    columns = infer_columns(rows[0])
    logger.debug("CSV columns inferred: %s", columns.found())

    drafts: list[CustomerDraft] = []
    errors: list[RowError] = []
    for idx, row in enumerate(rows[1:], start=2):  # 1 = header
        result = validate_row(row, columns, idx)
        if result is None:
            continue
        if isinstance(result, RowError):
            errors.append(result)
        else:
            drafts.append(result)
    return drafts, errors


def _last_per_email(drafts: list[CustomerDraft]) -> list[CustomerDraft]:
    by_email: dict[str, CustomerDraft] = {}
    for d in drafts:
        by_email.pop(d.email, None)
        by_email[d.email] = d
    return list(by_email.values())


def _existing_by_email(s: Session, ctx: RequestContext, emails: list[str]) -> dict[str, Customer]:
    out: dict[str, Customer] = {}
    for i in range(0, len(emails), _EMAIL_CHUNK):
        chunk = emails[i : i + _EMAIL_CHUNK]
        rows = (
            s.query(Customer)
            .filter(
                Customer.tenant_id == ctx.tenant_id,
                Customer.sales_rep_user_id == ctx.user_id,
                Customer.email.in_(chunk),
            )
            .all()
        )
        for c in rows:
            out[c.email] = c
    return out


def _new_customer(ctx: RequestContext, rep_id: int | None, d: CustomerDraft) -> Customer:
    return Customer(
        tenant_id=ctx.tenant_id,
        sales_rep_user_id=ctx.user_id,
        sales_rep_id=rep_id,
        first_name=d.first_name,
        last_name=d.last_name,
        email=d.email,
        phone_no=d.phone_no,
        source=d.source,
        notes=d.notes,
        status=d.status,
    )


def _apply_draft(c: Customer, rep_id: int | None, d: CustomerDraft) -> None:
    c.first_name = d.first_name
    c.last_name = d.last_name
    c.phone_no = d.phone_no
    c.source = d.source
    c.notes = d.notes
    if d.status_from_file:
        c.status = d.status
    if rep_id is not None:
        c.sales_rep_id = rep_id
    c.updated_at = utcnow()


def import_customers_csv(
    s: Session,
    ctx: RequestContext,
    file_bytes: bytes | str,
    *,
    mode: str = "upsert",
) -> ImportResult:
    """
    Import customer leads for the calling identity.

    Every persisted row is owned by ctx (user and tenant). Rows that fail
    validation are reported and skipped; the accepted batch is written in a
    single SAVEPOINT, so it lands completely or not at all. The caller commits.
    """
    mode = (mode or "upsert").strip().lower()
    if mode not in IMPORT_MODES:
        raise ValidationFailed(f"Invalid import mode '{mode}'. Must be one of: {', '.join(IMPORT_MODES)}")
    if ctx.tenant_id is None:
        raise Forbidden("No tenant resolved for caller")

    text = decode_csv_bytes(file_bytes) if isinstance(file_bytes, bytes) else file_bytes
    drafts, row_errors = build_drafts(text)
    errors = [str(e) for e in row_errors]

    if not drafts:
        if errors:
            raise ImportFailed(summarize_errors(errors), errors=errors)
        raise ImportFailed(errors=[])

    rep = (
        s.query(SalesRep)
        .filter(SalesRep.tenant_id == ctx.tenant_id, SalesRep.user_id == ctx.user_id)
        .order_by(SalesRep.id.asc())
        .first()
    )
    rep_id = rep.id if rep else None

    inserted = updated = 0
    try:
        with s.begin_nested():
            if mode == "upsert":
                drafts = _last_per_email(drafts)
                existing = _existing_by_email(s, ctx, [d.email for d in drafts])
                for d in drafts:
                    c = existing.get(d.email)
                    if c is None:
                        s.add(_new_customer(ctx, rep_id, d))
                        inserted += 1
                    else:
                        _apply_draft(c, rep_id, d)
                        updated += 1
            else:
                for d in drafts:
                    s.add(_new_customer(ctx, rep_id, d))
                    inserted += 1
            s.flush()
    except IntegrityError as e:
        if mode == "insert":
            logger.info("CSV insert import rejected (user_id=%s): duplicate customer", ctx.user_id)
            raise Conflict("One or more customers already exist for this sales rep; nothing was imported") from e
        logger.exception("CSV upsert import failed (user_id=%s tenant_id=%s)", ctx.user_id, ctx.tenant_id)
        raise PersistenceFailure("Failed to import customers") from e
    except SQLAlchemyError as e:
        logger.exception("CSV import failed (user_id=%s tenant_id=%s)", ctx.user_id, ctx.tenant_id)
        raise PersistenceFailure("Failed to import customers") from e

    logger.info(
        "CSV import: user_id=%s tenant_id=%s mode=%s inserted=%s updated=%s skipped=%s",
        ctx.user_id,
        ctx.tenant_id,
        mode,
        inserted,
        updated,
        len(errors),
    )
    return ImportResult(
        imported=inserted + updated,
        skipped=len(errors),
        errors=errors,
        inserted=inserted,
        updated=updated,
    )
