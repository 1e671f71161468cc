from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from app.crm.audit import record_event
from app.crm.constants import ROLE_CLIENT_ADMIN, ROLE_SALES_REP
from app.crm.db import db_session, session_scope
from app.crm.errors import PersistenceFailure, ValidationFailed
from app.crm.modules.lead_import.service import import_customers_csv
from app.crm.post_actions import PostActions
from app.crm.rbac import current_context, require_role
from app.crm.storage import archive_key, storage_from_config
from app.crm.utils import sha256_bytes, utcnow

bp = Blueprint("lead_import", __name__)


def _read_upload() -> tuple[bytes, str]:
    f = request.files.get("csv_file")
    if f is None:
        return request.get_data(), "upload.csv"
    filename = secure_filename(f.filename or "") or "upload.csv"
    if not filename.lower().endswith(".csv") and "csv" not in (f.mimetype or "").lower():
        raise ValidationFailed("Please upload a CSV file")
    return f.read(), filename


@bp.post("/customers/import")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def customers_import():
    ctx = current_context()
    data, filename = _read_upload()
    if not data or not data.strip():
        raise ValidationFailed("No CSV data provided")
    mode = (request.form.get("mode") or request.args.get("mode") or "upsert").strip().lower()
    app = current_app._get_current_object()  # type: ignore[attr-defined]

    s = db_session()
    result = import_customers_csv(s, ctx, data, mode=mode)
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        app.logger.exception("CSV import commit failed (user_id=%s)", ctx.user_id)
        raise PersistenceFailure("Failed to import customers") from e

    storage_key = archive_key(ctx.user_id, filename, now=utcnow())

    def _archive() -> None:
        storage_from_config(app.config).put_bytes(storage_key, data, content_type="text/csv")

    def _audit() -> None:
        with session_scope(app, tenant_id=ctx.tenant_id) as s2:
            record_event(
                s2,
                tenant_id=ctx.tenant_id,
                user_id=ctx.user_id,
                action="import_customers",
                resource_type="customer",
                new_data={
                    "filename": filename,
                    "sha256": sha256_bytes(data),
                    "storage_key": storage_key,
                    "mode": mode,
                    "imported": result.imported,
                    "inserted": result.inserted,
                    "updated": result.updated,
                    "skipped": result.skipped,
                },
            )

    post = PostActions("import_customers")
    post.add("archive_upload", _archive)
    post.add("audit", _audit)
    post.run()

    return jsonify(result.to_payload())
