import json

import pytest
from werkzeug.security import generate_password_hash

from app.crm import create_app
from app.crm.auth import issue_access_token
from app.crm.db import session_scope
from app.crm.models import AuditLogEntry, Base, User
from app.crm.modules.customers.models import Customer
from app.crm.modules.sales_reps.models import SalesRep
from app.crm.modules.workflows.models import Workflow

SECRET = {"X-Webhook-Secret": "hook-secret"}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MAIL_BACKEND", "log")
    monkeypatch.setenv("WEBHOOK_SECRET", "hook-secret")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _headers(app, user_id: int) -> dict:
    with app.app_context():
        with session_scope(app) as s:
            user = s.get(User, user_id)
        token = issue_access_token(user)["access_token"]
    return {"Authorization": f"Bearer {token}"}


def _tenant_with_rep(app, client, *, admin_email: str, rep_email: str) -> tuple[int, int]:
    with session_scope(app) as s:
        u = User(
            email=admin_email,
            password_hash=generate_password_hash("password123"),
            metadata_json=json.dumps({"role": "client_admin"}),
            is_active=True,
        )
        s.add(u)
        s.flush()
        admin_id = u.id
    h = _headers(app, admin_id)
    r = client.post(
        "/api/sales-reps/invite",
        json={"first_name": "Rita", "last_name": "Rep", "email": rep_email},
        headers=h,
    )
    assert r.status_code == 200, r.json
    tenant_id = client.get("/api/me", headers=h).json["tenant_id"]
    return tenant_id, r.json["user_id"]


def _payload(**overrides) -> dict:
    payload = {
        "first_name": "Carl",
        "last_name": "Customer",
        "email": "Carl@Example.com",
        "phone_no": "+1 555 010 0177",
        "sales_rep_email": "rep@example.com",
        "notes": "from landing page",
    }
    payload.update(overrides)
    return payload


def test_preflight_returns_cors_headers(client):
    r = client.open("/webhooks/customer-onboard", method="OPTIONS")
    assert r.status_code == 200
    assert r.headers["Access-Control-Allow-Origin"] == "*"
    assert "content-type" in r.headers["Access-Control-Allow-Headers"]
    assert "POST" in r.headers["Access-Control-Allow-Methods"]


def test_onboard_creates_customer_workflow_and_audit(app, client):
    tenant_id, rep_user_id = _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")

    r = client.post("/webhooks/customer-onboard", json=_payload(sales_rep_email="REP@example.com"), headers=SECRET)
    assert r.status_code == 200, r.json
    assert r.json["success"] is True
    assert r.json["message"] == "Customer onboarded successfully"
    customer_id = r.json["customer_id"]

    with session_scope(app) as s:
        c = s.get(Customer, customer_id)
        assert c.tenant_id == tenant_id
        assert c.sales_rep_user_id == rep_user_id
        assert c.email == "carl@example.com"
        assert c.phone_no == "+15550100177"
        assert c.source == "Webhook"
        assert c.status == "pending"
        assert c.notes == "from landing page"

        wf = s.query(Workflow).filter(Workflow.customer_id == customer_id).one()
        assert wf.tenant_id == tenant_id
        assert wf.status == "pending"
        assert wf.current_step == "initial"

        audit = s.query(AuditLogEntry).filter(AuditLogEntry.action == "onboard_customer").one()
        assert audit.tenant_id == tenant_id
        assert audit.user_id is None
        assert audit.resource_id == str(customer_id)


def test_onboard_routes_to_the_reps_own_tenant(app, client):
    tenant_a, _ = _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep-a@example.com")
    tenant_b, rep_b = _tenant_with_rep(app, client, admin_email="b@example.com", rep_email="rep-b@example.com")
    assert tenant_a != tenant_b

    r = client.post("/webhooks/customer-onboard", json=_payload(sales_rep_email="rep-b@example.com"), headers=SECRET)
    assert r.status_code == 200
    with session_scope(app) as s:
        c = s.get(Customer, r.json["customer_id"])
        assert (c.tenant_id, c.sales_rep_user_id) == (tenant_b, rep_b)


def test_onboard_prefers_active_rep_row(app, client):
    _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")
    tenant_b, rep_b = _tenant_with_rep(app, client, admin_email="b@example.com", rep_email="rep@example.com")
    with session_scope(app) as s:
        for rep in s.query(SalesRep).filter(SalesRep.tenant_id == tenant_b).all():
            rep.status = "inactive"

    r = client.post("/webhooks/customer-onboard", json=_payload(), headers=SECRET)
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(Customer, r.json["customer_id"]).tenant_id != tenant_b


def test_onboard_unknown_rep_is_404(app, client):
    r = client.post("/webhooks/customer-onboard", json=_payload(sales_rep_email="ghost@example.com"), headers=SECRET)
    assert r.status_code == 404
    assert r.json == {"success": False, "message": "Sales representative not found"}
    with session_scope(app) as s:
        assert s.query(Customer).count() == 0


@pytest.mark.parametrize("missing", ["first_name", "last_name", "email", "phone_no", "sales_rep_email"])
def test_onboard_missing_field_is_400(app, client, missing):
    payload = _payload()
    payload.pop(missing)
    r = client.post("/webhooks/customer-onboard", json=payload, headers=SECRET)
    assert r.status_code == 400
    assert r.json["message"] == "Missing required fields"


def test_onboard_invalid_status_is_400(app, client):
    _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")
    r = client.post("/webhooks/customer-onboard", json=_payload(status="hot"), headers=SECRET)
    assert r.status_code == 400


def test_onboard_rejects_bad_secret(app, client):
    _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")
    r = client.post("/webhooks/customer-onboard", json=_payload())
    assert r.status_code == 401
    r = client.post("/webhooks/customer-onboard", json=_payload(), headers={"X-Webhook-Secret": "nope"})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid webhook secret"


def test_onboard_without_configured_secret_is_500(app, client):
    app.config["WEBHOOK_SECRET"] = ""
    r = client.post("/webhooks/customer-onboard", json=_payload(), headers=SECRET)
    assert r.status_code == 500
    assert r.json["message"] == "Server misconfiguration"


def test_onboard_duplicate_customer_is_persistence_failure(app, client):
    _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")
    assert client.post("/webhooks/customer-onboard", json=_payload(), headers=SECRET).status_code == 200

    r = client.post("/webhooks/customer-onboard", json=_payload(first_name="Carla"), headers=SECRET)
    assert r.status_code == 500
    assert r.json["message"] == "Failed to create customer"
    with session_scope(app) as s:
        assert s.query(Customer).count() == 1


def test_onboard_accepts_numeric_values(app, client):
    _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")
    r = client.post("/webhooks/customer-onboard", json=_payload(notes=12345, phone_no=5550100177), headers=SECRET)
    assert r.status_code == 200, r.json
    with session_scope(app) as s:
        c = s.get(Customer, r.json["customer_id"])
        assert c.notes == "12345"
        assert c.phone_no == "5550100177"


@pytest.mark.parametrize("field,value", [("notes", {"text": "hi"}), ("first_name", ["Carl"]), ("status", True)])
def test_onboard_rejects_non_text_values(app, client, field, value):
    _tenant_with_rep(app, client, admin_email="a@example.com", rep_email="rep@example.com")
    r = client.post("/webhooks/customer-onboard", json=_payload(**{field: value}), headers=SECRET)
    assert r.status_code == 400
    assert r.json["message"] == f"Invalid value for {field}"
    with session_scope(app) as s:
        assert s.query(Customer).count() == 0


@pytest.mark.parametrize("body", [[1, 2], "text", 42])
def test_onboard_non_object_body_is_missing_fields(client, body):
    r = client.post("/webhooks/customer-onboard", json=body, headers=SECRET)
    assert r.status_code == 400
    assert r.json["message"] == "Missing required fields"


def test_onboard_checks_fields_before_server_secret(app, client):
    app.config["WEBHOOK_SECRET"] = ""
    r = client.post("/webhooks/customer-onboard", json={"first_name": "Carl"}, headers=SECRET)
    assert r.status_code == 400
    assert r.json["message"] == "Missing required fields"
