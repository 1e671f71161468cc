import json

import pytest
from werkzeug.security import generate_password_hash

from app.crm import create_app
from app.crm import auth
from app.crm.auth import issue_access_token
from app.crm.db import session_scope
from app.crm.mailer import LogMailer, Mailer, MailerError, SmtpMailer, mailer_from_config
from app.crm.models import AuditLogEntry, Base, RoleAssignment, User
from app.crm.modules.sales_reps.models import SalesRep


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MAIL_BACKEND", "log")
    monkeypatch.setenv("SITE_URL", "https://crm.example.com/")
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def admin_headers(app, client):
    with session_scope(app) as s:
        u = User(
            email="owner@example.com",
            password_hash=generate_password_hash("password123"),
            metadata_json=json.dumps({"role": "client_admin", "company_name": "Acme Sales"}),
            is_active=True,
        )
        s.add(u)
        s.flush()
        user_id = u.id
    return _headers(app, user_id)


def _headers(app, user_id: int) -> dict:
    with app.app_context():
        with session_scope(app) as s:
            user = s.get(User, user_id)
        token = issue_access_token(user)["access_token"]
    return {"Authorization": f"Bearer {token}"}


class _BrokenMailer(Mailer):
    def send(self, to, subject, body, *, html=None):
        raise MailerError("smtp down")


INVITE = {"first_name": "Rita", "last_name": "Rep", "email": "Rita.Rep@Example.com", "phone_no": "555-010-0142"}


def test_invite_creates_identity_role_and_rep(app, client, admin_headers):
    tenant_id = client.get("/api/me", headers=admin_headers).json["tenant_id"]

    r = client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    assert r.status_code == 200, r.json
    assert r.json["success"] is True
    assert r.json["createdUser"] is True
    user_id = r.json["user_id"]

    with session_scope(app) as s:
        user = s.get(User, user_id)
        assert user.email == "rita.rep@example.com"
        assert user.password_hash is None
        assert user.invite_token_hash
        assert user.display_name == "Rita Rep"
        meta = json.loads(user.metadata_json)
        assert meta["role"] == "sales_rep"
        assert meta["first_name"] == "Rita"

        roles = s.query(RoleAssignment).filter(RoleAssignment.user_id == user_id).all()
        assert [(a.role, a.tenant_id) for a in roles] == [("sales_rep", tenant_id)]

        reps = s.query(SalesRep).all()
        assert len(reps) == 1
        assert reps[0].id == r.json["sales_rep_id"]
        assert reps[0].tenant_id == tenant_id
        assert reps[0].status == "active"
        assert reps[0].phone_no == "5550100142"

        audits = s.query(AuditLogEntry).filter(AuditLogEntry.action == "invite_sales_rep").all()
        assert len(audits) == 1
        assert audits[0].resource_id == str(user_id)

    sent = app.extensions["mailer"].sent
    assert len(sent) == 1
    assert sent[0]["to"] == "rita.rep@example.com"
    assert "https://crm.example.com/accept-invite?token=" in sent[0]["body"]


def test_reinvite_is_idempotent(app, client, admin_headers):
    r1 = client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    assert r1.status_code == 200
    with session_scope(app) as s:
        s.query(SalesRep).one().status = "inactive"

    r2 = client.post("/api/sales-reps/invite", json={**INVITE, "last_name": "Representative"}, headers=admin_headers)
    assert r2.status_code == 200
    assert r2.json["createdUser"] is False
    assert r2.json["user_id"] == r1.json["user_id"]
    assert r2.json["sales_rep_id"] == r1.json["sales_rep_id"]

    with session_scope(app) as s:
        rep = s.query(SalesRep).one()
        assert rep.status == "active"
        assert rep.last_name == "Representative"
        assert s.query(RoleAssignment).filter(RoleAssignment.user_id == r1.json["user_id"]).count() == 1
        assert s.query(AuditLogEntry).filter(AuditLogEntry.action == "invite_sales_rep").count() == 2
        assert s.get(User, r1.json["user_id"]).display_name == "Rita Representative"


def test_invite_falls_back_to_direct_creation_when_mail_fails(app, client, admin_headers):
    app.extensions["mailer"] = _BrokenMailer()

    r = client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    assert r.status_code == 200, r.json
    assert r.json["createdUser"] is True

    with session_scope(app) as s:
        users = s.query(User).filter(User.email == "rita.rep@example.com").all()
        assert len(users) == 1
        assert users[0].password_hash
        assert users[0].invite_token_hash is None


def test_invite_existing_identity_from_another_tenant(app, client, admin_headers):
    with session_scope(app) as s:
        other = User(email="rita.rep@example.com", password_hash=generate_password_hash("x" * 12), is_active=True)
        s.add(other)
        s.flush()
        other_id = other.id

    r = client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["createdUser"] is False
    assert r.json["user_id"] == other_id
    assert app.extensions["mailer"].sent == []


def test_accept_invite_then_sign_in_as_rep(app, client, admin_headers):
    tenant_id = client.get("/api/me", headers=admin_headers).json["tenant_id"]
    client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    body = app.extensions["mailer"].sent[0]["body"]
    token = body.split("token=", 1)[1].split()[0]

    r = client.post("/auth/accept-invite", json={"token": token, "password": "short"})
    assert r.status_code == 400

    r = client.post("/auth/accept-invite", json={"token": token, "password": "rep-password-1"})
    assert r.status_code == 200, r.json
    rep_h = {"Authorization": f"Bearer {r.json['access_token']}"}

    me = client.get("/api/me", headers=rep_h)
    assert me.status_code == 200
    assert me.json["role"] == "sales_rep"
    assert me.json["tenant_id"] == tenant_id
    assert me.json["tenant_name"] == "Acme Sales"

    again = client.post("/auth/accept-invite", json={"token": token, "password": "rep-password-2"})
    assert again.status_code == 400

    login = client.post("/auth/token", json={"email": "rita.rep@example.com", "password": "rep-password-1"})
    assert login.status_code == 200


def test_rep_cannot_invite(app, client, admin_headers):
    r = client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    rep_h = _headers(app, r.json["user_id"])

    denied = client.post(
        "/api/sales-reps/invite",
        json={"first_name": "Sam", "last_name": "Other", "email": "sam@example.com"},
        headers=rep_h,
    )
    assert denied.status_code == 403
    assert denied.json["message"] == "Insufficient permissions"
    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "sam@example.com").count() == 0


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"first_name": "Rita", "last_name": "Rep"},
        {"first_name": " ", "last_name": "Rep", "email": "rita@example.com"},
    ],
)
def test_invite_requires_fields(client, admin_headers, payload):
    r = client.post("/api/sales-reps/invite", json=payload, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["message"] == "Missing required fields: first_name, last_name, email"


def test_invite_requires_auth(client):
    r = client.post("/api/sales-reps/invite", json=INVITE)
    assert r.status_code == 401


def test_list_sales_reps(app, client, admin_headers):
    client.post("/api/sales-reps/invite", json=INVITE, headers=admin_headers)
    client.post(
        "/api/sales-reps/invite",
        json={"first_name": "Al", "last_name": "Alpha", "email": "al@example.com"},
        headers=admin_headers,
    )
    r = client.get("/api/sales-reps", headers=admin_headers)
    assert r.status_code == 200
    assert [rep["email"] for rep in r.json["sales_reps"]] == ["al@example.com", "rita.rep@example.com"]


def test_mailer_from_config():
    assert isinstance(mailer_from_config({"MAIL_BACKEND": "log"}), LogMailer)
    smtp = mailer_from_config({"MAIL_BACKEND": "smtp", "SMTP_SERVER": "", "EMAIL_FROM": ""})
    assert isinstance(smtp, SmtpMailer)
    with pytest.raises(MailerError, match="SMTP not configured"):
        smtp.send("someone@example.com", "subject", "body")


def test_invite_rejects_non_text_fields(app, client, admin_headers):
    r = client.post("/api/sales-reps/invite", json={**INVITE, "first_name": ["Rita"]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["message"] == "Invalid value for first_name"

    r = client.post("/api/sales-reps/invite", json=[INVITE], headers=admin_headers)
    assert r.status_code == 400
    assert r.json["message"] == "Missing required fields: first_name, last_name, email"

    with session_scope(app) as s:
        assert s.query(SalesRep).count() == 0


def test_invite_accepts_numeric_phone(app, client, admin_headers):
    r = client.post("/api/sales-reps/invite", json={**INVITE, "phone_no": 5550100142}, headers=admin_headers)
    assert r.status_code == 200, r.json
    with session_scope(app) as s:
        assert s.query(SalesRep).one().phone_no == "5550100142"
