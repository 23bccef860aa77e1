from datetime import datetime, timedelta, timezone

import jwt

from app.config import get_settings
from app.database import utcnow
from app.models.user import User, UserRole
from app.services.auth import create_access_token
from app.services.scheduler import account_purge_key, signup_expiry_key

from conftest import PASSWORD, auth_headers

NEW_PASSWORD = "Xyz#5678"


# --- session tokens and roles ---

def test_missing_token_is_401(client):
    r = client.get("/api/v1/users/me")
    assert r.status_code == 401
    assert r.json()["message"] == "You are not logged in! Please log in to get access."


def test_malformed_and_foreign_tokens_are_401(client, make_user):
    user = make_user()
    assert client.get("/api/v1/users/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401
    forged = jwt.encode({"sub": str(user.id), "iat": datetime.now(timezone.utc)}, "other-secret", algorithm="HS256")
    assert client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {forged}"}).status_code == 401


def test_expired_token_is_401(client, make_user):
    user = make_user()
    token = create_access_token(user.id, issued_at=datetime.now(timezone.utc) - timedelta(days=2))
    r = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert "expired" in r.json()["message"]


def test_token_of_deleted_account_is_401(client, db, make_user):
    user = make_user()
    headers = auth_headers(user)
    db.delete(user)
    db.commit()
    assert client.get("/api/v1/users/me", headers=headers).status_code == 401


def test_cookie_session_is_accepted(client, make_user):
    user = make_user()
    cookie = f"{get_settings().jwt_cookie_name}={create_access_token(user.id)}"
    r = client.get("/api/v1/users/validate", headers={"Cookie": cookie})
    assert r.status_code == 200
    assert r.json()["id"] == user.id


def test_role_restriction(client, make_user):
    client_user = make_user(role=UserRole.client)
    admin = make_user(role=UserRole.admin)
    target = make_user()
    r = client.patch(f"/api/v1/users/{target.id}/role", json={"role": "provider"}, headers=auth_headers(client_user))
    assert r.status_code == 403
    r = client.patch(f"/api/v1/users/{target.id}/role", json={"role": "provider"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["role"] == "provider"


def test_admin_deletes_user_and_cancels_timers(client, db, make_user, scheduler):
    admin = make_user(role=UserRole.admin)
    target_id = make_user().id
    r = client.delete(f"/api/v1/users/{target_id}", headers=auth_headers(admin))
    assert r.status_code == 204
    assert account_purge_key(target_id) in scheduler.cancelled
    assert signup_expiry_key(target_id) in scheduler.cancelled
    db.expire_all()
    assert db.query(User).filter(User.id == target_id).first() is None
    assert client.delete(f"/api/v1/users/{target_id}", headers=auth_headers(admin)).status_code == 404


def test_update_me_and_email_change_resets_confirmation(client, db, make_user):
    user = make_user()
    user.is_email_confirmed = True
    db.commit()
    r = client.patch("/api/v1/users/me", json={"email": "New@X.com"}, headers=auth_headers(user))
    assert r.status_code == 200
    assert r.json()["email"] == "new@x.com"
    assert r.json()["is_email_confirmed"] is False


def test_update_me_rejects_taken_username(client, make_user):
    make_user("taken")
    user = make_user()
    r = client.patch("/api/v1/users/me", json={"username": "taken"}, headers=auth_headers(user))
    assert r.status_code == 400
    assert r.json()["fields"] == [{"username": "This username is not available."}]


def test_logout_clears_cookie(client):
    r = client.get("/api/v1/users/logout")
    assert r.status_code == 200
    assert "jwt=" in r.headers["set-cookie"]


# --- email confirmation ---

def test_email_confirmation_flow(client, db, make_user, outbox):
    user = make_user()
    r = client.get("/api/v1/users/send-confirmation-email", headers=auth_headers(user))
    assert r.status_code == 200
    token = outbox.last_link_token("confirm-email")

    assert client.patch(f"/api/v1/users/confirm-email/{token}").status_code == 200
    db.expire_all()
    assert db.query(User).filter(User.id == user.id).first().is_email_confirmed

    # single use
    assert client.patch(f"/api/v1/users/confirm-email/{token}").status_code == 404
    # already confirmed
    assert client.get("/api/v1/users/send-confirmation-email", headers=auth_headers(user)).status_code == 403


def test_confirmation_email_delivery_failure_removes_token(client, db, make_user, outbox):
    user = make_user()
    outbox.email_ok = False
    r = client.get("/api/v1/users/send-confirmation-email", headers=auth_headers(user))
    assert r.status_code == 500
    db.expire_all()
    refreshed = db.query(User).filter(User.id == user.id).first()
    assert refreshed.email_confirm_token_hash is None
    assert refreshed.email_confirm_expires_at is None


def test_invalid_confirmation_link_is_404(client):
    assert client.patch("/api/v1/users/confirm-email/" + "ab" * 32).status_code == 404


# --- password recovery ---

def test_forgot_password_always_answers_200(client, outbox, make_user):
    r = client.post("/api/v1/users/forgot-password", json={"email": "ghost@x.com"})
    assert r.status_code == 200
    assert outbox.emails == []

    make_user("bobby")
    r2 = client.post("/api/v1/users/forgot-password", json={"email": "bobby@x.com"})
    assert r2.status_code == 200
    assert r.json() == r2.json()
    assert len(outbox.emails) == 1


def test_forgot_password_delivery_failure_is_500(client, db, make_user, outbox):
    user = make_user("bobby")
    outbox.email_ok = False
    r = client.post("/api/v1/users/forgot-password", json={"email": "bobby@x.com"})
    assert r.status_code == 500
    db.expire_all()
    assert db.query(User).filter(User.id == user.id).first().password_reset_token_hash is None


def test_reset_password_flow(client, make_user, outbox):
    make_user("bobby")
    client.post("/api/v1/users/forgot-password", json={"email": "bobby@x.com"})
    token = outbox.last_link_token("reset-password")

    assert client.get(f"/api/v1/users/reset-password/{token}").json()["is_valid"] is True
    r = client.patch(
        f"/api/v1/users/reset-password/{token}",
        json={"password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
    )
    assert r.status_code == 200, r.text
    assert r.json()["token"]

    assert client.get(f"/api/v1/users/reset-password/{token}").json()["is_valid"] is False
    r = client.patch(
        f"/api/v1/users/reset-password/{token}",
        json={"password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
    )
    assert r.status_code == 400

    assert client.post("/api/v1/users/signin", json={"username": "bobby", "password": PASSWORD}).status_code == 401
    assert client.post("/api/v1/users/signin", json={"username": "bobby", "password": NEW_PASSWORD}).status_code == 200


def test_expired_reset_link_is_rejected(client, db, make_user, outbox):
    user = make_user("bobby")
    client.post("/api/v1/users/forgot-password", json={"email": "bobby@x.com"})
    token = outbox.last_link_token("reset-password")
    db.expire_all()
    stored = db.query(User).filter(User.id == user.id).first()
    stored.password_reset_expires_at = utcnow() - timedelta(seconds=1)
    db.commit()
    r = client.patch(
        f"/api/v1/users/reset-password/{token}",
        json={"password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
    )
    assert r.status_code == 400


# --- password change ---

def test_change_password_requires_current_password(client, make_user):
    user = make_user()
    r = client.patch(
        "/api/v1/users/change-password",
        json={"currentPassword": "Wrong#123", "password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
        headers=auth_headers(user),
    )
    assert r.status_code == 401


def test_change_password_invalidates_older_tokens(client, make_user):
    user = make_user()
    old_token = create_access_token(user.id, issued_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    old_headers = {"Authorization": f"Bearer {old_token}"}
    r = client.patch(
        "/api/v1/users/change-password",
        json={"currentPassword": PASSWORD, "password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
        headers=old_headers,
    )
    assert r.status_code == 200, r.text
    new_token = r.json()["token"]

    r = client.get("/api/v1/users/me", headers=old_headers)
    assert r.status_code == 401
    assert r.json()["message"] == "User recently changed password! Please log in again."
    assert client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {new_token}"}).status_code == 200


def test_token_issued_just_before_password_change_is_revoked(client, make_user):
    user = make_user()
    earlier = create_access_token(user.id, issued_at=datetime.now(timezone.utc) - timedelta(milliseconds=200))
    earlier_headers = {"Authorization": f"Bearer {earlier}"}
    r = client.patch(
        "/api/v1/users/change-password",
        json={"currentPassword": PASSWORD, "password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
        headers=earlier_headers,
    )
    assert r.status_code == 200, r.text

    assert client.get("/api/v1/users/me", headers=earlier_headers).status_code == 401
    assert client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {r.json()['token']}"}).status_code == 200


def test_changed_password_after_compares_sub_second():
    changed = datetime(2024, 5, 1, 10, 0, 0, 600000)
    user = User(password_changed_at=changed)
    second = changed.replace(tzinfo=timezone.utc).timestamp()
    assert user.changed_password_after(second - 0.3)
    assert not user.changed_password_after(second + 0.1)
    assert not User().changed_password_after(second)
