# Overview: Pytest coverage for authentication, sessions and role permissions.

"""
Authorization tests for the weighbridge API.

Verifies:
- Password policy and bcrypt hashing
- Tenant-scoped user accounts and login
- Session token expiry, idle timeout and revocation
- Built-in role grants (operator, supervisor, sync_agent, admin)
- Denied requests return 403 and are logged as security events
"""

from datetime import timedelta

import pytest

from weighbridge.models import Role, SecurityEvent, SessionToken
from weighbridge.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    PermissionCategory,
    get_permissions_by_category,
    validate_permission_code,
)
from weighbridge.services import auth_service, permission_service, session_service
from weighbridge.services.auth_service import PasswordValidationError
from weighbridge.services.permission_service import PermissionDeniedError

from conftest import DEFAULT_PASSWORD, auth_headers, get_auth_token, make_user


# =============================================================================
# PASSWORDS
# =============================================================================


class TestPasswordPolicy:

    @pytest.mark.parametrize(
        "password",
        [
            "Sh0rt!",
            "alllowercase1!",
            "ALLUPPERCASE1!",
            "NoDigitsHere!",
            "NoSpecials123",
        ],
    )
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_and_verify(self):
        hashed = auth_service.hash_password(DEFAULT_PASSWORD)

        assert hashed != DEFAULT_PASSWORD
        assert auth_service.verify_password(DEFAULT_PASSWORD, hashed) is True
        assert auth_service.verify_password("Password123?", hashed) is False

    def test_malformed_hash_never_verifies(self):
        assert auth_service.verify_password(DEFAULT_PASSWORD, "not-a-bcrypt-hash") is False


# =============================================================================
# ACCOUNTS AND LOGIN
# =============================================================================


class TestUserAccounts:

    def test_username_unique_within_tenant(self, world):
        make_user(world, "operator", "op_a")

        with pytest.raises(ValueError):
            auth_service.create_user("op_a", "other@acme.test", DEFAULT_PASSWORD, world["tenant"].id)

    def test_same_username_allowed_in_other_tenant(self, world, other_world):
        make_user(world, "operator", "op_a")
        user = make_user(other_world, "operator", "op_a")

        assert user.tenant_id == other_world["tenant"].id

    def test_site_must_belong_to_tenant(self, world, other_world):
        with pytest.raises(ValueError):
            auth_service.create_user(
                "op_x", "op_x@acme.test", DEFAULT_PASSWORD,
                world["tenant"].id, site_id=other_world["site"].id,
            )

    def test_inactive_tenant_cannot_gain_users(self, world, db_session):
        world["tenant"].is_active = False
        db_session.commit()

        with pytest.raises(ValueError):
            auth_service.create_user("late", "late@acme.test", DEFAULT_PASSWORD, world["tenant"].id)

    def test_unknown_role_rejected(self, world):
        user = make_user(world, "operator", "op_a")

        with pytest.raises(ValueError):
            auth_service.assign_role(user.id, "weighmaster")


class TestAuthenticate:

    def test_login_by_email(self, world):
        user = make_user(world, "operator", "op_a")

        found = auth_service.authenticate("op_a@acme.test", DEFAULT_PASSWORD, tenant_id=world["tenant"].id)

        assert found.id == user.id
        assert found.last_login_at is not None

    def test_wrong_password(self, world):
        make_user(world, "operator", "op_a")

        assert auth_service.authenticate("op_a", "Password123?") is None

    def test_inactive_user(self, world, db_session):
        user = make_user(world, "operator", "op_a")
        user.is_active = False
        db_session.commit()

        assert auth_service.authenticate("op_a", DEFAULT_PASSWORD) is None


# =============================================================================
# SESSIONS
# =============================================================================


class TestSessions:

    def test_token_stored_hashed(self, world):
        user = make_user(world, "operator", "op_a")

        session, token = session_service.create_session(user.id)

        assert session.token_hash != token
        assert session.token_hash == session_service.hash_token(token)

    def test_unknown_token(self, world):
        assert session_service.validate_session("deadbeef") is None

    def test_expired_session(self, world, db_session):
        user = make_user(world, "operator", "op_a")
        session, token = session_service.create_session(user.id)

        session.expires_at = session.created_at - timedelta(seconds=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_idle_session_revoked(self, world, db_session):
        user = make_user(world, "operator", "op_a")
        session, token = session_service.create_session(user.id)

        session.last_used_at = session.last_used_at - session_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.refresh(session)
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"

    def test_deactivated_user_revoked(self, world, db_session):
        user = make_user(world, "operator", "op_a")
        session, token = session_service.create_session(user.id)

        user.is_active = False
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.refresh(session)
        assert session.revoked_reason == "User account deactivated"

    def test_revoke_once(self, world, db_session):
        user = make_user(world, "operator", "op_a")
        _, token = session_service.create_session(user.id)

        assert session_service.revoke_session(token) is True
        assert session_service.revoke_session(token) is False
        assert db_session.query(SessionToken).filter_by(is_revoked=False).count() == 0

    def test_logout_requires_token(self, client, world):
        resp = client.post("/api/auth/logout")

        assert resp.status_code == 401


# =============================================================================
# ROLE GRANTS
# =============================================================================


class TestPermissionCatalogue:

    def test_role_defaults_use_known_codes(self):
        for codes in DEFAULT_ROLE_PERMISSIONS.values():
            for code in codes:
                assert validate_permission_code(code) == code

    def test_unknown_code_rejected(self):
        with pytest.raises(ValueError):
            validate_permission_code("DELETE_DOCKET")

    def test_sync_category(self):
        assert get_permissions_by_category(PermissionCategory.SYNC) == [
            "SUBMIT_SYNC_BATCH",
            "VIEW_SYNC_BATCH",
        ]


class TestRolePermissions:

    @pytest.mark.parametrize(
        "role,permission,granted",
        [
            ("operator", "OPEN_WEIGHING", True),
            ("operator", "FINALIZE_WEIGHING", True),
            ("operator", "CANCEL_WEIGHING", False),
            ("operator", "MANAGE_AXLE_CONFIG", False),
            ("operator", "SUBMIT_SYNC_BATCH", False),
            ("supervisor", "CANCEL_WEIGHING", True),
            ("supervisor", "MANAGE_AXLE_CONFIG", True),
            ("supervisor", "SUBMIT_SYNC_BATCH", False),
            ("sync_agent", "SUBMIT_SYNC_BATCH", True),
            ("sync_agent", "OPEN_WEIGHING", False),
            ("admin", "CANCEL_WEIGHING", True),
            ("admin", "SUBMIT_SYNC_BATCH", True),
        ],
    )
    def test_default_grants(self, world, role, permission, granted):
        user = make_user(world, role, f"{role}_user")

        assert permission_service.user_has_permission(user.id, permission) is granted

    def test_seeding_is_idempotent(self, world):
        assert permission_service.initialize_permissions() == 0
        assert permission_service.assign_default_role_permissions(world["tenant"].id) == 0

    def test_default_roles_per_tenant(self, world, other_world, db_session):
        names = {
            r.name for r in db_session.query(Role).filter_by(tenant_id=world["tenant"].id)
        }

        assert names == {"admin", "supervisor", "operator", "sync_agent"}
        assert db_session.query(Role).filter_by(tenant_id=other_world["tenant"].id).count() == 4

    def test_denial_is_logged(self, world, db_session):
        user = make_user(world, "operator", "op_a")

        with pytest.raises(PermissionDeniedError):
            permission_service.require_permission(
                user.id, "CANCEL_WEIGHING", resource="/api/weighings/1/cancel",
                tenant_id=world["tenant"].id,
            )

        event = db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.action == "CANCEL_WEIGHING"
        assert event.user_id == user.id
        assert event.tenant_id == world["tenant"].id
        assert event.success is False


class TestRoleMatrixOverHttp:
    """Route guards follow the role grants."""

    @pytest.mark.parametrize(
        "role,method,path,expected",
        [
            ("operator", "GET", "/api/weighings", 200),
            ("operator", "GET", "/api/sync/batches", 403),
            ("supervisor", "GET", "/api/sync/batches", 200),
            ("supervisor", "GET", "/api/sync/outbox", 403),
            ("sync_agent", "GET", "/api/weighings", 200),
            ("sync_agent", "POST", "/api/weighings", 403),
            ("sync_agent", "GET", "/api/sync/outbox", 200),
        ],
    )
    def test_route_guard(self, client, world, role, method, path, expected):
        make_user(world, role, f"{role}_user")
        token = get_auth_token(client, f"{role}_user", tenant_id=world["tenant"].id)

        resp = getattr(client, method.lower())(path, headers=auth_headers(token), json={} if method == "POST" else None)

        assert resp.status_code == expected, f"{role} {method} {path} returned {resp.status_code}"
        if expected == 403:
            assert resp.json["error"] == "Permission denied"

    def test_me_lists_role_and_permissions(self, client, world):
        make_user(world, "supervisor", "sup_a")
        token = get_auth_token(client, "sup_a", tenant_id=world["tenant"].id)

        resp = client.get("/api/auth/me", headers=auth_headers(token))

        assert resp.status_code == 200
        assert resp.json["roles"] == ["supervisor"]
        assert "CANCEL_WEIGHING" in resp.json["permissions"]
        assert "SUBMIT_SYNC_BATCH" not in resp.json["permissions"]
        assert resp.json["tenant_id"] == world["tenant"].id
