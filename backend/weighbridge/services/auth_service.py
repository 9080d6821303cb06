# Overview: User accounts, password hashing and login for weighbridge operators.

"""
Authentication Service

Users belong to exactly one tenant. Username and email are unique within the
tenant. Passwords are hashed with bcrypt; session tokens are handled by
session_service.
"""

from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..models import Role, Site, Tenant, User, UserRole
from ..permissions import DEFAULT_ROLES
from ..time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with an uppercase letter, a lowercase letter, a
    digit and a special character.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    tenant_id: int,
    site_id: int | None = None,
) -> User:
    """
    Create a tenant user.

    Raises ValueError if the tenant is missing or inactive, the username or
    email is taken within the tenant, or the site belongs to another tenant.
    Raises PasswordValidationError for weak passwords.
    """
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        raise ValueError("Tenant not found")
    if not tenant.is_active:
        raise ValueError("Tenant is not active")

    existing = db.session.query(User).filter(
        User.tenant_id == tenant_id,
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists in this tenant")

    if site_id is not None:
        site = db.session.get(Site, site_id)
        if not site or site.tenant_id != tenant_id:
            raise ValueError("Site does not belong to this tenant")

    user = User(
        tenant_id=tenant_id,
        username=username,
        email=email,
        password_hash=hash_password(password),
        site_id=site_id,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, tenant_id: int | None = None) -> User | None:
    """
    Return the user for valid credentials, None otherwise.

    Scoped to tenant_id when given. Users of a deactivated tenant cannot log in.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if tenant_id is not None:
        query = query.filter(User.tenant_id == tenant_id)

    user = query.first()
    if not user:
        return None

    tenant = db.session.get(Tenant, user.tenant_id)
    if not tenant or not tenant.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def create_default_roles(tenant_id: int) -> list[Role]:
    """Create the built-in roles for a tenant if they don't exist."""
    roles = []
    for name, desc in DEFAULT_ROLES:
        role = db.session.query(Role).filter_by(tenant_id=tenant_id, name=name).first()
        if not role:
            role = Role(tenant_id=tenant_id, name=name, description=desc)
            db.session.add(role)
        roles.append(role)

    db.session.commit()
    return roles


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign one of the user's tenant roles to the user."""
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    role = db.session.query(Role).filter_by(tenant_id=user.tenant_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.commit()
    return user_role
