# Overview: Tenant context helpers and tenant/site/weighbridge provisioning.

"""
Multi-Tenant Service

SECURITY INVARIANTS:
1. Every authenticated request has g.tenant_id set
2. Site ids from client input are validated against g.tenant_id
3. Cross-tenant access attempts are logged as security events and reported
   as "not found" so ids in other tenants are never confirmed
"""

from __future__ import annotations

from flask import g, request

from ..extensions import db
from ..models import Site, Tenant, Weighbridge
from .permission_service import log_security_event


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


def _log_cross_tenant_attempt(reason: str, tenant_id: int | None) -> None:
    user = getattr(g, "current_user", None)
    log_security_event(
        user_id=user.id if user else None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=request.path if request else None,
        action=request.method if request else None,
        reason=reason,
        ip_address=request.remote_addr if request else None,
        user_agent=request.headers.get("User-Agent") if request else None,
        tenant_id=tenant_id,
    )


def require_site_in_tenant(site_id: int, tenant_id: int) -> Site:
    """Return the site if it belongs to the tenant, else raise TenantAccessError."""
    site = db.session.get(Site, site_id)
    if not site:
        raise TenantAccessError("Site not found")

    if site.tenant_id != tenant_id:
        _log_cross_tenant_attempt(
            f"Site {site_id} belongs to tenant {site.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise TenantAccessError("Site not found")

    return site


# =============================================================================
# Provisioning
# =============================================================================

def create_tenant(name: str, code: str | None = None) -> Tenant:
    if not name or not name.strip():
        raise ValueError("Tenant name is required")
    if code:
        existing = db.session.query(Tenant).filter_by(code=code).first()
        if existing:
            raise ValueError(f"Tenant code {code} already exists")

    tenant = Tenant(name=name.strip(), code=code)
    db.session.add(tenant)
    db.session.commit()
    return tenant


def create_site(tenant_id: int, name: str, prefix: str, location_ref: str | None = None) -> Site:
    """Site prefixes are unique per tenant; they key offline local transaction ids."""
    prefix = (prefix or "").strip().upper()
    if not prefix or not prefix.isalnum():
        raise ValueError("Site prefix must be alphanumeric")

    existing = db.session.query(Site).filter_by(tenant_id=tenant_id, prefix=prefix).first()
    if existing:
        raise ValueError(f"Site prefix {prefix} already exists in this tenant")

    site = Site(tenant_id=tenant_id, name=name, prefix=prefix, location_ref=location_ref)
    db.session.add(site)
    db.session.commit()
    return site


def create_weighbridge(
    site_id: int,
    name: str,
    prefix: str,
    total_decks: int = 1,
    location: str | None = None,
) -> Weighbridge:
    if total_decks < 1:
        raise ValueError("A weighbridge needs at least one deck")

    weighbridge = Weighbridge(
        site_id=site_id,
        name=name,
        prefix=prefix,
        total_decks=total_decks,
        location=location,
    )
    db.session.add(weighbridge)
    db.session.commit()
    return weighbridge
