# Overview: Existence and status checks for the reference data a weighing points at.

"""
Reference collaborators for the weighing engine.

Jobs, vehicles, drivers, customers, products, sites and weighbridges are
owned by other parts of the system. The engine only asks two questions of
them: "does this exist in the caller's tenant?" and "is it active?".

Cross-tenant references are reported exactly like missing ones so that the
API never reveals that an id exists in another tenant.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import InvalidJob, NotFound
from ..models import Customer, Driver, Job, Product, Site, Vehicle, Weighbridge


REFERENCE_MODELS = {
    "vehicle": Vehicle,
    "driver": Driver,
    "customer": Customer,
    "product": Product,
    "site": Site,
    "weighbridge": Weighbridge,
}


def _tenant_of(entity) -> int | None:
    return entity.tenant_id


def _load(model, ref_id: int | None):
    if ref_id is None:
        return None
    return db.session.get(model, ref_id)


def find_reference_problem(kind: str, ref_id: int | None, tenant_id: int) -> str | None:
    """
    Return a human readable problem for one reference, or None if usable.

    Weighbridges are usable only while their site is also active.
    """
    model = REFERENCE_MODELS[kind]
    entity = _load(model, ref_id)
    if entity is None or _tenant_of(entity) != tenant_id:
        return f"{kind} {ref_id} not found"
    if not entity.is_active:
        return f"{kind} {ref_id} is deactivated"
    if kind == "weighbridge" and not entity.site.is_active:
        return f"weighbridge {ref_id} belongs to deactivated site {entity.site_id}"
    return None


def require_reference(kind: str, ref_id: int | None, tenant_id: int):
    """Load an active reference in the tenant or raise NotFound."""
    problem = find_reference_problem(kind, ref_id, tenant_id)
    if problem:
        raise NotFound(problem, details={"reference": kind, "id": ref_id})
    return _load(REFERENCE_MODELS[kind], ref_id)


def get_job(job_id: int | None, tenant_id: int) -> Job:
    job = _load(Job, job_id)
    if job is None or job.tenant_id != tenant_id:
        raise NotFound(f"job {job_id} not found", details={"reference": "job", "id": job_id})
    return job


def require_active_job(job_id: int | None, tenant_id: int) -> Job:
    """Jobs accept weighings only while CREATED or IN_PROGRESS."""
    job = get_job(job_id, tenant_id)
    if not job.is_active:
        raise InvalidJob(
            f"Job {job.job_number} is {job.status} and cannot accept weighings",
            details={"job_id": job.id, "status": job.status},
        )
    return job


def find_job_problem(job_id: int | None, tenant_id: int) -> str | None:
    job = _load(Job, job_id)
    if job is None or job.tenant_id != tenant_id:
        return f"job {job_id} not found"
    if not job.is_active:
        return f"job {job_id} is {job.status}"
    return None


def collect_reference_problems(tenant_id: int, references: dict[str, int | None]) -> list[str]:
    """
    Check a whole set of references without raising.

    references maps kind ("job", "vehicle", ...) to id. None ids are skipped
    for optional references ("destination_site").
    """
    problems = []
    for kind, ref_id in references.items():
        if kind == "job":
            problem = find_job_problem(ref_id, tenant_id)
        elif kind == "destination_site":
            if ref_id is None:
                continue
            problem = find_reference_problem("site", ref_id, tenant_id)
        else:
            problem = find_reference_problem(kind, ref_id, tenant_id)
        if problem:
            problems.append(problem)
    return problems
