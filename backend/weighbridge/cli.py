# Overview: Flask CLI command groups for bootstrap, axle configuration and offline sync.

# backend/weighbridge/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--tenant "Tenant Name"] [--site-prefix SITE1]
#   Idempotent bootstrap: tenant, site, weighbridge, roles, permissions and users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Axle configuration:
# - python -m flask axles show 12
# - python -m flask axles set 12 --axle 1:Steer:6000 --axle 2:Drive:10000
#
# Offline sync (offline site and authoritative store use different DATABASE_URLs):
# - python -m flask sync export --tenant-id 1 --site-id 7 --out batch.json      (offline site)
# - python -m flask sync reconcile batch.json --tenant-id 1 --out report.json   (authoritative)
# - python -m flask sync ack report.json --tenant-id 1                          (offline site)

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import WeighingError
from .models import Role, Site, Tenant, User, Weighbridge
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError
from .services import axle_config_service
from .services import permission_service
from .services import sync_service
from .services import tenant_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Default Tenant', help='Tenant name')
@click.option('--tenant-code', default='DEFAULT', help='Tenant code')
@click.option('--site-prefix', default='SITE1', help='Prefix of the default site')
@with_appcontext
def init_system(tenant_name, tenant_code, site_prefix):
    """
    Initialize the weighbridge system.

    Creates (when missing):
    - Default tenant, site and weighbridge
    - Roles: admin, supervisor, operator, sync_agent
    - Permissions and their default role grants
    - Users: admin, supervisor, operator, sync_agent (password "Password123!")

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing weighbridge system...")

    tenant = db.session.query(Tenant).first()
    if not tenant:
        tenant = tenant_service.create_tenant(tenant_name, tenant_code)
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    site = db.session.query(Site).filter_by(tenant_id=tenant.id).first()
    if not site:
        site = tenant_service.create_site(tenant.id, "Main Site", site_prefix)
        click.echo(f"PASS Created site: {site.name} (prefix {site.prefix})")
    else:
        click.echo(f"PASS Using existing site: {site.name} (prefix {site.prefix})")

    weighbridge = db.session.query(Weighbridge).filter_by(site_id=site.id).first()
    if not weighbridge:
        weighbridge = tenant_service.create_weighbridge(site.id, "Weighbridge 1", "WB1", total_decks=2)
        click.echo(f"PASS Created weighbridge: {weighbridge.name} (ID: {weighbridge.id})")

    click.echo("\nLIST Creating roles...")
    create_default_roles(tenant.id)
    roles = db.session.query(Role).filter_by(tenant_id=tenant.id).all()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    click.echo("\nSECURITY Initializing permissions...")
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions(tenant.id)
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    for role_name in ("admin", "supervisor", "operator", "sync_agent"):
        existing = db.session.query(User).filter_by(tenant_id=tenant.id, username=role_name).first()
        if existing:
            click.echo(f"WARN  User '{role_name}' already exists, skipping...")
            continue
        try:
            user = create_user(
                username=role_name,
                email=f"{role_name}@weighbridge.local",
                password=default_password,
                tenant_id=tenant.id,
                site_id=site.id,
            )
            assign_role(user.id, role_name)
            click.echo(f"PASS Created user: {role_name} with role '{role_name}'")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user '{role_name}': {str(e)}")

    click.echo("\nDONE Weighbridge system initialized")
    click.echo("Default password for all users: Password123! (CHANGE IN PRODUCTION!)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# AXLE CONFIGURATION
# =============================================================================

@click.group('axles')
def axles_group():
    """Per-vehicle axle limits."""


def _parse_axle_option(raw: str) -> dict:
    parts = raw.split(":")
    if len(parts) != 3:
        raise click.BadParameter(f"'{raw}' is not NUMBER:TYPE:MAX_WEIGHT")
    number, axle_type, max_weight = parts
    return {
        "axle_number": number.strip(),
        "axle_type": axle_type.strip() or None,
        "max_allowed_weight": max_weight.strip(),
    }


@axles_group.command('show')
@click.argument('vehicle_id', type=int)
@with_appcontext
def show_axles(vehicle_id):
    try:
        profile = axle_config_service.get_profile(vehicle_id)
    except WeighingError as e:
        raise click.ClickException(f"FAIL {e.message}")

    click.echo(f"Vehicle {vehicle_id}: {len(profile.axles)}/{profile.declared_axle_count} axles configured")
    for entry in profile.axles:
        click.echo(f"  {entry.axle_number:>2}  {entry.axle_type or '-':<10} max {entry.max_allowed_weight}")
    if not profile.is_complete:
        click.echo("WARN  Profile is incomplete; unconfigured axles are not checked for overload")


@axles_group.command('set')
@click.argument('vehicle_id', type=int)
@click.option('--axle', 'axles', multiple=True, required=True, help='NUMBER:TYPE:MAX_WEIGHT, e.g. 1:Steer:6000')
@with_appcontext
def set_axles(vehicle_id, axles):
    """Replace the vehicle's full axle set."""
    parsed = [_parse_axle_option(raw) for raw in axles]
    try:
        profile = axle_config_service.set_profile(vehicle_id, parsed)
    except WeighingError as e:
        raise click.ClickException(f"FAIL {e.message}")
    click.echo(f"PASS Vehicle {vehicle_id} now has {len(profile.axles)} axles configured")


# =============================================================================
# OFFLINE SYNC
# =============================================================================

@click.group('sync')
def sync_group():
    """Offline site export, reconciliation and acknowledgement."""


@sync_group.command('export')
@click.option('--tenant-id', type=int, required=True)
@click.option('--site-id', type=int, required=True)
@click.option('--batch-reference', default=None)
@click.option('--out', 'out_file', type=click.File('w'), default='-')
@with_appcontext
def export_batch(tenant_id, site_id, batch_reference, out_file):
    """Write the site's finalized, unsynced offline weighings as a sync batch."""
    payload = sync_service.build_sync_batch(tenant_id, site_id, batch_reference=batch_reference)
    json.dump(payload, out_file, indent=2)
    click.echo(f"PASS Exported {len(payload['entries'])} offline weighings", err=True)


@sync_group.command('reconcile')
@click.argument('batch_file', type=click.File('r'))
@click.option('--tenant-id', type=int, required=True)
@click.option('--out', 'out_file', type=click.File('w'), default=None)
@with_appcontext
def reconcile_batch(batch_file, tenant_id, out_file):
    """Replay an exported sync batch into this (authoritative) database."""
    try:
        payload = json.load(batch_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"FAIL {batch_file.name} is not valid JSON: {e}")

    try:
        report = sync_service.reconcile(tenant_id, payload)
    except WeighingError as e:
        raise click.ClickException(f"FAIL {e.message}")

    for result in report.results:
        suffix = f" {result.docket_number}" if result.docket_number else ""
        reasons = f" ({'; '.join(result.reasons)})" if result.reasons else ""
        click.echo(f"{result.outcome:<16} {result.local_transaction_id}{suffix}{reasons}")
    click.echo(f"DONE Batch {report.batch_id}: {report.status}")

    if out_file is not None:
        json.dump(report.to_dict(), out_file, indent=2)


@sync_group.command('ack')
@click.argument('report_file', type=click.File('r'))
@click.option('--tenant-id', type=int, required=True)
@with_appcontext
def acknowledge_report(report_file, tenant_id):
    """Apply a reconcile report to this (offline site) database."""
    try:
        report = json.load(report_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"FAIL {report_file.name} is not valid JSON: {e}")

    try:
        summary = sync_service.apply_reconcile_report(tenant_id, report)
    except WeighingError as e:
        raise click.ClickException(f"FAIL {e.message}")

    click.echo(
        f"PASS {summary['synced']} synced, {summary['conflicted']} conflicted, "
        f"{summary['pending']} left pending"
    )
    for local_id in summary["unknown"]:
        click.echo(f"WARN  {local_id} is not a local weighing")
    for local_id in summary["mismatched"]:
        click.echo(f"WARN  {local_id} already holds a different authoritative docket; left unchanged")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(axles_group)
    app.cli.add_command(sync_group)
