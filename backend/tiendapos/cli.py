# Overview: `flask` command groups for bootstrapping, tenant admin and scheduled jobs.

# backend/tiendapos/cli.py
# Run from backend/ with FLASK_APP=wsgi.py:
#
#   flask system init [--org "Kiosco Centro" --org-code CENTRO]
#       first run: tables, permission catalog, one organization with a
#       "Main Store", default roles and admin/manager/cashier users
#   flask system init-roles [--org-id 1]
#   flask system init-permissions
#   flask system reset-db --yes               local databases only
#
#   flask orgs list
#   flask orgs create --name "Kiosco Centro" --code CENTRO [--store "Main Store"]
#
#   flask users list [--org-id 1]
#   flask users create --org-id 1 --username caja2 --email caja2@tiendapos.local --role cashier
#   flask users create-developer --username dev --email dev@tiendapos.local
#
#   flask perms list [--role cashier --org-id 1] [--category LOYALTY]
#   flask perms grant|revoke cashier APPLY_COUPONS --org-id 1
#   flask perms check admin SYSTEM_ADMIN
#
#   flask coupons seed-examples --org-id 1
#   flask loyalty expire-points [--org-id 1]      nightly
#   flask loyalty birthday-bonuses                daily
#
#   flask maintenance cleanup-security-events --retention-days 90
#   flask maintenance cleanup-sessions --older-than-days 30
#   flask maintenance run-sql scripts/fix.sql [--dry-run] [--stop-on-error]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, User, Role, Permission, RolePermission, Organization
from .services.auth_service import create_user, create_developer, create_default_roles, assign_role, PasswordValidationError
from .services import permission_service
from .services import maintenance_service
from .services import session_service
from .services import coupon_service
from .services import loyalty_service
from .services import organization_service
from .services.organization_service import OrganizationError
from .services.sql_script_service import run_sql_script
from .permissions import get_permission_categories


DEFAULT_PASSWORD = "Password123!"
DEFAULT_STAFF = ("admin", "manager", "cashier")


def _resolve_org(org_id):
    """Organization by id, or the first one when org_id is None."""
    if org_id:
        return db.session.get(Organization, org_id)
    return db.session.query(Organization).order_by(Organization.id).first()


def _ensure_main_store(org) -> Store:
    store = db.session.query(Store).filter_by(org_id=org.id).order_by(Store.id).first()
    if store is None:
        store = Store(org_id=org.id, name="Main Store")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Added store '{store.name}' (ID: {store.id})")
    return store


def _ensure_staff_user(org, store, role_name: str) -> None:
    if db.session.query(User).filter_by(org_id=org.id, username=role_name).first():
        click.echo(f"SKIP {role_name}: already exists")
        return
    try:
        user = create_user(
            username=role_name,
            email=f"{role_name}@tiendapos.local",
            password=DEFAULT_PASSWORD,
            org_id=org.id,
            store_id=store.id,
        )
    except (PasswordValidationError, ValueError) as e:
        click.echo(f"FAIL {role_name}: {e}")
        return
    assign_role(user.id, role_name)
    click.echo(f"PASS {role_name}: created")


@click.group('system')
def system_group():
    """Bootstrap a fresh database."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Name for the first organization')
@click.option('--org-code', default='DEFAULT', help='Code for the first organization')
@with_appcontext
def init_system(org_name, org_code):
    """
    Bring a database up to a usable state. Re-running it only fills gaps.

    Staff users share the password "Password123!"; change it after login.
    """
    click.echo("START TiendaPOS bootstrap")
    db.create_all()
    click.echo(f"PASS Permission catalog: {permission_service.initialize_permissions()} added")

    org = _resolve_org(None)
    if org is None:
        org, _ = organization_service.create_organization(
            name=org_name, code=org_code, initial_store_name="Main Store"
        )
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        create_default_roles(org.id)
        click.echo(f"PASS Organization {org.code or org.id} already present")

    store = _ensure_main_store(org)
    granted = permission_service.assign_default_role_permissions(org.id)
    click.echo(f"PASS Role grants: {granted} added")

    for role_name in DEFAULT_STAFF:
        _ensure_staff_user(org, store, role_name)

    click.echo(f"\nDONE {org.name} / {store.name}; staff password: {DEFAULT_PASSWORD}")


@system_group.command('init-roles')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def init_roles(org_id):
    """Create any missing default role for an organization."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization yet; run `flask system init` first")
        return
    roles = create_default_roles(org.id)
    click.echo(f"PASS Roles for {org.name}: {', '.join(r.name for r in roles)}")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Sync the permission catalog and default role grants for every organization."""
    added = permission_service.initialize_permissions()
    click.echo(f"PASS Permissions: {added} added, {db.session.query(Permission).count()} total")
    granted = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Role grants: {granted} added")

    for role in db.session.query(Role).order_by(Role.org_id, Role.name).all():
        count = db.session.query(RolePermission).filter_by(role_id=role.id).count()
        click.echo(f"  org {role.org_id:<4} {role.name:<10} {count}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Local databases only."""
    if not yes:
        click.confirm("Every table will be dropped. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Schema recreated (empty). Next: flask system init")


# =============================================================================
# ORGANIZATION MANAGEMENT COMMANDS (MULTI-TENANT)
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = organization_service.list_organizations()
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Plan':<12} {'Active':<8} {'Users'}")
    click.echo("=" * 90)
    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {org.plan or '-':<12} {active_str:<8} {user_count}")
    click.echo("=" * 90 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--subdomain', help='Subdomain (optional)')
@click.option('--store', 'store_name', default='Main Store', show_default=True, help='First store name')
@with_appcontext
def create_org_cli(name, code, subdomain, store_name):
    """Create a new organization (tenant) with default roles."""
    try:
        org, store = organization_service.create_organization(
            name=name, code=code, subdomain=subdomain, initial_store_name=store_name
        )
    except OrganizationError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    if store:
        click.echo(f"     Store: {store.name} (ID: {store.id})")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(DEFAULT_STAFF), prompt=True)
@with_appcontext
def create_user_cli(org_id, username, email, password, role):
    """Add a staff user to an organization's first store."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No such organization")
        return

    store = db.session.query(Store).filter_by(org_id=org.id).order_by(Store.id).first()
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            org_id=org.id,
            store_id=store.id if store else None,
        )
        assign_role(user.id, role)
    except (PasswordValidationError, ValueError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS {username} ({role}) added to {org.name}, user ID {user.id}")


@users_group.command('create-developer')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_developer_cli(username, email, password):
    """
    Add a developer account. It belongs to no organization and enters
    one through POST /api/developer/switch-org.
    """
    try:
        user = create_developer(username, email, password)
    except (PasswordValidationError, ValueError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Developer {username} created, user ID {user.id}")


@users_group.command('list')
@click.option('--org-id', type=int, help='Only this organization')
@with_appcontext
def list_users(org_id):
    """Users with their organization and roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)
    users = query.order_by(User.org_id, User.username).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Org':<5} {'Username':<20} {'Active':<7} Roles")
    for user in users:
        roles = ["developer", *user.role_names] if user.is_developer else user.role_names
        click.echo(
            f"{user.id:<5} {user.org_id or '-':<5} {user.username:<20} "
            f"{'yes' if user.is_active else 'no':<7} {', '.join(roles) or '-'}"
        )


# =============================================================================
# PERMISSION COMMANDS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@click.option('--org-id', type=int, help='Organization of the role (default: first organization)')
@click.option('--category', type=click.Choice(get_permission_categories(), case_sensitive=False), help='Filter by category')
@with_appcontext
def list_permissions_cli(role, org_id, category):
    """List permissions, optionally filtered by role or category."""
    if role:
        org = _resolve_org(org_id)
        role_obj = db.session.query(Role).filter_by(org_id=org.id if org else None, name=role).first()
        if not role_obj:
            click.echo(f"FAIL Role '{role}' not found")
            return
        perms = sorted((rp.permission for rp in role_obj.role_permissions), key=lambda p: p.code)
        title = f"Permissions for role: {role.upper()} (org {role_obj.org_id})"
    elif category:
        perms = db.session.query(Permission).filter_by(category=category.upper()).order_by(Permission.code).all()
        title = f"Permissions in category: {category.upper()}"
    else:
        perms = db.session.query(Permission).order_by(Permission.category, Permission.code).all()
        title = "All Permissions"

    click.echo(f"\n{'=' * 80}\n{title}\n{'=' * 80}")
    click.echo(f"{'Code':<30} {'Name':<35} {'Category'}")
    click.echo("-" * 80)
    for perm in perms:
        click.echo(f"{perm.code:<30} {perm.name:<35} {perm.category}")
    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def grant_permission_cli(role_name, permission_code, org_id):
    """Grant a permission to a role."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return
    try:
        permission_service.grant_permission_to_role(org.id, role_name, permission_code)
        click.echo(f"PASS Granted '{permission_code}' to role '{role_name}' in org {org.id}")
    except ValueError as e:
        click.echo(f"FAIL Error: {e}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def revoke_permission_cli(role_name, permission_code, org_id):
    """Revoke a permission from a role."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return
    try:
        revoked = permission_service.revoke_permission_from_role(org.id, role_name, permission_code)
        if revoked:
            click.echo(f"PASS Revoked '{permission_code}' from role '{role_name}'")
        else:
            click.echo(f"WARN  Permission '{permission_code}' was not granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {e}")


@perms_group.command('check')
@click.argument('username')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(username, permission_code):
    """Check if a user has a specific permission."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    if permission_service.user_has_permission(user.id, permission_code):
        click.echo(f"PASS User '{username}' HAS permission '{permission_code}'")
    else:
        click.echo(f"FAIL User '{username}' DOES NOT HAVE permission '{permission_code}'")

    roles = user.role_names
    click.echo(f"\nUser roles: {', '.join(roles) or 'none'}")
    click.echo(f"Total permissions: {len(permission_service.get_user_permissions(user.id))}")


# =============================================================================
# COUPONS & LOYALTY JOBS
# =============================================================================

@click.group('coupons')
def coupons_group():
    """Coupon commands."""


@coupons_group.command('seed-examples')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def seed_coupons_cli(org_id):
    """Upsert the demo coupons (DESC10, FIJO50000, NAVIDAD)."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return
    coupons = coupon_service.seed_example_coupons(org.id)
    click.echo(f"PASS Seeded {len(coupons)} coupons in org {org.id}: {', '.join(c.code for c in coupons)}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty scheduled jobs."""


@loyalty_group.command('expire-points')
@click.option('--org-id', type=int, help='Limit to one organization')
@with_appcontext
def expire_points_cli(org_id):
    """Expire earned/bonus points past their expiration date."""
    count = loyalty_service.expire_points(org_id=org_id)
    click.echo(f"PASS Expired {count} point transactions")


@loyalty_group.command('birthday-bonuses')
@with_appcontext
def birthday_bonuses_cli():
    """Credit today's birthday bonuses (once per customer per year)."""
    count = loyalty_service.process_birthday_bonuses()
    click.echo(f"PASS Credited {count} birthday bonuses")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    try:
        deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired or revoked session tokens."""
    deleted = session_service.cleanup_expired_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} session tokens.")


@maintenance_group.command('run-sql')
@click.argument('sql_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--dry-run', is_flag=True, help='Split and list statements without executing')
@click.option('--stop-on-error', is_flag=True, help='Stop at the first failing statement')
@with_appcontext
def run_sql_cli(sql_file, dry_run, stop_on_error):
    """Execute a .sql file statement by statement."""
    with open(sql_file, encoding="utf-8") as fh:
        sql = fh.read()

    result = run_sql_script(sql, dry_run=dry_run, stop_on_error=stop_on_error)

    prefix = "[dry-run] " if dry_run else ""
    click.echo(
        f"{prefix}Statements: {result['total']} | executed: {result['executed']} | "
        f"ok: {result['succeeded']} | failed: {result['failed']} | skipped: {result['skipped']}"
    )
    for error in result["errors"]:
        click.echo(f"FAIL #{error['index']}: {error['error']}")
        click.echo(f"     {error['statement']}")

    if result["failed"]:
        raise SystemExit(1)
    click.echo("PASS Script finished")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(coupons_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(maintenance_group)
