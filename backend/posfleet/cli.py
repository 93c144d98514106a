# Overview: Flask CLI command groups for bootstrap, inspection, and permission repair.

# backend/posfleet/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-password "Password123!"]
#   Idempotent bootstrap: creates tables, a maintenance center, and a SUPER_ADMIN user.
#
# Branch management:
# - python -m flask branches list
# - python -m flask branches create --name "Downtown" --code "DT" [--type MAINTENANCE_CENTER]
#
# User inspection/bootstrap:
# - python -m flask users list [--branch-id 1]
# - python -m flask users create --username tech1 --password "Password123!" --role TECHNICIAN --branch-id 1
#
# Fleet bootstrap (there is no CRUD API for these records):
# - python -m flask fleet add-machine --serial SN-001 --branch-id 2 [--model A920 --manufacturer PAX]
# - python -m flask fleet add-part --code PRT-LCD --name "LCD screen" --cost 150.00
# - python -m flask fleet set-stock --branch-id 1 --part-id 1 --quantity 10
# - python -m flask fleet stock --branch-id 1
#
# Permission inspection/repair:
# - python -m flask perms list [--role TECHNICIAN]
# - python -m flask perms check TECHNICIAN WORK_ASSIGNMENTS
# - python -m flask perms grant CS_AGENT TRANSITION_MACHINE
# - python -m flask perms revoke CS_AGENT TRANSITION_MACHINE
# - python -m flask perms reset CS_AGENT TRANSITION_MACHINE
#   Drop an override so the role falls back to its default.

import click
from flask.cli import with_appcontext

from .errors import WorkflowError
from .extensions import db
from .models import Branch, BranchPartStock, Machine, SparePart, User
from .models.branches import BRANCH_TYPE_MAINTENANCE_CENTER, VALID_BRANCH_TYPES
from .money import format_cents, to_cents
from .permissions import ALL_ROLES, PERMISSION_DEFINITIONS, resolve
from .services import inventory_service, permission_service
from .services.auth_service import create_user
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--center-name', default='Maintenance Center', help='Name of the default maintenance center')
@click.option('--center-code', default='MC', help='Code of the default maintenance center')
@click.option('--admin-username', default='admin', help='Username of the bootstrap SUPER_ADMIN')
@click.option('--admin-password', default='Password123!', help='Password of the bootstrap SUPER_ADMIN')
@with_appcontext
def init_system(center_name, center_code, admin_username, admin_password):
    """
    Initialize the database and seed the minimum needed to log in.

    Creates:
    - All tables (no-op for existing ones)
    - A maintenance center branch
    - A SUPER_ADMIN user

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing system...")
    db.create_all()

    center = db.session.query(Branch).filter_by(branch_type=BRANCH_TYPE_MAINTENANCE_CENTER).first()
    if center is None:
        center = Branch(name=center_name, code=center_code, branch_type=BRANCH_TYPE_MAINTENANCE_CENTER)
        db.session.add(center)
        db.session.commit()
        click.echo(f"PASS Created maintenance center: {center.name} (ID: {center.id})")
    else:
        click.echo(f"PASS Using existing maintenance center: {center.name} (ID: {center.id})")

    if db.session.query(User).filter_by(username=admin_username).first():
        click.echo(f"PASS User {admin_username} already exists")
    else:
        user = create_user(admin_username, admin_password, "SUPER_ADMIN", display_name="Administrator")
        db.session.commit()
        click.echo(f"PASS Created SUPER_ADMIN user: {user.username} (ID: {user.id})")

    click.echo("DONE System initialized")


# =============================================================================
# BRANCHES
# =============================================================================

@click.group('branches')
def branches_group():
    """Branch management commands."""


@branches_group.command('list')
@with_appcontext
def list_branches_cli():
    branches = db.session.query(Branch).order_by(Branch.id).all()
    click.echo(f"{'ID':<5} {'Code':<10} {'Type':<20} {'Active':<7} {'Name'}")
    click.echo("-" * 70)
    for b in branches:
        click.echo(f"{b.id:<5} {b.code:<10} {b.branch_type:<20} {str(b.is_active):<7} {b.name}")
    click.echo(f"\n Total: {len(branches)} branches\n")


@branches_group.command('create')
@click.option('--name', required=True, help='Branch name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--type', 'branch_type', default='BRANCH', type=click.Choice(sorted(VALID_BRANCH_TYPES)), help='Branch type')
@with_appcontext
def create_branch_cli(name, code, branch_type):
    if db.session.query(Branch).filter_by(code=code).first():
        click.echo(f"FAIL Branch with code '{code}' already exists")
        return
    branch = Branch(name=name, code=code, branch_type=branch_type, is_active=True)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Type: {branch.branch_type})")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--branch-id', type=int, help='Only users of this branch')
@with_appcontext
def list_users_cli(branch_id):
    query = db.session.query(User)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    users = query.order_by(User.id).all()
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<16} {'Branch':<7} {'Active'}")
    click.echo("-" * 60)
    for u in users:
        click.echo(f"{u.id:<5} {u.username:<20} {u.role:<16} {str(u.branch_id or '-'):<7} {u.is_active}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ALL_ROLES)), prompt=True, help='Role')
@click.option('--branch-id', type=int, help='Branch (required for branch-scoped roles)')
@click.option('--display-name', help='Name shown in logs and notifications')
@click.option('--email', help='Email address')
@with_appcontext
def create_user_cli(username, password, role, branch_id, display_name, email):
    """Create a new user. Password must be at least 8 characters."""
    try:
        user = create_user(
            username, password, role, branch_id=branch_id, display_name=display_name, email=email
        )
        db.session.commit()
        click.echo(f"PASS Created user {user.username} (ID: {user.id}, Role: {user.role})")
    except (WorkflowError, ValueError) as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")


# =============================================================================
# FLEET BOOTSTRAP
# =============================================================================

@click.group('fleet')
def fleet_group():
    """Machine and spare part bootstrap commands."""


@fleet_group.command('add-machine')
@click.option('--serial', required=True, help='Serial number (unique)')
@click.option('--branch-id', type=int, required=True, help='Owning branch')
@click.option('--model', help='Model name')
@click.option('--manufacturer', help='Manufacturer')
@click.option('--status', default='NEW', type=click.Choice(['NEW', 'STANDBY']), help='Initial status')
@with_appcontext
def add_machine_cli(serial, branch_id, model, manufacturer, status):
    if db.session.get(Branch, branch_id) is None:
        click.echo(f"FAIL Branch ID {branch_id} not found")
        return
    if db.session.query(Machine).filter_by(serial_number=serial).first():
        click.echo(f"FAIL Machine {serial} already exists")
        return
    now = utcnow()
    machine = Machine(
        serial_number=serial,
        branch_id=branch_id,
        model=model,
        manufacturer=manufacturer,
        status=status,
        created_at=now,
        updated_at=now,
    )
    db.session.add(machine)
    db.session.commit()
    click.echo(f"PASS Registered machine {machine.serial_number} (ID: {machine.id}) at branch {branch_id}")


@fleet_group.command('add-part')
@click.option('--code', required=True, help='Part code (unique)')
@click.option('--name', required=True, help='Part name')
@click.option('--cost', default='0', help='Default unit cost (decimal)')
@with_appcontext
def add_part_cli(code, name, cost):
    if db.session.query(SparePart).filter_by(part_code=code).first():
        click.echo(f"FAIL Part {code} already exists")
        return
    try:
        cost_cents = to_cents(cost, field="cost")
    except WorkflowError as e:
        click.echo(f"FAIL {e}")
        return
    part = SparePart(part_code=code, name=name, default_cost_cents=cost_cents, is_active=True)
    db.session.add(part)
    db.session.commit()
    click.echo(f"PASS Added part {part.part_code} (ID: {part.id})")


@fleet_group.command('set-stock')
@click.option('--branch-id', type=int, required=True)
@click.option('--part-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def set_stock_cli(branch_id, part_id, quantity):
    """Overwrite the on-hand quantity (initial load or physical recount)."""
    stock = db.session.query(BranchPartStock).filter_by(branch_id=branch_id, part_id=part_id).first()
    if stock is None:
        stock = BranchPartStock(branch_id=branch_id, part_id=part_id, quantity=quantity)
        db.session.add(stock)
    else:
        stock.quantity = quantity
    db.session.commit()
    click.echo(f"PASS Branch {branch_id} part {part_id} quantity = {quantity}")


@fleet_group.command('stock')
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def list_stock_cli(branch_id):
    rows = inventory_service.list_stock(branch_id)
    if not rows:
        click.echo(f"No stock recorded for branch {branch_id}")
        return
    for stock in rows:
        part = stock.part
        click.echo(
            f"{part.part_code:<16} {part.name:<32} qty={stock.quantity:<6} "
            f"unit={format_cents(part.default_cost_cents)}"
        )


# =============================================================================
# PERMISSIONS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(sorted(ALL_ROLES)), help='Only permissions held by this role')
@with_appcontext
def list_permissions_cli(role):
    if role:
        codes = sorted(permission_service.get_role_permissions(role))
        click.echo(f"\nPermissions for role: {role}\n")
        for code in codes:
            click.echo(f"  {code}")
        click.echo(f"\n Total: {len(codes)} permissions\n")
        return

    click.echo(f"{'Code':<22} {'Category':<14} {'Name'}")
    click.echo("-" * 70)
    for code, name, _description, category in PERMISSION_DEFINITIONS:
        click.echo(f"{code:<22} {category:<14} {name}")


@perms_group.command('check')
@click.argument('role')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(role, permission_code):
    overrides = permission_service.load_overrides(role)
    if resolve(role, permission_code, overrides):
        click.echo(f"PASS {role} has {permission_code}")
    else:
        click.echo(f"FAIL {role} does not have {permission_code}")


def _set_override(role, permission_code, allowed):
    try:
        permission_service.set_override(role, permission_code, allowed)
        db.session.commit()
    except WorkflowError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return
    verb = "Granted" if allowed else "Revoked"
    click.echo(f"PASS {verb} {permission_code} for {role}")


@perms_group.command('grant')
@click.argument('role')
@click.argument('permission_code')
@with_appcontext
def grant_permission_cli(role, permission_code):
    _set_override(role, permission_code, True)


@perms_group.command('revoke')
@click.argument('role')
@click.argument('permission_code')
@with_appcontext
def revoke_permission_cli(role, permission_code):
    _set_override(role, permission_code, False)


@perms_group.command('reset')
@click.argument('role')
@click.argument('permission_code')
@with_appcontext
def reset_permission_cli(role, permission_code):
    if permission_service.clear_override(role, permission_code):
        db.session.commit()
        click.echo(f"PASS {role} {permission_code} back to default")
    else:
        click.echo(f"FAIL No override for {role} {permission_code}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(users_group)
    app.cli.add_command(fleet_group)
    app.cli.add_command(perms_group)
