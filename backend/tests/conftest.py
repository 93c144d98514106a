"""
Pytest fixtures for posfleet backend tests.

Provides the in-memory database, branch/user/machine factories and a few
workflow shortcuts (ship a machine to the center, open an assignment).
"""

import pytest

from posfleet import create_app
from posfleet.extensions import db
from posfleet.models import Branch, BranchPartStock, Machine, SimCard, SparePart, User
from posfleet.models.branches import BRANCH_TYPE_MAINTENANCE_CENTER
from posfleet.permissions import Role
from posfleet.services import assignment_service, notification_service, session_service, transfer_service
from posfleet.services.auth_service import hash_password
from posfleet.services.concurrency import commit_session, discard_pending_notifications
from posfleet.time_utils import utcnow

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'DB_RETRY_BACKOFF': 0,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    db.session.rollback()
    discard_pending_notifications()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()
    notification_service.init_app(app)

    yield db.session

    # Cleanup after test
    db.session.rollback()
    discard_pending_notifications()


# =============================================================================
# Branches and users
# =============================================================================

@pytest.fixture(scope='function')
def make_branch(db_session):
    def _make(code, branch_type="BRANCH", name=None):
        branch = Branch(name=name or f"Branch {code}", code=code, branch_type=branch_type, is_active=True)
        db_session.add(branch)
        db_session.commit()
        return branch
    return _make


@pytest.fixture(scope='function')
def center(make_branch):
    """Maintenance center receiving machines for repair."""
    return make_branch("MC-01", BRANCH_TYPE_MAINTENANCE_CENTER, "Main Maintenance Center")


@pytest.fixture(scope='function')
def branch_a(make_branch):
    return make_branch("BR-A", name="Branch A - Downtown")


@pytest.fixture(scope='function')
def branch_b(make_branch):
    return make_branch("BR-B", name="Branch B - Airport")


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    def _make(username, role, branch=None):
        user = User(
            username=username,
            display_name=username.replace("_", " ").title(),
            password_hash=password_hash,
            role=role,
            branch_id=branch.id if branch is not None else None,
            is_active=True,
            created_at=utcnow(),
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin", Role.SUPER_ADMIN)


@pytest.fixture(scope='function')
def manager_a(make_user, branch_a):
    return make_user("manager_a", Role.BRANCH_MANAGER, branch_a)


@pytest.fixture(scope='function')
def agent_a(make_user, branch_a):
    return make_user("agent_a", Role.CS_AGENT, branch_a)


@pytest.fixture(scope='function')
def agent_b(make_user, branch_b):
    return make_user("agent_b", Role.CS_AGENT, branch_b)


@pytest.fixture(scope='function')
def center_manager(make_user, center):
    return make_user("center_manager", Role.CENTER_MANAGER, center)


@pytest.fixture(scope='function')
def technician(make_user, center):
    return make_user("tech_one", Role.TECHNICIAN, center)


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Open a session for `user` and return the bearer header."""
    def _headers(user):
        _session, token = session_service.create_session(user)
        db_session.commit()
        return {"Authorization": f"Bearer {token}"}
    return _headers


# =============================================================================
# Inventory
# =============================================================================

@pytest.fixture(scope='function')
def make_machine(db_session):
    def _make(serial, branch, status="NEW", **kwargs):
        now = utcnow()
        machine = Machine(
            serial_number=serial,
            manufacturer="PAX",
            model="A920",
            status=status,
            branch_id=branch.id,
            created_at=now,
            updated_at=now,
            **kwargs,
        )
        db_session.add(machine)
        db_session.commit()
        return machine
    return _make


@pytest.fixture(scope='function')
def make_sim(db_session):
    def _make(serial, branch, status="ACTIVE"):
        sim = SimCard(serial_number=serial, sim_type="DATA", status=status, branch_id=branch.id, created_at=utcnow())
        db_session.add(sim)
        db_session.commit()
        return sim
    return _make


@pytest.fixture(scope='function')
def make_part(db_session):
    def _make(code, name, cost_cents):
        part = SparePart(part_code=code, name=name, default_cost_cents=cost_cents, is_active=True)
        db_session.add(part)
        db_session.commit()
        return part
    return _make


@pytest.fixture(scope='function')
def set_stock(db_session):
    def _set(branch, part, quantity):
        stock = BranchPartStock(branch_id=branch.id, part_id=part.id, quantity=quantity, updated_at=utcnow())
        db_session.add(stock)
        db_session.commit()
        return stock
    return _set


# =============================================================================
# Workflow shortcuts
# =============================================================================

@pytest.fixture(scope='function')
def ship_to_center(db_session, center, center_manager):
    """Send machines from a branch to the center and receive them there."""
    def _ship(sender, *serials):
        order = transfer_service.create_order(
            {"type": "MACHINE", "to_branch_id": center.id, "items": list(serials)},
            sender,
        )
        commit_session()
        transfer_service.receive_order(order.id, None, center_manager)
        commit_session()
        return order
    return _ship


@pytest.fixture(scope='function')
def machine_at_center(make_machine, branch_a, manager_a, ship_to_center):
    machine = make_machine("SN-1001", branch_a)
    ship_to_center(manager_a, machine.serial_number)
    return db.session.get(Machine, machine.id)


@pytest.fixture(scope='function')
def started_assignment(machine_at_center, technician, center_manager):
    """Machine assigned to the technician with the repair started."""
    assignment = assignment_service.assign(machine_at_center.id, technician.id, center_manager)
    commit_session()
    assignment_service.start(assignment.id, technician)
    commit_session()
    return assignment
