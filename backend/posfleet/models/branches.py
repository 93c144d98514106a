from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

BRANCH_TYPE_BRANCH = "BRANCH"
BRANCH_TYPE_MAINTENANCE_CENTER = "MAINTENANCE_CENTER"
BRANCH_TYPE_ADMIN_AFFAIRS = "ADMIN_AFFAIRS"
VALID_BRANCH_TYPES = {BRANCH_TYPE_BRANCH, BRANCH_TYPE_MAINTENANCE_CENTER, BRANCH_TYPE_ADMIN_AFFAIRS}


class Branch(db.Model):
    """
    Organizational unit owning inventory.

    A MAINTENANCE_CENTER branch receives machines from other branches for
    repair and is the creditor side of every branch debt.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    branch_type = db.Column(db.String(32), nullable=False, default=BRANCH_TYPE_BRANCH, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_maintenance_center(self) -> bool:
        return self.branch_type == BRANCH_TYPE_MAINTENANCE_CENTER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "branch_type": self.branch_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
