from .branches import Branch
from .auth import User, SessionToken, RolePermissionOverride
from .inventory import Machine, MachineMovementLog, SimCard, SparePart, BranchPartStock, StockMovement
from .transfers import TransferOrder, TransferOrderItem, DocumentSequence
from .maintenance import ServiceAssignment, ServiceAssignmentLog, ApprovalRequest
from .ledger import BranchDebt, LedgerPayment
from .system import AuditLog, Notification

__all__ = [
    'Branch',
    'User', 'SessionToken', 'RolePermissionOverride',
    'Machine', 'MachineMovementLog', 'SimCard', 'SparePart', 'BranchPartStock', 'StockMovement',
    'TransferOrder', 'TransferOrderItem', 'DocumentSequence',
    'ServiceAssignment', 'ServiceAssignmentLog', 'ApprovalRequest',
    'BranchDebt', 'LedgerPayment',
    'AuditLog', 'Notification',
]
