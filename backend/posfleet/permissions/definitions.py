# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- TRANSFERS --

TRANSFER_PERMISSIONS = [
    (
        "VIEW_TRANSFERS",
        "View Transfer Orders",
        "List and inspect transfer orders of authorized branches",
        PermissionCategory.TRANSFERS,
    ),
    (
        "CREATE_TRANSFER",
        "Create Transfer Order",
        "Ship machines, SIM cards or spare parts to another branch",
        PermissionCategory.TRANSFERS,
    ),
    (
        "RECEIVE_TRANSFER",
        "Receive Transfer Order",
        "Accept or reject incoming transfer orders",
        PermissionCategory.TRANSFERS,
    ),
    (
        "CANCEL_TRANSFER",
        "Cancel Transfer Order",
        "Withdraw a pending outgoing transfer order",
        PermissionCategory.TRANSFERS,
    ),
]


# -- MACHINES --

MACHINE_PERMISSIONS = [
    (
        "VIEW_MACHINES",
        "View Machines",
        "View machine history and the maintenance board",
        PermissionCategory.MACHINES,
    ),
    (
        "TRANSITION_MACHINE",
        "Change Machine Status",
        "Move a machine along the lifecycle graph",
        PermissionCategory.MACHINES,
    ),
]


# -- MAINTENANCE --

MAINTENANCE_PERMISSIONS = [
    (
        "VIEW_ASSIGNMENTS",
        "View Service Assignments",
        "List repair assignments of the maintenance center",
        PermissionCategory.MAINTENANCE,
    ),
    (
        "ASSIGN_TECHNICIAN",
        "Assign Technician",
        "Hand a received machine to a technician",
        PermissionCategory.MAINTENANCE,
    ),
    (
        "WORK_ASSIGNMENTS",
        "Work Assignments",
        "Start, record parts, request approval and complete repairs",
        PermissionCategory.MAINTENANCE,
    ),
]


# -- APPROVALS --

APPROVAL_PERMISSIONS = [
    (
        "VIEW_APPROVALS",
        "View Approval Requests",
        "List repair cost approval requests",
        PermissionCategory.APPROVALS,
    ),
    (
        "REQUEST_APPROVAL",
        "Request Approval",
        "Ask a branch to approve a repair cost outside an assignment",
        PermissionCategory.APPROVALS,
    ),
    (
        "RESPOND_APPROVAL",
        "Respond to Approval",
        "Approve or reject repair costs for the branch's machines",
        PermissionCategory.APPROVALS,
    ),
]


# -- SETTLEMENT --

SETTLEMENT_PERMISSIONS = [
    (
        "VIEW_DEBTS",
        "View Pending Payments",
        "View debts between branches and maintenance centers",
        PermissionCategory.SETTLEMENT,
    ),
    (
        "PAY_DEBTS",
        "Settle Debts",
        "Record receipt-backed payment of a branch debt",
        PermissionCategory.SETTLEMENT,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "VIEW_NOTIFICATIONS",
        "View Notifications",
        "Read notifications addressed to the user or their branch",
        PermissionCategory.SYSTEM,
    ),
    (
        "INSPECT_ENTITIES",
        "Inspect Entities",
        "Read-only inspection of raw workflow records",
        PermissionCategory.SYSTEM,
    ),
    (
        "MANAGE_PERMISSIONS",
        "Manage Permissions",
        "Grant or revoke permissions per role",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    TRANSFER_PERMISSIONS
    + MACHINE_PERMISSIONS
    + MAINTENANCE_PERMISSIONS
    + APPROVAL_PERMISSIONS
    + SETTLEMENT_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
