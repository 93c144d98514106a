# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    TRANSFERS = "TRANSFERS"
    MACHINES = "MACHINES"
    MAINTENANCE = "MAINTENANCE"
    APPROVALS = "APPROVALS"
    SETTLEMENT = "SETTLEMENT"
    SYSTEM = "SYSTEM"
