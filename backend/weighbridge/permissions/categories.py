# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    WEIGHING = "WEIGHING"
    CONFIGURATION = "CONFIGURATION"
    SYNC = "SYNC"
    SYSTEM = "SYSTEM"
