# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- WEIGHING --

WEIGHING_PERMISSIONS = [
    (
        "OPEN_WEIGHING",
        "Open Weighing",
        "Open a weighing session against an active job",
        PermissionCategory.WEIGHING,
    ),
    (
        "RECORD_DECK",
        "Record Deck Weight",
        "Record per-deck weight readings on an open session",
        PermissionCategory.WEIGHING,
    ),
    (
        "FINALIZE_WEIGHING",
        "Finalize Weighing",
        "Finalize a session and issue its docket number",
        PermissionCategory.WEIGHING,
    ),
    (
        "CANCEL_WEIGHING",
        "Cancel Weighing",
        "Cancel an open or in-progress weighing session",
        PermissionCategory.WEIGHING,
    ),
    (
        "VIEW_WEIGHING",
        "View Weighings",
        "View weighing sessions, deck weights and overload records",
        PermissionCategory.WEIGHING,
    ),
]


# -- CONFIGURATION --

CONFIGURATION_PERMISSIONS = [
    (
        "VIEW_AXLE_CONFIG",
        "View Axle Configuration",
        "View per-vehicle axle weight limits",
        PermissionCategory.CONFIGURATION,
    ),
    (
        "MANAGE_AXLE_CONFIG",
        "Manage Axle Configuration",
        "Replace per-vehicle axle weight limits",
        PermissionCategory.CONFIGURATION,
    ),
]


# -- SYNC --

SYNC_PERMISSIONS = [
    (
        "SUBMIT_SYNC_BATCH",
        "Submit Sync Batch",
        "Submit offline weighings for reconciliation and acknowledge results",
        PermissionCategory.SYNC,
    ),
    (
        "VIEW_SYNC_BATCH",
        "View Sync Batches",
        "View reconciliation reports",
        PermissionCategory.SYNC,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full tenant administration",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    WEIGHING_PERMISSIONS
    + CONFIGURATION_PERMISSIONS
    + SYNC_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
