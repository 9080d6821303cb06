# Overview: Default permission sets for the built-in tenant roles.

from .helpers import get_all_permission_codes


DEFAULT_ROLES = [
    ("admin", "Full tenant access"),
    ("supervisor", "Weighbridge supervision, cancellations and axle configuration"),
    ("operator", "Weighbridge operator"),
    ("sync_agent", "Offline site synchronisation account"),
]


DEFAULT_ROLE_PERMISSIONS = {
    "admin": get_all_permission_codes(),
    "supervisor": [
        "OPEN_WEIGHING",
        "RECORD_DECK",
        "FINALIZE_WEIGHING",
        "CANCEL_WEIGHING",
        "VIEW_WEIGHING",
        "VIEW_AXLE_CONFIG",
        "MANAGE_AXLE_CONFIG",
        "VIEW_SYNC_BATCH",
    ],
    "operator": [
        "OPEN_WEIGHING",
        "RECORD_DECK",
        "FINALIZE_WEIGHING",
        "VIEW_WEIGHING",
        "VIEW_AXLE_CONFIG",
    ],
    "sync_agent": [
        "SUBMIT_SYNC_BATCH",
        "VIEW_SYNC_BATCH",
        "VIEW_WEIGHING",
    ],
}
