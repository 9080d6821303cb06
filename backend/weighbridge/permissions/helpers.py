# Overview: Lookups over the permission catalogue.

from .definitions import PERMISSION_DEFINITIONS


def get_all_permission_codes():
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permissions_by_category(category):
    """Permission codes in a category, in catalogue order."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def validate_permission_code(code):
    """Raise ValueError for a code that is not in the catalogue."""
    if code not in get_all_permission_codes():
        raise ValueError(f"Unknown permission code: {code}")
    return code
