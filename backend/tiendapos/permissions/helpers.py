# Overview: Lookups over the static permission catalog.

from .definitions import PERMISSION_DEFINITIONS


_BY_CODE = {perm[0]: perm for perm in PERMISSION_DEFINITIONS}


def get_all_permission_codes():
    """All permission codes, in catalog order."""
    return list(_BY_CODE)


def get_permission_categories():
    """Distinct categories, in catalog order."""
    seen = []
    for perm in PERMISSION_DEFINITIONS:
        if perm[3] not in seen:
            seen.append(perm[3])
    return seen


def validate_permission_code(code):
    return code in _BY_CODE
