# Overview: Organization settings, superadmin org management and routing-field validation.

"""
Organization Service

Tenant admins edit their own organization's profile through
update_organization(); developers (superadmins) can also create
organizations and change plan / is_active.

ROUTING FIELDS:
- subdomain: lower-cased, trimmed, DNS label (1-63 chars)
- custom_domain: lower-cased FQDN, or empty/null to clear it
Both must be unique across all organizations.
"""

import re

from ..extensions import db
from ..models import Organization, Store
from ..models.tenancy import PLANS
from .errors import ServiceError, not_found
from . import auth_service, permission_service


class OrganizationError(ServiceError):
    """Raised for organization operation errors."""
    pass


SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")

ORG_EDITABLE_FIELDS = (
    "name",
    "subdomain",
    "custom_domain",
    "contact_email",
    "phone",
    "address",
    "logo_url",
)
DEVELOPER_ONLY_FIELDS = ("plan", "is_active")


def get_organization(org_id: int) -> Organization:
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise not_found(OrganizationError, "Organization")
    return org


def list_organizations() -> list[Organization]:
    return db.session.query(Organization).order_by(Organization.name).all()


def normalize_subdomain(value) -> str | None:
    if value is None:
        return None
    subdomain = str(value).strip().lower()
    if not subdomain:
        return None
    if len(subdomain) > 63 or not SUBDOMAIN_RE.match(subdomain):
        raise OrganizationError("Invalid subdomain: use lowercase letters, digits and hyphens (max 63)")
    return subdomain


def normalize_custom_domain(value) -> str | None:
    if value is None:
        return None
    domain = str(value).strip().lower()
    if not domain:
        return None
    if not DOMAIN_RE.match(domain):
        raise OrganizationError("Invalid custom domain")
    return domain


def _ensure_unique(field: str, value: str | None, exclude_org_id: int | None) -> None:
    if value is None:
        return
    query = db.session.query(Organization.id).filter(getattr(Organization, field) == value)
    if exclude_org_id is not None:
        query = query.filter(Organization.id != exclude_org_id)
    if query.first():
        label = "Subdomain" if field == "subdomain" else "Custom domain"
        raise OrganizationError(f"{label} already in use", status_code=409)


def _clean_patch(data: dict, *, is_developer: bool) -> dict:
    """Whitelist and normalize an organization patch. Unknown fields are dropped."""
    allowed = ORG_EDITABLE_FIELDS + (DEVELOPER_ONLY_FIELDS if is_developer else ())
    patch = {key: data[key] for key in allowed if key in data}

    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise OrganizationError("name cannot be blank")
        patch["name"] = name

    if "subdomain" in patch:
        patch["subdomain"] = normalize_subdomain(patch["subdomain"])

    if "custom_domain" in patch:
        patch["custom_domain"] = normalize_custom_domain(patch["custom_domain"])

    for key in ("contact_email", "phone", "address", "logo_url"):
        if key in patch and patch[key] is not None:
            patch[key] = str(patch[key]).strip() or None

    if "plan" in patch and patch["plan"] not in PLANS:
        raise OrganizationError(f"plan must be one of: {', '.join(PLANS)}")

    if "is_active" in patch and not isinstance(patch["is_active"], bool):
        raise OrganizationError("is_active must be a boolean")

    return patch


def update_organization(org_id: int, data: dict, *, is_developer: bool = False) -> Organization:
    """
    Apply a whitelisted patch to an organization.

    Raises:
        OrganizationError 404: org not found
        OrganizationError 400: nothing to update, or invalid field
        OrganizationError 409: subdomain / custom_domain taken
    """
    org = get_organization(org_id)

    if not isinstance(data, dict):
        raise OrganizationError("Invalid JSON payload")

    patch = _clean_patch(data, is_developer=is_developer)
    if not patch:
        raise OrganizationError("No valid fields to update")

    _ensure_unique("subdomain", patch.get("subdomain"), org.id)
    _ensure_unique("custom_domain", patch.get("custom_domain"), org.id)

    for key, value in patch.items():
        setattr(org, key, value)

    db.session.commit()
    return org


def create_organization(
    name: str,
    code: str | None = None,
    subdomain: str | None = None,
    plan: str = "basic",
    initial_store_name: str | None = None,
) -> tuple[Organization, Store | None]:
    """
    Create an organization with its default roles (and an optional first store).

    Default roles get their default permissions when the permission
    catalog has been initialized.
    """
    name = (name or "").strip()
    if not name:
        raise OrganizationError("name is required")

    code = (code or "").strip() or None
    if code and db.session.query(Organization.id).filter_by(code=code).first():
        raise OrganizationError("Organization code already exists", status_code=409)

    subdomain = normalize_subdomain(subdomain)
    _ensure_unique("subdomain", subdomain, None)

    if plan not in PLANS:
        raise OrganizationError(f"plan must be one of: {', '.join(PLANS)}")

    org = Organization(name=name, code=code, subdomain=subdomain, plan=plan, is_active=True)
    db.session.add(org)
    db.session.flush()

    store = None
    if initial_store_name and initial_store_name.strip():
        store = Store(org_id=org.id, name=initial_store_name.strip())
        db.session.add(store)

    db.session.commit()

    auth_service.create_default_roles(org.id)
    permission_service.assign_default_role_permissions(org.id)

    return org, store
