from __future__ import annotations

from flask import Blueprint, jsonify, request, g, current_app

from ..extensions import db
from ..decorators import require_auth, require_developer
from ..models import Organization
from ..services import session_service, organization_service
from ..services.organization_service import OrganizationError

developer_bp = Blueprint("developer", __name__, url_prefix="/api/developer")


@developer_bp.before_request
def _check_developer_tools_enabled():
    """Kill switch: DEVELOPER_TOOLS_ENABLED=false disables every developer endpoint."""
    if not current_app.config.get("DEVELOPER_TOOLS_ENABLED", True):
        return jsonify({"error": "Developer tools are disabled in this environment"}), 403


@developer_bp.get("/organizations")
@require_auth
@require_developer
def list_organizations():
    orgs = organization_service.list_organizations()
    return jsonify({"organizations": [o.to_dict() for o in orgs], "count": len(orgs)})


@developer_bp.post("/organizations")
@require_auth
@require_developer
def create_organization():
    """
    Create an organization with its default roles and an optional first store.

    Request body: {name, code?, subdomain?, plan?, initial_store_name?}
    """
    data = request.get_json(silent=True) or {}
    try:
        org, store = organization_service.create_organization(
            name=data.get("name"),
            code=data.get("code"),
            subdomain=data.get("subdomain"),
            plan=data.get("plan") or "basic",
            initial_store_name=data.get("initial_store_name"),
        )
    except OrganizationError as e:
        return jsonify({"error": str(e)}), e.status_code

    return jsonify({
        "organization": org.to_dict(),
        "store": store.to_dict() if store else None,
    }), 201


@developer_bp.patch("/organizations/<int:org_id>")
@require_auth
@require_developer
def update_organization(org_id: int):
    try:
        org = organization_service.update_organization(org_id, request.get_json(silent=True), is_developer=True)
    except OrganizationError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify({"organization": org.to_dict()})


@developer_bp.post("/switch-org")
@require_auth
@require_developer
def switch_org():
    """
    Switch the developer session into another organization.

    The current token is revoked; the response carries the new one.
    """
    data = request.get_json(silent=True) or {}
    org_id = data.get("org_id")
    if not org_id:
        return jsonify({"error": "org_id is required"}), 400

    try:
        _, token, org = session_service.create_session_for_org(
            g.session_context,
            org_id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        "token": token,
        "org_id": org.id,
        "org_name": org.name,
        "store_id": None,
    })


@developer_bp.get("/status")
@require_auth
@require_developer
def developer_status():
    user = g.current_user
    org = db.session.get(Organization, g.org_id) if g.org_id else None

    return jsonify({
        "is_developer": True,
        "user_id": user.id,
        "username": user.username,
        "org_id": g.org_id,
        "org_name": org.name if org else None,
        "store_id": g.store_id,
    })
