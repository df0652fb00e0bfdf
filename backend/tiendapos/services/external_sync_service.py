# Overview: Outbound webhook that mirrors return documents to an external system.

from __future__ import annotations

import base64

import httpx
from flask import current_app


def is_enabled() -> bool:
    return bool((current_app.config.get("EXTERNAL_SYNC_BASE_URL") or "").strip())


def build_headers(config) -> dict[str, str]:
    """
    JSON headers plus credentials from config.

    x-api-key is sent alongside any Authorization header. When both a
    bearer token and basic credentials are configured, basic wins.
    """
    headers = {"Content-Type": "application/json"}

    api_key = config.get("EXTERNAL_SYNC_API_KEY")
    bearer = config.get("EXTERNAL_SYNC_BEARER_TOKEN")
    basic_user = config.get("EXTERNAL_SYNC_BASIC_USER")
    basic_pass = config.get("EXTERNAL_SYNC_BASIC_PASS")

    if api_key:
        headers["x-api-key"] = api_key
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    if basic_user and basic_pass:
        encoded = base64.b64encode(f"{basic_user}:{basic_pass}".encode()).decode()
        headers["Authorization"] = f"Basic {encoded}"

    return headers


def push_records(resource: str, records: list[dict], *, transport: httpx.BaseTransport | None = None) -> bool:
    """
    POST {"records": records} to <base>/<resource>.

    Returns True when delivered, False when disabled or the call failed.
    Failures are logged, never raised.
    """
    if not is_enabled():
        return False

    config = current_app.config
    url = f"{config['EXTERNAL_SYNC_BASE_URL'].strip().rstrip('/')}/{resource}"
    transport = transport or current_app.extensions.get("external_sync_transport")

    try:
        with httpx.Client(
            timeout=config.get("EXTERNAL_SYNC_TIMEOUT_SECONDS", 5),
            transport=transport,
        ) as client:
            response = client.post(url, headers=build_headers(config), json={"records": records})
            response.raise_for_status()
    except httpx.HTTPError as e:
        current_app.logger.warning("External sync to %s failed: %s", url, e)
        return False

    return True


def return_created_record(return_doc) -> dict:
    return {
        "id": return_doc.id,
        "originalSaleId": return_doc.original_sale_id,
        "customerId": return_doc.customer_id,
        "total": return_doc.total_cents,
        "reason": return_doc.reason,
        "refundMethod": return_doc.refund_method,
        "status": return_doc.status,
        "items": [
            {
                "productId": item.product_id,
                "quantity": item.quantity,
                "unitPrice": item.unit_price_cents,
                "originalSaleItemId": item.original_sale_item_id,
            }
            for item in return_doc.items
        ],
    }


def return_status_record(return_doc) -> dict:
    record = {"id": return_doc.id, "status": return_doc.status, "notes": return_doc.notes}
    if return_doc.status == "COMPLETED":
        record["items"] = [
            {
                "productId": item.product_id,
                "sku": item.product.sku if item.product else None,
                "name": item.product.name if item.product else None,
                "quantity": item.quantity,
                "unitPrice": item.unit_price_cents,
            }
            for item in return_doc.items
        ]
    return record
