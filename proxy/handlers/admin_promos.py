# proxy/handlers/admin_promos.py
import logging

from proxy.libs.helpers import json_response, parse_json_body, query_arg, store_errors
from services.errors import ConflictError, ValidationError
from services.promos import (
    admin_delete_custom,
    admin_list_promos,
    admin_set_monthly,
    admin_upsert_custom,
    normalize_code,
)

logger = logging.getLogger(__name__)


def _apply(ctx, mutation, message):
    """
    load -> mutate -> save when changed.
    Admin edits are idempotent, so a lost save race is replayed once on a
    fresh copy; a second conflict goes back to the admin as 409.
    """
    for attempt in (1, 2):
        document, token = ctx.store.load(ctx.locator)
        updated, changed = mutation(document)
        if not changed:
            return updated, False
        try:
            ctx.store.save(ctx.locator, updated, token, message=message)
            return updated, True
        except ConflictError:
            if attempt == 2:
                raise
            logger.info("Promo document changed during admin edit, replaying: %s", message)


@store_errors
def set_monthly(ctx, req):
    body = parse_json_body(req)
    document, _ = _apply(ctx, lambda doc: admin_set_monthly(doc, body), "levpay: update monthly promo")
    return json_response(200, {"success": True, "data": document["monthlyPromo"]})


@store_errors
def upsert_promo(ctx, req):
    body = parse_json_body(req)
    code = normalize_code(body.get("code"))
    if not code:
        raise ValidationError("code required")
    document, _ = _apply(
        ctx, lambda doc: admin_upsert_custom(doc, body), f"levpay: upsert custom promo {code}"
    )
    return json_response(200, {
        "success": True,
        "data": {"code": code, "promo": document["customPromos"][code]},
    })


@store_errors
def delete_promo(ctx, req):
    body = parse_json_body(req)
    code = normalize_code(body.get("code") or query_arg(req, "code"))
    if not code:
        raise ValidationError("code required")
    _, deleted = _apply(
        ctx, lambda doc: admin_delete_custom(doc, code), f"levpay: delete custom promo {code}"
    )
    return json_response(200, {"success": True, "data": {"code": code, "deleted": deleted}})


@store_errors
def list_promos(ctx, req):
    document, _ = ctx.store.load(ctx.locator)
    return json_response(200, {"success": True, "data": admin_list_promos(document)})
