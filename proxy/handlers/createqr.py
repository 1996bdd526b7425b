# proxy/handlers/createqr.py
"""
Create a QR payment with promo pricing.

load promo document -> evaluate -> create QR upstream with the final amount
-> commit promo usage and save (only when a promo applied).
Usage is recorded only after the VPS accepted the charge; if the save then
fails, the fresh transaction is cancelled so an unrecorded discount cannot
be paid, and the client resubmits.
"""
import logging
from urllib.parse import quote

from models.promo import to_number, utcnow
from proxy.libs.helpers import (
    base_url, client_address, error_response, json_response, parse_json_body,
)
from services.errors import ConflictError, PaymentBackendError, StoreError
from services.promos import commit, derive_device_key, evaluate

logger = logging.getLogger(__name__)


def _parse_amount(value):
    num = to_number(value)
    if num is None or isinstance(num, float) or num < 1:
        return None
    return num


def _cancel_quietly(ctx, id_transaksi):
    try:
        status, data = ctx.backend.cancel(id_transaksi)
    except PaymentBackendError as e:
        logger.warning("Could not cancel %s after failed promo save: %s", id_transaksi, e)
        return
    if status != 200:
        logger.warning("VPS refused to cancel %s: HTTP %s %s", id_transaksi, status, data)


def _record_usage(ctx, document, token, applied, device_key, id_transaksi, now):
    """Returns an error response, or None once usage is saved."""
    updated, changed = commit(document, applied, device_key, now=now)
    if not changed:
        return None

    try:
        ctx.store.save(ctx.locator, updated, token, message=f"levpay: promo usage {device_key}")
        return None
    except ConflictError:
        logger.warning("Promo usage for %s lost a save race, cancelling %s", device_key, id_transaksi)
        status, error = 409, "promo state changed, please retry"
    except StoreError as e:
        logger.error("Promo usage save failed for %s: %s", id_transaksi, e)
        status, error = 502, "promo store unavailable, please retry"

    _cancel_quietly(ctx, id_transaksi)
    return error_response(status, error, idTransaksi=id_transaksi)


def handle(ctx, req):
    body = parse_json_body(req)
    amount = _parse_amount(body.get("amount"))
    if amount is None:
        return error_response(400, "amount invalid")

    theme = "theme2" if body.get("theme") == "theme2" else "theme1"
    device_id = str(body.get("deviceId") or req.headers.get("X-Device-Id") or "").strip()
    promo_code = str(body.get("promoCode") or "").strip()
    device_key = derive_device_key(device_id, client_address(req), ctx.config.device_salt)

    try:
        document, token = ctx.store.load(ctx.locator)
    except StoreError as e:
        logger.error("Promo store load failed: %s", e)
        return error_response(502, "promo store unavailable")

    # evaluate and commit share one clock reading so they agree on the period
    now = utcnow()
    pricing = evaluate(document, amount, device_key, promo_code or None, now=now)

    try:
        status, data = ctx.backend.create_qr(pricing["amountFinal"], theme)
    except PaymentBackendError as e:
        return error_response(502, str(e))

    if not isinstance(data, dict):
        data = {"raw": data}
    if status != 200:
        return error_response(status, "VPS createqr failed", provider=data)

    inner = data.get("data") if isinstance(data.get("data"), dict) else {}
    id_transaksi = inner.get("idTransaksi") or data.get("idTransaksi")
    if not id_transaksi:
        return error_response(502, "VPS schema mismatch: missing idTransaksi", provider=data)
    id_transaksi = str(id_transaksi)

    applied = pricing["appliedPromo"]
    if applied:
        failure = _record_usage(ctx, document, token, applied, device_key, id_transaksi, now)
        if failure is not None:
            return failure
        ctx.notifier.promo_used(pricing, id_transaksi)

    vps_qr_path = inner.get("qrPngUrl") or data.get("qrPngUrl") or f"/api/qr/{quote(id_transaksi, safe='')}.png"

    out = dict(inner)
    out.update({
        "idTransaksi": id_transaksi,
        "qrUrl": f"{base_url(req)}{req.path}?action=qr&idTransaksi={quote(id_transaksi, safe='')}",
        "qrVpsUrl": ctx.backend.qr_png_url(vps_qr_path),
        "pricing": pricing,
        "amountOriginal": pricing["amountOriginal"],
        "amountFinal": pricing["amountFinal"],
        "discountAmount": pricing["discountAmount"],
        "promoApplied": applied is not None,
        "promoType": applied["kind"] if applied else None,
        "promoCode": applied["code"] if applied else None,
    })
    result = dict(data)
    result["data"] = out
    return json_response(200, result)
