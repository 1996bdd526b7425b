# proxy/handlers/transactions.py
# status / cancel / setstatus: straight relays to the VPS, the promo document is never touched
from proxy.libs.helpers import error_response, json_response, parse_json_body, query_arg
from services.errors import PaymentBackendError


def _relay(call, *args, **kwargs):
    try:
        status, data = call(*args, **kwargs)
    except PaymentBackendError as e:
        return error_response(502, str(e))
    return json_response(status, data)


def status(ctx, req):
    id_transaksi = query_arg(req, "idTransaksi")
    if not id_transaksi:
        return error_response(400, "idTransaksi required")
    return _relay(ctx.backend.status, id_transaksi)


def cancel(ctx, req):
    body = parse_json_body(req)
    id_transaksi = str(body.get("idTransaksi") or query_arg(req, "idTransaksi")).strip()
    if not id_transaksi:
        return error_response(400, "idTransaksi required")
    return _relay(ctx.backend.cancel, id_transaksi)


def set_status(ctx, req):
    body = parse_json_body(req)
    id_transaksi = body.get("idTransaksi")
    new_status = body.get("status")
    if not id_transaksi or not new_status:
        return error_response(400, "idTransaksi & status required")
    return _relay(
        ctx.backend.set_status,
        id_transaksi,
        new_status,
        paid_at=body.get("paidAt"),
        note=body.get("note"),
        paid_via=body.get("paidVia"),
    )
