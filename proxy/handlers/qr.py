# proxy/handlers/qr.py
from flask import Response

from proxy.libs.helpers import error_response, query_arg
from services.errors import PaymentBackendError


def handle(ctx, req):
    id_transaksi = query_arg(req, "idTransaksi")
    if not id_transaksi:
        return error_response(400, "idTransaksi required")

    try:
        status, content = ctx.backend.qr_png(id_transaksi)
    except PaymentBackendError as e:
        return error_response(502, str(e))

    if status != 200:
        return error_response(status, "QR not found on VPS")
    return Response(content, status=200, mimetype="image/png")
