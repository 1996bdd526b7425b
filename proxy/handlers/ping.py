# proxy/handlers/ping.py
from proxy.libs.helpers import json_response

ROUTES = [
    "GET  /api/orkut?action=ping",
    "POST /api/orkut?action=createqr",
    "GET  /api/orkut?action=status&idTransaksi=...",
    "POST /api/orkut?action=cancel",
    "GET  /api/orkut?action=qr&idTransaksi=...",
    "POST /api/orkut?action=setstatus",
    "POST /api/orkut?action=admin_set_monthly",
    "POST /api/orkut?action=admin_upsert_promo",
    "POST /api/orkut?action=admin_delete_promo",
    "GET  /api/orkut?action=admin_list_promos",
]


def handle(ctx, req):
    return json_response(200, {
        "success": True,
        "service": "levpay-proxy",
        "vps": ctx.config.vps_base,
        "routes": ROUTES,
    })
