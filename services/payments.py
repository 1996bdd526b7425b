# services/payments.py
import logging
from urllib.parse import quote

import requests

from services.errors import PaymentBackendError

logger = logging.getLogger(__name__)


def _payload(resp):
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text}


class PaymentBackend:
    """
    Client for the upstream payment server (VPS).
    Every call returns (status_code, payload) whatever the HTTP status;
    only transport failures raise PaymentBackendError.
    """

    def __init__(self, base_url, timeout=15.0, qr_timeout=20.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.qr_timeout = qr_timeout

    def _request(self, method, path, timeout=None, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            return requests.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("VPS %s %s failed: %s", method, path, e)
            raise PaymentBackendError(f"VPS request failed: {e}") from e

    def create_qr(self, amount, theme):
        resp = self._request(
            "POST", "/api/createqr",
            timeout=self.qr_timeout,
            json={"amount": amount, "theme": theme},
        )
        return resp.status_code, _payload(resp)

    def status(self, id_transaksi):
        resp = self._request("GET", "/api/status", params={"idTransaksi": id_transaksi})
        return resp.status_code, _payload(resp)

    def cancel(self, id_transaksi):
        resp = self._request("POST", "/api/cancel", json={"idTransaksi": id_transaksi})
        return resp.status_code, _payload(resp)

    def set_status(self, id_transaksi, status, paid_at=None, note=None, paid_via=None):
        body = {
            "idTransaksi": id_transaksi,
            "status": status,
            "paidAt": paid_at,
            "note": note,
            "paidVia": paid_via,
        }
        resp = self._request("POST", "/api/status", json=body)
        return resp.status_code, _payload(resp)

    def qr_png(self, id_transaksi):
        resp = self._request(
            "GET", f"/api/qr/{quote(str(id_transaksi), safe='')}.png",
            timeout=self.qr_timeout,
        )
        return resp.status_code, resp.content

    def qr_png_url(self, qr_path):
        """Absolute URL for a QR path reported by the VPS (e.g. /api/qr/<id>.png)."""
        return f"{self.base_url}{qr_path}"
