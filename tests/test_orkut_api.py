"""
Tests for the /api/orkut proxy surface.

The store is the in-memory FakeStore and the VPS is a MagicMock, so these
cover routing, auth and the load -> evaluate -> create -> commit sequence.
"""
import datetime
from unittest.mock import MagicMock, patch

import pytest

from app import create_app
from conftest import FakeStore, make_doc
from services.errors import PaymentBackendError, StoreError
from services.promos import derive_device_key, evaluate
from utils.config import ProxyConfig

URL = "/api/orkut"
ADMIN = {"X-Admin-Key": "admin-secret"}


class TestRouting:

    def test_options_preflight(self, client):
        resp = client.options(URL + "?action=createqr")

        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "X-Admin-Key" in resp.headers["Access-Control-Allow-Headers"]

    def test_ping(self, client):
        resp = client.get(URL)
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["success"] is True
        assert body["vps"] == "http://vps.test"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_unknown_action(self, client):
        resp = client.get(URL + "?action=refund")

        assert resp.status_code == 404
        assert "createqr" in resp.get_json()["hint"]

    def test_wrong_method(self, client):
        assert client.get(URL + "?action=createqr").status_code == 405
        assert client.post(URL + "?action=status").status_code == 405

    def test_unexpected_error_is_500(self, client, backend):
        backend.create_qr.side_effect = RuntimeError("boom")

        resp = client.post(URL + "?action=createqr", json={"amount": 1000, "deviceId": "d"})

        assert resp.status_code == 500
        assert resp.get_json() == {"success": False, "error": "internal error"}


class TestCreateQr:

    def _create(self, client, **body):
        body.setdefault("amount", 1000)
        body.setdefault("deviceId", "phone-1")
        return client.post(URL + "?action=createqr", json=body)

    @pytest.mark.parametrize("amount", [None, "abc", 0, -10, 1.5, True])
    def test_invalid_amount(self, client, backend, amount):
        resp = client.post(URL + "?action=createqr", json={"amount": amount})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "amount invalid"
        backend.create_qr.assert_not_called()

    def test_monthly_discount_applied_and_recorded(self, client, store, backend, notifier):
        resp = self._create(client)
        data = resp.get_json()["data"]

        assert resp.status_code == 200
        backend.create_qr.assert_called_once_with(900, "theme1")
        assert data["idTransaksi"] == "TRX1"
        assert data["amountOriginal"] == 1000
        assert data["amountFinal"] == 900
        assert data["discountAmount"] == 100
        assert data["promoApplied"] is True
        assert data["promoType"] == "monthly"
        assert data["pricing"]["appliedPromo"]["kind"] == "monthly"
        assert data["qrUrl"] == "http://localhost/api/orkut?action=qr&idTransaksi=TRX1"
        assert data["qrVpsUrl"] == "http://vps.test/api/qr/TRX1.png"

        assert len(store.saves) == 1
        assert store.saves[0].startswith("levpay: promo usage dev:")
        notifier.promo_used.assert_called_once()

    def test_monthly_discount_once_per_device(self, client, backend):
        self._create(client)
        resp = self._create(client)

        assert resp.get_json()["data"]["promoApplied"] is False
        assert backend.create_qr.call_args.args == (1000, "theme1")

    def test_device_header_and_address_fallback(self, client, backend):
        client.post(URL + "?action=createqr", json={"amount": 1000}, headers={"X-Device-Id": "hdr"})
        again = client.post(URL + "?action=createqr", json={"amount": 1000, "deviceId": "hdr"})
        assert again.get_json()["data"]["promoApplied"] is False

        first = client.post(URL + "?action=createqr", json={"amount": 1000},
                            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        other = client.post(URL + "?action=createqr", json={"amount": 1000},
                            headers={"X-Forwarded-For": "198.51.100.2"})
        assert first.get_json()["data"]["promoApplied"] is True
        assert other.get_json()["data"]["promoApplied"] is True

    def test_custom_code_and_theme(self, config, backend, notifier):
        store = FakeStore(make_doc(custom={"SAVE20": {"discountType": "fixed", "value": 20}}))
        client = create_app(config=config, store=store, backend=backend, notifier=notifier).test_client()

        resp = self._create(client, promoCode="save20", theme="theme2")
        data = resp.get_json()["data"]

        backend.create_qr.assert_called_once_with(980, "theme2")
        assert data["promoType"] == "custom"
        assert data["promoCode"] == "SAVE20"
        assert store.document["usage"]["SAVE20"]["totalUsedCount"] == 1

    def test_no_promo_no_save(self, config, backend, notifier):
        store = FakeStore(make_doc())
        client = create_app(config=config, store=store, backend=backend, notifier=notifier).test_client()

        resp = self._create(client)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["promoApplied"] is False
        assert store.saves == []
        notifier.promo_used.assert_not_called()

    def test_upstream_failure_does_not_consume_promo(self, client, store, backend, notifier):
        backend.create_qr.return_value = (500, {"message": "gateway down"})

        resp = self._create(client)
        body = resp.get_json()

        assert resp.status_code == 500
        assert body["error"] == "VPS createqr failed"
        assert body["provider"] == {"message": "gateway down"}
        assert store.saves == []
        notifier.promo_used.assert_not_called()

    def test_upstream_unreachable(self, client, store, backend):
        backend.create_qr.side_effect = PaymentBackendError("VPS request failed: timeout")

        resp = self._create(client)

        assert resp.status_code == 502
        assert store.saves == []

    def test_missing_transaction_id(self, client, store, backend):
        backend.create_qr.return_value = (200, {"success": True, "data": {}})

        resp = self._create(client)

        assert resp.status_code == 502
        assert "idTransaksi" in resp.get_json()["error"]
        assert store.saves == []

    def test_save_conflict_fails_and_cancels(self, client, store, backend, notifier):
        store.pending_conflicts = 1

        resp = self._create(client)

        assert resp.status_code == 409
        assert resp.get_json()["idTransaksi"] == "TRX1"
        backend.cancel.assert_called_once_with("TRX1")
        notifier.promo_used.assert_not_called()

    def test_save_failure_fails_and_cancels(self, client, store, backend):
        store.save = MagicMock(side_effect=StoreError("HTTP 500"))
        backend.cancel.side_effect = PaymentBackendError("down")

        resp = self._create(client)

        assert resp.status_code == 502
        backend.cancel.assert_called_once_with("TRX1")

    def test_month_rollover_during_upstream_call(self, client, store):
        utc = datetime.timezone.utc
        june_end = datetime.datetime(2025, 6, 30, 23, 59, 59, tzinfo=utc)
        july = datetime.datetime(2025, 7, 1, 0, 0, 5, tzinfo=utc)

        # the request starts in June; any later clock reading is already July
        with patch("proxy.handlers.createqr.utcnow", return_value=june_end), \
                patch("models.promo.utcnow", return_value=july):
            resp = self._create(client)

        assert resp.get_json()["data"]["pricing"]["appliedPromo"]["periodKey"] == "2025-06"
        device_key = derive_device_key("phone-1", None, "pepper")
        state = store.document["devices"][device_key]["monthlyPromoState"]
        assert state["periodKey"] == "2025-06"
        assert evaluate(store.document, 1000, device_key, now=july)["appliedPromo"] is not None

    def test_store_unavailable(self, client, store, backend):
        store.load = MagicMock(side_effect=StoreError("Missing env: GH_TOKEN"))

        resp = self._create(client)

        assert resp.status_code == 502
        assert resp.get_json()["error"] == "promo store unavailable"
        backend.create_qr.assert_not_called()


class TestRelays:

    def test_status(self, client, store, backend):
        backend.status.return_value = (200, {"status": "paid"})

        resp = client.get(URL + "?action=status&idTransaksi=TRX1")

        assert resp.status_code == 200
        assert resp.get_json() == {"status": "paid"}
        backend.status.assert_called_once_with("TRX1")
        assert store.loads == 0

    def test_status_requires_id(self, client):
        assert client.get(URL + "?action=status").status_code == 400

    def test_cancel_from_body_or_query(self, client, backend):
        client.post(URL + "?action=cancel", json={"idTransaksi": "A"})
        client.post(URL + "?action=cancel&idTransaksi=B")

        assert [c.args[0] for c in backend.cancel.call_args_list] == ["A", "B"]

    def test_cancel_upstream_status_relayed(self, client, backend):
        backend.cancel.return_value = (404, {"success": False})
        assert client.post(URL + "?action=cancel", json={"idTransaksi": "A"}).status_code == 404

    def test_qr_png(self, client, backend):
        backend.qr_png.return_value = (200, b"\x89PNG")

        resp = client.get(URL + "?action=qr&idTransaksi=TRX1")

        assert resp.status_code == 200
        assert resp.mimetype == "image/png"
        assert resp.data == b"\x89PNG"

    def test_qr_not_found(self, client, backend):
        backend.qr_png.return_value = (404, b"")

        resp = client.get(URL + "?action=qr&idTransaksi=TRX1")

        assert resp.status_code == 404
        assert resp.get_json()["error"] == "QR not found on VPS"

    def test_setstatus_requires_secret(self, client, backend):
        resp = client.post(URL + "?action=setstatus", json={"idTransaksi": "T", "status": "paid"})

        assert resp.status_code == 401
        backend.set_status.assert_not_called()

    def test_setstatus_with_secret(self, client, backend):
        backend.set_status.return_value = (200, {"success": True})

        resp = client.post(
            URL + "?action=setstatus",
            json={"idTransaksi": "T", "status": "paid", "paidVia": "qris"},
            headers={"Authorization": "Bearer cb-secret"},
        )

        assert resp.status_code == 200
        backend.set_status.assert_called_once_with("T", "paid", paid_at=None, note=None, paid_via="qris")

    def test_setstatus_open_without_configured_secret(self, store, backend, notifier):
        client = create_app(
            config=ProxyConfig(vps_base="http://vps.test"),
            store=store, backend=backend, notifier=notifier,
        ).test_client()
        backend.set_status.return_value = (200, {"success": True})

        resp = client.post(URL + "?action=setstatus", json={"idTransaksi": "T", "status": "paid"})
        assert resp.status_code == 200

    def test_setstatus_validation(self, client):
        resp = client.post(URL + "?action=setstatus", json={"idTransaksi": "T"},
                           headers={"X-Callback-Secret": "cb-secret"})
        assert resp.status_code == 400


class TestAdmin:

    def test_requires_admin_key(self, client, store):
        assert client.get(URL + "?action=admin_list_promos").status_code == 401
        wrong = client.get(URL + "?action=admin_list_promos", headers={"X-Admin-Key": "nope"})
        assert wrong.status_code == 401
        assert store.loads == 0

    def test_closed_when_no_key_configured(self, store, backend, notifier):
        client = create_app(
            config=ProxyConfig(vps_base="http://vps.test"),
            store=store, backend=backend, notifier=notifier,
        ).test_client()

        resp = client.get(URL + "?action=admin_list_promos", headers={"Authorization": "Bearer "})
        assert resp.status_code == 401

    def test_set_monthly(self, client, store):
        resp = client.post(URL + "?action=admin_set_monthly", json={"percent": 25, "maxDiscount": 5000},
                           headers=ADMIN)

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"enabled": True, "percent": 25, "minAmount": 0, "maxDiscount": 5000}
        assert store.saves == ["levpay: update monthly promo"]

    def test_upsert_and_list(self, client, store):
        resp = client.post(URL + "?action=admin_upsert_promo",
                           json={"code": "save20", "discountType": "fixed", "value": 20, "usageLimit": 50},
                           headers={"Authorization": "Bearer admin-secret"})

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["code"] == "SAVE20"
        assert data["promo"]["usageLimit"] == 50
        assert store.saves == ["levpay: upsert custom promo SAVE20"]

        listing = client.get(URL + "?action=admin_list_promos", headers=ADMIN).get_json()["data"]
        assert listing["customPromos"]["SAVE20"]["totalUsedCount"] == 0
        assert len(store.saves) == 1

    def test_upsert_requires_code(self, client, store):
        resp = client.post(URL + "?action=admin_upsert_promo", json={"value": 20}, headers=ADMIN)

        assert resp.status_code == 400
        assert store.loads == 0

    def test_upsert_invalid_field(self, client, store):
        resp = client.post(URL + "?action=admin_upsert_promo",
                           json={"code": "X", "discountType": "bogo"}, headers=ADMIN)

        assert resp.status_code == 400
        assert store.saves == []

    def test_delete(self, config, backend, notifier):
        store = FakeStore(make_doc(custom={"SAVE20": {"discountType": "fixed", "value": 20}}))
        client = create_app(config=config, store=store, backend=backend, notifier=notifier).test_client()

        resp = client.post(URL + "?action=admin_delete_promo", json={"code": "save20"}, headers=ADMIN)
        assert resp.get_json()["data"] == {"code": "SAVE20", "deleted": True}
        assert "SAVE20" not in store.document["customPromos"]

        resp = client.post(URL + "?action=admin_delete_promo", json={"code": "save20"}, headers=ADMIN)
        assert resp.get_json()["data"]["deleted"] is False
        assert len(store.saves) == 1

    def test_conflict_is_replayed_once(self, client, store):
        store.pending_conflicts = 1

        resp = client.post(URL + "?action=admin_set_monthly", json={"percent": 30}, headers=ADMIN)

        assert resp.status_code == 200
        assert store.loads == 2
        assert store.document["monthlyPromo"]["percent"] == 30

    def test_repeated_conflict_is_409(self, client, store):
        store.pending_conflicts = 2

        resp = client.post(URL + "?action=admin_set_monthly", json={"percent": 30}, headers=ADMIN)

        assert resp.status_code == 409
        assert store.saves == []

    def test_store_failure_is_502(self, client, store):
        store.load = MagicMock(side_effect=StoreError("HTTP 401"))

        resp = client.get(URL + "?action=admin_list_promos", headers=ADMIN)
        assert resp.status_code == 502

    def test_legacy_action_names(self, client, store):
        resp = client.post(URL + "?action=admin_custom_promo",
                           json={"code": "old", "percent": 15, "maxUses": 10}, headers=ADMIN)
        assert resp.get_json()["data"]["promo"]["usageLimit"] == 10

        resp = client.post(URL + "?action=admin_monthly_promo", json={"percent": 5}, headers=ADMIN)
        assert resp.get_json()["data"]["percent"] == 5
