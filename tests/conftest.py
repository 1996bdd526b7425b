# tests/conftest.py
import copy
import datetime
from unittest.mock import MagicMock

import pytest

from app import create_app
from models.promo import DEFAULT_CUSTOM_PROMO, default_document, normalize_document
from services.errors import ConflictError
from utils.config import ProxyConfig

NOW = datetime.datetime(2025, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)


def make_doc(monthly=None, custom=None):
    """Promo document with the monthly promo off unless `monthly` says otherwise."""
    doc = default_document()
    doc["monthlyPromo"].update({"enabled": False})
    doc["monthlyPromo"].update(monthly or {})
    for code, fields in (custom or {}).items():
        promo = dict(DEFAULT_CUSTOM_PROMO)
        promo.update(fields)
        doc["customPromos"][code] = promo
    return doc


class FakeStore:
    """In-memory stand-in for a document store, with the same token rules."""

    def __init__(self, document=None):
        self.document = copy.deepcopy(document)
        self.version = 1
        self.saves = []
        self.loads = 0
        self.pending_conflicts = 0

    def load(self, locator):
        self.loads += 1
        if self.document is None:
            return default_document(), None
        return normalize_document(copy.deepcopy(self.document)), str(self.version)

    def save(self, locator, document, version_token=None, message=None):
        if self.pending_conflicts:
            self.pending_conflicts -= 1
            self.version += 1
            raise ConflictError("stale version")
        current = str(self.version) if self.document is not None else None
        if version_token != current:
            raise ConflictError("stale version")
        self.document = copy.deepcopy(document)
        self.version += 1
        self.saves.append(message)
        return str(self.version)


@pytest.fixture
def config():
    return ProxyConfig(
        vps_base="http://vps.test",
        admin_key="admin-secret",
        callback_secret="cb-secret",
        device_salt="pepper",
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def backend():
    backend = MagicMock()
    backend.create_qr.return_value = (
        200,
        {"success": True, "data": {"idTransaksi": "TRX1", "qrPngUrl": "/api/qr/TRX1.png"}},
    )
    backend.cancel.return_value = (200, {"success": True})
    backend.qr_png_url.side_effect = lambda path: "http://vps.test" + path
    return backend


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def app(config, store, backend, notifier):
    app = create_app(config=config, store=store, backend=backend, notifier=notifier)
    app.testing = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
