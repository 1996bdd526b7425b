# services/promos.py
"""
Voucher engine.

Every function here is pure: it takes the promo document (as loaded from the
store) plus explicit parameters, and returns new values. Nothing is read from
the environment and nothing is written anywhere; persisting a returned
document is the caller's decision, driven by the `changed` flag.

Promo precedence on a charge (first eligible wins, never stacked):
  1. custom code, when the caller supplied one
  2. monthly promo, once per device per UTC calendar month
"""
import hashlib
import math

from models.promo import (
    DISCOUNT_TYPES,
    UNKNOWN_DEVICE_KEY,
    as_utc,
    clamp_percent,
    format_timestamp,
    normalize_code,
    normalize_custom_promo,
    normalize_document,
    parse_timestamp,
    to_count,
    to_number,
)
from services.errors import ValidationError

UNKNOWN_DEVICE = UNKNOWN_DEVICE_KEY
KEY_SEPARATOR = "|"

__all__ = [
    "UNKNOWN_DEVICE",
    "month_key",
    "normalize_code",
    "derive_device_key",
    "evaluate",
    "commit",
    "admin_set_monthly",
    "admin_upsert_custom",
    "admin_delete_custom",
    "admin_list_promos",
]


def month_key(now=None):
    moment = as_utc(now)
    return f"{moment.year:04d}-{moment.month:02d}"


# ---------- device identity ----------

def _digest(value, salt):
    raw = f"{value}{KEY_SEPARATOR}{salt or ''}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def derive_device_key(identifier, network_address, salt):
    """
    Pseudonymous key for promo bookkeeping.
    Device id wins over network address; callers with neither share "unknown".
    """
    did = str(identifier or "").strip()
    if did:
        return "dev:" + _digest(did, salt)

    addr = str(network_address or "").strip()
    if addr:
        return "ip:" + _digest(addr, salt)

    return UNKNOWN_DEVICE


# ---------- discount decision ----------

def _charge_amount(amount):
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValidationError("amount must be a number")
    if isinstance(amount, float):
        if not math.isfinite(amount) or not amount.is_integer():
            raise ValidationError("amount must be a whole number")
        amount = int(amount)
    if amount < 1:
        raise ValidationError("amount must be at least 1")
    return amount


def _percent_of(amount, percent):
    if isinstance(percent, int):
        return amount * percent // 100
    return math.floor(amount * percent / 100)


def _clamp_discount(raw, max_discount, amount):
    discount = int(math.floor(raw))
    if max_discount is not None:
        discount = min(discount, max_discount)
    return max(0, min(discount, amount))


def _custom_discount(doc, code, amount, device_key, now):
    promo = doc["customPromos"].get(code)
    if not promo or not promo["enabled"]:
        return None, 0
    if amount < promo["minAmount"]:
        return None, 0

    if promo["expiresAt"] is not None:
        expires_at = parse_timestamp(promo["expiresAt"])
        if expires_at is None or now > expires_at:
            return None, 0

    usage = doc["usage"].get(code) or {"totalUsedCount": 0, "perDeviceUsedCount": {}}
    if promo["usageLimit"] is not None and usage["totalUsedCount"] >= promo["usageLimit"]:
        return None, 0
    device_used = usage["perDeviceUsedCount"].get(device_key, 0)
    if promo["perDeviceLimit"] is not None and device_used >= promo["perDeviceLimit"]:
        return None, 0

    if promo["discountType"] == "fixed":
        raw = promo["value"]
    else:
        raw = _percent_of(amount, promo["value"])
    return promo, _clamp_discount(raw, promo["maxDiscount"], amount)


def _monthly_consumed(doc, device_key, period):
    state = (doc["devices"].get(device_key) or {}).get("monthlyPromoState")
    return bool(state and state["consumed"] and state["periodKey"] == period)


def evaluate(document, amount, device_key, promo_code=None, now=None):
    """
    Decide the discount for a charge without touching usage counters.

    Returns a pricing decision:
      {amountOriginal, amountFinal, discountAmount, appliedPromo}
    where appliedPromo is None or {kind, code, discountType, value, periodKey}.
    The payable amount never drops below 1.
    """
    amount = _charge_amount(amount)
    moment = as_utc(now)
    doc = normalize_document(document)

    applied = None
    discount = 0

    code = normalize_code(promo_code)
    if code:
        promo, discount = _custom_discount(doc, code, amount, device_key, moment)
        if discount > 0:
            applied = {
                "kind": "custom",
                "code": code,
                "discountType": promo["discountType"],
                "value": promo["value"],
                "periodKey": None,
            }

    if applied is None:
        discount = 0
        monthly = doc["monthlyPromo"]
        period = month_key(moment)
        if (
            monthly["enabled"]
            and amount >= monthly["minAmount"]
            and not _monthly_consumed(doc, device_key, period)
        ):
            discount = _clamp_discount(
                _percent_of(amount, monthly["percent"]), monthly["maxDiscount"], amount
            )
            if discount > 0:
                applied = {
                    "kind": "monthly",
                    "code": None,
                    "discountType": "percent",
                    "value": monthly["percent"],
                    "periodKey": period,
                }
            else:
                discount = 0

    return {
        "amountOriginal": amount,
        "amountFinal": max(1, amount - discount),
        "discountAmount": discount,
        "appliedPromo": applied,
    }


# ---------- usage commit ----------

def _ensure_device(doc, device_key, stamp):
    device = doc["devices"].setdefault(device_key, {"firstSeenAt": stamp})
    if not device.get("firstSeenAt"):
        device["firstSeenAt"] = stamp
    return device


def commit(document, applied_promo, device_key, now=None):
    """
    Record consumption of a promo returned by `evaluate`.
    Eligibility is not re-checked. Returns (document, changed).
    """
    doc = normalize_document(document)
    if not applied_promo:
        return doc, False

    moment = as_utc(now)
    stamp = format_timestamp(moment)
    kind = applied_promo.get("kind")

    if kind == "monthly":
        device = _ensure_device(doc, device_key, stamp)
        device["monthlyPromoState"] = {
            # the period evaluate() approved, even if the clock has moved on since
            "periodKey": applied_promo.get("periodKey") or month_key(moment),
            "consumed": True,
            "consumedAt": stamp,
        }
    elif kind == "custom":
        code = normalize_code(applied_promo.get("code"))
        if not code:
            raise ValidationError("custom promo without a code")
        usage = doc["usage"].setdefault(code, {"totalUsedCount": 0, "perDeviceUsedCount": {}})
        usage["totalUsedCount"] += 1
        per_device = usage["perDeviceUsedCount"]
        per_device[device_key] = per_device.get(device_key, 0) + 1
    else:
        raise ValidationError(f"unknown promo kind: {kind!r}")

    return doc, True


# ---------- admin ----------

_TRUE_WORDS = {"true", "1", "yes", "on"}
_FALSE_WORDS = {"false", "0", "no", "off"}


def _admin_bool(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValidationError(f"{field} must be true or false")


def _admin_number(value, field):
    num = to_number(value)
    if num is None:
        raise ValidationError(f"{field} must be a number")
    return num


def _admin_count(value, field, nullable=False):
    if nullable and (value is None or value == ""):
        return None
    return to_count(_admin_number(value, field))


def _admin_timestamp(value, field):
    if value is None or value == "":
        return None
    moment = parse_timestamp(value)
    if moment is None:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp")
    return format_timestamp(moment)


def admin_set_monthly(document, partial):
    """Update the monthly promo; fields left out keep their current value."""
    if partial is None:
        partial = {}
    if not isinstance(partial, dict):
        raise ValidationError("monthly promo config must be an object")

    doc = normalize_document(document)
    monthly = dict(doc["monthlyPromo"])

    if "enabled" in partial:
        monthly["enabled"] = _admin_bool(partial["enabled"], "enabled")
    if "percent" in partial:
        monthly["percent"] = clamp_percent(_admin_number(partial["percent"], "percent"))
    if "minAmount" in partial:
        monthly["minAmount"] = _admin_count(partial["minAmount"], "minAmount")
    if "maxDiscount" in partial:
        monthly["maxDiscount"] = _admin_count(partial["maxDiscount"], "maxDiscount", nullable=True)

    doc["monthlyPromo"] = monthly
    return doc, True


def admin_upsert_custom(document, fields):
    """
    Insert or update a custom promo. `code` is required; other fields merge
    over the stored entry. The older `active`, `percent` and `maxUses` names
    are accepted and lose to the current names when both are sent.
    """
    if not isinstance(fields, dict):
        raise ValidationError("promo must be an object")
    code = normalize_code(fields.get("code"))
    if not code:
        raise ValidationError("code required")

    doc = normalize_document(document)
    promo = dict(doc["customPromos"].get(code) or normalize_custom_promo({}))

    if "active" in fields:
        promo["enabled"] = _admin_bool(fields["active"], "active")
    if "percent" in fields:
        promo["discountType"] = "percent"
        promo["value"] = _admin_number(fields["percent"], "percent")
    if "maxUses" in fields:
        promo["usageLimit"] = _admin_count(fields["maxUses"], "maxUses", nullable=True)

    if "enabled" in fields:
        promo["enabled"] = _admin_bool(fields["enabled"], "enabled")
    if "discountType" in fields:
        discount_type = str(fields["discountType"] or "").strip().lower()
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError("discountType must be one of: " + ", ".join(DISCOUNT_TYPES))
        promo["discountType"] = discount_type
    if "value" in fields:
        promo["value"] = _admin_number(fields["value"], "value")
    if "minAmount" in fields:
        promo["minAmount"] = _admin_count(fields["minAmount"], "minAmount")
    if "maxDiscount" in fields:
        promo["maxDiscount"] = _admin_count(fields["maxDiscount"], "maxDiscount", nullable=True)
    if "expiresAt" in fields:
        promo["expiresAt"] = _admin_timestamp(fields["expiresAt"], "expiresAt")
    if "usageLimit" in fields:
        promo["usageLimit"] = _admin_count(fields["usageLimit"], "usageLimit", nullable=True)
    if "perDeviceLimit" in fields:
        promo["perDeviceLimit"] = _admin_count(fields["perDeviceLimit"], "perDeviceLimit", nullable=True)

    doc["customPromos"][code] = normalize_custom_promo(promo)
    return doc, True


def admin_delete_custom(document, code):
    """Remove a custom promo. Its usage counters stay so limits survive a re-create."""
    key = normalize_code(code)
    if not key:
        raise ValidationError("code required")

    doc = normalize_document(document)
    if key not in doc["customPromos"]:
        return doc, False
    del doc["customPromos"][key]
    return doc, True


def admin_list_promos(document):
    doc = normalize_document(document)
    custom = {}
    for code in sorted(doc["customPromos"]):
        entry = dict(doc["customPromos"][code])
        entry["totalUsedCount"] = (doc["usage"].get(code) or {}).get("totalUsedCount", 0)
        custom[code] = entry
    return {
        "monthlyPromo": dict(doc["monthlyPromo"]),
        "customPromos": custom,
    }
