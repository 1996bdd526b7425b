# models/promo.py
"""
Shape of the promo document persisted in the document store.

The document is plain JSON:
  - monthlyPromo:  {enabled, percent, minAmount, maxDiscount}
  - customPromos:  {CODE: {enabled, discountType, value, minAmount, maxDiscount,
                           expiresAt, usageLimit, perDeviceLimit}}
  - devices:       {deviceKey: {firstSeenAt, monthlyPromoState?}}
  - usage:         {CODE: {totalUsedCount, perDeviceUsedCount}}

`normalize_document` turns whatever the store returned into that shape and
never raises. It also migrates the older `promo.monthlyFirst` / `promo.custom`
layout.
"""
import datetime
import math
import re

DOCUMENT_VERSION = 2
DISCOUNT_TYPES = ("percent", "fixed")

# usage recorded before per-device counters existed is attributed here
LEGACY_DEVICE_KEY = "legacy"

# device keys written by derive_device_key: "dev:"/"ip:" + salted sha256, or "unknown"
HASHED_DEVICE_KEY = re.compile(r"^(dev|ip):[0-9a-f]{64}$")
UNKNOWN_DEVICE_KEY = "unknown"

DEFAULT_MONTHLY_PROMO = {
    "enabled": True,
    "percent": 10,
    "minAmount": 0,
    "maxDiscount": None,
}

DEFAULT_CUSTOM_PROMO = {
    "enabled": True,
    "discountType": "percent",
    "value": 0,
    "minAmount": 0,
    "maxDiscount": None,
    "expiresAt": None,
    "usageLimit": None,
    "perDeviceLimit": None,
}


def default_document():
    return {
        "version": DOCUMENT_VERSION,
        "monthlyPromo": dict(DEFAULT_MONTHLY_PROMO),
        "customPromos": {},
        "devices": {},
        "usage": {},
    }


# ---------- coercion helpers ----------

def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(moment=None):
    """Aware UTC datetime; naive values are read as UTC, None means now."""
    if moment is None:
        return utcnow()
    if moment.tzinfo is None:
        return moment.replace(tzinfo=datetime.timezone.utc)
    return moment.astimezone(datetime.timezone.utc)


def format_timestamp(moment):
    return as_utc(moment).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value):
    """ISO-8601 string (or datetime) -> aware UTC datetime, None if unparseable."""
    if isinstance(value, datetime.datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.datetime.fromisoformat(text))
    except ValueError:
        return None


def to_number(value, default=None):
    """JSON number or numeric string -> int/float; anything else -> default."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        num = value
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if isinstance(num, float):
        if not math.isfinite(num):
            return default
        if num.is_integer():
            return int(num)
    return num


def to_count(value, default=None):
    """Non-negative integer, floored; default when value is not a number."""
    num = to_number(value)
    if num is None:
        return default
    return max(0, int(math.floor(num)))


def clamp_percent(value):
    num = to_number(value, 0)
    return max(0, min(100, num))


def to_bool(value, default):
    if isinstance(value, bool):
        return value
    return default


def normalize_code(code):
    if code is None:
        return ""
    return str(code).strip().upper()


def _as_dict(value):
    return value if isinstance(value, dict) else {}


def _as_text(value):
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# ---------- normalization ----------

def normalize_monthly_promo(raw):
    raw = _as_dict(raw)
    return {
        "enabled": to_bool(raw.get("enabled"), DEFAULT_MONTHLY_PROMO["enabled"]),
        "percent": clamp_percent(raw.get("percent", DEFAULT_MONTHLY_PROMO["percent"])),
        "minAmount": to_count(raw.get("minAmount"), 0),
        "maxDiscount": to_count(raw.get("maxDiscount")),
    }


def normalize_custom_promo(raw):
    raw = _as_dict(raw)
    discount_type = raw.get("discountType")
    if discount_type not in DISCOUNT_TYPES:
        discount_type = DEFAULT_CUSTOM_PROMO["discountType"]

    if discount_type == "percent":
        value = clamp_percent(raw.get("value"))
    else:
        value = max(0, to_number(raw.get("value"), 0))

    return {
        "enabled": to_bool(raw.get("enabled"), True),
        "discountType": discount_type,
        "value": value,
        "minAmount": to_count(raw.get("minAmount"), 0),
        "maxDiscount": to_count(raw.get("maxDiscount")),
        # kept verbatim; an unparseable value is treated as expired
        "expiresAt": _as_text(raw.get("expiresAt")),
        "usageLimit": to_count(raw.get("usageLimit")),
        "perDeviceLimit": to_count(raw.get("perDeviceLimit")),
    }


def _normalize_device(raw):
    raw = _as_dict(raw)
    device = {"firstSeenAt": _as_text(raw.get("firstSeenAt"))}

    state = raw.get("monthlyPromoState")
    if isinstance(state, dict) and _as_text(state.get("periodKey")):
        device["monthlyPromoState"] = {
            "periodKey": _as_text(state.get("periodKey")),
            "consumed": state.get("consumed") is True,
            "consumedAt": _as_text(state.get("consumedAt")),
        }
        return device

    # legacy: {"monthlyUsed": {"2025-06": true, ...}}
    used = raw.get("monthlyUsed")
    if isinstance(used, dict):
        periods = sorted(k for k, v in used.items() if v and isinstance(k, str))
        if periods:
            device["monthlyPromoState"] = {
                "periodKey": periods[-1],
                "consumed": True,
                "consumedAt": None,
            }
    return device


def _is_legacy_device(raw):
    return isinstance(raw, dict) and "monthlyUsed" in raw and "monthlyPromoState" not in raw


def _is_hashed_key(key):
    return key == UNKNOWN_DEVICE_KEY or HASHED_DEVICE_KEY.match(key) is not None


def _normalize_usage(raw):
    raw = _as_dict(raw)
    per_device = {}
    for key, count in _as_dict(raw.get("perDeviceUsedCount")).items():
        count = to_count(count, 0)
        if count:
            per_device[str(key)] = count

    # a total larger than the per-device sum must not be lost, or limits would reset
    excess = to_count(raw.get("totalUsedCount"), 0) - sum(per_device.values())
    if excess > 0:
        per_device[LEGACY_DEVICE_KEY] = per_device.get(LEGACY_DEVICE_KEY, 0) + excess

    return {
        "totalUsedCount": sum(per_device.values()),
        "perDeviceUsedCount": per_device,
    }


def _migrate_legacy(raw):
    promo = raw.get("promo")
    if not isinstance(promo, dict):
        return raw

    migrated = dict(raw)
    migrated.pop("promo")

    monthly = promo.get("monthlyFirst")
    if "monthlyPromo" not in migrated and isinstance(monthly, dict):
        migrated["monthlyPromo"] = {
            "enabled": monthly.get("enabled") is not False,
            "percent": monthly.get("percent", 0),
        }

    custom = promo.get("custom")
    if isinstance(custom, dict):
        promos = dict(_as_dict(migrated.get("customPromos")))
        usage = dict(_as_dict(migrated.get("usage")))
        for code, entry in custom.items():
            if not isinstance(entry, dict):
                continue
            key = normalize_code(entry.get("code") or code)
            if not key or key in promos:
                continue
            promos[key] = {
                "enabled": entry.get("active") is not False,
                "discountType": "percent",
                "value": entry.get("percent", 0),
                "expiresAt": entry.get("expiresAt"),
                "usageLimit": entry.get("maxUses"),
            }
            used = to_count(entry.get("used"), 0)
            if used and key not in usage:
                usage[key] = {"totalUsedCount": used}
        migrated["customPromos"] = promos
        migrated["usage"] = usage

    return migrated


def normalize_document(raw):
    """
    Return a well-formed promo document built from `raw`.
    Always builds a fresh structure; `raw` is never modified.
    """
    if not isinstance(raw, dict):
        return default_document()

    raw = _migrate_legacy(raw)

    custom_promos = {}
    for code, entry in _as_dict(raw.get("customPromos")).items():
        key = normalize_code(code)
        if key:
            custom_promos[key] = normalize_custom_promo(entry)

    usage = {}
    for code, counters in _as_dict(raw.get("usage")).items():
        key = normalize_code(code)
        if key:
            usage[key] = _normalize_usage(counters)

    devices = {}
    for key, record in _as_dict(raw.get("devices")).items():
        key = str(key)
        if _is_legacy_device(record) and not _is_hashed_key(key):
            # raw identifiers from the old layout can never match a current key
            continue
        devices[key] = _normalize_device(record)

    return {
        "version": DOCUMENT_VERSION,
        "monthlyPromo": normalize_monthly_promo(raw.get("monthlyPromo")),
        "customPromos": custom_promos,
        "devices": devices,
        "usage": usage,
    }
