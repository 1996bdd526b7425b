# proxy/libs/helpers.py
import functools
import hmac
import logging

from flask import jsonify

from services.errors import ConflictError, StoreError, ValidationError

logger = logging.getLogger(__name__)


def cors_headers():
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Callback-Secret, X-Admin-Key, X-Device-Id",
        "Cache-Control": "no-store",
    }


def json_response(status, obj):
    resp = jsonify(obj)
    resp.status_code = status
    return resp


def error_response(status, error, **extra):
    body = {"success": False, "error": error}
    body.update(extra)
    return json_response(status, body)


def parse_json_body(req):
    body = req.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def query_arg(req, key):
    return (req.args.get(key) or "").strip()


def presented_token(req, header):
    """Value of `header`, falling back to an `Authorization: Bearer` token."""
    got = (req.headers.get(header) or "").strip()
    if got:
        return got
    auth = (req.headers.get("Authorization") or "").strip()
    if auth[:7].lower() == "bearer ":
        return auth[7:].strip()
    return ""


def _matches(expected, got):
    return hmac.compare_digest(expected.encode("utf-8"), got.encode("utf-8"))


def is_admin(ctx, req):
    # no key configured -> admin actions stay closed
    if not ctx.config.admin_key:
        return False
    return _matches(ctx.config.admin_key, presented_token(req, "X-Admin-Key"))


def has_callback_secret(ctx, req):
    # no secret configured -> callbacks are open
    if not ctx.config.callback_secret:
        return True
    return _matches(ctx.config.callback_secret, presented_token(req, "X-Callback-Secret"))


def client_address(req):
    forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return forwarded or (req.headers.get("Client-Ip") or "").strip() or req.remote_addr or ""


def base_url(req):
    proto = (req.headers.get("X-Forwarded-Proto") or req.scheme or "https").split(",")[0].strip()
    host = req.headers.get("X-Forwarded-Host") or req.host
    return f"{proto}://{host}"


def store_errors(func):
    """Map promo engine and store errors raised by a handler to JSON responses."""
    @functools.wraps(func)
    def wrapper(ctx, req):
        try:
            return func(ctx, req)
        except ValidationError as e:
            return error_response(400, str(e))
        except ConflictError as e:
            logger.warning("%s: %s", func.__name__, e)
            return error_response(409, "promo state changed, please retry")
        except StoreError as e:
            logger.error("%s: %s", func.__name__, e)
            return error_response(502, "promo store unavailable")
    return wrapper
