import logging
import os

from flask import Flask, request

from proxy.context import ProxyContext
from proxy.dispatcher import dispatcher
from proxy.libs.helpers import cors_headers, error_response
from services.notify import AdminNotifier
from services.payments import PaymentBackend
from services.store import build_store
from utils.config import ProxyConfig


def create_app(config=None, store=None, backend=None, notifier=None):
    """
    Build the proxy app. Collaborators default to the ones described by
    `config` (itself read from the environment when omitted); tests pass
    their own.
    """
    config = config or ProxyConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ctx = ProxyContext(
        config=config,
        store=store if store is not None else build_store(config),
        backend=backend if backend is not None else PaymentBackend(
            config.vps_base, timeout=config.vps_timeout, qr_timeout=config.vps_qr_timeout
        ),
        notifier=notifier if notifier is not None else AdminNotifier(
            config.telegram_bot_token, config.admin_chat_ids
        ),
    )

    app = Flask(__name__)

    @app.after_request
    def add_cors_headers(response):
        response.headers.update(cors_headers())
        return response

    @app.route("/api/orkut", methods=["GET", "POST", "OPTIONS"])
    def orkut():
        if request.method == "OPTIONS":
            return "", 200
        try:
            return dispatcher.handle_request(ctx, request)
        except Exception as e:
            # never leak a traceback to the client
            app.logger.exception("Unhandled error in action %r: %s", request.args.get("action"), e)
            return error_response(500, "internal error")

    @app.route("/")
    def index():
        return "LevPay proxy"

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
