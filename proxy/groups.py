# proxy/groups.py
from proxy.handlers import ping, createqr, transactions, qr, admin_promos
from proxy.libs.helpers import is_admin, has_callback_secret


def payment_actions(dispatcher):
    dispatcher.register_action("ping", ping.handle)
    dispatcher.register_action("createqr", createqr.handle, methods=("POST",))
    dispatcher.register_action("status", transactions.status, methods=("GET",))
    dispatcher.register_action("cancel", transactions.cancel, methods=("POST",))
    dispatcher.register_action("qr", qr.handle, methods=("GET",))
    dispatcher.register_action("setstatus", transactions.set_status, methods=("POST",),
                               guard=has_callback_secret)


def admin_actions(dispatcher):
    dispatcher.register_action("admin_set_monthly", admin_promos.set_monthly, methods=("POST",), guard=is_admin)
    dispatcher.register_action("admin_upsert_promo", admin_promos.upsert_promo, methods=("POST",), guard=is_admin)
    dispatcher.register_action("admin_delete_promo", admin_promos.delete_promo, methods=("POST",), guard=is_admin)
    dispatcher.register_action("admin_list_promos", admin_promos.list_promos, methods=("GET",), guard=is_admin)
    # older action names
    dispatcher.register_action("admin_monthly_promo", admin_promos.set_monthly, methods=("POST",), guard=is_admin)
    dispatcher.register_action("admin_custom_promo", admin_promos.upsert_promo, methods=("POST",), guard=is_admin)
