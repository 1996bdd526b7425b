# proxy/dispatcher.py
from proxy.groups import payment_actions, admin_actions
from proxy.libs.helpers import error_response, query_arg


class Dispatcher:
    def __init__(self):
        self.action_handlers = {}

    def register_action(self, action, func, methods=None, guard=None):
        """methods=None accepts any HTTP method; guard(ctx, req) -> bool gates access."""
        self.action_handlers[action] = (func, methods, guard)

    def actions(self):
        return sorted(self.action_handlers)

    def handle_request(self, ctx, req):
        """Route `?action=` to its handler; an empty action is a ping."""
        action = query_arg(req, "action").lower() or "ping"

        entry = self.action_handlers.get(action)
        if not entry:
            return error_response(404, "Unknown action", hint="|".join(self.actions()))

        func, methods, guard = entry
        if methods and req.method not in methods:
            return error_response(405, "Method Not Allowed")
        if guard and not guard(ctx, req):
            return error_response(401, "Unauthorized")
        return func(ctx, req)


# global dispatcher instance
dispatcher = Dispatcher()

# Register groups
payment_actions(dispatcher)
admin_actions(dispatcher)
