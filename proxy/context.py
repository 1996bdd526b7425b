# proxy/context.py


class ProxyContext:
    """Collaborators shared by every action handler of one app instance."""

    def __init__(self, config, store, backend, notifier):
        self.config = config
        self.store = store
        self.backend = backend
        self.notifier = notifier

    @property
    def locator(self):
        return self.config.store_locator
