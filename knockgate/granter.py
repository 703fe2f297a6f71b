import time


class AccessGranter:
    """Receives one call per completed knock sequence.

    Subclasses decide what "access" means (firewall rule, audit record, ...).
    The tracker calls grant() synchronously from the thread that processed
    the completing knock.
    """

    def grant(self, address, completion_time):
        raise NotImplementedError


class LogGranter(AccessGranter):
    def __init__(self, logger):
        self.logger = logger

    def grant(self, address, completion_time):
        ts = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(completion_time))
        self.logger.info(f"ACCESS GRANTED for {address} at {ts}")


class CallbackGranter(AccessGranter):
    def __init__(self, callback):
        self.callback = callback

    def grant(self, address, completion_time):
        self.callback(address, completion_time)
