class KnockGateError(Exception):
    pass


class SequenceError(KnockGateError, ValueError):
    pass


class ConfigError(KnockGateError):
    pass


class ListenerStartupError(KnockGateError):
    def __init__(self, port, cause=None):
        self.port = port
        self.cause = cause
        msg = f"Unable to listen on port {port}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
