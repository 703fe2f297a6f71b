import logging
import logging.handlers


# Syslog stamps records itself, the console stream does not
STREAM_FORMAT = '%(asctime)s %(name)s: %(levelname)s %(message)s'
SYSLOG_FORMAT = '%(name)s[%(process)d]: %(levelname)s %(message)s'


class Log:
    levels = { "DEBUG": logging.DEBUG,
               "INFO": logging.INFO,
               "WARNING": logging.WARNING,
               "ERROR": logging.ERROR,
               "CRITICAL": logging.CRITICAL }

    def __init__(self, log_level, to_syslog=False, name="knockgate", syslog_address='/dev/log'):
        self.logger = logging.getLogger(name)
        self.set_level(log_level)

        # Re-initialising after config load replaces the bootstrap handler
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        if to_syslog:
            handler = logging.handlers.SysLogHandler(address=syslog_address,
                                                     facility=logging.handlers.SysLogHandler.LOG_AUTH)
            handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        else:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(STREAM_FORMAT))
        self.handler = handler
        self.logger.addHandler(handler)


    def set_level(self, log_level):
        self.log_level = self.levels.get(str(log_level).upper(), logging.WARNING)
        self.logger.setLevel(self.log_level)


    def critical(self, msg, *args, **kwargs):
        self.logger.critical(msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.logger.error(msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        self.logger.exception(msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.logger.warning(msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.logger.info(msg, *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self.logger.debug(msg, *args, **kwargs)
