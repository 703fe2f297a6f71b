from collections import namedtuple
import tomllib

from . import knockutil as kutil
from .errors import ConfigError, SequenceError


class Config():

    maincfg = {
        'listener': {
            'bind_address': "0.0.0.0",
            'knock_timeout': kutil.DEFAULT_TIMEOUT,
            'sweep_interval': 5.0,
            'backlog': 128,
            'pidfile': "",
        },
        'client': {
            'host': "127.0.0.1",
            'delay': kutil.DEFAULT_DELAY,
            'connect_timeout': kutil.DEFAULT_CONNECT_TIMEOUT,
        },
        'logging': {
            'log_level': "info",
            'syslog': False,
            'syslog_address': "/dev/log",
        },
    }

    # key: (min, max, min_exclusive)
    limits = {
        'listener': {
            'knock_timeout': (0, 300, True),
            'sweep_interval': (0, 3600, True),
            'backlog': (1, 65535, False),
        },
        'client': {
            'delay': (0, 60, False),
            'connect_timeout': (0, 60, True),
        },
    }


    def __init__(self, toml_file, logger):
        self.logger = logger
        self.toml_file = toml_file
        self.toml_data = self._load_config(self.toml_file) if toml_file else {}
        self._process_global_config()
        self.sequence = self._process_sequence()
        self.logger = None


    def _load_config(self, toml_file):
        try:
            with open(toml_file, "rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"Unable to read config file '{toml_file}': {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in config file '{toml_file}': {e}") from e
        return data


    def _process_global_config(self):
        self.listener = self._process_main_section('listener')
        self.client = self._process_main_section('client')
        self.logging = self._process_main_section('logging')


    def _process_main_section(self, section):
        raw = self.toml_data.get(section, {})
        if not isinstance(raw, dict):
            raise ConfigError(f"Config section '{section}' must be a table")
        default = self.maincfg[section]

        for k in raw:
            if k not in default:
                self.logger.warning(f"Unknown config key '{section}.{k}'. Ignoring.")

        # populate missing config keys with default values
        cfg = {k: raw.get(k, v) for k, v in default.items()}

        for k, (lo, hi, lo_excl) in self.limits.get(section, {}).items():
            v = cfg[k]
            ok = isinstance(v, (int, float)) and not isinstance(v, bool) and v <= hi and \
                 (v > lo if lo_excl else v >= lo)
            if not ok:
                self.logger.warning(f"{k} config value out of range. Setting to default {default[k]}.")
                cfg[k] = default[k]

        Obj = namedtuple(section, ' '.join(cfg.keys()))
        return Obj(**cfg)


    def _process_sequence(self):
        # [[sequence]] entries look like { port = 7001, hits = 3 }, hits optional
        entries = self.toml_data.get('sequence')
        if entries is None:
            return kutil.default_sequence()
        if not isinstance(entries, list):
            raise ConfigError("'sequence' must be an array of tables, e.g. [[sequence]]")

        steps = []
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict) or 'port' not in entry:
                raise ConfigError(f"Sequence entry {i+1} must set a port")
            try:
                steps.append(kutil.KnockStep(entry['port'], entry.get('hits', 1)))
            except SequenceError as e:
                raise ConfigError(f"Sequence entry {i+1}: {e}") from e

        try:
            return kutil.KnockSequence(steps)
        except SequenceError as e:
            raise ConfigError(str(e)) from e
