from collections import namedtuple

from .errors import SequenceError

Version = '1.0.0'

PORT_MIN = 1
PORT_MAX = 65535

DEFAULT_SEQUENCE = [(7001, 3), (8002, 1), (9003, 2)]
DEFAULT_TIMEOUT = 1.0
DEFAULT_DELAY = 0.5
DEFAULT_CONNECT_TIMEOUT = 0.5


def _whole_number(value):
    # TOML hands us bools and floats; neither may be rounded into a port
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(value)
    return int(value)


class KnockStep(namedtuple('KnockStep', 'port hits')):
    __slots__ = ()

    def __new__(cls, port, hits=1):
        try:
            port, hits = _whole_number(port), _whole_number(hits)
        except (TypeError, ValueError):
            raise SequenceError(f"Invalid knock step: port={port!r} hits={hits!r}")
        if not (PORT_MIN <= port <= PORT_MAX):
            raise SequenceError(f"Knock port {port} out of range {PORT_MIN}-{PORT_MAX}")
        if hits < 1:
            raise SequenceError(f"Knock step on port {port} needs at least 1 hit, got {hits}")
        return super().__new__(cls, port, hits)

    def __str__(self):
        return f"{self.port}" if self.hits == 1 else f"{self.port}:{self.hits}"


class KnockSequence:
    """Ordered, immutable list of knock steps."""

    def __init__(self, steps):
        steps = tuple(s if isinstance(s, KnockStep) else KnockStep(*s) for s in steps)
        if not steps:
            raise SequenceError("Knock sequence must contain at least one step")
        self.steps = steps

    def __len__(self):
        return len(self.steps)

    def __getitem__(self, idx):
        return self.steps[idx]

    def __iter__(self):
        return iter(self.steps)

    def __eq__(self, other):
        if not isinstance(other, KnockSequence):
            return NotImplemented
        return self.steps == other.steps

    def __hash__(self):
        return hash(self.steps)

    def __repr__(self):
        return f"KnockSequence({list(self.steps)!r})"

    def __str__(self):
        return ','.join(str(s) for s in self.steps)

    def distinct_ports(self):
        # One listener per port, even when several steps reuse it
        ports = []
        for s in self.steps:
            if s.port not in ports:
                ports.append(s.port)
        return ports

    def knock_ports(self):
        return [s.port for s in self.steps for _ in range(s.hits)]


def parse_step(text):
    # Entry can be port, 7001, or port:hits, e.g., 7001:3
    parts = str(text).strip().split(':')
    if len(parts) > 2 or not parts[0]:
        raise SequenceError(f"Invalid knock step '{text}'. Expected PORT or PORT:HITS.")
    return KnockStep(*parts)


def parse_sequence(text):
    """Parse "7001:3,8002,9003:2" into a KnockSequence."""
    items = [t for t in str(text).split(',') if t.strip()]
    return KnockSequence([parse_step(t) for t in items])


def default_sequence():
    return KnockSequence(DEFAULT_SEQUENCE)
