"""Pure knock sequence matching.

evaluate() maps (resident state, incoming knock, sequence, timeout) to the
next state and an outcome. It does no I/O and touches no shared state, so
the tracker can call it under its lock and tests can call it directly.
"""
import enum
from collections import namedtuple


# step_index: index of the step currently expected
# hit_count:  consecutive hits already seen on that step
# last_knock: time of the last matching knock
ClientState = namedtuple('ClientState', 'step_index hit_count last_knock')


class Outcome(enum.Enum):
    PROGRESSED = 'progressed'
    STEP_COMPLETE = 'step_complete'
    SEQUENCE_COMPLETE = 'sequence_complete'
    MISMATCH = 'mismatch'


def is_expired(state, now, timeout):
    return now - state.last_knock > timeout


def fresh_state(now):
    return ClientState(step_index=0, hit_count=0, last_knock=now)


def evaluate(state, port, now, sequence, timeout):
    if state is None or is_expired(state, now, timeout) or state.step_index >= len(sequence):
        state = fresh_state(now)

    step = sequence[state.step_index]

    if port != step.port:
        # No partial credit carries over a wrong knock
        return None, Outcome.MISMATCH

    hit_count = state.hit_count + 1
    if hit_count < step.hits:
        return state._replace(hit_count=hit_count, last_knock=now), Outcome.PROGRESSED

    step_index = state.step_index + 1
    if step_index == len(sequence):
        return None, Outcome.SEQUENCE_COMPLETE

    return ClientState(step_index, 0, now), Outcome.STEP_COMPLETE
