import threading
import time

from .matcher import Outcome, evaluate, is_expired


# Track ongoing knock sequences
class KnockTrack:
    def __init__(self, sequence, timeout, logger, granter=None, clock=time.time):
        self.logger = logger
        self.sequence = sequence
        self.timeout = timeout
        self.granter = granter
        self.clock = clock
        self.lock = threading.Lock()
        self.knock_tracking = {}
        self._sweep_stop = threading.Event()
        self._sweep_thread = None


    def __len__(self):
        with self.lock:
            return len(self.knock_tracking)


    def pending(self, address):
        with self.lock:
            return self.knock_tracking.get(address)


    # knock_tracking: { address: ClientState(step_index, hit_count, last_knock), ... }
    #
    # Entries are only ever replaced or deleted while holding self.lock, so
    # knocks from one address are applied in arrival order.

    def record_knock(self, address, port, now=None):
        with self.lock:
            # last_knock must never move backwards for an address
            if now is None:
                now = self.clock()
            state = self.knock_tracking.get(address)
            if state is not None and is_expired(state, now, self.timeout):
                self.logger.debug(f"Knock session for {address} expired, starting over")
                state = None
            new_state, outcome = evaluate(state, port, now, self.sequence, self.timeout)
            if new_state is None:
                self.knock_tracking.pop(address, None)
            else:
                self.knock_tracking[address] = new_state

        self._log_outcome(address, port, state, new_state, outcome)

        if outcome is Outcome.SEQUENCE_COMPLETE:
            self.open_door(address, now)

        return outcome


    def _log_outcome(self, address, port, old_state, new_state, outcome):
        total = len(self.sequence)
        if outcome is Outcome.MISMATCH:
            expected = self.sequence[0].port
            if old_state is not None and old_state.step_index < total:
                expected = self.sequence[old_state.step_index].port
            self.logger.info(f"Invalid knock from {address} (port {port}, expected {expected}). Reset.")
        elif outcome is Outcome.SEQUENCE_COMPLETE:
            self.logger.info(f"Knock sequence complete for {address}")
        else:
            step_index = new_state.step_index
            if outcome is Outcome.STEP_COMPLETE:
                self.logger.info(f"Knock OK {address} | port {port} step {step_index}/{total} complete")
            else:
                step = self.sequence[step_index]
                self.logger.info(f"Knock OK {address} | port {port} ({new_state.hit_count}/{step.hits}) "
                                 f"step {step_index+1}/{total}")


    def open_door(self, address, completion_time):
        if self.granter is None:
            return
        try:
            self.granter.grant(address, completion_time)
        except Exception:
            self.logger.exception(f"Access granter failed for {address}")


    def sweep(self, now=None):
        with self.lock:
            if now is None:
                now = self.clock()
            # We don't want to modify the dict we're iterating over,
            # so record the expired addresses and remove them later.
            expired = [addr for addr, state in self.knock_tracking.items()
                       if is_expired(state, now, self.timeout)]
            for addr in expired:
                del self.knock_tracking[addr]

        for addr in expired:
            self.logger.debug(f"Removing expired knock session: {addr}")
        return len(expired)


    def start_sweeper(self, interval):
        if self._sweep_thread is not None:
            return
        self._sweep_stop.clear()
        self._sweep_thread = threading.Thread(target=self._sweep_loop, args=(interval,),
                                              name="knock-sweeper", daemon=True)
        self._sweep_thread.start()


    def stop_sweeper(self, timeout=None):
        self._sweep_stop.set()
        if self._sweep_thread is not None:
            self._sweep_thread.join(timeout)
            self._sweep_thread = None


    def _sweep_loop(self, interval):
        while not self._sweep_stop.wait(interval):
            try:
                self.sweep()
            except Exception:
                self.logger.exception("Knock session sweep failed")
