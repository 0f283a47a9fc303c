"Kernel connection state machine."
import logging
from enum import Enum

log = logging.getLogger("minikc.lifecycle")


class KernelState(str, Enum):
    DISCONNECTED = "disconnected"
    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    DEAD = "dead"


S = KernelState
edges = {S.DISCONNECTED: {S.STARTING, S.DEAD}, S.STARTING: {S.IDLE, S.DEAD}, S.IDLE: {S.BUSY, S.DEAD},
    S.BUSY: {S.IDLE, S.DEAD}, S.DEAD: {S.DISCONNECTED}}
live_states = frozenset({S.STARTING, S.IDLE, S.BUSY})


class KernelLifecycle:
    def __init__(self, on_change=None):
        "Start `disconnected`; `on_change(state)` is called after every actual change."
        self.state = S.DISCONNECTED
        self.on_change = on_change

    @property
    def live(self)->bool: return self.state in live_states

    def can(self, new:KernelState)->bool: return new in edges[self.state]

    def transition(self, new:KernelState)->bool:
        "Move to `new` if the edge exists; same-state and undefined requests are ignored."
        new = KernelState(new)
        if new == self.state: return False
        if not self.can(new):
            log.debug("ignoring state %s -> %s", self.state.value, new.value)
            return False
        log.debug("kernel state %s -> %s", self.state.value, new.value)
        self.state = new
        if self.on_change is not None: self.on_change(new)
        return True

    def reset(self)->bool:
        "Logical reset of a dead session back to `disconnected`."
        return self.transition(S.DISCONNECTED)

    def __repr__(self): return f"KernelLifecycle({self.state.value})"
