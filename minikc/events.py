"Explicit publish/subscribe for session events."
import logging
from fastcore.basics import store_attr

log = logging.getLogger("minikc.events")

event_names = ("output", "state", "error", "kernel_info")


class Subscription:
    def __init__(self, hub:"EventHub", event:str, callback):
        "Handle for one registered `callback`; `cancel()` unregisters it."
        store_attr()

    @property
    def active(self)->bool: return self in self.hub.subscribers[self.event]

    def cancel(self): self.hub._remove(self)

    def __enter__(self): return self

    def __exit__(self, *exc): self.cancel()


class EventHub:
    def __init__(self, max_subscribers:int=64):
        "Per-event subscriber lists, each capped at `max_subscribers`."
        self.max_subscribers = max_subscribers
        self.subscribers = {name: [] for name in event_names}

    def subscribe(self, event:str, callback)->Subscription:
        if event not in self.subscribers: raise ValueError(f"unknown event {event!r}; expected one of {event_names}")
        subs = self.subscribers[event]
        if len(subs) >= self.max_subscribers: raise ValueError(f"too many {event} subscribers (max {self.max_subscribers})")
        sub = Subscription(self, event, callback)
        subs.append(sub)
        return sub

    def _remove(self, sub:Subscription):
        try: self.subscribers[sub.event].remove(sub)
        except ValueError: pass

    def emit(self, event:str, *args):
        "Call every current subscriber of `event`; a failing callback is logged and skipped."
        for sub in list(self.subscribers[event]):
            try: sub.callback(*args)
            except Exception: log.exception("%s subscriber %r failed", event, sub.callback)
