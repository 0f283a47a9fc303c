"Env-gated debugging for minikc: DEBUG logging for the `minikc` loggers, fault dumps and message-flow logs."
import faulthandler, logging, os, signal, sys

def envbool(name: str)->bool:
    "True unless env var `name` is unset, empty, 0, false, no or off."
    return (os.environ.get(name) or "").strip().lower() not in ("", "0", "false", "no", "off")

enabled = envbool("MINIKC_DEBUG")
trace_msgs = envbool("MINIKC_DEBUG_MSGS")
_ready = False

def setup():
    "Once per process under MINIKC_DEBUG: `minikc` loggers at DEBUG (to stderr if nothing is configured), faulthandler, SIGUSR1 stack dumps."
    global _ready
    if _ready or not enabled: return
    _ready = True
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.DEBUG, stream=sys.__stderr__, format="%(relativeCreated)8.0fms %(name)s %(levelname)s: %(message)s")
    logging.getLogger("minikc").setLevel(logging.DEBUG)
    faulthandler.enable(file=sys.__stderr__)
    if hasattr(signal, "SIGUSR1"): faulthandler.register(signal.SIGUSR1, file=sys.__stderr__, all_threads=True)

def tlog(log, prefix: str, msg):
    "Under MINIKC_DEBUG_MSGS, log one line per message: type, id and parent id."
    if trace_msgs and msg is not None: log.warning("%s %s id=%s parent=%s", prefix, msg.msg_type, msg.msg_id[:8], (msg.parent_id or "-")[:8])
