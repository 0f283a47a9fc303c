"Session settings, defaulting from MINIKC_* environment variables."
import os, sys
from dataclasses import dataclass, field
from .debug import enabled as _debug, envbool

signature_policies = ("warn", "reject")


def _env_float(name:str, default:float|None)->float|None:
    "Return float env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return float(raw)
    except ValueError: return default


def _env_int(name:str, default:int)->int:
    "Return int env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return int(raw)
    except ValueError: return default


def _env_str(name:str, default:str|None)->str|None: return os.environ.get(name) or default


def _env(fn, name:str, default): return field(default_factory=lambda: fn(name, default))


@dataclass
class SessionConfig:
    "Knobs for one `KernelSession`; every field may be overridden by keyword."
    python:str = _env(_env_str, "MINIKC_PYTHON", sys.executable)
    kernel_module:str = _env(_env_str, "MINIKC_KERNEL_MODULE", "ipykernel_launcher")
    extra_args:list = field(default_factory=list)
    env:dict|None = None
    cwd:str|None = None
    runtime_dir:str|None = _env(_env_str, "MINIKC_RUNTIME_DIR", None)
    conn_attempts:int = _env(_env_int, "MINIKC_CONN_ATTEMPTS", 50)
    conn_interval:float = _env(_env_float, "MINIKC_CONN_INTERVAL", 0.1)
    conn_grace:float = _env(_env_float, "MINIKC_CONN_GRACE", 0.1)
    handshake_timeout:float = _env(_env_float, "MINIKC_HANDSHAKE_TIMEOUT", 10.0)
    iopub_wait:float = _env(_env_float, "MINIKC_IOPUB_WAIT", 0.5)
    execute_timeout:float|None = _env(_env_float, "MINIKC_EXECUTE_TIMEOUT", None)
    interrupt_timeout:float = _env(_env_float, "MINIKC_INTERRUPT_TIMEOUT", 1.0)
    shutdown_wait:float = _env(_env_float, "MINIKC_SHUTDOWN_WAIT", 1.0)
    heartbeat_interval:float = _env(_env_float, "MINIKC_HB_INTERVAL", 0.0)
    heartbeat_misses:int = _env(_env_int, "MINIKC_HB_MISSES", 3)
    signature_policy:str = _env(_env_str, "MINIKC_SIGNATURE_POLICY", "warn")
    max_subscribers:int = _env(_env_int, "MINIKC_MAX_SUBSCRIBERS", 64)
    kernel_output:bool = field(default_factory=lambda: envbool("MINIKC_KERNEL_OUTPUT") or _debug)

    def __post_init__(self):
        if self.signature_policy not in signature_policies:
            raise ValueError(f"signature_policy must be one of {signature_policies}, got {self.signature_policy!r}")
        if self.conn_attempts < 1: raise ValueError("conn_attempts must be >= 1")

    def kernel_argv(self, connection_file:str)->list[str]:
        "Command line for launching the kernel against `connection_file`."
        return [self.python, "-m", self.kernel_module, "-f", connection_file, *self.extra_args]
