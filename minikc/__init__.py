from importlib.metadata import PackageNotFoundError, version
from .config import SessionConfig
from .errors import (ConnectionTimeout, FormatError, HandshakeFailure, KernelError, NoKernelRunning, ProcessExit,
    SessionBusy, SignatureMismatch, TransportFailure)
from .lifecycle import KernelState
from .messages import Message, classify
from .outputs import KernelOutput, OutputKind
from .protocol import MessageCodec
from .session import ExecutionResult, KernelSession

try:
    __version__ = version("minikc")
except PackageNotFoundError:  # pragma: no cover - local checkout without metadata
    __version__ = "0.0.0+local"

__all__ = ["KernelSession", "SessionConfig", "ExecutionResult", "KernelState", "KernelOutput", "OutputKind",
    "Message", "MessageCodec", "classify", "KernelError", "ConnectionTimeout", "HandshakeFailure", "FormatError",
    "SignatureMismatch", "TransportFailure", "ProcessExit", "NoKernelRunning", "SessionBusy", "__version__"]
