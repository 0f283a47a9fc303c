"Exception taxonomy for kernel sessions."


class KernelError(Exception):
    "Base class for all minikc failures."


class ConnectionTimeout(KernelError, TimeoutError):
    "The kernel never wrote its connection file within the polling bound."


class HandshakeFailure(KernelError):
    "The kernel_info round trip failed or timed out during start."


class FormatError(KernelError, ValueError):
    "A frame sequence or descriptor could not be decoded."


class SignatureMismatch(FormatError):
    "A message signature did not match its payload (only raised under the reject policy)."


class TransportFailure(KernelError):
    "A socket failed or the heartbeat stopped answering."


class ProcessExit(KernelError):
    def __init__(self, returncode:int|None, reason:str=""):
        "Kernel process exited (or failed to spawn) with `returncode`."
        self.returncode = returncode
        super().__init__(reason or f"kernel process exited with code {returncode}")


class NoKernelRunning(KernelError, RuntimeError):
    "An operation needing a live kernel was called without one."


class SessionBusy(KernelError, RuntimeError):
    "An execute was requested while another is still in flight."
