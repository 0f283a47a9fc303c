"Connection descriptor written by a freshly spawned kernel, and the bounded loader that waits for it."
import asyncio, json, logging, os
from dataclasses import dataclass
from .errors import ConnectionTimeout, FormatError

log = logging.getLogger("minikc.connect")

port_names = ("shell_port", "iopub_port", "stdin_port", "control_port", "hb_port")


@dataclass(frozen=True)
class ConnectionInfo:
    transport:str
    ip:str
    shell_port:int
    iopub_port:int
    stdin_port:int
    control_port:int
    hb_port:int
    key:str
    signature_scheme:str
    kernel_name:str = ""

    @classmethod
    def from_dict(cls, data:dict)->"ConnectionInfo":
        "Build from parsed connection-file JSON; raises FormatError on missing/invalid ports."
        try: ports = {name: int(data[name]) for name in port_names}
        except (KeyError, TypeError, ValueError) as exc: raise FormatError(f"bad connection descriptor: {exc!r}") from exc
        return cls(transport=data.get("transport", "tcp"), ip=data.get("ip", "127.0.0.1"), key=data.get("key", ""),
            signature_scheme=data.get("signature_scheme", "hmac-sha256"), kernel_name=data.get("kernel_name", ""), **ports)

    @classmethod
    def from_file(cls, path:str)->"ConnectionInfo":
        "Load connection info from JSON connection file at `path`."
        with open(path, encoding="utf-8") as f:
            try: data = json.load(f)
            except json.JSONDecodeError as exc: raise FormatError(f"connection file {path} is not JSON: {exc}") from exc
        if not isinstance(data, dict): raise FormatError(f"connection file {path} is not a JSON object")
        return cls.from_dict(data)

    def addr(self, port:int)->str:
        if self.transport == "ipc": return f"ipc://{self.ip}-{port}"
        return f"{self.transport}://{self.ip}:{port}"


async def load_connection(path:str, attempts:int=50, interval:float=0.1, grace:float=0.1)->ConnectionInfo:
    "Poll up to `attempts` times, `interval` apart, for `path`; after a `grace` delay, parse it."
    for attempt in range(attempts):
        if os.path.exists(path):
            log.debug("connection file present after %s polls: %s", attempt, path)
            # writer may still be flushing
            await asyncio.sleep(grace)
            return ConnectionInfo.from_file(path)
        await asyncio.sleep(interval)
    raise ConnectionTimeout(f"connection file {path} not written after {attempts * interval:.1f}s")
