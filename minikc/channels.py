"zmq sockets for one kernel connection: shell/control DEALERs, an iopub SUB, and an optional heartbeat."
import asyncio, logging
import zmq, zmq.asyncio
from fastcore.basics import store_attr
from .connect import ConnectionInfo
from .debug import tlog
from .errors import TransportFailure
from .messages import Message
from .protocol import MessageCodec

log = logging.getLogger("minikc.channels")


class KernelChannels:
    def __init__(self, info:ConnectionInfo, codec:MessageCodec):
        "Channels to the kernel described by `info`, framed by `codec`."
        store_attr()
        self.context = None
        self.sockets = {}

    def open(self):
        "Connect shell and control as DEALERs and iopub as a subscribe-all SUB."
        self.context = zmq.asyncio.Context()
        ident = self.codec.session_id
        self.sockets = dict(shell=self._connect(zmq.DEALER, self.info.shell_port, f"shell-{ident}"),
            control=self._connect(zmq.DEALER, self.info.control_port, f"control-{ident}"),
            iopub=self._connect(zmq.SUB, self.info.iopub_port))
        self.sockets["iopub"].setsockopt(zmq.SUBSCRIBE, b"")
        log.debug("channels connected ip=%s shell=%s iopub=%s", self.info.ip, self.info.shell_port, self.info.iopub_port)

    def _connect(self, kind:int, port:int, identity:str|None=None)->zmq.asyncio.Socket:
        sock = self.context.socket(kind)
        sock.linger = 0
        if identity: sock.identity = identity.encode()
        sock.connect(self.info.addr(port))
        return sock

    def socket(self, name:str)->zmq.asyncio.Socket:
        sock = self.sockets.get(name)
        if sock is None or sock.closed: raise TransportFailure(f"{name} channel is not open")
        return sock

    async def send(self, name:str, msg:Message):
        tlog(log, f"{name} send", msg)
        await self.socket(name).send_multipart(self.codec.serialize(msg))

    async def recv(self, name:str)->Message|None:
        "Next message on `name`, or None when the frames were malformed."
        frames = await self.socket(name).recv_multipart()
        msg = self.codec.parse(frames)
        tlog(log, f"{name} recv", msg)
        return msg

    async def request(self, name:str, msg:Message, timeout:float|None=None)->Message:
        "Send `msg` on `name` and wait up to `timeout` for the reply parented to it."
        await self.send(name, msg)
        return await asyncio.wait_for(self._reply_to(name, msg.msg_id), timeout)

    async def _reply_to(self, name:str, msg_id:str)->Message:
        while True:
            reply = await self.recv(name)
            if reply is None: continue
            if reply.parent_id == msg_id: return reply
            log.warning("Discarding stale %s reply %s (parent=%s)", name, reply.msg_type, reply.parent_id)

    def heartbeat(self, interval:float, misses:int)->"Heartbeat":
        return Heartbeat(self.context, self.info.addr(self.info.hb_port), interval, misses)

    def close(self):
        "Close every socket (already-closed ones are skipped) and the private context."
        for name, sock in self.sockets.items():
            try:
                if not sock.closed: sock.close(linger=0)
            except zmq.ZMQError as exc: log.debug("close %s failed: %s", name, exc)
        self.sockets = {}
        if self.context is not None:
            self.context.destroy(linger=0)
            self.context = None


class Heartbeat:
    def __init__(self, context:zmq.asyncio.Context, addr:str, interval:float, misses:int):
        "Ping the kernel's heartbeat REP at `addr` every `interval` seconds."
        store_attr()

    def _socket(self)->zmq.asyncio.Socket:
        sock = self.context.socket(zmq.REQ)
        sock.linger = 0
        sock.connect(self.addr)
        return sock

    async def run(self, on_failure):
        "Beat until cancelled; call `on_failure(exc)` once `misses` pings in a row go unanswered."
        missed = 0
        sock = self._socket()
        try:
            while True:
                await sock.send(b"ping")
                if await sock.poll(int(self.interval * 1000), zmq.POLLIN):
                    await sock.recv()
                    missed = 0
                    await asyncio.sleep(self.interval)
                    continue
                missed += 1
                log.debug("heartbeat missed %s/%s", missed, self.misses)
                # a REQ socket without a reply cannot send again
                sock.close(linger=0)
                sock = self._socket()
                if missed >= self.misses:
                    on_failure(TransportFailure(f"kernel heartbeat lost after {missed} missed beats"))
                    return
        finally: sock.close(linger=0)
