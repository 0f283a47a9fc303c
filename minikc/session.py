"""One kernel session: the kernel process, its channels, and the correlation of requests with broadcasts.

`KernelSession` is an explicit object owned by whoever creates it; several may run side by side.
All of its coroutines must run on one event loop. The iopub listener is a pair of tasks: a reader
that turns iopub frames into `Message`s on an internal queue, and a router that applies them
(`handle_iopub`): moving busy/idle state, resolving the matching `PendingExecution` on its idle
status, and publishing outputs.
"""
import asyncio, dataclasses, logging, os, uuid
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from types import MappingProxyType
import zmq
from jupyter_core.paths import jupyter_runtime_dir
from . import debug
from .channels import KernelChannels
from .config import SessionConfig
from .connect import load_connection
from .errors import HandshakeFailure, KernelError, NoKernelRunning, ProcessExit, SessionBusy, TransportFailure
from .events import EventHub, Subscription
from .lifecycle import KernelLifecycle, KernelState
from .messages import ExecuteReply, Message, Status, classify
from .outputs import KernelOutput, OutputKind, to_output
from .process import KernelProcess
from .protocol import MessageCodec

log = logging.getLogger("minikc.session")


@contextmanager
def _quietly(what:str):
    "Teardown step whose failure is logged and swallowed."
    try: yield
    except Exception as exc: log.warning("shutdown: %s failed: %s", what, exc, exc_info=debug.enabled)


class PendingExecution:
    def __init__(self, msg_id:str):
        "In-flight execute `msg_id`: its collected outputs and the future its idle status resolves."
        self.msg_id = msg_id
        self.outputs = []
        self.reply = None
        self.done = asyncio.get_running_loop().create_future()

    def add(self, output:KernelOutput): self.outputs.append(output)

    def resolve(self, aborted:bool=False):
        if not self.done.done(): self.done.set_result(aborted)

    @property
    def aborted(self)->bool: return self.done.done() and bool(self.done.result())


@dataclass
class ExecutionResult:
    msg_id:str
    outputs:list = field(default_factory=list)
    success:bool = True
    status:str = "ok"
    execution_count:int|None = None
    message:str = ""

    @property
    def errors(self)->list[KernelOutput]: return [o for o in self.outputs if o.kind == OutputKind.ERROR]


class KernelSession:
    def __init__(self, python:str|None=None, config:SessionConfig|None=None, **kwargs):
        "Session for the interpreter at `python`; `kwargs` override fields of `config`."
        config = config or SessionConfig()
        if python is not None: kwargs["python"] = python
        self.config = dataclasses.replace(config, **kwargs) if kwargs else config
        self.events = EventHub(self.config.max_subscribers)
        self.lifecycle = KernelLifecycle(on_change=lambda state: self.events.emit("state", state))
        self.process = self.connection = self.connection_file = self.codec = self.channels = None
        self.kernel_info = None
        self.execution_count = 0
        self._pending = {}
        self._inbox = None
        self._iopub_ready = None
        self._tasks = []
        self._hb_task = None

    @property
    def state(self)->KernelState: return self.lifecycle.state

    @property
    def pending(self)->MappingProxyType: return MappingProxyType(self._pending)

    @property
    def is_alive(self)->bool: return self.lifecycle.live and self.process is not None and self.process.alive

    def subscribe(self, event:str, callback)->Subscription:
        "Register `callback` for `output`, `state`, `error` or `kernel_info` events."
        return self.events.subscribe(event, callback)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc): await self.shutdown()

    def __repr__(self): return f"KernelSession(state={self.state.value}, pid={getattr(self.process, 'pid', None)})"

    # start / stop

    async def start(self):
        "Spawn the kernel, connect channels, confirm it answers kernel_info, then enter `idle`."
        debug.setup()
        if self.process is not None or self.lifecycle.live: await self.shutdown()
        if self.state == KernelState.DEAD: self.lifecycle.reset()
        self.lifecycle.transition(KernelState.STARTING)
        self.execution_count = 0
        self.kernel_info = None
        cfg = self.config
        try:
            self.connection_file = self._new_connection_file()
            self._spawn()
            info = await self._until_exit(load_connection(self.connection_file, cfg.conn_attempts, cfg.conn_interval, cfg.conn_grace))
            self.connection = info
            self.codec = MessageCodec(info.key, info.signature_scheme, signature_policy=cfg.signature_policy)
            self.channels = KernelChannels(info, self.codec)
            self.channels.open()
            self._start_listener()
            await self._until_exit(self._handshake())
            self._start_heartbeat()
        except BaseException as exc:
            if isinstance(exc, Exception) and not isinstance(exc, ProcessExit): self.events.emit("error", exc)
            await self.shutdown(now=True)
            raise
        if self.lifecycle.transition(KernelState.IDLE): log.info("Kernel ready pid=%s connection=%s", self.process.pid, self.connection_file)

    def _new_connection_file(self)->str:
        runtime = self.config.runtime_dir or jupyter_runtime_dir()
        os.makedirs(runtime, exist_ok=True)
        return os.path.join(runtime, f"kernel-{uuid.uuid4().hex}.json")

    def _spawn(self):
        argv = self.config.kernel_argv(self.connection_file)
        try: self.process = KernelProcess.spawn(argv, env=self.config.env, cwd=self.config.cwd, quiet=not self.config.kernel_output)
        except OSError as exc:
            err = ProcessExit(None, f"failed to launch kernel {argv[0]!r}: {exc}")
            self._fail(err)
            raise err from exc
        self.process.watch(self._on_process_exit)

    async def _until_exit(self, coro):
        "Await `coro`, failing fast with ProcessExit if the kernel dies first."
        task = asyncio.ensure_future(coro)
        try:
            done, _ = await asyncio.wait({task, self.process.exited}, return_when=asyncio.FIRST_COMPLETED)
            if task in done: return task.result()
            raise ProcessExit(self.process.exited.result())
        finally:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError): await task

    async def _handshake(self):
        "kernel_info round trip on shell, repeated until iopub traffic shows our subscription is live."
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.handshake_timeout
        reply = None
        while (remaining := deadline - loop.time()) > 0:
            try: reply = await self.channels.request("shell", self.codec.kernel_info_request(), timeout=remaining)
            except asyncio.TimeoutError: break
            except (zmq.ZMQError, TransportFailure) as exc: raise HandshakeFailure(f"kernel_info request failed: {exc}") from exc
            try:
                await asyncio.wait_for(self._iopub_ready.wait(), max(min(self.config.iopub_wait, deadline - loop.time()), 0))
                break
            except asyncio.TimeoutError: log.debug("iopub silent after kernel_info_reply; asking again")
        if reply is None: raise HandshakeFailure(f"no kernel_info_reply within {self.config.handshake_timeout}s")
        if not self._iopub_ready.is_set(): log.warning("iopub stayed silent during handshake; early outputs may be missed")
        self.kernel_info = dict(reply.content)
        self.events.emit("kernel_info", self.kernel_info)

    def _start_listener(self):
        self._inbox = asyncio.Queue()
        self._iopub_ready = asyncio.Event()
        self._tasks = [asyncio.create_task(self._recv_loop(), name="iopub-reader"),
            asyncio.create_task(self._route_loop(), name="iopub-router")]

    def _start_heartbeat(self):
        if self.config.heartbeat_interval <= 0: return
        hb = self.channels.heartbeat(self.config.heartbeat_interval, self.config.heartbeat_misses)
        self._hb_task = asyncio.create_task(hb.run(self._fail), name="kernel-heartbeat")

    async def restart(self):
        "Full teardown followed by a fresh start; nothing is reused."
        await self.shutdown()
        await self.start()

    async def shutdown(self, now:bool=False):
        "Tear the session down. Idempotent and safe from any state; teardown failures are logged, not raised."
        self.lifecycle.transition(KernelState.DEAD)
        self._release_pending("kernel session shut down")
        try:
            with _quietly("stop heartbeat"): await self._cancel(self._hb_task)
            if not now:
                with _quietly("request kernel shutdown"): await self._request_shutdown()
            with _quietly("stop iopub listener"):
                for task in self._tasks: await self._cancel(task)
            with _quietly("close channels"):
                if self.channels is not None: self.channels.close()
            with _quietly("kill kernel"):
                if self.process is not None: await self.process.kill()
            with _quietly("remove connection file"):
                if self.connection_file:
                    with suppress(FileNotFoundError): os.remove(self.connection_file)
        finally:
            self._release_pending("kernel session shut down")
            self.process = self.connection = self.connection_file = self.codec = self.channels = None
            self._tasks, self._hb_task, self._inbox = [], None, None

    async def _request_shutdown(self):
        "Ask a still-running kernel to exit on its own before it gets killed."
        if self.channels is None or self.codec is None or self.process is None or not self.process.alive: return
        await asyncio.wait_for(self.channels.send("control", self.codec.shutdown_request()), self.config.shutdown_wait)
        if await self.process.wait(self.config.shutdown_wait): log.debug("kernel exited after shutdown_request")

    @staticmethod
    async def _cancel(task):
        if task is None or task is asyncio.current_task(): return
        task.cancel()
        with suppress(asyncio.CancelledError): await task

    # failures

    def _on_process_exit(self, returncode:int|None):
        if not self.lifecycle.live: return
        self._fail(ProcessExit(returncode))

    def _fail(self, exc:KernelError):
        "Fatal process or transport failure: go `dead`, release waiters, report. No automatic restart."
        if not self.lifecycle.live: return
        log.error("Kernel session failed: %s", exc)
        self.lifecycle.transition(KernelState.DEAD)
        self._release_pending(str(exc))
        self.events.emit("error", exc)

    def _release_pending(self, reason:str):
        if self._pending: log.debug("releasing %s pending execution(s): %s", len(self._pending), reason)
        for pending in self._pending.values(): pending.resolve(aborted=True)
        self._pending.clear()

    # iopub listener

    async def _recv_loop(self):
        "Drain iopub into the inbox until cancelled."
        while True:
            try: msg = await self.channels.recv("iopub")
            except (zmq.ZMQError, TransportFailure) as exc:
                self._fail(TransportFailure(f"iopub channel failed: {exc}"))
                return
            if msg is not None: self._inbox.put_nowait(msg)

    async def _route_loop(self):
        while True:
            msg = await self._inbox.get()
            try: self.handle_iopub(msg)
            except Exception: log.exception("Error handling iopub %s", msg.msg_type)

    def handle_iopub(self, msg:Message):
        "Apply one iopub broadcast; ignored unless the session is starting, idle or busy."
        if not self.lifecycle.live: return
        if self._iopub_ready is not None: self._iopub_ready.set()
        parent_id = msg.parent_id
        kind = classify(msg)
        if isinstance(kind, Status):
            self._apply_status(kind.execution_state, parent_id)
            return
        if isinstance(kind, ExecuteReply):
            self._note_execute_reply(kind)
            return
        output = to_output(kind)
        if output is None: return
        if (pending := self._pending.get(parent_id)) is not None: pending.add(output)
        self.events.emit("output", output, parent_id)

    def _apply_status(self, execution_state:str, parent_id:str|None):
        # busy/idle only move a ready session; `starting` ends with the handshake, not a broadcast
        ready = self.state in (KernelState.IDLE, KernelState.BUSY)
        if execution_state == "busy" and ready: self.lifecycle.transition(KernelState.BUSY)
        elif execution_state == "idle":
            if ready: self.lifecycle.transition(KernelState.IDLE)
            if (pending := self._pending.pop(parent_id, None)) is not None: pending.resolve()

    def _note_execute_reply(self, reply:ExecuteReply):
        if reply.execution_count is not None: self.execution_count = reply.execution_count

    # requests

    def _require_ready(self, op:str):
        if self.channels is None or self.codec is None or self.state not in (KernelState.IDLE, KernelState.BUSY):
            raise NoKernelRunning(f"cannot {op}: no kernel running (state={self.state.value})")

    async def execute(self, code:str, silent:bool=False, timeout:float|None=None)->ExecutionResult:
        """Run `code` and return its outputs once the kernel reports idle for it.

        Raises NoKernelRunning without a ready kernel and SessionBusy while another execute is in
        flight. Everything that goes wrong after the request is sent (transport failure, timeout,
        shutdown or kernel death) comes back as a result with `success=False`. Errors raised by
        the user's code are ordinary `error` outputs in a successful result.
        """
        self._require_ready("execute")
        if self._pending: raise SessionBusy("an execute is already in flight; calls must be serialized")
        if timeout is None: timeout = self.config.execute_timeout
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        remaining = lambda: None if deadline is None else max(deadline - loop.time(), 0)
        msg = self.codec.execute_request(code, silent=silent)
        pending = self._pending[msg.msg_id] = PendingExecution(msg.msg_id)
        shell = asyncio.ensure_future(self.channels.request("shell", msg))
        try:
            await asyncio.wait({shell, pending.done}, timeout=remaining(), return_when=asyncio.FIRST_COMPLETED)
            if pending.aborted: return self._result(pending, "aborted", "execution aborted: kernel session ended")
            if not shell.done(): await asyncio.wait({shell}, timeout=remaining())
            if not shell.done(): return self._timed_out(pending, timeout)
            if shell.cancelled(): return self._result(pending, "aborted", "shell channel closed before the reply arrived")
            if (exc := shell.exception()) is not None:
                self._pending.pop(msg.msg_id, None)
                if isinstance(exc, (zmq.ZMQError, KernelError, ValueError, TypeError)): return self._result(pending, "failed", f"execute failed: {exc}")
                raise exc
            pending.reply = classify(shell.result())
            if isinstance(pending.reply, ExecuteReply): self._note_execute_reply(pending.reply)
            if not pending.done.done(): await asyncio.wait({pending.done}, timeout=remaining())
            if not pending.done.done(): return self._timed_out(pending, timeout)
            if pending.aborted: return self._result(pending, "aborted", "execution aborted: kernel session ended")
        finally:
            if not shell.done(): shell.cancel()
            elif not shell.cancelled(): shell.exception()
        status = pending.reply.status if isinstance(pending.reply, ExecuteReply) else "ok"
        return ExecutionResult(msg.msg_id, pending.outputs, True, status, self.execution_count)

    def _timed_out(self, pending:PendingExecution, timeout:float|None)->ExecutionResult:
        self._pending.pop(pending.msg_id, None)
        return self._result(pending, "timeout", f"execute timed out after {timeout}s")

    def _result(self, pending:PendingExecution, status:str, message:str)->ExecutionResult:
        log.warning("execute %s: %s", pending.msg_id[:8], message)
        return ExecutionResult(pending.msg_id, pending.outputs, False, status, self.execution_count, message)

    async def interrupt(self)->Message|None:
        "SIGINT the kernel and send interrupt_request on control; returns the reply if it came within `interrupt_timeout`."
        if self.process is None or not self.lifecycle.live: raise NoKernelRunning("cannot interrupt: no kernel running")
        self.process.send_interrupt()
        if self.channels is None or self.codec is None: return None
        try: return await self.channels.request("control", self.codec.interrupt_request(), timeout=self.config.interrupt_timeout)
        except asyncio.TimeoutError: log.debug("no interrupt_reply within timeout")
        except (zmq.ZMQError, TransportFailure) as exc: log.warning("interrupt_request failed: %s", exc)
        return None
