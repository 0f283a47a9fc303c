"The kernel subprocess: launch, exit watching, interrupt signal and kill."
import asyncio, logging, os, signal, subprocess
from contextlib import suppress
from jupyter_client.launcher import launch_kernel

log = logging.getLogger("minikc.process")


class KernelProcess:
    poll_interval = 0.1

    def __init__(self, proc:subprocess.Popen):
        "Wrap a launched `Popen`; `exited` resolves with the return code once the watcher sees it exit."
        self.proc = proc
        self.watch_task = None
        self.exited = asyncio.get_running_loop().create_future()

    @classmethod
    def spawn(cls, argv:list[str], env:dict|None=None, cwd:str|None=None, quiet:bool=True)->"KernelProcess":
        "Launch `argv` in its own process group; kernel stdio is discarded when `quiet`."
        out = subprocess.DEVNULL if quiet else None
        log.info("Starting kernel: %s", argv)
        proc = launch_kernel(argv, stdout=out, stderr=out, env=dict(os.environ) | (env or {}), cwd=cwd)
        return cls(proc)

    @property
    def pid(self)->int: return self.proc.pid

    @property
    def alive(self)->bool: return self.proc.poll() is None

    def watch(self, on_exit):
        "Poll the process every `poll_interval`; on exit resolve `exited` and call `on_exit(returncode)`."
        self.watch_task = asyncio.create_task(self._watch(on_exit), name=f"kernel-watch-{self.pid}")

    async def _watch(self, on_exit):
        while (code := self.proc.poll()) is None: await asyncio.sleep(self.poll_interval)
        log.debug("kernel pid=%s exited code=%s", self.pid, code)
        if not self.exited.done(): self.exited.set_result(code)
        on_exit(code)

    async def stop_watching(self):
        task, self.watch_task = self.watch_task, None
        if task is None or task is asyncio.current_task(): return
        task.cancel()
        with suppress(asyncio.CancelledError): await task

    def send_interrupt(self):
        "Send SIGINT to the kernel's process group (or just the kernel if it does not lead one)."
        if os.name == "nt":
            log.warning("Interrupt signal not supported on Windows; relying on interrupt_request")
            return
        if not self.alive: return
        pid = self.pid
        try: pgid = os.getpgid(pid)
        except OSError: pgid = None
        try:
            if pgid and pgid == pid and hasattr(os, "killpg"): os.killpg(pgid, signal.SIGINT)
            else: os.kill(pid, signal.SIGINT)
        except OSError as err: log.warning("Interrupt signal failed: %s", err)

    async def wait(self, timeout:float)->bool:
        "Wait up to `timeout` seconds for exit; True if the process is gone."
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.alive and loop.time() < deadline: await asyncio.sleep(min(self.poll_interval, timeout))
        return not self.alive

    async def kill(self, timeout:float=5.0):
        "Stop watching, kill the process if still running, and reap it."
        await self.stop_watching()
        if self.alive:
            with suppress(ProcessLookupError): self.proc.kill()
        with suppress(subprocess.TimeoutExpired): await asyncio.to_thread(self.proc.wait, timeout)
        if self.proc.stdin is not None: self.proc.stdin.close()
        if not self.exited.done(): self.exited.set_result(self.proc.poll())
