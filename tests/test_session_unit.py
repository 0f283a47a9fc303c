import asyncio, pytest
from minikc import KernelSession, KernelState as S, MessageCodec, NoKernelRunning, OutputKind, ProcessExit, SessionBusy, SessionConfig
from minikc.session import PendingExecution


class StubChannels:
    def __init__(self, session:KernelSession, script=None, count:int=1, hang:bool=False):
        "Answers shell requests for `session` and replays `script(request)` as iopub traffic."
        self.session,self.script,self.count,self.hang = session,script,count,hang
        self.sent = []
        self.closed = False

    async def request(self, name, msg, timeout=None):
        self.sent.append((name, msg))
        if self.hang: await asyncio.sleep(3600)
        loop = asyncio.get_running_loop()
        for m in (self.script(msg) if self.script else []): loop.call_soon(self.session.handle_iopub, m)
        reply = msg.msg_type.replace("_request", "_reply")
        return self.session.codec.msg(reply, dict(status="ok", execution_count=self.count), parent=msg)

    def close(self): self.closed = True


def iopub(session, parent, msg_type, **content): return session.codec.msg(msg_type, content, parent=parent)


def ready_session(**kwargs)->KernelSession:
    session = KernelSession(config=SessionConfig(**kwargs))
    session.codec = MessageCodec()
    session.lifecycle.transition(S.STARTING)
    session.lifecycle.transition(S.IDLE)
    return session


def cell_traffic(session):
    return lambda msg: [iopub(session, msg, "status", execution_state="busy"),
        iopub(session, msg, "execute_input", code="1+1", execution_count=4),
        iopub(session, msg, "stream", name="stdout", text="hi\n"),
        iopub(session, msg, "execute_result", data={"text/plain": "2"}, metadata={}, execution_count=4),
        iopub(session, msg, "status", execution_state="idle")]


def test_config_overrides():
    session = KernelSession("/opt/py/bin/python", handshake_timeout=3.0)
    assert session.config.python == "/opt/py/bin/python"
    assert session.config.handshake_timeout == 3.0
    assert session.config.kernel_argv("/tmp/k.json")[1:] == ["-m", "ipykernel_launcher", "-f", "/tmp/k.json"]
    assert session.state == S.DISCONNECTED
    with pytest.raises(ValueError): SessionConfig(signature_policy="ignore")


def test_execute_collects_outputs_until_idle():
    async def main():
        session = ready_session()
        states, parents = [], []
        session.subscribe("state", states.append)
        session.subscribe("output", lambda out, parent: parents.append(parent))
        session.channels = StubChannels(session, cell_traffic(session), count=4)
        res = await session.execute("1+1")
        return session, res, states, parents

    session, res, states, parents = asyncio.run(main())
    assert res.success and res.status == "ok"
    assert [o.kind for o in res.outputs] == [OutputKind.STDOUT, OutputKind.RESULT]
    assert res.outputs[1].content == "2"
    assert res.execution_count == session.execution_count == 4
    assert states == [S.BUSY, S.IDLE]
    assert parents == [res.msg_id, res.msg_id]
    assert not session.pending
    assert session.channels.sent[0][0] == "shell"


def test_execution_count_last_value_wins():
    async def main():
        session = ready_session()
        session.channels = StubChannels(session, cell_traffic(session), count=7)
        await session.execute("a")
        session.channels.count = 2
        await session.execute("b")
        return session.execution_count

    assert asyncio.run(main()) == 2


def test_execute_timeout_returns_failure():
    async def main():
        session = ready_session()
        session.channels = StubChannels(session, hang=True)
        res = await session.execute("while True: pass", timeout=0.1)
        return session, res

    session, res = asyncio.run(main())
    assert not res.success
    assert res.status == "timeout"
    assert "timed out" in res.message
    assert not session.pending


class EncodingChannels(StubChannels):
    async def request(self, name, msg, timeout=None):
        self.session.codec.serialize(msg)
        return await super().request(name, msg, timeout)


def test_encode_failure_returns_failure():
    async def main():
        session = ready_session()
        session.channels = EncodingChannels(session, cell_traffic(session))
        res = await session.execute("s = '\udcff\ud800'")
        return session, res

    session, res = asyncio.run(main())
    assert not res.success
    assert res.status == "failed"
    assert not session.pending
    assert session.state == S.IDLE


def test_shutdown_releases_pending():
    async def main():
        session = ready_session()
        session.channels = stub = StubChannels(session, hang=True)
        task = asyncio.create_task(session.execute("import time; time.sleep(60)"))
        await asyncio.sleep(0.05)
        assert len(session.pending) == 1
        await session.shutdown()
        return session, stub, await asyncio.wait_for(task, 2)

    session, stub, res = asyncio.run(main())
    assert res.status == "aborted" and not res.success
    assert stub.closed
    assert session.state == S.DEAD
    assert session.channels is None and session.codec is None
    assert not session.pending


def test_process_exit_aborts_and_reports():
    async def main():
        session = ready_session()
        errors = []
        session.subscribe("error", errors.append)
        session.channels = StubChannels(session, hang=True)
        task = asyncio.create_task(session.execute("boom"))
        await asyncio.sleep(0.05)
        session._on_process_exit(9)
        return session, errors, await asyncio.wait_for(task, 2)

    session, errors, res = asyncio.run(main())
    assert res.status == "aborted"
    assert session.state == S.DEAD
    assert len(errors) == 1 and isinstance(errors[0], ProcessExit) and errors[0].returncode == 9


def test_execute_preconditions():
    async def main():
        fresh = KernelSession()
        with pytest.raises(NoKernelRunning): await fresh.execute("1")
        with pytest.raises(NoKernelRunning): await fresh.interrupt()
        busy = ready_session()
        busy.channels = StubChannels(busy)
        busy._pending["other"] = PendingExecution("other")
        with pytest.raises(SessionBusy): await busy.execute("1")

    asyncio.run(main())


def test_shutdown_is_idempotent():
    async def main():
        session = KernelSession()
        states = []
        session.subscribe("state", states.append)
        await session.shutdown()
        await session.shutdown(now=True)
        return session, states

    session, states = asyncio.run(main())
    assert session.state == S.DEAD
    assert states == [S.DEAD]


def test_status_while_starting_does_not_move_state():
    async def main():
        session = KernelSession()
        session.codec = MessageCodec()
        session.lifecycle.transition(S.STARTING)
        session._iopub_ready = asyncio.Event()
        session.handle_iopub(session.codec.msg("status", dict(execution_state="idle")))
        session.handle_iopub(session.codec.msg("status", dict(execution_state="busy")))
        return session

    session = asyncio.run(main())
    assert session.state == S.STARTING
    assert session._iopub_ready.is_set()


def test_iopub_ignored_unless_live():
    session = KernelSession()
    session.codec = MessageCodec()
    got = []
    session.subscribe("output", lambda out, parent: got.append(out))
    session.handle_iopub(session.codec.msg("stream", dict(name="stdout", text="x")))
    assert got == []
    session.lifecycle.transition(S.STARTING)
    session.lifecycle.transition(S.IDLE)
    session.handle_iopub(session.codec.msg("stream", dict(name="stdout", text="x")))
    assert [o.content for o in got] == ["x"]
