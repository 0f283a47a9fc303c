import asyncio, json, pytest
from jupyter_client.connect import write_connection_file
from minikc.connect import ConnectionInfo, load_connection
from minikc.errors import ConnectionTimeout, FormatError

DESC = dict(transport="tcp", ip="127.0.0.1", shell_port=5001, iopub_port=5002, stdin_port=5003, control_port=5004,
    hb_port=5005, key="secret", signature_scheme="hmac-sha256", kernel_name="python3")


def test_from_dict():
    info = ConnectionInfo.from_dict(DESC)
    assert info.shell_port == 5001
    assert info.key == "secret"
    assert info.addr(info.iopub_port) == "tcp://127.0.0.1:5002"


def test_ipc_addr():
    info = ConnectionInfo.from_dict(DESC | dict(transport="ipc", ip="/tmp/kernel"))
    assert info.addr(info.hb_port) == "ipc:///tmp/kernel-5005"


def test_missing_port():
    desc = dict(DESC)
    del desc["control_port"]
    with pytest.raises(FormatError): ConnectionInfo.from_dict(desc)
    with pytest.raises(FormatError): ConnectionInfo.from_dict(DESC | dict(shell_port="nope"))


def test_written_by_jupyter_client(tmp_path):
    path = str(tmp_path / "kernel.json")
    _, cfg = write_connection_file(path, ip="127.0.0.1", key=b"abc")
    info = asyncio.run(load_connection(path, attempts=1, grace=0))
    assert info.key == "abc"
    assert info.shell_port == cfg["shell_port"]


def test_waits_for_late_file(tmp_path):
    path = tmp_path / "kernel.json"

    async def main():
        async def write_later():
            await asyncio.sleep(0.15)
            path.write_text(json.dumps(DESC))
        writer = asyncio.create_task(write_later())
        info = await load_connection(str(path), attempts=50, interval=0.05, grace=0.01)
        await writer
        return info

    assert asyncio.run(main()).hb_port == 5005


def test_gives_up(tmp_path):
    with pytest.raises(ConnectionTimeout): asyncio.run(load_connection(str(tmp_path / "never.json"), attempts=3, interval=0.01))


def test_not_json(tmp_path):
    path = tmp_path / "kernel.json"
    path.write_text("{half")
    with pytest.raises(FormatError): asyncio.run(load_connection(str(path), attempts=1, grace=0))
    path.write_text("[1, 2]")
    with pytest.raises(FormatError): asyncio.run(load_connection(str(path), attempts=1, grace=0))
