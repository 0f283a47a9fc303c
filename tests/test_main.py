import json, sys, pytest
from minikc.__main__ import main
from .kernel_utils import build_env


@pytest.fixture
def fake_env(tmp_path, monkeypatch):
    monkeypatch.setenv("PYTHONPATH", build_env()["PYTHONPATH"])
    monkeypatch.setenv("MINIKC_RUNTIME_DIR", str(tmp_path))
    monkeypatch.setenv("MINIKC_IOPUB_WAIT", "0.2")
    return ["--python", sys.executable, "--kernel-module", "fake_kernel"]


def test_exec_prints_outputs(fake_env, capsys):
    assert main(["exec", *fake_env, "print('hello')\n6*7"]) == 0
    out = capsys.readouterr().out
    assert "hello\n" in out
    assert "42" in out


def test_exec_error_exit_status(fake_env, capsys):
    assert main(["exec", *fake_env, "1/0"]) == 1
    assert "ZeroDivisionError" in capsys.readouterr().err


def test_info_prints_json(fake_env, capsys):
    assert main(["info", *fake_env]) == 0
    assert json.loads(capsys.readouterr().out)["implementation"] == "fake"


def test_start_failure_is_reported(fake_env, capsys, monkeypatch):
    monkeypatch.setenv("FAKE_KERNEL_EXIT", "2")
    assert main(["exec", *fake_env, "1"]) == 1
    assert "ProcessExit" in capsys.readouterr().err
