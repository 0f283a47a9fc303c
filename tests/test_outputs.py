from minikc.messages import DisplayData, ErrorReport, ExecuteResult, Status, Stream
from minikc.outputs import KernelOutput, OutputKind, to_output

PNG = "iVBORw0KGgo="


def test_streams():
    assert to_output(Stream("stdout", "hi\n")) == KernelOutput(OutputKind.STDOUT, "hi\n")
    assert to_output(Stream("stderr", "oops")).kind == OutputKind.STDERR


def test_plain_result_carries_count():
    out = to_output(ExecuteResult(data={"text/plain": "2"}, execution_count=5))
    assert out == KernelOutput(OutputKind.RESULT, "2", "text/plain", 5)


def test_image_beats_html_and_text():
    out = to_output(DisplayData(data={"text/plain": "<Figure>", "text/html": "<b>x</b>", "image/png": PNG}))
    assert (out.kind, out.mime, out.content) == (OutputKind.DISPLAY, "image/png", PNG)
    out = to_output(DisplayData(data={"text/plain": "x", "image/jpeg": "/9j/"}))
    assert out.mime == "image/jpeg"


def test_html_beats_json():
    out = to_output(DisplayData(data={"application/json": {"a": 1}, "text/html": ["<i>", "x</i>"]}))
    assert out.mime == "text/html"
    assert out.content == "<i>x</i>"


def test_json_is_pretty_printed():
    out = to_output(ExecuteResult(data={"application/json": {"a": [1, 2]}, "text/plain": "{...}"}, execution_count=1))
    assert out.kind == OutputKind.DISPLAY
    assert out.content == '{\n  "a": [\n    1,\n    2\n  ]\n}'
    assert out.execution_count == 1


def test_unknown_mimes_only():
    assert to_output(DisplayData(data={"application/vnd.custom": "x"})) is None


def test_error_traceback_joined():
    out = to_output(ErrorReport("ZeroDivisionError", "division by zero", ("Traceback", "ZeroDivisionError: division by zero")))
    assert out == KernelOutput(OutputKind.ERROR, "Traceback\nZeroDivisionError: division by zero")


def test_error_without_traceback():
    assert to_output(ErrorReport("NameError", "x")).content == "NameError: x"


def test_status_is_not_output(): assert to_output(Status("busy")) is None
