"Turning iopub message kinds into the flat outputs a host displays."
import json
from dataclasses import dataclass
from enum import Enum
from .messages import DisplayData, ErrorReport, ExecuteResult, Stream


class OutputKind(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    RESULT = "result"
    DISPLAY = "display"
    ERROR = "error"


@dataclass(frozen=True)
class KernelOutput:
    kind:OutputKind
    content:str
    mime:str|None = None
    execution_count:int|None = None


# first present wins; the rest of the bundle is dropped
mime_priority = ("image/png", "image/jpeg", "text/html", "application/json", "text/plain")


def _text(value)->str: return "".join(value) if isinstance(value, list) else str(value)


def _pretty_json(value)->str:
    if isinstance(value, str):
        try: value = json.loads(value)
        except json.JSONDecodeError: return value
    return json.dumps(value, indent=2)


def display_output(kind:DisplayData)->KernelOutput|None:
    "Pick one representation from a display/result bundle by `mime_priority`."
    count = kind.execution_count if isinstance(kind, ExecuteResult) else None
    for mime in mime_priority:
        if mime not in kind.data: continue
        value = kind.data[mime]
        if mime == "text/plain": return KernelOutput(OutputKind.RESULT, _text(value), mime, count)
        content = _pretty_json(value) if mime == "application/json" else _text(value)
        return KernelOutput(OutputKind.DISPLAY, content, mime, count)
    return None


def to_output(kind)->KernelOutput|None:
    "Output for a classified iopub message, or None if it carries nothing to show."
    if isinstance(kind, Stream):
        return KernelOutput(OutputKind.STDERR if kind.name == "stderr" else OutputKind.STDOUT, kind.text)
    if isinstance(kind, DisplayData): return display_output(kind)
    if isinstance(kind, ErrorReport):
        text = "\n".join(kind.traceback) if kind.traceback else f"{kind.ename}: {kind.evalue}"
        return KernelOutput(OutputKind.ERROR, text)
    return None
