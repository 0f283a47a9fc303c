"Wire message container and the tagged union of message kinds a client branches on."
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Message:
    "One protocol message: header, parent header, metadata, content and raw buffers."
    header:dict
    parent_header:dict = field(default_factory=dict)
    metadata:dict = field(default_factory=dict)
    content:dict = field(default_factory=dict)
    buffers:tuple = ()

    @property
    def msg_id(self)->str: return self.header.get("msg_id", "")

    @property
    def msg_type(self)->str: return self.header.get("msg_type", "")

    @property
    def parent_id(self)->str|None: return (self.parent_header or {}).get("msg_id")

    def to_dict(self)->dict:
        return dict(header=self.header, parent_header=self.parent_header, metadata=self.metadata,
            content=self.content, buffers=list(self.buffers), msg_id=self.msg_id, msg_type=self.msg_type)


@dataclass(frozen=True)
class ExecuteReply:
    status:str
    execution_count:int|None = None
    ename:str = ""
    evalue:str = ""
    traceback:tuple = ()
    payload:tuple = ()
    user_expressions:dict = field(default_factory=dict)


@dataclass(frozen=True)
class Stream:
    name:str
    text:str


@dataclass(frozen=True)
class DisplayData:
    data:dict
    metadata:dict = field(default_factory=dict)
    transient:dict = field(default_factory=dict)


@dataclass(frozen=True)
class ExecuteResult(DisplayData):
    execution_count:int|None = None


@dataclass(frozen=True)
class ErrorReport:
    ename:str
    evalue:str
    traceback:tuple = ()


@dataclass(frozen=True)
class Status:
    execution_state:str


@dataclass(frozen=True)
class KernelInfoReply:
    status:str
    protocol_version:str = ""
    implementation:str = ""
    implementation_version:str = ""
    language_info:dict = field(default_factory=dict)
    banner:str = ""


@dataclass(frozen=True)
class Unknown:
    "Any message type without a dedicated shape."
    msg_type:str
    content:dict


MessageKind = ExecuteReply | Stream | DisplayData | ExecuteResult | ErrorReport | Status | KernelInfoReply | Unknown


def _execute_reply(c:dict)->ExecuteReply:
    return ExecuteReply(status=c.get("status", "ok"), execution_count=c.get("execution_count"), ename=c.get("ename", ""),
        evalue=c.get("evalue", ""), traceback=tuple(c.get("traceback") or ()), payload=tuple(c.get("payload") or ()),
        user_expressions=c.get("user_expressions") or {})


def _display(c:dict)->DisplayData:
    return DisplayData(data=c.get("data") or {}, metadata=c.get("metadata") or {}, transient=c.get("transient") or {})


def _result(c:dict)->ExecuteResult:
    return ExecuteResult(data=c.get("data") or {}, metadata=c.get("metadata") or {}, transient=c.get("transient") or {},
        execution_count=c.get("execution_count"))


def _kernel_info(c:dict)->KernelInfoReply:
    return KernelInfoReply(status=c.get("status", "ok"), protocol_version=c.get("protocol_version", ""),
        implementation=c.get("implementation", ""), implementation_version=c.get("implementation_version", ""),
        language_info=c.get("language_info") or {}, banner=c.get("banner", ""))


kind_parsers = dict(execute_reply=_execute_reply,
    stream=lambda c: Stream(name=c.get("name", "stdout"), text=c.get("text", "")),
    display_data=_display, update_display_data=_display, execute_result=_result,
    error=lambda c: ErrorReport(ename=c.get("ename", ""), evalue=c.get("evalue", ""), traceback=tuple(c.get("traceback") or ())),
    status=lambda c: Status(execution_state=c.get("execution_state", "")),
    kernel_info_reply=_kernel_info)


def classify(msg:Message)->MessageKind:
    "Return the typed view of `msg`'s content; unknown types map to `Unknown`."
    parser = kind_parsers.get(msg.msg_type)
    if parser is None: return Unknown(msg.msg_type, msg.content)
    return parser(msg.content or {})
