"""Message codec for the Jupyter wire protocol.

A `MessageCodec` belongs to one kernel connection: it fixes the session id, holds the
signing key from the connection file, builds request messages and turns them into the
multipart frame layout used on every channel:

    [ident..., b"<IDS|MSG>", signature, header, parent_header, metadata, content, buffers...]

Packing, signing and framing are done by a `jupyter_client.session.Session`; the codec adds
the warn/reject signature policy and maps malformed input to `FormatError`.
"""
import hashlib, hmac, logging, os
from jupyter_client.session import DELIM, Session
from .errors import FormatError, SignatureMismatch
from .messages import Message

log = logging.getLogger("minikc.protocol")

PROTOCOL_VERSION = "5.3"


def _check_scheme(scheme:str):
    if not scheme.startswith("hmac-") or not hasattr(hashlib, scheme[len("hmac-"):]):
        raise ValueError(f"unsupported signature scheme {scheme!r}")


class MessageCodec:
    def __init__(self, key:bytes|str=b"", signature_scheme:str="hmac-sha256", session_id:str|None=None,
        username:str|None=None, signature_policy:str="warn"):
        "Codec signing with `key`; an empty key disables signing and verification."
        self.key = key.encode() if isinstance(key, str) else bytes(key or b"")
        self.signature_scheme = signature_scheme or "hmac-sha256"
        _check_scheme(self.signature_scheme)
        self.signature_policy = signature_policy
        kw = dict(session=session_id) if session_id else {}
        # replay detection off: the policy below decides what a bad signature means
        self.session = Session(key=self.key, signature_scheme=self.signature_scheme, username=username or os.environ.get("USER", "minikc"),
            digest_history_size=0, **kw)

    @property
    def session_id(self)->str: return self.session.session

    @property
    def username(self)->str: return self.session.username

    def msg_header(self, msg_type:str)->dict: return dict(self.session.msg_header(msg_type), version=PROTOCOL_VERSION)

    def msg(self, msg_type:str, content:dict|None=None, parent:Message|dict|None=None, metadata:dict|None=None,
        buffers:list|None=None)->Message:
        "Build a message, inheriting `parent`'s header as our parent_header when replying."
        if isinstance(parent, Message): parent = parent.header
        m = self.session.msg(msg_type, dict(content or {}), parent=parent or None, header=self.msg_header(msg_type), metadata=metadata)
        return Message(header=m["header"], parent_header=dict(m["parent_header"]), metadata=m["metadata"], content=m["content"],
            buffers=tuple(buffers or ()))

    def execute_request(self, code:str, silent:bool=False, store_history:bool|None=None,
        user_expressions:dict|None=None, allow_stdin:bool=False, stop_on_error:bool=True)->Message:
        if store_history is None: store_history = not silent
        return self.msg("execute_request", dict(code=code, silent=silent, store_history=store_history,
            user_expressions=user_expressions or {}, allow_stdin=allow_stdin, stop_on_error=stop_on_error))

    def kernel_info_request(self)->Message: return self.msg("kernel_info_request", {})

    def shutdown_request(self, restart:bool=False)->Message: return self.msg("shutdown_request", dict(restart=restart))

    def interrupt_request(self)->Message: return self.msg("interrupt_request", {})

    def sign(self, parts:list[bytes])->bytes:
        "HMAC hex digest over `parts` in order; empty when no key is configured."
        return self.session.sign(parts)

    def pack_parts(self, msg:Message)->list[bytes]:
        return [self.session.pack(o) for o in (msg.header, msg.parent_header, msg.metadata, msg.content)]

    def serialize(self, msg:Message, ident:bytes|list[bytes]|None=None)->list[bytes]:
        "Frames for `msg`: routing idents, delimiter, signature, four JSON parts, buffers."
        if isinstance(ident, (bytes, bytearray)): ident = bytes(ident)
        elif ident is not None: ident = list(ident)
        try: frames = self.session.serialize(msg.to_dict(), ident=ident)
        except (ValueError, TypeError) as exc: raise FormatError(f"cannot encode {msg.msg_type}: {exc}") from exc
        return [*frames, *msg.buffers]

    def feed_identities(self, frames:list)->tuple[list[bytes], list[bytes]]:
        "Split `frames` at the delimiter into (idents, rest); raises FormatError if absent."
        frames = [f.bytes if hasattr(f, "bytes") else bytes(f) for f in frames]
        try: return self.session.feed_identities(frames)
        except ValueError: raise FormatError("missing <IDS|MSG> delimiter") from None

    def deserialize(self, frames:list)->Message:
        "Decode a received frame sequence; raises FormatError on malformed input."
        _idents, rest = self.feed_identities(frames)
        if len(rest) < 5: raise FormatError(f"expected at least 5 frames after delimiter, got {len(rest)}")
        signature, parts = rest[0], rest[1:5]
        expected = self.sign(parts)
        if self.key and signature and not hmac.compare_digest(signature, expected):
            if self.signature_policy == "reject": raise SignatureMismatch("message signature mismatch")
            log.warning("Message signature mismatch; processing anyway")
        try: m = self.session.deserialize([expected, *rest[1:]])
        except (AttributeError, KeyError, TypeError, ValueError) as exc: raise FormatError(f"undecodable message: {exc}") from exc
        return Message(header=m["header"], parent_header=m["parent_header"] or {}, metadata=m["metadata"] or {},
            content=m["content"] or {}, buffers=tuple(bytes(b) for b in m["buffers"]))

    def parse(self, frames:list)->Message|None:
        "Like `deserialize`, but malformed input is logged and dropped (returns None)."
        try: return self.deserialize(frames)
        except FormatError as exc:
            log.warning("Dropping malformed message: %s", exc)
            return None
