"""
XOP/MTOM message editor.
- multipart/related <-> single XML document with inlined base64 attachments
- WS-Security UsernameToken removal
- SOAP part extraction
"""

from .config import XopAction, XopConfig
from .errors import MultipartError, XopError
from .handler import ExecutionResult, XopHandler, XopOutcome, transform
from .message import Message, MessageContext

__all__ = [
    "ExecutionResult",
    "Message",
    "MessageContext",
    "MultipartError",
    "XopAction",
    "XopConfig",
    "XopError",
    "XopHandler",
    "XopOutcome",
    "transform",
]
