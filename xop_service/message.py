import io
from typing import Any, Dict, Optional, Union

from requests.structures import CaseInsensitiveDict


class Message:
    """A header map plus content bytes, as exchanged with the host."""

    def __init__(self, content: Union[bytes, str] = b"", headers: Optional[Dict[str, str]] = None):
        self.headers = CaseInsensitiveDict(headers or {})
        self._content = b""
        self.set_content(content)

    @property
    def content(self) -> bytes:
        return self._content

    def get_header(self, name: str) -> Optional[str]:
        return self.headers.get(name)

    def set_header(self, name: str, value: str):
        self.headers[name] = value

    def get_content_as_stream(self) -> io.BufferedIOBase:
        return io.BytesIO(self._content)

    def set_content(self, content: Union[bytes, str, io.IOBase]):
        if isinstance(content, str):
            content = content.encode("utf-8")
        elif not isinstance(content, (bytes, bytearray)):
            content = content.read()
        self._content = bytes(content)

    def copy(self) -> "Message":
        return Message(self._content, dict(self.headers))


class MessageContext:
    """Flat variable store; messages live in it under their own names."""

    def __init__(self, message: Optional[Message] = None, variables: Optional[Dict[str, Any]] = None):
        self.variables: Dict[str, Any] = dict(variables or {})
        if message is not None:
            self.variables["message"] = message

    def get_variable(self, name: str) -> Optional[Any]:
        return self.variables.get(name)

    def set_variable(self, name: str, value: Any):
        self.variables[name] = value

    def remove_variable(self, name: str):
        self.variables.pop(name, None)

    def get_message(self) -> Optional[Message]:
        return self.variables.get("message")
