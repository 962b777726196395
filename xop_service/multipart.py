"""
Streaming multipart/related reader and writer.

MultipartInput hands out parts strictly in document order; a part's content
stream is only readable until the reader advances to the next part.
MultipartOutput writes parts one at a time with CRLF line endings.
"""

import io
import logging
import re
from typing import Dict, Iterator, Optional

from requests.structures import CaseInsensitiveDict

from .errors import MultipartError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
CRLF = b"\r\n"

_PARAM_RE = re.compile(
    r""";\s*([^\s=;]+)\s*=\s*("(?:[^"\\]|\\.)*"|'[^']*'|[^;]*)"""
)


def parse_params(content_type: Optional[str]) -> Dict[str, str]:
    """
    Parameters of a Content-Type style header value, names lower-cased.
    Values may be bare, double-quoted or single-quoted.
    """
    params: Dict[str, str] = {}
    if not content_type:
        return params
    for m in _PARAM_RE.finditer(content_type):
        name, value = m.group(1).lower(), m.group(2).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        params[name] = value
    return params


# ----------------------------
# Reader
# ----------------------------
class _PartStream(io.RawIOBase):
    def __init__(self, reader: "MultipartInput", part: "PartInput"):
        super().__init__()
        self._reader = reader
        self._part = part

    def readable(self):
        return True

    def readinto(self, b):
        if self._reader._current is not self._part:
            raise MultipartError(f"part #{self._part.index} is no longer readable")
        data = self._reader._read_content(len(b))
        n = len(data)
        b[:n] = data
        return n


class PartInput:
    """One part of a multipart body: header fields plus a content stream."""

    def __init__(self, reader: "MultipartInput", headers: CaseInsensitiveDict, index: int):
        self.headers = headers
        self.index = index
        self._stream = _PartStream(reader, self)

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("Content-Type")

    @property
    def content_id(self) -> Optional[str]:
        return self.headers.get("Content-ID")

    def get_header_names(self):
        return list(self.headers.keys())

    def get_header_field(self, name: str) -> Optional[str]:
        return self.headers.get(name)

    def get_input_stream(self) -> io.RawIOBase:
        return self._stream

    def read(self) -> bytes:
        return self._stream.read()


class MultipartInput:
    def __init__(self, stream, content_type: Optional[str], chunk_size: int = CHUNK_SIZE):
        boundary = parse_params(content_type).get("boundary")
        if not boundary:
            raise MultipartError("no boundary found")
        self.boundary = boundary
        self._stream = stream
        self._chunk_size = chunk_size
        self._delimiter = b"--" + boundary.encode("latin-1")
        self._marker = b"\n" + self._delimiter
        # a virtual line break so a delimiter at the very start is recognized
        self._buf = bytearray(b"\n")
        self._eof = False
        self._started = False
        self._has_next = False
        self._in_content = False
        self._current: Optional[PartInput] = None
        self._count = 0

    def __iter__(self) -> Iterator[PartInput]:
        while True:
            part = self.next_part()
            if part is None:
                return
            yield part

    def next_part(self) -> Optional[PartInput]:
        """Advance to the next part, or return None after the terminal boundary."""
        while self._in_content:
            self._read_content(self._chunk_size)
        if not self._started:
            self._started = True
            self._skip_preamble()
            self._has_next = self._consume_delimiter()
        if not self._has_next:
            self._current = None
            return None

        headers = self._read_headers()
        self._count += 1
        self._has_next = False
        self._in_content = True
        # empty content: the delimiter directly follows the blank line
        while len(self._buf) < len(self._delimiter) and self._fill():
            pass
        if self._buf.startswith(self._delimiter):
            self._in_content = False
            self._has_next = self._consume_delimiter()
        part = PartInput(self, headers, self._count)
        self._current = part
        logger.debug(f"multipart part #{self._count} headers: {list(headers.keys())}")
        return part

    def _fill(self) -> bool:
        if self._eof:
            return False
        chunk = self._stream.read(self._chunk_size)
        if not chunk:
            self._eof = True
            return False
        self._buf += chunk
        return True

    def _skip_preamble(self):
        while True:
            idx = self._buf.find(self._marker)
            if idx >= 0:
                del self._buf[: idx + 1]
                return
            if len(self._buf) > len(self._marker):
                del self._buf[: len(self._buf) - len(self._marker)]
            if not self._fill():
                raise MultipartError("no terminal boundary found")

    def _consume_delimiter(self) -> bool:
        """Buffer starts at a delimiter; returns False when it is the terminal one."""
        dlen = len(self._delimiter)
        while True:
            if len(self._buf) >= dlen + 2 and self._buf[dlen : dlen + 2] == b"--":
                # the epilogue is ignored
                del self._buf[:]
                return False
            nl = self._buf.find(b"\n", dlen)
            if nl >= 0:
                del self._buf[: nl + 1]
                return True
            if not self._fill():
                raise MultipartError("no terminal boundary found")

    def _read_line(self) -> bytes:
        while True:
            nl = self._buf.find(b"\n")
            if nl >= 0:
                line = bytes(self._buf[: nl + 1])
                del self._buf[: nl + 1]
                return line
            if not self._fill():
                raise MultipartError("no terminal boundary found")

    def _read_headers(self) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict()
        last = None
        eol = ""
        while True:
            raw = self._read_line()
            line = raw.rstrip(b"\r\n")
            if not line:
                return headers
            text = line.decode("latin-1")
            if text[0] in " \t" and last is not None:
                # keep the fold so the value re-encodes byte-for-byte
                headers[last] = headers[last] + eol + text
            else:
                name, sep, value = text.partition(":")
                if not sep:
                    raise MultipartError(f"malformed header line in part #{self._count + 1}")
                last = name.strip()
                # only the separator space the writer emits after the colon
                headers[last] = value[1:] if value.startswith(" ") else value
            eol = raw[len(line):].decode("latin-1")

    def _read_content(self, size: int) -> bytes:
        if not self._in_content:
            return b""
        while True:
            idx = self._buf.find(self._marker)
            if idx >= 0:
                end = idx - 1 if idx > 0 and self._buf[idx - 1] == 0x0D else idx
                if size < end:
                    data = bytes(self._buf[:size])
                    del self._buf[:size]
                    return data
                data = bytes(self._buf[:end])
                del self._buf[: idx + 1]
                self._in_content = False
                self._has_next = self._consume_delimiter()
                return data
            # hold back anything that could be the start of "\r\n--boundary"
            safe = len(self._buf) - len(self._marker) - 1
            if safe > 0:
                n = min(size, safe)
                data = bytes(self._buf[:n])
                del self._buf[:n]
                return data
            if not self._fill():
                raise MultipartError("no terminal boundary found")


# ----------------------------
# Writer
# ----------------------------
class PartOutput:
    def __init__(self, writer: "MultipartOutput", index: int):
        self._writer = writer
        self.index = index
        self.headers = CaseInsensitiveDict()
        self._started = False

    def set_header_field(self, name: str, value: str):
        if self._started:
            raise MultipartError(f"headers of part #{self.index} were already written")
        self.headers[name] = value

    def copy_headers(self, part: PartInput):
        for name in part.get_header_names():
            self.set_header_field(name, part.get_header_field(name))

    def write(self, data: bytes) -> int:
        self._writer._write(self, data)
        return len(data)

    def get_output_stream(self) -> "PartOutput":
        return self


class MultipartOutput:
    def __init__(self, out, content_type: str, boundary: Optional[str] = None):
        boundary = boundary or parse_params(content_type).get("boundary")
        if not boundary:
            raise MultipartError("no boundary found")
        self.content_type = content_type
        self.boundary = boundary
        self._out = out
        self._delimiter = b"--" + boundary.encode("latin-1")
        self._current: Optional[PartOutput] = None
        self._count = 0
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()

    def new_part(self) -> PartOutput:
        self._check_open()
        if self._current is not None:
            self._start(self._current)
        self._count += 1
        self._current = PartOutput(self, self._count)
        return self._current

    def close(self):
        if self._closed:
            return
        if self._current is not None:
            self._start(self._current)
            self._out.write(CRLF)
        self._out.write(self._delimiter + b"--" + CRLF)
        self._closed = True

    def _check_open(self):
        if self._closed:
            raise MultipartError("multipart output is already closed")

    def _start(self, part: PartOutput):
        if part._started:
            return
        if part.index > 1:
            self._out.write(CRLF)
        self._out.write(self._delimiter + CRLF)
        for name, value in part.headers.items():
            self._out.write(f"{name}: {value}".encode("latin-1") + CRLF)
        self._out.write(CRLF)
        part._started = True

    def _write(self, part: PartOutput, data: bytes):
        self._check_open()
        if part is not self._current:
            raise MultipartError(f"part #{part.index} is already complete")
        self._start(part)
        self._out.write(data)
