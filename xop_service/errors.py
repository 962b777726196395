import re
from typing import Tuple

COMMON_ERROR_PATTERN = re.compile(r"^(.+?)[:;] (.+)$")


class XopError(Exception):
    """Configuration or structural problem with the inbound message."""

    pass


class MultipartError(XopError):
    """Malformed multipart/related body."""

    pass


def describe_exception(exc: BaseException) -> Tuple[str, str]:
    """
    Returns (exception_text, error_text) for publishing to the caller.
    The error text drops the leading exception type name.
    """
    text = f"{type(exc).__name__}: {exc}".replace("\n", " ")
    m = COMMON_ERROR_PATTERN.match(text)
    if m:
        return text, m.group(2)
    return text, text
