from typing import Iterable, Optional, Tuple

DEFAULT_XML_CONTENT_TYPES = (
    "application/soap+xml",
    "application/xop+xml",
    "text/xml",
)

DEFAULT_ATTACHMENT_CONTENT_TYPES = (
    "application/zip",
    "application/octet-stream",
    "image/jpeg",
    "image/png",
    "application/pdf",
)


def split_content_types(value: Optional[str]) -> Tuple[str, ...]:
    """
    'a, "b", c' -> ('a', 'b', 'c'). Surrounding double quotes are optional
    per entry; blank entries are dropped.
    """
    if not value:
        return ()
    items = []
    for item in value.split(","):
        item = item.strip()
        if len(item) >= 2 and item.startswith('"') and item.endswith('"'):
            item = item[1:-1].strip()
        if item:
            items.append(item)
    return tuple(items)


class ContentTypeAllowlist:
    """Ordered prefixes; a content type is acceptable if it starts with any of them."""

    def __init__(self, prefixes: Iterable[str]):
        self.prefixes = tuple(prefixes)

    @classmethod
    def parse(cls, value: Optional[str], default: Iterable[str]) -> "ContentTypeAllowlist":
        prefixes = split_content_types(value)
        return cls(prefixes or default)

    def accepts(self, content_type: Optional[str]) -> bool:
        if content_type is None:
            return False
        return any(content_type.startswith(p) for p in self.prefixes)

    def __iter__(self):
        return iter(self.prefixes)

    def __eq__(self, other):
        if isinstance(other, ContentTypeAllowlist):
            return self.prefixes == other.prefixes
        return NotImplemented

    def __repr__(self):
        return f"ContentTypeAllowlist({list(self.prefixes)!r})"
