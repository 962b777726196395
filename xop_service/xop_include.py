"""
Binding of multipart attachments to xop:Include placeholders.

Each remaining part is matched by Content-ID to exactly one
<xop:Include href="cid:..."/> element, whose parent then receives the
base64 encoded part content in place of the Include. An Include that no
part binds to is an error as well.
"""

import base64
import logging
import re
from typing import Iterable
from urllib.parse import quote

from lxml import etree

from .content_types import ContentTypeAllowlist
from .errors import XopError
from .multipart import PartInput
from .xml_utils import XPathEvaluator, replace_children_with_text, to_string

logger = logging.getLogger(__name__)

XOP_NS = "http://www.w3.org/2004/08/xop/include"
INCLUDE_XPATH = "//xop:Include[@href=$href]"
UNBOUND_INCLUDE_XPATH = "//xop:Include"

CONTENT_ID_RE = re.compile(r"^.*?<([^<>]+)>.*$", re.DOTALL)


def parse_content_id(part: PartInput) -> str:
    raw = part.content_id
    if raw is None:
        raise XopError(f"no Content-ID found (part{part.index})")
    m = CONTENT_ID_RE.match(raw)
    if not m:
        raise XopError(f"malformed Content-ID (part{part.index})")
    return m.group(1)


def check_attachment_type(part: PartInput, allowlist: ContentTypeAllowlist):
    ctype = part.content_type
    if ctype is None:
        raise XopError(f"no content-type found (part{part.index})")
    if not allowlist.accepts(ctype):
        raise XopError(f"unexpected content-type for part #{part.index} ({ctype})")


def find_include(document, content_id: str, xpe: XPathEvaluator) -> etree._Element:
    """Literal match first, then the percent-encoded form of the id."""
    candidates = [content_id]
    encoded = quote(content_id, safe="")
    if encoded != content_id:
        candidates.append(encoded)
    for candidate in candidates:
        nodes = xpe.select(INCLUDE_XPATH, document, href=f"cid:{candidate}")
        if len(nodes) > 1:
            raise XopError(f"found more than one xop:Include for Content-ID {content_id}")
        if nodes:
            return nodes[0]
    raise XopError(f"no xop:Include found for Content-ID {content_id}")


def embed_attachment(document, part: PartInput, allowlist: ContentTypeAllowlist, xpe: XPathEvaluator):
    check_attachment_type(part, allowlist)
    content_id = parse_content_id(part)
    include = find_include(document, content_id, xpe)

    parent = include.getparent()
    # comments and processing instructions count as siblings too
    if parent is None or len(parent) != 1:
        raise XopError("xop:Include is not the sole child of its parent")

    data = part.read()
    replace_children_with_text(parent, base64.b64encode(data).decode("ascii"))
    logger.debug(f"embedded part #{part.index} ({content_id}, {len(data)} bytes)")


def embed_attachments(document, parts: Iterable[PartInput], allowlist: ContentTypeAllowlist) -> str:
    """
    Splice every remaining part into the document and serialize it.
    Any failure aborts the whole operation; nothing partial is returned.
    Every xop:Include must have been bound to a part by the end.
    """
    xpe = XPathEvaluator({"xop": XOP_NS})
    count = 0
    for part in parts:
        embed_attachment(document, part, allowlist, xpe)
        count += 1
    unbound = xpe.select(UNBOUND_INCLUDE_XPATH, document)
    if unbound:
        raise XopError(f"no attachment found for xop:Include {unbound[0].get('href')}")
    logger.info(f"embedded {count} attachment(s)")
    return to_string(document)
