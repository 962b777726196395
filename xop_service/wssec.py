import logging
from typing import Union

from .xml_utils import XPathEvaluator, parse_xml, remove_node, to_string

logger = logging.getLogger(__name__)

SOAP11_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"

USERNAME_TOKEN_XPATH = "/soap:Envelope/soap:Header/wsse:Security/wsse:UsernameToken"


def remove_username_token(xml: Union[bytes, str]) -> str:
    """
    Strip wsse:UsernameToken from the SOAP 1.1 header, along with the blank
    text in front of it. Every match is removed; no match is a no-op.
    Returns the document re-serialized with indentation.
    """
    document = parse_xml(xml)
    xpe = XPathEvaluator({"soap": SOAP11_NS, "wsse": WSSE_NS})
    nodes = xpe.select(USERNAME_TOKEN_XPATH, document)
    for node in nodes:
        remove_node(node)
    if nodes:
        logger.debug(f"removed {len(nodes)} UsernameToken element(s)")
    return to_string(document, indent=True)
