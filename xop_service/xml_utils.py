"""
lxml-backed XML document helpers: parsing, serialization and
namespace-aware XPath evaluation.

lxml keeps character data on `.text` / `.tail` rather than as separate
nodes; the helpers here take care of the text that surrounds an element
when it is removed or replaced.
"""

import logging
from typing import Dict, List, Union

from lxml import etree

logger = logging.getLogger(__name__)

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


def parse_xml(source: Union[bytes, str]) -> etree._ElementTree:
    """Raises lxml.etree.XMLSyntaxError on malformed input."""
    if isinstance(source, str):
        source = source.encode("utf-8")
    root = etree.fromstring(source, parser=_PARSER)
    return root.getroottree()


def to_string(document: etree._ElementTree, indent: bool = False) -> str:
    """Serialize without an XML declaration."""
    return etree.tostring(document, encoding="unicode", pretty_print=indent)


class XPathEvaluator:
    def __init__(self, namespaces: Dict[str, str] = None):
        self._namespaces: Dict[str, str] = dict(namespaces or {})

    def register_namespace(self, prefix: str, uri: str):
        self._namespaces[prefix] = uri

    def select(self, xpath: str, document, **variables) -> List:
        return document.xpath(xpath, namespaces=self._namespaces, **variables)


def preceding_text(node: etree._Element) -> str:
    prev = node.getprevious()
    if prev is not None:
        return prev.tail
    return node.getparent().text


def _set_preceding_text(node: etree._Element, text):
    prev = node.getprevious()
    if prev is not None:
        prev.tail = text
    else:
        node.getparent().text = text


def remove_node(node: etree._Element, drop_blank_before: bool = True):
    """
    Remove an element but keep the text that follows it. When the text just
    before the element is whitespace only, it goes too.
    """
    parent = node.getparent()
    before = preceding_text(node)
    after = node.tail
    if drop_blank_before and before is not None and not before.strip():
        before = None
    if before is None:
        merged = after
    else:
        merged = before + (after or "")
    _set_preceding_text(node, merged)
    # lxml drops the tail together with the element
    parent.remove(node)


def replace_children_with_text(parent: etree._Element, text: str):
    for child in list(parent):
        parent.remove(child)
    parent.text = text
