"""Module containing utilities and helper methods regarding xml."""
from __future__ import annotations

from typing import TypeAlias

from lxml import etree as etree_
from lxml.etree import _Element

LxmlElement: TypeAlias = _Element


def mk_secure_parser() -> etree_.XMLParser:
    """Return a parser that neither resolves entities nor loads a dtd nor accesses the network."""
    return etree_.ETCompatXMLParser(resolve_entities=False, no_network=True, load_dtd=False, huge_tree=False)


def child_elements(node: LxmlElement) -> list[LxmlElement]:
    """Return the child elements of node, comments and processing instructions are skipped."""
    return [child for child in node if isinstance(child.tag, str)]


def get_text(node: LxmlElement | None, q_name: etree_.QName) -> str | None:
    """Return the text of the first child with name q_name, or None."""
    if node is None:
        return None
    tmp = node.find(q_name)
    if tmp is None:
        return None
    return tmp.text


def has_xml_declaration(xml_text: bytes) -> bool:
    """Return True if xml_text starts with an xml declaration (an optional BOM is ignored)."""
    if xml_text.startswith(b'\xef\xbb\xbf'):
        xml_text = xml_text[3:]
    return xml_text.lstrip()[:5] == b'<?xml'
