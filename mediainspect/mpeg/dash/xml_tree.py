#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from typing import NamedTuple, Protocol

from lxml import etree as ET


class XmlDocument(NamedTuple):
    """
    Result of parsing an XML document. If the parser found a syntax error,
    root is None and syntax_error holds the parser's description.
    """
    root: ET._Element | None
    syntax_error: str | None = None


class XmlTreeParser(Protocol):
    def parse(self, text: str | bytes) -> XmlDocument:
        ...


class LxmlTreeParser:
    """
    Implements XmlTreeParser using lxml. Entity expansion and network access
    are disabled, as manifests come from untrusted sources.
    """

    def parse(self, text: str | bytes) -> XmlDocument:
        if isinstance(text, str):
            text = text.lstrip('\ufeff').encode('utf-8')
        parser = ET.XMLParser(resolve_entities=False, no_network=True,
                              remove_comments=True, remove_pis=True)
        try:
            root = ET.fromstring(text, parser)
        except ET.XMLSyntaxError as err:
            return XmlDocument(None, str(err))
        if root is None:
            return XmlDocument(None, 'Document is empty')
        return XmlDocument(root)


def local_name(elt: ET._Element) -> str | None:
    if not isinstance(elt.tag, str):
        return None
    return ET.QName(elt).localname


def child_elements(elt: ET._Element | None, name: str) -> list[ET._Element]:
    if elt is None:
        return []
    return [child for child in elt if local_name(child) == name]


def find_child(elt: ET._Element | None, name: str) -> ET._Element | None:
    if elt is None:
        return None
    for child in elt:
        if local_name(child) == name:
            return child
    return None


def descendants(elt: ET._Element | None, name: str) -> list[ET._Element]:
    """
    All elements below elt (and elt itself) with the given local name, in
    document order
    """
    if elt is None:
        return []
    return [item for item in elt.iter() if local_name(item) == name]
