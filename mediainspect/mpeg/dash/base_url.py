#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from collections.abc import Sequence
from typing import NamedTuple
import urllib.parse

from lxml import etree as ET

from .xml_tree import child_elements


class BaseOption(NamedTuple):
    url: str
    label: str


def manifest_directory(manifest_url: str) -> str:
    """
    The URL of the directory holding the manifest, without filename, query
    string or fragment
    """
    if not manifest_url:
        return ''
    parts = urllib.parse.urlsplit(manifest_url)
    path = parts.path[:parts.path.rfind('/') + 1]
    return urllib.parse.urlunsplit((parts.scheme, parts.netloc, path, '', ''))


def resolve_url(url: str, base: str) -> str:
    if not base:
        return url
    try:
        return urllib.parse.urljoin(base, url)
    except ValueError:
        return url


def base_url_entries(elt: ET._Element | None) -> list[BaseOption]:
    """
    The non-empty BaseURL children of an element, in document order
    """
    rv: list[BaseOption] = []
    for base in child_elements(elt, 'BaseURL'):
        text = (base.text or '').strip()
        if text:
            rv.append(BaseOption(text, base.get('serviceLocation') or text))
    return rv


def first_base_url(elt: ET._Element | None) -> str | None:
    entries = base_url_entries(elt)
    if entries:
        return entries[0].url
    return None


def root_base_options(mpd: ET._Element, manifest_url: str) -> list[BaseOption]:
    """
    Each MPD level BaseURL is an independent root. If the MPD does not have a
    BaseURL, the manifest's directory is the only root.
    """
    directory = manifest_directory(manifest_url)
    rv: list[BaseOption] = []
    seen: set[str] = set()
    for entry in base_url_entries(mpd):
        url = resolve_url(entry.url, directory)
        if url in seen:
            continue
        seen.add(url)
        rv.append(BaseOption(url, entry.label))
    if not rv:
        rv.append(BaseOption(directory, directory))
    return rv


def base_url_chain(root: str, parts: Sequence[str]) -> list[BaseOption]:
    """
    Resolves each part against the result of the previous one, starting from
    the given root
    """
    chain = [BaseOption(root, root)]
    current = root
    for part in parts:
        current = resolve_url(part, current)
        chain.append(BaseOption(current, part))
    return chain


def compose_base_url(root: str, parts: Sequence[str]) -> str:
    return base_url_chain(root, parts)[-1].url
