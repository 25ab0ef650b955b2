#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
import math
import re
from typing import NamedTuple

_re_attribute = re.compile(r'([A-Z0-9-]+)=("([^"]*)"|[^",\s][^,]*)', re.IGNORECASE)


class HlsTag(NamedTuple):
    """
    One "#EXT..." line, split into its tag name and the text after the colon
    """
    name: str
    value: str

    @classmethod
    def parse(cls, line: str) -> "HlsTag":
        name, sep, value = line.partition(':')
        return cls(name.strip().upper(), value.strip() if sep else '')

    def attributes(self) -> dict[str, str]:
        return parse_attribute_list(self.value)


def parse_attribute_list(raw: str) -> dict[str, str]:
    """
    Parses an HLS attribute list, such as:
    BANDWIDTH=1280000,CODECS="avc1.4d401f,mp4a.40.2"
    Quoted values are returned without their quotes.
    """
    attrs: dict[str, str] = {}
    for match in _re_attribute.finditer(raw):
        if match.group(3) is not None:
            attrs[match.group(1)] = match.group(3)
        else:
            attrs[match.group(1)] = match.group(2).strip()
    return attrs


def parse_int(value: str) -> int | None:
    try:
        return int(value.strip(), 10)
    except ValueError:
        return None


def parse_float(value: str) -> float | None:
    try:
        rv = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(rv):
        return None
    return rv
