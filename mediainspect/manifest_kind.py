#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################

from enum import Enum
import re
import urllib.parse


class ManifestKind(Enum):
    DASH = 'dash'
    HLS = 'hls'
    JSON = 'json'
    PLAIN = 'plain'

    @classmethod
    def from_string(cls, name: str) -> "ManifestKind":
        """
        Convert name string into this enum
        """
        return cls[name.upper()]

    def to_json(self) -> str:
        return self.value


DASH_CONTENT_TYPES = {'application/dash+xml'}
HLS_CONTENT_TYPES = {
    'application/vnd.apple.mpegurl',
    'application/x-mpegurl',
    'audio/mpegurl',
    'audio/x-mpegurl',
}

_re_xml_start = re.compile(r'^\s*(<\?xml|<\w+)', re.IGNORECASE)
_re_mpd_element = re.compile(r'<(\w+:)?MPD[\s>/]')
_re_extm3u = re.compile(r'^#EXTM3U', re.MULTILINE)


def url_extension(url: str) -> str:
    path = urllib.parse.urlsplit(url or '').path
    name = path.rsplit('/', 1)[-1]
    if '.' not in name:
        return ''
    return name.rsplit('.', 1)[-1].lower()


def detect_manifest_kind(url: str = '', body: str | bytes = '',
                         content_type: str | None = None) -> ManifestKind:
    """
    Guesses the type of a manifest from its URL, the Content-Type of the
    HTTP response and the start of its body
    """
    if isinstance(body, bytes):
        body = body.decode('utf-8', errors='replace')
    body = (body or '').lstrip('\ufeff')
    mime = (content_type or '').split(';')[0].strip().lower()
    ext = url_extension(url)

    if ext == 'mpd' or mime in DASH_CONTENT_TYPES or _re_mpd_element.search(body):
        return ManifestKind.DASH
    if ext == 'm3u8' or mime in HLS_CONTENT_TYPES or _re_extm3u.search(body):
        return ManifestKind.HLS
    stripped = body.lstrip()
    if ext == 'json' or mime == 'application/json' or stripped[:1] in {'{', '['}:
        return ManifestKind.JSON
    if _re_xml_start.match(body):
        return ManifestKind.DASH
    return ManifestKind.PLAIN
