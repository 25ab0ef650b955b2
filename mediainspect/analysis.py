#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from dataclasses import dataclass
import logging
import re

from lxml import etree as ET

from mediainspect.exceptions import InspectionError
from mediainspect.manifest_kind import ManifestKind, detect_manifest_kind
from mediainspect.mpeg.dash.validator import DEFAULT_PARSER
from mediainspect.mpeg.dash.xml_tree import XmlTreeParser, descendants
from mediainspect.mpeg.hls.attributes import HlsTag, parse_int
from mediainspect.mpeg.hls.validator import resolve_url
from mediainspect.utils.json_object import JsonObject

# fields of a variant that are compared when the same variant appears in
# both manifests
COMPARED_FIELDS = ('resolution', 'bandwidth', 'avg_bandwidth', 'frame_rate', 'codecs')

_re_key_tag = re.compile(r'^#EXT-X-(SESSION-)?KEY', re.IGNORECASE)
_re_scte35_tag = re.compile(r'SCTE-35', re.IGNORECASE)
_re_scte35_attr = re.compile(r'SCTE35', re.IGNORECASE)


def split_codecs(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(c.strip() for c in value.split(',') if c.strip())


@dataclass(frozen=True, slots=True, kw_only=True)
class Variant:
    type: str = ''
    id: str = ''
    uri: str = ''
    bandwidth: int | None = None
    avg_bandwidth: int | None = None
    resolution: str = ''
    frame_rate: str = ''
    codecs: tuple[str, ...] = ()
    mime: str = ''

    def key(self) -> str:
        """
        The value used to match this variant with a variant of another
        manifest
        """
        if self.id:
            return f'id:{self.id}'
        bandwidth = '' if self.bandwidth is None else str(self.bandwidth)
        return '|'.join([self.type, self.resolution, bandwidth, '/'.join(self.codecs)])

    def label(self) -> str:
        parts: list[str] = []
        if self.type:
            parts.append(self.type)
        if self.resolution:
            parts.append(self.resolution)
        if self.bandwidth:
            parts.append(f'{self.bandwidth:,}bps')
        if self.codecs:
            parts.append(', '.join(self.codecs))
        if self.frame_rate:
            parts.append(f'{self.frame_rate}fps')
        return ' • '.join(parts) or self.id or 'variant'

    def to_dict(self) -> JsonObject:
        return {
            'type': self.type,
            'id': self.id,
            'uri': self.uri,
            'bandwidth': self.bandwidth,
            'avgBandwidth': self.avg_bandwidth,
            'resolution': self.resolution,
            'frameRate': self.frame_rate,
            'codecs': list(self.codecs),
            'mime': self.mime,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class Rendition:
    type: str = ''
    group_id: str = ''
    name: str = ''
    language: str = ''
    assoc_language: str = ''
    uri: str = ''
    channels: str = ''
    characteristics: str = ''

    def to_dict(self) -> JsonObject:
        return {
            'type': self.type,
            'groupId': self.group_id,
            'name': self.name,
            'language': self.language,
            'assocLanguage': self.assoc_language,
            'uri': self.uri,
            'channels': self.channels,
            'characteristics': self.characteristics,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class ManifestAnalysis:
    """
    Summary of the parts of a manifest that are compared by diff_manifests
    """
    kind: ManifestKind
    url: str = ''
    variants: tuple[Variant, ...] = ()
    renditions: tuple[Rendition, ...] = ()
    drm: tuple[str, ...] = ()
    scte: tuple[str, ...] = ()
    timeline: str = 'None'
    error: str | None = None

    def to_dict(self) -> JsonObject:
        rv: JsonObject = {
            'mode': self.kind.to_json(),
            'url': self.url,
            'variants': [v.to_dict() for v in self.variants],
            'renditions': [r.to_dict() for r in self.renditions],
            'drm': list(self.drm),
            'scte': list(self.scte),
            'timeline': {'type': self.timeline},
        }
        if self.error is not None:
            rv['error'] = self.error
        return rv


def unique(items: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


def analyze_hls(text: str, base_url: str = '') -> ManifestAnalysis:
    variants: list[Variant] = []
    renditions: list[Rendition] = []
    drm: list[str] = []
    scte: list[str] = []
    pending: dict[str, str] | None = None

    for raw in (text or '').splitlines():
        line = raw.strip()
        if not line:
            continue
        if not line.startswith('#'):
            if pending is not None:
                uri = resolve_url(line, base_url)
                variants.append(Variant(
                    type='video',
                    id=pending.get('STABLE-VARIANT-ID') or uri,
                    uri=uri,
                    bandwidth=parse_int(pending.get('BANDWIDTH', '')),
                    avg_bandwidth=parse_int(pending.get('AVERAGE-BANDWIDTH', '')),
                    resolution=pending.get('RESOLUTION', ''),
                    frame_rate=pending.get('FRAME-RATE', ''),
                    codecs=split_codecs(pending.get('CODECS'))))
                pending = None
            continue
        tag = HlsTag.parse(line)
        if tag.name == '#EXT-X-STREAM-INF':
            pending = tag.attributes()
            continue
        if tag.name == '#EXT-X-MEDIA':
            attrs = tag.attributes()
            renditions.append(Rendition(
                type=attrs.get('TYPE', '').lower(),
                group_id=attrs.get('GROUP-ID', ''),
                name=attrs.get('NAME', ''),
                language=attrs.get('LANGUAGE', ''),
                assoc_language=attrs.get('ASSOC-LANGUAGE', ''),
                uri=resolve_url(attrs['URI'], base_url) if attrs.get('URI') else '',
                channels=attrs.get('CHANNELS', ''),
                characteristics=attrs.get('CHARACTERISTICS', '')))
        if _re_key_tag.match(line):
            attrs = tag.attributes()
            keyformat = attrs.get('KEYFORMAT') or 'identity'
            method = attrs.get('METHOD', '')
            drm.append(f'{keyformat}:{method}' if method else keyformat)
        if _re_scte35_tag.search(line) or (
                'DATERANGE' in line and _re_scte35_attr.search(line)):
            scte.append(line)

    return ManifestAnalysis(
        kind=ManifestKind.HLS, url=base_url, variants=tuple(variants),
        renditions=tuple(renditions), drm=unique(drm), scte=unique(scte),
        timeline='HLS')


def segment_addressing_type(adaptation: ET._Element) -> str:
    if descendants(adaptation, 'SegmentTimeline'):
        return 'SegmentTemplate+Timeline'
    for name in ('SegmentTemplate', 'SegmentList', 'SegmentBase'):
        if descendants(adaptation, name):
            return name
    return 'None'


def analyze_dash(text: str | bytes, url: str = '',
                 parser: XmlTreeParser = DEFAULT_PARSER) -> ManifestAnalysis:
    """
    Lists the representations, content protection schemes, SCTE-35 event
    streams and segment addressing types of a DASH manifest
    """
    doc = parser.parse(text)
    if doc.syntax_error is not None or doc.root is None:
        logging.getLogger('dash').debug('XML syntax error: %s', doc.syntax_error)
        return ManifestAnalysis(
            kind=ManifestKind.DASH, url=url, error='Failed to parse DASH XML.')
    root = doc.root

    drm: list[str] = []
    for elt in descendants(root, 'ContentProtection'):
        scheme = elt.get('schemeIdUri') or elt.get('schemeiduri') or ''
        if scheme:
            drm.append(scheme)

    scte: list[str] = []
    for elt in descendants(root, 'EventStream') + descendants(root, 'InbandEventStream'):
        scheme = (elt.get('schemeIdUri') or '').lower()
        if 'scte35' in scheme:
            scte.append(scheme)

    variants: list[Variant] = []
    addressing: list[str] = []
    for idx, adaptation in enumerate(descendants(root, 'AdaptationSet')):
        as_type = adaptation.get('contentType') or adaptation.get('mimeType') or ''
        addressing.append(segment_addressing_type(adaptation))
        for rep_idx, rep in enumerate(descendants(adaptation, 'Representation')):
            mime = rep.get('mimeType') or adaptation.get('mimeType') or ''
            width = rep.get('width')
            height = rep.get('height')
            bandwidth = rep.get('bandwidth')
            variants.append(Variant(
                type=as_type or (mime.split('/')[0] if mime else ''),
                id=rep.get('id') or f'adapt{idx}-rep{rep_idx}',
                bandwidth=parse_int(bandwidth) if bandwidth else None,
                resolution=f'{width}x{height}' if width and height else '',
                frame_rate=rep.get('frameRate') or '',
                codecs=split_codecs(rep.get('codecs') or adaptation.get('codecs')),
                mime=mime))

    timeline = ' / '.join(t for t in unique(addressing) if t) or 'None'
    return ManifestAnalysis(
        kind=ManifestKind.DASH, url=url, variants=tuple(variants),
        drm=unique(drm), scte=unique(scte), timeline=timeline)


def analyze_manifest(text: str | None, url: str = '', content_type: str | None = None,
                     kind: ManifestKind | None = None) -> ManifestAnalysis:
    """
    Summarises a manifest. When kind is not provided it is detected from
    the URL, content type and body of the manifest. JSON and plain text
    documents produce an empty summary.
    """
    if not text:
        return ManifestAnalysis(kind=ManifestKind.PLAIN, url=url)
    text = text.lstrip('\ufeff')
    if kind is None:
        kind = detect_manifest_kind(url=url, body=text, content_type=content_type)
    match kind:
        case ManifestKind.HLS:
            return analyze_hls(text, url)
        case ManifestKind.DASH:
            return analyze_dash(text, url)
    return ManifestAnalysis(kind=kind, url=url)


@dataclass(frozen=True, slots=True)
class VariantChange:
    before: Variant
    after: Variant
    fields: tuple[str, ...]

    def to_dict(self) -> JsonObject:
        return {
            'from': self.before.to_dict(),
            'to': self.after.to_dict(),
            'fields': list(self.fields),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class VariantDiff:
    added: tuple[Variant, ...] = ()
    removed: tuple[Variant, ...] = ()
    changed: tuple[VariantChange, ...] = ()

    def to_dict(self) -> JsonObject:
        return {
            'added': [v.to_dict() for v in self.added],
            'removed': [v.to_dict() for v in self.removed],
            'changed': [c.to_dict() for c in self.changed],
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class SetDiff:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    def to_dict(self) -> JsonObject:
        return {
            'added': list(self.added),
            'removed': list(self.removed),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class ManifestDiff:
    variants: VariantDiff
    drm: SetDiff
    scte: SetDiff
    timeline: tuple[str, str]

    def to_dict(self) -> JsonObject:
        return {
            'variants': self.variants.to_dict(),
            'drm': self.drm.to_dict(),
            'scte': self.scte.to_dict(),
            'timeline': {'a': self.timeline[0], 'b': self.timeline[1]},
        }


def field_value(variant: Variant, name: str) -> object:
    value = getattr(variant, name)
    if name == 'codecs':
        return ','.join(value)
    if value is None:
        return ''
    return value


def diff_variants(list_a: tuple[Variant, ...] | list[Variant],
                  list_b: tuple[Variant, ...] | list[Variant]) -> VariantDiff:
    """
    Matches the variants of two manifests using Variant.key(). If more than
    one variant has the same key, the last one is used.
    """
    map_a = {v.key(): v for v in list_a}
    map_b = {v.key(): v for v in list_b}
    added = [v for key, v in map_b.items() if key not in map_a]
    removed = [v for key, v in map_a.items() if key not in map_b]
    changed: list[VariantChange] = []
    for key, before in map_a.items():
        after = map_b.get(key)
        if after is None:
            continue
        fields = tuple(name for name in COMPARED_FIELDS
                       if field_value(before, name) != field_value(after, name))
        if fields:
            changed.append(VariantChange(before, after, fields))
    return VariantDiff(added=tuple(added), removed=tuple(removed), changed=tuple(changed))


def diff_sets(a: tuple[str, ...] | list[str], b: tuple[str, ...] | list[str]) -> SetDiff:
    set_a = set(a)
    set_b = set(b)
    return SetDiff(
        added=tuple(item for item in unique(list(b)) if item not in set_a),
        removed=tuple(item for item in unique(list(a)) if item not in set_b))


def diff_manifests(a: ManifestAnalysis, b: ManifestAnalysis) -> ManifestDiff:
    """
    Compares the analysis of two manifests. Raises InspectionError if
    either manifest could not be analyzed.
    """
    if a.error is not None:
        raise InspectionError(f'Manifest A: {a.error}')
    if b.error is not None:
        raise InspectionError(f'Manifest B: {b.error}')
    return ManifestDiff(
        variants=diff_variants(a.variants, b.variants),
        drm=diff_sets(a.drm, b.drm),
        scte=diff_sets(a.scte, b.scte),
        timeline=(a.timeline or 'None', b.timeline or 'None'))
