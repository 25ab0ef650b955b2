#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from collections.abc import Iterator
from dataclasses import dataclass, field
import logging
import re
from typing import NamedTuple

from lxml import etree as ET

from mediainspect.exceptions import ManifestSyntaxError

from .base_url import (
    BaseOption, base_url_chain, compose_base_url, first_base_url,
    resolve_url, root_base_options
)
from .xml_tree import LxmlTreeParser, XmlTreeParser, child_elements, find_child, local_name

SEGMENT_ADDRESSING = ('SegmentTemplate', 'SegmentList', 'SegmentBase')

_re_template_identifier = re.compile(
    r'\$(?P<name>RepresentationID|Bandwidth|Number|Time)(?:%0(?P<width>\d+)d)?\$|\$\$')


@dataclass(slots=True, kw_only=True)
class ResolverOptions:
    """
    Options for expanding SegmentTemplates into lists of segments
    """
    # number of segments produced for a template that has a fixed @duration
    # but no SegmentTimeline
    preview_segment_count: int = 10
    # upper bound on segments produced from one SegmentTimeline
    max_timeline_segments: int = 100000
    log: logging.Logger = field(init=False)

    def __post_init__(self):
        self.log = logging.getLogger('dash')


class SegmentDescriptor(NamedTuple):
    number: int
    time: int
    duration: int


@dataclass(frozen=True, slots=True)
class SegmentGroup:
    segments: tuple[SegmentDescriptor, ...]


@dataclass(frozen=True, slots=True, kw_only=True)
class DashSegmentContext:
    label: str
    representation_id: str | None
    bandwidth: int | None
    media_template: str | None
    init_template: str | None
    start_number: int
    timescale: int
    base_parts: tuple[str, ...]
    groups: tuple[SegmentGroup, ...]

    def segments(self) -> Iterator[SegmentDescriptor]:
        for group in self.groups:
            yield from group.segments

    def base_url(self, root: BaseOption | str) -> str:
        if isinstance(root, BaseOption):
            root = root.url
        return compose_base_url(root, self.base_parts)

    def base_url_chain(self, root: BaseOption | str) -> list[BaseOption]:
        if isinstance(root, BaseOption):
            root = root.url
        return base_url_chain(root, self.base_parts)

    def segment_url(self, segment: SegmentDescriptor, root: BaseOption | str) -> str:
        if not self.media_template:
            return ''
        media = format_template(
            self.media_template, self.representation_id, self.bandwidth,
            number=segment.number, time=segment.time)
        return resolve_url(media, self.base_url(root))

    def init_url(self, root: BaseOption | str) -> str | None:
        if not self.init_template:
            return None
        init = format_template(self.init_template, self.representation_id, self.bandwidth)
        return resolve_url(init, self.base_url(root))


@dataclass(frozen=True, slots=True)
class UnsupportedSegments:
    label: str
    representation_id: str | None
    reason: str


@dataclass(frozen=True, slots=True, kw_only=True)
class DashResolution:
    contexts: tuple[DashSegmentContext, ...] = ()
    base_options: tuple[BaseOption, ...] = ()
    unsupported_segments: tuple[UnsupportedSegments, ...] = ()
    warnings: tuple[str, ...] = ()


def parse_int(value: str | None, default: int | None) -> int | None:
    if value is None:
        return default
    try:
        return int(value.strip(), 10)
    except ValueError:
        return default


def format_template(template: str, representation_id: str | None,
                    bandwidth: int | None, number: int | None = None,
                    time: int | None = None) -> str:
    """
    Substitutes the DASH template identifiers in a media or initialization
    template. Identifiers without a value are left in place.
    """
    values = {
        'RepresentationID': representation_id,
        'Bandwidth': bandwidth,
        'Number': number,
        'Time': time,
    }

    def substitute(match: re.Match) -> str:
        name = match.group('name')
        if name is None:
            return '$'
        value = values[name]
        if value is None:
            return match.group(0)
        width = match.group('width')
        if width and isinstance(value, int):
            return f'{value:0{int(width)}d}'
        return str(value)

    return _re_template_identifier.sub(substitute, template)


class SegmentTemplateChain:
    """
    The SegmentTemplate elements that apply to a Representation, closest
    first. Attributes are inherited one at a time from the ancestor templates.
    """

    def __init__(self, templates: list[ET._Element]) -> None:
        self.templates = templates

    def get(self, name: str) -> str | None:
        for tmpl in self.templates:
            value = tmpl.get(name)
            if value is not None:
                return value
        return None

    def timeline(self) -> ET._Element | None:
        for tmpl in self.templates:
            timeline = find_child(tmpl, 'SegmentTimeline')
            if timeline is not None:
                return timeline
        return None

    @property
    def closest(self) -> ET._Element:
        return self.templates[0]


def find_segment_addressing(representation: ET._Element) -> tuple[str, list[ET._Element]] | None:
    """
    Walks from the Representation up to the Period looking for the closest
    segment addressing element. Returns its name plus every element of that
    name found on the way up, closest first.
    """
    kind: str | None = None
    found: list[ET._Element] = []
    current: ET._Element | None = representation
    while current is not None and local_name(current) != 'MPD':
        for name in SEGMENT_ADDRESSING:
            elt = find_child(current, name)
            if elt is None:
                continue
            if kind is None:
                kind = name
            if name == kind:
                found.append(elt)
            break
        current = current.getparent()
    if kind is None:
        return None
    return (kind, found)


def expand_timeline(timeline: ET._Element, start_number: int,
                    limit: int) -> tuple[list[SegmentGroup], bool]:
    """
    Expands the S elements of a SegmentTimeline into segments, one group per
    S element. Returns the groups and a flag that is True if "limit" stopped
    the expansion early.
    """
    groups: list[SegmentGroup] = []
    number = start_number
    current_time = 0
    total = 0
    for s_elt in child_elements(timeline, 'S'):
        duration = parse_int(s_elt.get('d'), 0)
        start = parse_int(s_elt.get('t'), current_time)
        repeat = parse_int(s_elt.get('r'), 0)
        count = repeat + 1 if repeat >= 0 else 1
        truncated = total + count > limit
        if truncated:
            count = limit - total
        segments = tuple(
            SegmentDescriptor(number + i, start + i * duration, duration)
            for i in range(count))
        groups.append(SegmentGroup(segments))
        number += count
        current_time = start + count * duration
        total += count
        if truncated:
            return (groups, True)
    return (groups, False)


def preview_segments(start_number: int, duration: int, count: int) -> SegmentGroup:
    return SegmentGroup(tuple(
        SegmentDescriptor(start_number + i, (start_number + i - 1) * duration, duration)
        for i in range(count)))


def representation_label(representation: ET._Element, adaptation: ET._Element,
                         fallback: str) -> str:
    parts: list[str] = []
    width = representation.get('width') or adaptation.get('width')
    height = representation.get('height') or adaptation.get('height')
    if width and height:
        parts.append(f'{width}x{height}')
    bandwidth = parse_int(representation.get('bandwidth'), None)
    if bandwidth is not None:
        parts.append(f'{bandwidth:,}bps')
    codecs = representation.get('codecs') or adaptation.get('codecs')
    if codecs:
        parts.append(codecs)
    if not parts:
        return fallback
    return ' • '.join(parts)


class DashTemplateResolver:
    """
    Expands the SegmentTemplates of a DASH manifest into the addresses of
    its segments
    """

    def __init__(self, manifest_url: str, options: ResolverOptions | None = None) -> None:
        self.manifest_url = manifest_url
        if options is None:
            options = ResolverOptions()
        self.options = options
        self.log = options.log

    def resolve_text(self, manifest: str | bytes,
                     parser: XmlTreeParser | None = None) -> DashResolution:
        if parser is None:
            parser = LxmlTreeParser()
        doc = parser.parse(manifest)
        if doc.syntax_error is not None:
            raise ManifestSyntaxError(doc.syntax_error)
        return self.resolve(doc.root)

    def resolve(self, mpd: ET._Element) -> DashResolution:
        contexts: list[DashSegmentContext] = []
        unsupported: list[UnsupportedSegments] = []
        warnings: list[str] = []
        for p_idx, period in enumerate(child_elements(mpd, 'Period')):
            for a_idx, adaptation in enumerate(child_elements(period, 'AdaptationSet')):
                for r_idx, rep in enumerate(child_elements(adaptation, 'Representation')):
                    fallback = rep.get('id') or f'{p_idx + 1}:{a_idx + 1}:{r_idx + 1}'
                    item = self.resolve_representation(rep, fallback, warnings)
                    if isinstance(item, UnsupportedSegments):
                        unsupported.append(item)
                    else:
                        contexts.append(item)
        return DashResolution(
            contexts=tuple(contexts),
            base_options=tuple(root_base_options(mpd, self.manifest_url)),
            unsupported_segments=tuple(unsupported),
            warnings=tuple(warnings))

    def resolve_representation(
            self, rep: ET._Element, fallback: str | None = None,
            warnings: list[str] | None = None) -> DashSegmentContext | UnsupportedSegments:
        """
        Builds the segment context of one Representation, or describes why
        its segments cannot be expanded
        """
        if warnings is None:
            warnings = []
        if fallback is None:
            fallback = rep.get('id') or '?'
        adaptation = rep.getparent()
        period = adaptation.getparent() if adaptation is not None else None
        label = representation_label(
            rep, adaptation if adaptation is not None else rep, fallback)
        addressing = find_segment_addressing(rep)
        if addressing is None:
            return UnsupportedSegments(
                label, rep.get('id'),
                f'Representation {fallback} has no ' +
                'SegmentTemplate/SegmentList/SegmentBase element')
        kind, elements = addressing
        if kind != 'SegmentTemplate':
            return UnsupportedSegments(
                label, rep.get('id'),
                f'Representation {fallback} uses {kind}; only ' +
                'SegmentTemplate addressing can be expanded')
        return self.build_context(
            label, period, adaptation, rep, SegmentTemplateChain(elements), warnings)

    def build_context(self, label: str, period: ET._Element | None,
                      adaptation: ET._Element | None, rep: ET._Element,
                      chain: SegmentTemplateChain,
                      warnings: list[str]) -> DashSegmentContext:
        start_number = parse_int(chain.get('startNumber'), 1)
        timescale = parse_int(chain.get('timescale'), 1)
        if timescale is None or timescale < 1:
            timescale = 1
        base_parts = [first_base_url(elt) for elt in (period, adaptation, rep, chain.closest)]
        groups: list[SegmentGroup] = []
        timeline = chain.timeline()
        if timeline is not None:
            groups, truncated = expand_timeline(
                timeline, start_number, self.options.max_timeline_segments)
            if truncated:
                msg = (f'SegmentTimeline for {label} was truncated after ' +
                       f'{self.options.max_timeline_segments} segments')
                self.log.warning('%s', msg)
                warnings.append(msg)
        else:
            duration = parse_int(chain.get('duration'), 0)
            if duration and duration > 0:
                groups.append(preview_segments(
                    start_number, duration, self.options.preview_segment_count))
        return DashSegmentContext(
            label=label,
            representation_id=rep.get('id'),
            bandwidth=parse_int(rep.get('bandwidth'), None),
            media_template=chain.get('media'),
            init_template=chain.get('initialization'),
            start_number=start_number,
            timescale=timescale,
            base_parts=tuple(p for p in base_parts if p is not None),
            groups=tuple(groups))


def segment_url(context: DashSegmentContext, segment: SegmentDescriptor,
                base: BaseOption | str) -> str:
    return context.segment_url(segment, base)


def init_url(context: DashSegmentContext, base: BaseOption | str) -> str | None:
    return context.init_url(base)
