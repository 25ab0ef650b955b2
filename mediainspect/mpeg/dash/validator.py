#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
import logging

from lxml import etree as ET

from mediainspect.validation import ValidationChecks, ValidationResult

from .segment_template import SegmentTemplateChain, find_segment_addressing
from .xml_tree import (
    LxmlTreeParser, XmlTreeParser, child_elements, descendants, find_child, local_name
)

DEFAULT_PARSER = LxmlTreeParser()


def describe_adaptation(adaptation: ET._Element, index: int) -> str:
    parts: list[str] = []
    content_type = adaptation.get('contentType')
    if content_type:
        parts.append(content_type)
    mime_type = adaptation.get('mimeType')
    if mime_type and mime_type not in parts:
        parts.append(mime_type)
    lang = adaptation.get('lang')
    if lang:
        parts.append(f'lang={lang}')
    parts.append(f'#{index + 1}')
    return ' · '.join(parts)


class DashManifestValidator:
    """
    Structural checks of the Period / AdaptationSet / Representation
    hierarchy of an MPD. Problems are collected into a ValidationChecks
    rather than raised, so that one missing element does not stop the
    checking of its siblings.
    """

    def __init__(self, checks: ValidationChecks | None = None) -> None:
        if checks is None:
            checks = ValidationChecks()
        self.checks = checks
        self.log = logging.getLogger('dash')
        self.num_periods = 0
        self.num_adaptation_sets = 0
        self.num_representations = 0
        self.num_timelines = 0

    def validate(self, mpd: ET._Element) -> None:
        if local_name(mpd) != 'MPD':
            self.checks.add_error('Root element must be <MPD>.', mpd.sourceline)
            return
        periods = child_elements(mpd, 'Period')
        self.num_periods = len(periods)
        self.checks.check_true(
            bool(periods), 'MPD must contain at least one <Period>.', mpd.sourceline)
        for idx, period in enumerate(periods):
            self.validate_period(period, idx)
        self.checks.check_true(
            self.num_representations > 0,
            'MPD must contain at least one Representation.', mpd.sourceline)
        mpd_type = (mpd.get('type') or 'static').lower()
        if mpd_type == 'static':
            duration = mpd.get('mediaPresentationDuration') or mpd.get('duration')
            if not duration:
                self.checks.add_warning(
                    'Static MPD is missing @mediaPresentationDuration.', mpd.sourceline)

    def validate_period(self, period: ET._Element, p_idx: int) -> None:
        adaptation_sets = child_elements(period, 'AdaptationSet')
        self.num_adaptation_sets += len(adaptation_sets)
        self.checks.check_true(
            bool(adaptation_sets),
            f'Period {p_idx + 1} has no AdaptationSet elements.', period.sourceline)
        for a_idx, adaptation in enumerate(adaptation_sets):
            self.validate_adaptation_set(adaptation, p_idx, a_idx)

    def validate_adaptation_set(self, adaptation: ET._Element, p_idx: int,
                                a_idx: int) -> None:
        representations = child_elements(adaptation, 'Representation')
        self.checks.check_true(
            bool(representations),
            f'AdaptationSet {describe_adaptation(adaptation, a_idx)} ' +
            'has no Representation elements.', adaptation.sourceline)
        for r_idx, rep in enumerate(representations):
            label = rep.get('id') or f'{p_idx + 1}:{a_idx + 1}:{r_idx + 1}'
            self.validate_representation(rep, label)

    def validate_representation(self, rep: ET._Element, label: str) -> None:
        self.num_representations += 1
        addressing = find_segment_addressing(rep)
        if addressing is None:
            self.log.debug('Representation %s has no segment addressing', label)
            self.checks.add_error(
                f'Representation {label} is missing ' +
                'SegmentTemplate/SegmentList/SegmentBase.', rep.sourceline)
            return
        kind, elements = addressing
        if kind == 'SegmentTemplate':
            self.validate_segment_template(SegmentTemplateChain(elements), label)
        elif kind == 'SegmentList':
            seg_list = elements[0]
            urls = descendants(seg_list, 'SegmentURL')
            self.checks.check_true(
                bool(urls),
                f'SegmentList for representation {label} does not contain ' +
                'any SegmentURL entries.', seg_list.sourceline)

    def validate_segment_template(self, chain: SegmentTemplateChain, label: str) -> None:
        line = chain.closest.sourceline
        self.checks.check_true(
            bool(chain.get('media')),
            f'SegmentTemplate for representation {label} requires a @media attribute.',
            line)
        timeline = chain.timeline()
        if timeline is not None:
            self.num_timelines += 1
            self.checks.check_true(
                find_child(timeline, 'S') is not None,
                f'SegmentTemplate for representation {label} has an empty SegmentTimeline.',
                timeline.sourceline)
        elif chain.get('duration') is None:
            self.checks.add_warning(
                f'SegmentTemplate for representation {label} should define @duration ' +
                'when SegmentTimeline is absent.', line)

    def add_summary(self) -> None:
        self.checks.add_info(
            f'Periods: {self.num_periods}, AdaptationSets: {self.num_adaptation_sets}, ' +
            f'Representations: {self.num_representations}')
        self.checks.add_info(f'SegmentTemplate timelines: {self.num_timelines}')


def validate_dash_manifest(manifest: str | bytes | None,
                           parser: XmlTreeParser | None = DEFAULT_PARSER) -> ValidationResult:
    """
    Checks the structure of a DASH manifest. A missing parser or an XML
    syntax error produces a single error and no further checks.
    """
    checks = ValidationChecks()
    if isinstance(manifest, bytes):
        empty = not manifest.strip()
    else:
        empty = not manifest or not manifest.strip()
    if empty:
        checks.add_error('Manifest is empty.')
        return checks.result()
    if parser is None:
        checks.add_error('XML parser is unavailable in this environment.')
        return checks.result()
    doc = parser.parse(manifest)
    if doc.syntax_error is not None or doc.root is None:
        logging.getLogger('dash').debug('XML syntax error: %s', doc.syntax_error)
        msg = 'Manifest contains XML syntax errors.'
        if doc.syntax_error:
            msg = f'{msg} ({doc.syntax_error})'
        checks.add_error(msg)
        return checks.result()
    validator = DashManifestValidator(checks)
    validator.validate(doc.root)
    validator.add_summary()
    return checks.result()
