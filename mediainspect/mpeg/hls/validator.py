#############################################################################
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.
#
#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from dataclasses import dataclass, field
import inspect
import logging
from typing import NamedTuple
import urllib.parse

from mediainspect.validation import ValidationChecks, ValidationResult
from mediainspect.validation.result import plural

from .attributes import HlsTag, parse_float, parse_int
from .fetcher import FetchPlaylistFunction
from .version import VersionTracker

PLAYLIST_TYPES = {'master', 'media'}

# tags that must be followed by a URI line
URI_DIRECTIVES = {'#EXTINF', '#EXT-X-STREAM-INF'}


@dataclass(slots=True, kw_only=True)
class HlsValidatorOptions:
    """
    Options that can be passed to the HLS validator
    """
    log: logging.Logger = field(init=False)

    def __post_init__(self):
        self.log = logging.getLogger('hls')


class PendingDirective(NamedTuple):
    kind: str
    line: int

    def uri_label(self) -> str:
        if self.kind == 'variant':
            return 'playlist URI'
        return 'segment URI'


class ChildReference(NamedTuple):
    uri: str
    line: int


def resolve_url(uri: str, base_url: str) -> str:
    if not uri:
        return ''
    if not base_url:
        return uri
    try:
        return urllib.parse.urljoin(base_url, uri)
    except ValueError:
        return uri


class HlsPlaylistScanner:
    """
    Line by line checks of an HLS playlist. A "#EXTINF" or
    "#EXT-X-STREAM-INF" tag arms a pending directive that must be
    satisfied by the URI line that follows it.
    """

    def __init__(self, checks: ValidationChecks, log: logging.Logger) -> None:
        self.checks = checks
        self.log = log
        self.pending: PendingDirective | None = None
        self.media_segments = 0
        self.stream_infs = 0
        self.variants: list[ChildReference] = []
        self.renditions: list[ChildReference] = []
        self.version_seen = False
        self.declared_version: int | None = None
        self.version_line: int | None = None
        self.has_endlist = False
        self.versions = VersionTracker()

    def scan(self, text: str) -> None:
        lines = text.replace('\r\n', '\n').replace('\r', '\n').split('\n')
        first_line = lines[0].lstrip('\ufeff').strip().upper()
        if first_line != '#EXTM3U':
            self.checks.add_error('First line must be #EXTM3U.', 1)
        for idx, raw in enumerate(lines):
            line = raw.strip()
            if not line:
                continue
            if line.startswith('#'):
                if line.upper().startswith('#EXT'):
                    self.process_tag(HlsTag.parse(line), idx + 1)
                continue
            self.process_uri(line)
        if self.pending is not None:
            self.missing_uri()

    def missing_uri(self) -> None:
        self.log.debug(
            'No URI for %s directive on line %d', self.pending.kind, self.pending.line)
        self.checks.add_error(
            f'Expected {self.pending.uri_label()} after directive on line {self.pending.line}.',
            self.pending.line)
        self.pending = None

    def process_uri(self, line: str) -> None:
        if self.pending is None:
            return
        if self.pending.kind == 'segment':
            self.media_segments += 1
        else:
            self.variants.append(ChildReference(line, self.pending.line))
        self.pending = None

    def process_tag(self, tag: HlsTag, line_num: int) -> None:
        if self.pending is not None:
            if self.pending.kind == 'variant' or tag.name in URI_DIRECTIVES:
                self.missing_uri()
        self.versions.add_tag(tag)
        match tag.name:
            case '#EXTINF':
                self.pending = PendingDirective('segment', line_num)
                self.check_extinf(tag, line_num)
            case '#EXT-X-STREAM-INF':
                self.stream_infs += 1
                self.pending = PendingDirective('variant', line_num)
                if 'BANDWIDTH' not in tag.attributes():
                    self.checks.add_warning(
                        '#EXT-X-STREAM-INF is missing the BANDWIDTH attribute.', line_num)
            case '#EXT-X-I-FRAME-STREAM-INF':
                self.stream_infs += 1
                attrs = tag.attributes()
                if attrs.get('URI'):
                    self.variants.append(ChildReference(attrs['URI'], line_num))
                if not attrs.get('BANDWIDTH'):
                    self.checks.add_warning(
                        '#EXT-X-I-FRAME-STREAM-INF is missing the BANDWIDTH attribute.',
                        line_num)
            case '#EXT-X-MEDIA':
                attrs = tag.attributes()
                if attrs.get('URI'):
                    self.renditions.append(ChildReference(attrs['URI'], line_num))
            case '#EXT-X-VERSION':
                self.version_seen = True
                self.version_line = line_num
                value = parse_int(tag.value)
                if self.checks.check_true(
                        value is not None and value > 0,
                        '#EXT-X-VERSION must be a positive integer.', line_num):
                    self.declared_version = value
            case '#EXT-X-TARGETDURATION':
                value = parse_int(tag.value)
                self.checks.check_true(
                    value is not None and value > 0,
                    '#EXT-X-TARGETDURATION must be a positive integer.', line_num)
            case '#EXT-X-ENDLIST':
                self.has_endlist = True

    def check_extinf(self, tag: HlsTag, line_num: int) -> None:
        duration_text, comma, _ = tag.value.partition(',')
        if not comma:
            self.checks.add_warning(
                '#EXTINF should include a comma separating duration and title.', line_num)
            return
        duration = parse_float(duration_text)
        if duration is None or duration < 0:
            self.checks.add_warning('#EXTINF duration is not a valid number.', line_num)
            return
        self.versions.add_segment_duration(duration)

    def inferred_type(self) -> str:
        if self.stream_infs > 0 or self.renditions:
            return 'master'
        return 'media'

    def child_references(self) -> list[ChildReference]:
        return self.variants + self.renditions

    def check_media(self) -> None:
        if not self.has_endlist:
            self.checks.add_warning(
                'Media playlist does not include #EXT-X-ENDLIST (likely a live playlist).')
        self.checks.check_true(
            self.media_segments > 0, 'Media playlist is missing #EXTINF segments.')
        self.checks.add_info(f'Media segments: {self.media_segments}')

    def check_version(self) -> None:
        if not self.version_seen:
            self.checks.add_warning('Manifest is missing #EXT-X-VERSION tag.')
        min_version = self.versions.min_version
        declared = self.declared_version
        if declared is None:
            if self.version_seen or min_version <= 1:
                return
            self.checks.add_error(
                f'Playlist requires at least version {min_version} ' +
                f'({self.versions.describe(1)}) but does not declare #EXT-X-VERSION.')
            return
        if declared < min_version:
            self.checks.add_error(
                f'Playlist requires at least version {min_version} ' +
                f'({self.versions.describe(declared)}) but declares ' +
                f'#EXT-X-VERSION:{declared}.', self.version_line)
            return
        self.checks.add_info(
            f'#EXT-X-VERSION:{declared} satisfies the minimum required version {min_version}.',
            self.version_line)


async def validate_children(checks: ValidationChecks,
                            references: list[ChildReference],
                            base_url: str,
                            fetch_playlist: FetchPlaylistFunction,
                            visited: set[str],
                            options: HlsValidatorOptions) -> None:
    """
    Fetches and validates each child playlist once, in the order they are
    first referenced
    """
    targets: list[str] = []
    seen: set[str] = set()
    for ref in references:
        target = resolve_url(ref.uri, base_url)
        if target and target not in seen:
            seen.add(target)
            targets.append(target)

    for target in targets:
        if target in visited:
            checks.add_info(f'Skipped already validated playlist {target}.')
            continue
        visited.add(target)
        try:
            text = fetch_playlist(target)
            if inspect.isawaitable(text):
                text = await text
        except Exception as err:
            options.log.warning('Failed to fetch child playlist %s: %s', target, err)
            checks.add_error(f'Failed to fetch child playlist {target}: {err}')
            continue
        if not isinstance(text, str) or not text.strip():
            checks.add_error(f'Playlist {target} returned empty content.')
            continue
        child = await validate_hls_manifest(
            text, base_url=target, fetch_playlist=fetch_playlist,
            playlist_type='media', visited=visited, options=options)
        checks.add_media_playlist(target, child)
        if child.errors:
            checks.add_error(
                f'Child playlist {target} has {plural(len(child.errors), "error")}.')
        if child.warnings:
            checks.add_warning(
                f'Child playlist {target} has {plural(len(child.warnings), "warning")}.')


async def validate_hls_manifest(manifest: str | None,
                                base_url: str = '',
                                fetch_playlist: FetchPlaylistFunction | None = None,
                                playlist_type: str = 'auto',
                                visited: set[str] | None = None,
                                options: HlsValidatorOptions | None = None) -> ValidationResult:
    """
    Checks the structure of an HLS playlist. If the playlist is a master
    playlist and fetch_playlist has been provided, each of its child
    playlists is fetched and validated as a media playlist.
    """
    if options is None:
        options = HlsValidatorOptions()
    if visited is None:
        visited = set()
    checks = ValidationChecks()
    if not manifest or not manifest.strip():
        checks.add_error('Manifest is empty.')
        return checks.result()

    scanner = HlsPlaylistScanner(checks, options.log)
    scanner.scan(manifest)
    if playlist_type in PLAYLIST_TYPES:
        kind = playlist_type
    else:
        kind = scanner.inferred_type()
    options.log.debug('Validating %s playlist %s', kind, base_url)

    if kind == 'media':
        scanner.check_media()
    else:
        references = scanner.child_references()
        if checks.check_true(
                bool(references),
                'Master playlist does not reference any child playlists.'):
            checks.add_info(
                f'Detected {plural(len(references), "referenced child playlist")}.')
        if fetch_playlist is None:
            checks.add_warning('Child playlists were not validated (no fetcher provided).')
        else:
            await validate_children(
                checks, references, base_url, fetch_playlist, visited, options)
    scanner.check_version()
    return checks.result()
