#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from dataclasses import dataclass
import datetime
import inspect
import logging
from typing import NamedTuple

from mediainspect.utils.date_time import from_isodatetime
from mediainspect.utils.json_object import JsonObject

from .attributes import HlsTag, parse_float, parse_int
from .fetcher import FetchPlaylistFunction
from .validator import resolve_url

# EXT-X-MEDIA types that are loaded alongside a variant, and the prefix
# used in the label of their segments
RENDITION_PREFIXES: dict[str, str] = {
    'AUDIO': 'Audio',
    'SUBTITLES': 'Subtitles',
}


@dataclass(frozen=True, slots=True)
class HlsSegment:
    number: int
    duration: float | None
    uri: str
    start: float
    track: str
    track_order: int = 0

    def to_dict(self) -> JsonObject:
        return {
            'number': self.number,
            'duration': self.duration,
            'uri': self.uri,
            'start': self.start,
            'track': self.track,
            'trackOrder': self.track_order,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class MediaPlaylist:
    target_duration: int | None = None
    media_sequence: int = 0
    segments: tuple[HlsSegment, ...] = ()
    endlist: bool = False
    availability_start: datetime.datetime | None = None
    availability_end: datetime.datetime | None = None

    @property
    def is_live(self) -> bool:
        return not self.endlist

    def total_duration(self) -> float:
        return sum(s.duration for s in self.segments if s.duration is not None)


def parse_media_playlist(text: str, base_url: str = '', label: str = '',
                         track_order: int = 0) -> MediaPlaylist:
    """
    Lists the segments of an HLS media playlist. Segment numbers start at
    the value of #EXT-X-MEDIA-SEQUENCE and the start time of each segment
    is the sum of the durations of the segments before it.
    """
    target_duration: int | None = None
    media_sequence = 0
    number = 0
    start = 0.0
    endlist = False
    program_date_time: datetime.datetime | None = None
    segments: list[HlsSegment] = []
    pending_duration: float | None = None
    in_segment = False

    for raw in (text or '').splitlines():
        line = raw.strip()
        if not line:
            continue
        if not line.startswith('#'):
            if in_segment:
                segments.append(HlsSegment(
                    number=number, duration=pending_duration,
                    uri=resolve_url(line, base_url), start=start, track=label,
                    track_order=track_order))
                number += 1
                if pending_duration is not None:
                    start += pending_duration
                in_segment = False
            continue
        tag = HlsTag.parse(line)
        match tag.name:
            case '#EXT-X-TARGETDURATION':
                target_duration = parse_int(tag.value)
            case '#EXT-X-MEDIA-SEQUENCE':
                value = parse_int(tag.value)
                if value is not None:
                    media_sequence = number = value
            case '#EXT-X-PROGRAM-DATE-TIME':
                if program_date_time is None:
                    program_date_time = from_isodatetime(tag.value)
            case '#EXTINF':
                pending_duration = parse_float(tag.value.partition(',')[0])
                in_segment = True
            case '#EXT-X-ENDLIST':
                endlist = True

    availability_start: datetime.datetime | None = None
    availability_end: datetime.datetime | None = None
    if program_date_time is not None and segments:
        total = sum(s.duration for s in segments if s.duration is not None)
        availability_start = program_date_time
        availability_end = program_date_time + datetime.timedelta(seconds=total)
    return MediaPlaylist(
        target_duration=target_duration, media_sequence=media_sequence,
        segments=tuple(segments), endlist=endlist,
        availability_start=availability_start,
        availability_end=availability_end)


class TrackReference(NamedTuple):
    uri: str
    label: str


@dataclass(frozen=True, slots=True)
class HlsTrack:
    label: str
    uri: str
    playlist: MediaPlaylist


@dataclass(frozen=True, slots=True, kw_only=True)
class HlsPresentation:
    """
    The media playlists of an HLS presentation, with their segments merged
    into one list
    """
    tracks: tuple[HlsTrack, ...] = ()
    segments: tuple[HlsSegment, ...] = ()
    availability_start: datetime.datetime | None = None
    availability_end: datetime.datetime | None = None
    is_live: bool = False

    @classmethod
    def from_tracks(cls, tracks: list[HlsTrack]) -> "HlsPresentation":
        starts = [t.playlist.availability_start for t in tracks
                  if t.playlist.availability_start is not None]
        ends = [t.playlist.availability_end for t in tracks
                if t.playlist.availability_end is not None]
        return cls(
            tracks=tuple(tracks),
            segments=tuple(seg for t in tracks for seg in t.playlist.segments),
            availability_start=min(starts) if starts else None,
            availability_end=max(ends) if ends else None,
            is_live=any(t.playlist.is_live for t in tracks))


def is_master_playlist(text: str) -> bool:
    return any(line.strip().upper().startswith('#EXT-X-STREAM-INF')
               for line in (text or '').splitlines())


def variant_label(attrs: dict[str, str], uri: str) -> str:
    parts: list[str] = []
    if attrs.get('RESOLUTION'):
        parts.append(attrs['RESOLUTION'])
    bandwidth = parse_int(attrs.get('BANDWIDTH', ''))
    if bandwidth is not None:
        parts.append(f'{bandwidth:,}bps')
    return ' '.join(parts) or uri


def master_playlist_tracks(text: str, base_url: str = '') -> list[TrackReference]:
    """
    Lists the media playlists of a master playlist in the order they are
    loaded: each variant stream, followed by the audio and subtitle
    renditions of the groups it uses. A playlist shared by more than one
    variant is only listed once.
    """
    variants: list[tuple[TrackReference, str, str]] = []
    groups: dict[tuple[str, str], list[TrackReference]] = {}
    pending: HlsTag | None = None
    for raw in (text or '').splitlines():
        line = raw.strip()
        if not line:
            continue
        if not line.startswith('#'):
            if pending is not None:
                attrs = pending.attributes()
                uri = resolve_url(line, base_url)
                ref = TrackReference(uri, f'Video • {variant_label(attrs, uri)}')
                variants.append((ref, attrs.get('AUDIO', ''), attrs.get('SUBTITLES', '')))
                pending = None
            continue
        tag = HlsTag.parse(line)
        if tag.name == '#EXT-X-STREAM-INF':
            pending = tag
        elif tag.name == '#EXT-X-MEDIA':
            attrs = tag.attributes()
            media_type = attrs.get('TYPE', '').upper()
            if media_type not in RENDITION_PREFIXES or not attrs.get('URI'):
                continue
            uri = resolve_url(attrs['URI'], base_url)
            group_id = attrs.get('GROUP-ID', '')
            name = attrs.get('NAME') or group_id or uri
            groups.setdefault((media_type, group_id), []).append(
                TrackReference(uri, f'{RENDITION_PREFIXES[media_type]} • {name}'))

    rv: list[TrackReference] = []
    seen: set[str] = set()
    for variant, audio, subtitles in variants:
        refs = [variant]
        refs += groups.get(('AUDIO', audio), [])
        refs += groups.get(('SUBTITLES', subtitles), [])
        for ref in refs:
            if ref.uri not in seen:
                seen.add(ref.uri)
                rv.append(ref)
    return rv


async def load_hls_presentation(text: str, base_url: str = '',
                                fetch_playlist: FetchPlaylistFunction | None = None,
                                log: logging.Logger | None = None) -> HlsPresentation:
    """
    Lists the segments of an HLS presentation. A media playlist produces a
    single track. For a master playlist, each media playlist is fetched
    using fetch_playlist and its segments are appended to the list. Media
    playlists that cannot be fetched are skipped.
    """
    if log is None:
        log = logging.getLogger('hls')
    if not is_master_playlist(text):
        playlist = parse_media_playlist(text, base_url, 'default')
        return HlsPresentation.from_tracks([HlsTrack('default', base_url, playlist)])
    tracks: list[HlsTrack] = []
    if fetch_playlist is None:
        log.warning('No fetcher provided, media playlists of %s were not loaded', base_url)
        return HlsPresentation.from_tracks(tracks)
    for ref in master_playlist_tracks(text, base_url):
        try:
            body = fetch_playlist(ref.uri)
            if inspect.isawaitable(body):
                body = await body
        except Exception as err:
            log.warning('Failed to fetch media playlist %s: %s', ref.uri, err)
            continue
        playlist = parse_media_playlist(body, ref.uri, ref.label, track_order=len(tracks))
        tracks.append(HlsTrack(ref.label, ref.uri, playlist))
    return HlsPresentation.from_tracks(tracks)
