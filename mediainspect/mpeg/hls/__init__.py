from .attributes import HlsTag, parse_attribute_list
from .fetcher import PlaylistFetcher, RequestsPlaylistFetcher
from .playlist import (
    HlsPresentation, HlsSegment, HlsTrack, MediaPlaylist, is_master_playlist,
    load_hls_presentation, master_playlist_tracks, parse_media_playlist
)
from .validator import HlsValidatorOptions, validate_hls_manifest
from .version import VersionTracker

__all__ = [
    'HlsPresentation',
    'HlsSegment',
    'HlsTag',
    'HlsTrack',
    'HlsValidatorOptions',
    'MediaPlaylist',
    'PlaylistFetcher',
    'RequestsPlaylistFetcher',
    'VersionTracker',
    'is_master_playlist',
    'load_hls_presentation',
    'master_playlist_tracks',
    'parse_attribute_list',
    'parse_media_playlist',
    'validate_hls_manifest',
]
