#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
"""
Tracking of the lowest EXT-X-VERSION that can describe the features
used by a playlist
"""
from dataclasses import dataclass, field

from .attributes import HlsTag

# tags that need at least the given protocol version
TAG_VERSIONS: dict[str, int] = {
    '#EXT-X-BYTERANGE': 4,
    '#EXT-X-I-FRAME-STREAM-INF': 4,
    '#EXT-X-MAP': 5,
    '#EXT-X-DATERANGE': 7,
    '#EXT-X-INDEPENDENT-SEGMENTS': 7,
    '#EXT-X-CONTENT-STEERING': 9,
}

# attributes of EXT-X-STREAM-INF, EXT-X-I-FRAME-STREAM-INF and EXT-X-MEDIA
ATTRIBUTE_VERSIONS: dict[str, int] = {
    'AUDIO': 4,
    'VIDEO': 4,
    'SUBTITLES': 5,
    'CLOSED-CAPTIONS': 6,
    'AVERAGE-BANDWIDTH': 7,
    'FRAME-RATE': 7,
    'STABLE-VARIANT-ID': 7,
    'CHANNELS': 7,
    'STABLE-RENDITION-ID': 7,
    'VIDEO-RANGE': 8,
}

# EXT-X-MEDIA TYPE values
MEDIA_TYPE_VERSIONS: dict[str, int] = {
    'SUBTITLES': 5,
    'CLOSED-CAPTIONS': 6,
}

ATTRIBUTE_TAGS = {'#EXT-X-STREAM-INF', '#EXT-X-I-FRAME-STREAM-INF', '#EXT-X-MEDIA'}


@dataclass(slots=True)
class VersionTracker:
    min_version: int = 1
    # feature name -> version it needs, in the order first seen
    features: dict[str, int] = field(default_factory=dict)

    def require(self, version: int, feature: str) -> None:
        if version <= 1:
            return
        if feature not in self.features:
            self.features[feature] = version
        self.min_version = max(self.min_version, version)

    def add_tag(self, tag: HlsTag) -> None:
        try:
            self.require(TAG_VERSIONS[tag.name], tag.name[1:])
        except KeyError:
            pass
        if tag.name not in ATTRIBUTE_TAGS:
            return
        attrs = tag.attributes()
        for name, value in attrs.items():
            if name == 'CLOSED-CAPTIONS' and value.upper() == 'NONE':
                continue
            try:
                self.require(ATTRIBUTE_VERSIONS[name], f'{name} attribute')
            except KeyError:
                pass
        if tag.name == '#EXT-X-MEDIA':
            media_type = attrs.get('TYPE', '').upper()
            try:
                self.require(MEDIA_TYPE_VERSIONS[media_type], f'TYPE={media_type}')
            except KeyError:
                pass

    def add_segment_duration(self, duration: float) -> None:
        if not duration.is_integer():
            self.require(3, 'fractional EXTINF duration')

    def features_above(self, version: int) -> list[str]:
        return [name for name, ver in self.features.items() if ver > version]

    def describe(self, version: int) -> str:
        return ', '.join(self.features_above(version))
