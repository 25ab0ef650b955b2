from .base_url import BaseOption
from .segment_template import (
    DashResolution, DashSegmentContext, DashTemplateResolver, ResolverOptions,
    SegmentDescriptor, SegmentGroup, UnsupportedSegments, format_template
)
from .validator import validate_dash_manifest
from .xml_tree import LxmlTreeParser, XmlDocument, XmlTreeParser

__all__ = [
    'BaseOption',
    'DashResolution',
    'DashSegmentContext',
    'DashTemplateResolver',
    'LxmlTreeParser',
    'ResolverOptions',
    'SegmentDescriptor',
    'SegmentGroup',
    'UnsupportedSegments',
    'XmlDocument',
    'XmlTreeParser',
    'format_template',
    'validate_dash_manifest',
]
