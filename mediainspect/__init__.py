from .analysis import ManifestAnalysis, ManifestDiff, analyze_manifest, diff_manifests
from .manifest_kind import ManifestKind, detect_manifest_kind
from .mpeg.dash import DashTemplateResolver, validate_dash_manifest
from .mpeg.hls import load_hls_presentation, validate_hls_manifest
from .mpeg.mp4 import Box, Options, walk_boxes
from .validation import ValidationResult

__all__ = [
    'Box',
    'DashTemplateResolver',
    'ManifestAnalysis',
    'ManifestDiff',
    'ManifestKind',
    'Options',
    'ValidationResult',
    'analyze_manifest',
    'detect_manifest_kind',
    'diff_manifests',
    'load_hls_presentation',
    'validate_dash_manifest',
    'validate_hls_manifest',
    'walk_boxes',
]
