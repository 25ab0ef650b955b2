from .result import (
    MediaPlaylistResult, ValidationChecks, ValidationMessage, ValidationResult
)

__all__ = [
    'MediaPlaylistResult',
    'ValidationChecks',
    'ValidationMessage',
    'ValidationResult',
]
