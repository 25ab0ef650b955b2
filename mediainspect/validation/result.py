#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
from dataclasses import dataclass, field

from mediainspect.utils.json_object import JsonObject


@dataclass(frozen=True, slots=True)
class ValidationMessage:
    """
    Container for one validation message
    """
    message: str
    line: int | None = None

    def to_dict(self) -> JsonObject:
        return {
            'message': self.message,
            'line': self.line,
        }

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f'{self.line}: {self.message}'


@dataclass(frozen=True, slots=True)
class MediaPlaylistResult:
    uri: str
    result: "ValidationResult"

    def to_dict(self) -> JsonObject:
        return {
            'uri': self.uri,
            'result': self.result.to_dict(),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class ValidationResult:
    errors: tuple[ValidationMessage, ...] = ()
    warnings: tuple[ValidationMessage, ...] = ()
    info: tuple[ValidationMessage, ...] = ()
    media_playlists: tuple[MediaPlaylistResult, ...] = ()

    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> JsonObject:
        return {
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
            'info': [i.to_dict() for i in self.info],
            'mediaPlaylists': [m.to_dict() for m in self.media_playlists],
        }


@dataclass(slots=True)
class ValidationChecks:
    """
    Collects the messages of one validation pass. The frozen
    ValidationResult is produced by result().
    """
    errors: list[ValidationMessage] = field(default_factory=list)
    warnings: list[ValidationMessage] = field(default_factory=list)
    info: list[ValidationMessage] = field(default_factory=list)
    media_playlists: list[MediaPlaylistResult] = field(default_factory=list)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def add_error(self, msg: str, line: int | None = None) -> None:
        self.errors.append(ValidationMessage(msg, line))

    def add_warning(self, msg: str, line: int | None = None) -> None:
        self.warnings.append(ValidationMessage(msg, line))

    def add_info(self, msg: str, line: int | None = None) -> None:
        self.info.append(ValidationMessage(msg, line))

    def add_media_playlist(self, uri: str, result: ValidationResult) -> None:
        self.media_playlists.append(MediaPlaylistResult(uri, result))

    def check_true(self, result: bool, msg: str, line: int | None = None) -> bool:
        if not result:
            self.add_error(msg, line)
        return result

    def result(self) -> ValidationResult:
        return ValidationResult(
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            info=tuple(self.info),
            media_playlists=tuple(self.media_playlists))


def plural(count: int, word: str) -> str:
    if count == 1:
        return f'{count} {word}'
    return f'{count} {word}s'
