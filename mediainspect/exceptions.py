#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################

class InspectionError(Exception):
    """
    Base class for errors raised by collaborators of the inspectors
    """


class ManifestSyntaxError(InspectionError):
    def __init__(self, detail: str) -> None:
        super().__init__(f'Manifest contains XML syntax errors: {detail}')
        self.detail = detail


class PlaylistFetchError(InspectionError):
    def __init__(self, url: str, status: int | None = None, reason: str | None = None) -> None:
        if status is None:
            msg = f'Failed to get playlist: {reason} {url}'
        else:
            msg = f'Failed to get playlist: {status} {reason} {url}'
        super().__init__(msg)
        self.url = url
        self.status = status
        self.reason = reason
