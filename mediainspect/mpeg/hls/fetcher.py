#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
import asyncio
from concurrent.futures import Executor
import logging
from typing import Awaitable, Callable, Protocol

import requests

from mediainspect.exceptions import PlaylistFetchError


class PlaylistFetcher(Protocol):
    async def __call__(self, url: str) -> str:
        ...


FetchPlaylistFunction = Callable[[str], Awaitable[str] | str]


class RequestsPlaylistFetcher:
    """
    Implements PlaylistFetcher protocol using the requests library. The
    blocking GET is run in an executor so that it does not stall the
    event loop.
    """

    log: logging.Logger

    def __init__(self, session: requests.Session | None = None,
                 executor: Executor | None = None,
                 log: logging.Logger | None = None) -> None:
        if session is None:
            session = requests.Session()
        self.session = session
        self.executor = executor
        if log is None:
            self.log = logging.getLogger('hls')
        else:
            self.log = log

    async def __call__(self, url: str) -> str:
        def do_get() -> requests.Response:
            return self.session.get(url)

        self.log.debug('GET %s', url)
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(self.executor, do_get)
        except requests.RequestException as err:
            raise PlaylistFetchError(url, reason=str(err)) from err
        try:
            response.raise_for_status()
        except requests.HTTPError as err:
            self.log.warning('GET %s: %d %s', url, response.status_code, response.reason)
            raise PlaylistFetchError(url, response.status_code, response.reason) from err
        return response.text
