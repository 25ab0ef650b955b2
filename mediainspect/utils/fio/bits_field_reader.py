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

import logging
from typing import Any, cast

import bitstring


class BitsFieldReader:
    """
    Bit-level reader over a payload, used for codec configuration records.
    Reads past the end of the payload return None rather than raising.
    """
    __slots__ = ('name', 'src', 'kwargs', 'bitsize', 'truncated', 'log')

    name: str
    src: bitstring.ConstBitStream
    bitsize: int
    log: logging.Logger | None

    def __init__(self, name: str, data: bytes, kwargs: dict[str, Any],
                 debug: bool = False) -> None:
        self.name = name
        self.src = bitstring.ConstBitStream(bytes=data)
        self.kwargs = kwargs
        self.bitsize = 8 * len(data)
        self.truncated = False
        if debug:
            self.log = logging.getLogger('fio')
        else:
            self.log = None

    def remaining_bits(self) -> int:
        if self.truncated:
            return 0
        return self.bitsize - self.src.pos

    def read(self, size: int, field: str) -> int | bool | None:
        value = self.get(size, field)
        if value is not None:
            self.kwargs[field] = value
        return value

    def get(self, size: int, field: str) -> int | bool | None:
        if self.remaining_bits() < size:
            self.truncated = True
            return None
        if self.log:
            self.log.debug(
                '%s: read %s size=%d pos=%d', self.name, field, size,
                self.src.pos)
        if size == 1:
            return cast(bool, self.src.read('bool'))
        return cast(int, self.src.read(f'uint:{size}'))

    def get_bytes(self, length: int, field: str) -> bytes | None:
        if self.src.pos % 8 or self.remaining_bits() < 8 * length:
            self.truncated = True
            return None
        if self.log:
            self.log.debug(
                '%s: read_bytes %s size=%d pos=%d', self.name, field, length,
                self.src.pos)
        return cast(bytes, self.src.read(f'bytes:{length}'))

    def bytepos(self) -> int:
        return self.src.pos // 8
