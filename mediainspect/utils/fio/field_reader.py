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

import decimal
import logging
import struct
from typing import Any

_STRUCT_FORMATS: dict[str, struct.Struct] = {
    'B': struct.Struct('>B'),
    'b': struct.Struct('>b'),
    'H': struct.Struct('>H'),
    'h': struct.Struct('>h'),
    'I': struct.Struct('>I'),
    'i': struct.Struct('>i'),
    'Q': struct.Struct('>Q'),
    'q': struct.Struct('>q'),
}

_FIXED_POINT_SIZES: dict[int, str] = {
    8: 'B',
    16: 'H',
    32: 'I',
    64: 'Q',
}

class FieldReader:
    """
    Reads big-endian fields from a window of a byte buffer.

    Every read checks the number of bytes left in the window before touching
    the buffer. A read that would run past the end of the window returns None
    and marks the reader as truncated; all following reads also return None, so
    a decoder can carry on calling read() and simply stop producing values.
    """
    __slots__ = ('name', 'data', 'pos', 'end', 'kwargs', 'truncated', 'log')

    def __init__(self, name: str, data: bytes | memoryview, start: int, end: int,
                 kwargs: dict[str, Any], debug: bool = False) -> None:
        self.name = name
        self.data = data
        self.pos = start
        self.end = min(end, len(data))
        self.kwargs = kwargs
        self.truncated = False
        if debug:
            self.log = logging.getLogger('fio')
        else:
            self.log = None

    def remaining(self) -> int:
        if self.truncated:
            return 0
        return max(0, self.end - self.pos)

    def read(self, size: str | int, field: str, mask: int | None = None,
             encoder=None) -> Any:
        value = self.get(size, field, mask)
        if value is None:
            return None
        if encoder is not None:
            value = encoder(value)
        self.kwargs[field] = value
        return value

    def get(self, size: str | int, field: str, mask: int | None = None) -> Any:
        if self.truncated:
            return None
        if isinstance(size, int):
            return self.get_bytes(size, field)
        if size in _STRUCT_FORMATS:
            fmt = _STRUCT_FORMATS[size]
            raw = self._take(fmt.size, field)
            if raw is None:
                return None
            value = fmt.unpack(raw)[0]
        elif size == '3I':
            raw = self._take(3, field)
            if raw is None:
                return None
            value = (raw[0] << 16) + (raw[1] << 8) + raw[2]
        elif size == 'S0':
            return self._get_null_terminated(field)
        elif size[0] == 'S':
            raw = self._take(int(size[1:]), field)
            if raw is None:
                return None
            return str(raw, 'latin-1')
        elif size[0] == 'D':
            bsz, asz = [int(s) for s in size[1:].split('.')]
            whole = self.get(_FIXED_POINT_SIZES[bsz + asz], field)
            if whole is None:
                return None
            return float(decimal.Decimal(whole) / (1 << asz))
        else:
            raise ValueError("unsupported size: " + size)
        if mask is not None:
            value &= mask
        if self.log:
            self.log.debug('%s: read %s size=%s pos=%d value=0x%x',
                           self.name, field, size, self.pos, value)
        return value

    def get_bytes(self, length: int, field: str) -> bytes | None:
        return self._take(length, field)

    def skip(self, size: int) -> bool:
        return self._take(size, 'skip') is not None

    def _take(self, length: int, field: str) -> bytes | None:
        if self.truncated:
            return None
        if length < 0 or self.pos + length > self.end:
            if self.log:
                self.log.debug('%s: %s needs %d bytes, only %d left',
                               self.name, field, length, self.end - self.pos)
            self.truncated = True
            return None
        rv = bytes(self.data[self.pos:self.pos + length])
        self.pos += length
        return rv

    def _get_null_terminated(self, field: str) -> str | None:
        if self.pos >= self.end:
            self.truncated = True
            return None
        window = bytes(self.data[self.pos:self.end])
        idx = window.find(b'\0')
        if idx < 0:
            # an unterminated string runs to the end of the box
            value = window
            self.pos = self.end
        else:
            value = window[:idx]
            self.pos += idx + 1
        if self.log:
            self.log.debug('%s: read %s pos=%d value="%s"', self.name, field,
                           self.pos, value)
        return str(value, 'utf-8', errors='replace')
