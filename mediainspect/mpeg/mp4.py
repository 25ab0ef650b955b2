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

from dataclasses import dataclass, field
import logging
import struct
from typing import Any, NamedTuple

from mediainspect.utils.json_object import JsonObject

from .box_fields import BoxField, BoxHeader, decode_payload, format_uuid

__all__ = [
    'Box',
    'BoxField',
    'CONTAINER_BOXES',
    'Options',
    'walk_boxes',
]

# boxes whose payload is made of child boxes
CONTAINER_BOXES: frozenset[str] = frozenset({
    'moov', 'trak', 'mdia', 'minf', 'stbl', 'stsd', 'edts', 'mvex', 'moof',
    'traf', 'mfra', 'udta', 'meta', 'ilst', 'dinf', 'tref', 'sinf', 'schi',
    'ipro', 'meco', 'mere', 'strk', 'strd', 'stri', 'dref',
})


@dataclass(slots=True, kw_only=True)
class Options:
    debug: bool = False
    max_depth: int = 64
    log: logging.Logger = field(init=False)

    def __post_init__(self):
        self.log = logging.getLogger('mp4')


@dataclass(frozen=True, slots=True, kw_only=True)
class Box:
    """
    One box from an ISO BMFF buffer
    """
    type: str
    start: int
    size: int
    end: int
    header_size: int
    uuid: str | None = None
    children: tuple["Box", ...] = ()
    details: tuple[BoxField, ...] = ()

    @property
    def payload_size(self) -> int:
        return self.size - self.header_size

    def get(self, name: str, default: Any = None) -> Any:
        for item in self.details:
            if item.name == name:
                return item.value
        return default

    def find(self, box_type: str) -> "Box | None":
        """
        Depth first search for the first descendant with the given type
        """
        todo: list[Box] = list(reversed(self.children))
        while todo:
            box = todo.pop()
            if box.type == box_type:
                return box
            todo.extend(reversed(box.children))
        return None

    def to_dict(self) -> JsonObject:
        rv: JsonObject = {
            'type': self.type,
            'start': self.start,
            'size': self.size,
            'end': self.end,
            'headerSize': self.header_size,
            'children': [ch.to_dict() for ch in self.children],
            'details': [{'name': d.name, 'value': d.value} for d in self.details],
        }
        if self.uuid is not None:
            rv['uuid'] = self.uuid
        return rv

    def __repr__(self) -> str:
        return (f'Box(type={self.type!r}, start={self.start}, size={self.size}, ' +
                f'children={len(self.children)})')


class _PendingBox(NamedTuple):
    header: BoxHeader
    details: tuple[BoxField, ...]
    children: list[int]


class _Range(NamedTuple):
    parent: int | None
    start: int
    end: int
    depth: int
    parent_type: str | None


def read_box_header(data: bytes, pos: int, end: int, parent_type: str | None,
                    warnings: list[str]) -> BoxHeader | None:
    """
    Reads the box header at "pos". Returns None if no more boxes can be
    found before "end", after adding an explanation to "warnings".
    """
    remaining = end - pos
    if remaining < 8:
        warnings.append(
            f'{remaining} trailing bytes at offset {pos} are too short for a box header')
        return None
    size, raw_type = struct.unpack('>I4s', data[pos:pos + 8])
    atom_type = str(raw_type, 'latin-1')
    header_size = 8
    if size == 1:
        if remaining < 16:
            warnings.append(
                f'Box "{atom_type}" at offset {pos} is truncated: ' +
                'the 64-bit size field is incomplete')
            return None
        size = struct.unpack('>Q', data[pos + 8:pos + 16])[0]
        header_size = 16
    elif size == 0:
        # box extends to the end of its enclosing range
        size = remaining
    extended_type: str | None = None
    if atom_type == 'uuid':
        if remaining < header_size + 16:
            warnings.append(
                f'Box "uuid" at offset {pos} is truncated: ' +
                'the extended type is incomplete')
            return None
        extended_type = format_uuid(bytes(data[pos + header_size:pos + header_size + 16]))
        header_size += 16
    if size < header_size:
        warnings.append(
            f'Invalid size {size} for box "{atom_type}" at offset {pos} ' +
            f'(header is {header_size} bytes)')
        return None
    if size > remaining:
        warnings.append(
            f'Box "{atom_type}" at offset {pos} declares {size} bytes but only ' +
            f'{remaining} remain; truncated to {remaining} bytes')
        size = remaining
    return BoxHeader(type=atom_type, start=pos, size=size, header_size=header_size,
                     uuid=extended_type, parent_type=parent_type)


def is_container(header: BoxHeader) -> bool:
    return header.type in CONTAINER_BOXES or header.parent_type == 'stsd'


def walk_boxes(data: bytes | bytearray | memoryview,
               options: Options | dict | None = None) -> tuple[list[Box], list[str]]:
    """
    Parse the given buffer into a tree of boxes.
    :data: the bytes to parse
    :options: the mp4.Options to use, or a dictionary of option values
    :returns: tuple of (top level boxes, warnings)

    Problems with box sizes are reported as warnings and the boxes that could be
    found are returned. This function never raises for malformed input.
    """
    if options is None:
        options = Options()
    elif isinstance(options, dict):
        options = Options(**options)
    if isinstance(data, (bytearray, memoryview)):
        data = bytes(data)
    log = options.log
    warnings: list[str] = []
    pending: list[_PendingBox] = []
    roots: list[int] = []
    todo: list[_Range] = [_Range(None, 0, len(data), 0, None)]
    while todo:
        rng = todo.pop()
        siblings = roots if rng.parent is None else pending[rng.parent].children
        nested: list[_Range] = []
        pos = rng.start
        while pos < rng.end:
            hdr = read_box_header(data, pos, rng.end, rng.parent_type, warnings)
            if hdr is None:
                log.warning('%s', warnings[-1])
                break
            if options.debug:
                log.debug('found box "%s" pos=%d size=%d depth=%d',
                          hdr.type, hdr.start, hdr.size, rng.depth)
            payload = decode_payload(data, hdr, log=log, debug=options.debug)
            index = len(pending)
            pending.append(_PendingBox(hdr, payload.details, []))
            siblings.append(index)
            if is_container(hdr):
                if rng.depth + 1 > options.max_depth:
                    warnings.append(
                        f'Box "{hdr.type}" at offset {hdr.start} exceeds the maximum ' +
                        f'nesting depth of {options.max_depth}; children not parsed')
                    log.warning('%s', warnings[-1])
                else:
                    nested.append(_Range(index, max(payload.children_start, hdr.payload_start),
                                         hdr.end, rng.depth + 1, hdr.type))
            pos = hdr.end
        todo.extend(reversed(nested))

    # children are always created after their parent, so building the boxes
    # in reverse creation order means every child exists before its parent
    built: list[Box | None] = [None] * len(pending)
    for index in range(len(pending) - 1, -1, -1):
        hdr, details, children = pending[index]
        built[index] = Box(
            type=hdr.type, start=hdr.start, size=hdr.size, end=hdr.end,
            header_size=hdr.header_size, uuid=hdr.uuid,
            children=tuple(built[ch] for ch in children),
            details=details)
    return [built[idx] for idx in roots], warnings
