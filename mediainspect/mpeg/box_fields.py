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
from typing import Any, NamedTuple
import uuid

from mediainspect.utils.date_time import iso_epoch_field
from mediainspect.utils.fio import BitsFieldReader, FieldReader


class BoxField(NamedTuple):
    name: str
    value: Any


class BoxHeader(NamedTuple):
    """
    Position of one box within the buffer being walked
    """
    type: str
    start: int
    size: int
    header_size: int
    uuid: str | None
    parent_type: str | None

    @property
    def end(self) -> int:
        return self.start + self.size

    @property
    def payload_start(self) -> int:
        return self.start + self.header_size


class DecodedPayload(NamedTuple):
    details: tuple[BoxField, ...]
    children_start: int


def fourcc(*box_names: str):
    def func(cls):
        for name in box_names:
            fourcc.DECODERS[name] = cls
        return cls
    return func


fourcc.DECODERS = {}  # map from fourcc code to decoder class


def format_uuid(data: bytes) -> str:
    return str(uuid.UUID(bytes=data))


def decode_language(value: int) -> str:
    """
    ISO-639-2/T language code, packed as three 5-bit values
    """
    chars = [((value >> shift) & 0x1F) + 0x60 for shift in (10, 5, 0)]
    return ''.join(chr(c) for c in chars)


class OpaqueDecoder:
    """
    Decoder for box types without a registered decoder. Only the size of the
    payload is reported. For container boxes the children start at the
    beginning of the payload.
    """

    @classmethod
    def classname(clz) -> str:
        return clz.__name__

    @classmethod
    def decode(clz, data: bytes, header: BoxHeader, debug: bool = False) -> DecodedPayload:
        rv: dict[str, Any] = {
            'payload_size': header.end - header.payload_start,
        }
        return DecodedPayload(clz.to_details(rv), header.payload_start)

    @staticmethod
    def to_details(values: dict[str, Any]) -> tuple[BoxField, ...]:
        return tuple(BoxField(k, v) for k, v in values.items())


class BoxDecoder(OpaqueDecoder):
    """
    Base class for decoders that read named fields from the payload. The
    position of the reader when parse() returns is where any child boxes
    start.
    """

    @classmethod
    def decode(clz, data: bytes, header: BoxHeader, debug: bool = False) -> DecodedPayload:
        rv: dict[str, Any] = {}
        r = FieldReader(clz.classname(), data, header.payload_start, header.end,
                        rv, debug=debug)
        clz.parse(r, header)
        if r.truncated:
            return DecodedPayload(clz.to_details(rv), header.end)
        return DecodedPayload(clz.to_details(rv), r.pos)

    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        pass


class FullBoxDecoder(BoxDecoder):
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        version = r.read('B', 'version')
        flags = r.read('3I', 'flags')
        if flags is None:
            return
        clz.parse_box(r, version, flags)

    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        pass


@fourcc('ftyp', 'styp')
class FileTypeDecoder(BoxDecoder):
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        r.read('S4', 'major_brand')
        r.read('I', 'minor_version')
        brands: list[str] = []
        while r.remaining() >= 4:
            brands.append(r.get('S4', 'compatible_brand'))
        r.kwargs['compatible_brands'] = brands


@fourcc('mvhd')
class MovieHeaderDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        sz = 'Q' if version == 1 else 'I'
        r.read(sz, 'creation_time', encoder=iso_epoch_field)
        r.read(sz, 'modification_time', encoder=iso_epoch_field)
        r.read('I', 'timescale')
        r.read(sz, 'duration')
        r.read('D16.16', 'rate')
        r.read('D8.8', 'volume')
        r.skip(10)  # reserved
        r.skip(9 * 4)  # matrix
        r.skip(6 * 4)  # pre_defined
        r.read('I', 'next_track_id')


@fourcc('tkhd')
class TrackHeaderDecoder(FullBoxDecoder):
    Track_enabled = 0x000001
    Track_in_movie = 0x000002
    Track_in_preview = 0x000004

    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.kwargs['is_enabled'] = bool(flags & clz.Track_enabled)
        r.kwargs['in_movie'] = bool(flags & clz.Track_in_movie)
        r.kwargs['in_preview'] = bool(flags & clz.Track_in_preview)
        sz = 'Q' if version == 1 else 'I'
        r.read(sz, 'creation_time', encoder=iso_epoch_field)
        r.read(sz, 'modification_time', encoder=iso_epoch_field)
        r.read('I', 'track_id')
        r.skip(4)  # reserved
        r.read(sz, 'duration')
        r.skip(8)  # 2 x 32 bits reserved
        r.read('H', 'layer')
        r.read('H', 'alternate_group')
        r.read('D8.8', 'volume')
        r.skip(2)  # reserved
        r.skip(9 * 4)  # matrix
        r.read('D16.16', 'width')
        r.read('D16.16', 'height')


@fourcc('mdhd')
class MediaHeaderDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        sz = 'Q' if version == 1 else 'I'
        r.read(sz, 'creation_time', encoder=iso_epoch_field)
        r.read(sz, 'modification_time', encoder=iso_epoch_field)
        r.read('I', 'timescale')
        r.read(sz, 'duration')
        r.read('H', 'language', encoder=decode_language)


@fourcc('hdlr')
class HandlerDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.skip(4)  # pre_defined
        r.read('S4', 'handler_type')
        r.skip(12)  # reserved
        r.read('S0', 'name')


@fourcc('mehd')
class MovieExtendsHeaderDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('Q' if version == 1 else 'I', 'fragment_duration')


@fourcc('trex')
class TrackExtendsDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('I', 'track_id')
        r.read('I', 'default_sample_description_index')
        r.read('I', 'default_sample_duration')
        r.read('I', 'default_sample_size')
        r.read('I', 'default_sample_flags')


@fourcc('mfhd')
class MovieFragmentHeaderDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('I', 'sequence_number')


@fourcc('tfdt')
class TrackFragmentDecodeTimeDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('Q' if version == 1 else 'I', 'base_media_decode_time')


@fourcc('tfhd')
class TrackFragmentHeaderDecoder(FullBoxDecoder):
    base_data_offset_present = 0x000001
    sample_description_index_present = 0x000002
    default_sample_duration_present = 0x000008
    default_sample_size_present = 0x000010
    default_sample_flags_present = 0x000020
    duration_is_empty = 0x010000
    default_base_is_moof = 0x020000

    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('I', 'track_id')
        if flags & clz.base_data_offset_present:
            r.read('Q', 'base_data_offset')
        if flags & clz.sample_description_index_present:
            r.read('I', 'sample_description_index')
        if flags & clz.default_sample_duration_present:
            r.read('I', 'default_sample_duration')
        if flags & clz.default_sample_size_present:
            r.read('I', 'default_sample_size')
        if flags & clz.default_sample_flags_present:
            r.read('I', 'default_sample_flags')
        r.kwargs['duration_is_empty'] = bool(flags & clz.duration_is_empty)
        r.kwargs['default_base_is_moof'] = bool(flags & clz.default_base_is_moof)


@fourcc('trun')
class TrackFragmentRunDecoder(FullBoxDecoder):
    data_offset_present = 0x000001
    first_sample_flags_present = 0x000004
    sample_duration_present = 0x000100
    sample_size_present = 0x000200
    sample_flags_present = 0x000400
    sample_composition_time_offsets_present = 0x000800

    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        sample_count = r.read('I', 'sample_count')
        if flags & clz.data_offset_present:
            r.read('i', 'data_offset')
        if flags & clz.first_sample_flags_present:
            r.read('I', 'first_sample_flags')
        per_sample: list[tuple[str, str]] = []
        if flags & clz.sample_duration_present:
            per_sample.append(('duration', 'I'))
        if flags & clz.sample_size_present:
            per_sample.append(('size', 'I'))
        if flags & clz.sample_flags_present:
            per_sample.append(('flags', 'I'))
        if flags & clz.sample_composition_time_offsets_present:
            per_sample.append(('composition_time_offset', 'i' if version else 'I'))
        if not sample_count or not per_sample:
            return
        entry_size = 4 * len(per_sample)
        samples: list[dict[str, int]] = []
        while len(samples) < sample_count and r.remaining() >= entry_size:
            samples.append({name: r.get(sz, name) for name, sz in per_sample})
        r.kwargs['samples'] = samples


@fourcc('sidx')
class SegmentIndexDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        sz = 'Q' if version == 1 else 'I'
        r.read('I', 'reference_id')
        r.read('I', 'timescale')
        r.read(sz, 'earliest_presentation_time')
        r.read(sz, 'first_offset')
        r.skip(2)  # reserved
        reference_count = r.read('H', 'reference_count')
        if not reference_count:
            return
        references: list[dict[str, int | bool]] = []
        while len(references) < reference_count and r.remaining() >= 12:
            size = r.get('I', 'referenced_size')
            duration = r.get('I', 'subsegment_duration')
            sap = r.get('I', 'sap')
            references.append({
                'reference_type': bool(size >> 31),
                'referenced_size': size & 0x7FFFFFFF,
                'subsegment_duration': duration,
                'starts_with_sap': bool(sap >> 31),
                'sap_type': (sap >> 28) & 0x07,
                'sap_delta_time': sap & 0x0FFFFFFF,
            })
        r.kwargs['references'] = references


@fourcc('pssh')
class ContentProtectionSpecificDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read(16, 'system_id', encoder=format_uuid)
        if version > 0:
            kid_count = r.read('I', 'kid_count')
            if kid_count:
                key_ids: list[str] = []
                while len(key_ids) < kid_count and r.remaining() >= 16:
                    key_ids.append(format_uuid(r.get_bytes(16, 'kid')))
                r.kwargs['key_ids'] = key_ids
        r.read('I', 'data_size')


@fourcc('schm')
class ProtectionSchemeTypeDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('S4', 'scheme_type')
        r.read('I', 'scheme_version')
        if flags & 0x000001:
            r.read('S0', 'scheme_uri')


@fourcc('tenc')
class TrackEncryptionDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.skip(1)  # reserved
        if version == 0:
            r.skip(1)  # reserved
        else:
            pattern = r.get('B', 'pattern')
            if pattern is not None:
                r.kwargs['default_crypt_byte_block'] = pattern >> 4
                r.kwargs['default_skip_byte_block'] = pattern & 0x0F
        is_protected = r.read('B', 'default_is_protected')
        iv_size = r.read('B', 'default_per_sample_iv_size')
        r.read(16, 'default_kid', encoder=format_uuid)
        if is_protected == 1 and iv_size == 0:
            const_size = r.read('B', 'default_constant_iv_size')
            if const_size:
                r.read(const_size, 'default_constant_iv', encoder=bytes.hex)


@fourcc('elst')
class EditListDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        entry_count = r.read('I', 'entry_count')
        if not entry_count:
            return
        if version == 1:
            sizes = ('Q', 'q')
            entry_size = 20
        else:
            sizes = ('I', 'i')
            entry_size = 12
        entries: list[dict[str, int]] = []
        while len(entries) < entry_count and r.remaining() >= entry_size:
            entries.append({
                'segment_duration': r.get(sizes[0], 'segment_duration'),
                'media_time': r.get(sizes[1], 'media_time'),
                'media_rate_integer': r.get('h', 'media_rate_integer'),
                'media_rate_fraction': r.get('h', 'media_rate_fraction'),
            })
        r.kwargs['entries'] = entries


@fourcc('stsd', 'dref')
class EntryCountDecoder(FullBoxDecoder):
    """
    FullBox followed by an entry count, with the entries held as child boxes
    """
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.read('I', 'entry_count')


@fourcc('url ')
class DataEntryUrlDecoder(FullBoxDecoder):
    @classmethod
    def parse_box(clz, r: FieldReader, version: int, flags: int) -> None:
        r.kwargs['self_contained'] = bool(flags & 0x000001)
        if not flags & 0x000001 and r.remaining():
            r.read('S0', 'location')


@fourcc('meta')
class MetaDecoder(FullBoxDecoder):
    """
    The ISO meta box is a FullBox, but QuickTime files use a plain container
    whose payload starts directly with the hdlr box.
    """
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        start = header.payload_start
        if bytes(r.data[start + 4:start + 8]) == b'hdlr':
            return
        super().parse(r, header)


@fourcc('btrt')
class BitRateDecoder(BoxDecoder):
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        r.read('I', 'buffer_size_db')
        r.read('I', 'max_bitrate')
        r.read('I', 'avg_bitrate')


@fourcc('pasp')
class PixelAspectRatioDecoder(BoxDecoder):
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        r.read('I', 'h_spacing')
        r.read('I', 'v_spacing')


@fourcc('frma')
class OriginalFormatDecoder(BoxDecoder):
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        r.read('S4', 'data_format')


@fourcc('avcC')
class AVCConfigurationDecoder(BoxDecoder):
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        r.read('B', 'configuration_version')
        profile = r.read('B', 'AVCProfileIndication')
        compatibility = r.read('B', 'profile_compatibility')
        level = r.read('B', 'AVCLevelIndication')
        if level is not None:
            r.kwargs['codec'] = f'avc1.{profile:02x}{compatibility:02x}{level:02x}'
        r.read('B', 'nal_length_size', mask=0x03, encoder=lambda v: v + 1)
        num_sps = r.read('B', 'num_sps', mask=0x1F)
        r.kwargs['sps_lengths'] = clz.read_parameter_sets(r, num_sps, 'sps')
        num_pps = r.read('B', 'num_pps')
        r.kwargs['pps_lengths'] = clz.read_parameter_sets(r, num_pps, 'pps')

    @staticmethod
    def read_parameter_sets(r: FieldReader, count: int | None, name: str) -> list[int]:
        lengths: list[int] = []
        for _ in range(count or 0):
            length = r.get('H', f'{name} length')
            if length is None or r.get_bytes(length, name) is None:
                break
            lengths.append(length)
        return lengths


# see FFMPEG libavformat/hevc.c for HEVCDecoderConfigurationRecord
@fourcc('hvcC')
class HEVCConfigurationDecoder(BoxDecoder):
    @classmethod
    def decode(clz, data: bytes, header: BoxHeader, debug: bool = False) -> DecodedPayload:
        rv: dict[str, Any] = {}
        payload = bytes(data[header.payload_start:header.end])
        r = BitsFieldReader(clz.classname(), payload, rv, debug=debug)
        clz.parse_bits(r)
        return DecodedPayload(clz.to_details(rv), header.end)

    @classmethod
    def parse_bits(clz, r: BitsFieldReader) -> None:
        if r.read(8, 'configuration_version') is None:
            return
        r.read(2, 'general_profile_space')
        r.read(1, 'general_tier_flag')
        r.read(5, 'general_profile_idc')
        r.read(32, 'general_profile_compatibility_flags')
        r.read(48, 'general_constraint_indicator_flags')
        r.read(8, 'general_level_idc')
        r.get(4, 'reserved')
        r.read(12, 'min_spatial_segmentation_idc')
        r.get(6, 'reserved')
        r.read(2, 'parallelismType')
        r.get(6, 'reserved')
        r.read(2, 'chroma_format_idc')
        r.get(5, 'reserved')
        luma = r.get(3, 'luma_bit_depth_minus8')
        if luma is not None:
            r.kwargs['luma_bit_depth'] = 8 + luma
        r.get(5, 'reserved')
        chroma = r.get(3, 'chroma_bit_depth_minus8')
        if chroma is not None:
            r.kwargs['chroma_bit_depth'] = 8 + chroma
        r.read(16, 'avg_framerate')
        r.read(2, 'constant_framerate')
        r.read(3, 'num_temporal_layers')
        r.read(1, 'temporal_id_nested')
        length_size = r.get(2, 'length_size_minus_one')
        if length_size is not None:
            r.kwargs['nal_length_size'] = length_size + 1
        num_arrays = r.read(8, 'num_arrays')
        if num_arrays is None:
            return
        arrays: list[dict[str, Any]] = []
        r.kwargs['arrays'] = arrays
        # the 'arrays' list should contain the VPS, SPS and PPS
        for _ in range(num_arrays):
            completeness = r.get(1, 'array_completeness')
            r.get(1, 'reserved')
            nal_unit_type = r.get(6, 'nal_unit_type')
            num_nalus = r.get(16, 'num_nalus')
            if num_nalus is None:
                return
            lengths: list[int] = []
            arrays.append({
                'array_completeness': completeness,
                'nal_unit_type': nal_unit_type,
                'nal_unit_lengths': lengths,
            })
            for _ in range(num_nalus):
                unit_length = r.get(16, 'nalUnitLength')
                if unit_length is None or r.get_bytes(unit_length, 'NAL unit') is None:
                    return
                lengths.append(unit_length)


class SampleEntryDecoder(BoxDecoder):
    """
    Generic entry of a sample description box. Subclasses read the
    media specific fields that sit between this header and the child boxes.
    """
    @classmethod
    def parse(clz, r: FieldReader, header: BoxHeader) -> None:
        r.skip(6)  # reserved
        r.read('H', 'data_reference_index')
        clz.parse_entry(r)

    @classmethod
    def parse_entry(clz, r: FieldReader) -> None:
        pass


@fourcc('avc1', 'avc3', 'hev1', 'hvc1', 'encv', 'dvh1', 'dvhe', 'vp08', 'vp09',
        'av01', 'mp4v')
class VisualSampleEntryDecoder(SampleEntryDecoder):
    @classmethod
    def parse_entry(clz, r: FieldReader) -> None:
        r.skip(2)  # pre_defined
        r.skip(2)  # reserved
        r.skip(12)  # pre_defined
        r.read('H', 'width')
        r.read('H', 'height')
        r.read('D16.16', 'horizresolution')
        r.read('D16.16', 'vertresolution')
        r.skip(4)  # reserved
        r.read('H', 'frame_count')
        name = r.get_bytes(32, 'compressorname')
        if name is not None:
            length = min(name[0], 31)
            r.kwargs['compressorname'] = str(name[1:1 + length], 'utf-8', errors='replace')
        r.read('H', 'depth')
        r.skip(2)  # pre_defined


@fourcc('mp4a', 'enca', 'ac-3', 'ec-3', 'ac-4', 'Opus', 'fLaC', 'alac')
class AudioSampleEntryDecoder(SampleEntryDecoder):
    @classmethod
    def parse_entry(clz, r: FieldReader) -> None:
        # QuickTime sound description versions 1 and 2 carry extra fields
        qt_version = r.get('H', 'version')
        r.skip(6)  # reserved
        r.read('H', 'channel_count')
        r.read('H', 'sample_size')
        r.skip(4)  # pre_defined + reserved
        r.read('I', 'sample_rate', encoder=lambda v: v >> 16)
        if qt_version == 1:
            r.skip(16)
        elif qt_version == 2:
            r.skip(36)


@fourcc('wvtt', 'tx3g')
class PlainTextSampleEntryDecoder(SampleEntryDecoder):
    pass


@fourcc('stpp')
class XMLSubtitleSampleEntryDecoder(SampleEntryDecoder):
    @classmethod
    def parse_entry(clz, r: FieldReader) -> None:
        r.read('S0', 'namespace')
        r.read('S0', 'schema_location')
        r.read('S0', 'auxiliary_mime_types')


def find_decoder(box_type: str, parent_type: str | None) -> type[OpaqueDecoder]:
    """
    Returns the decoder class for a box. Entries of a sample description box
    with an unknown fourcc use the generic sample entry decoder.
    """
    try:
        return fourcc.DECODERS[box_type]
    except KeyError:
        pass
    if parent_type == 'stsd':
        return SampleEntryDecoder
    return OpaqueDecoder


def decode_payload(data: bytes, header: BoxHeader,
                   log: logging.Logger | None = None,
                   debug: bool = False) -> DecodedPayload:
    decoder = find_decoder(header.type, header.parent_type)
    if log is not None and debug:
        log.debug('decode "%s" at %d using %s', header.type, header.start,
                  decoder.classname())
    return decoder.decode(data, header, debug=debug)
