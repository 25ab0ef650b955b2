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

import datetime

# time values in ISO BMFF are seconds since midnight, Jan. 1, 1904, in UTC time
ISO_EPOCH_DELTA = 2082844800

UNIX_EPOCH = datetime.datetime(year=1970, month=1, day=1, tzinfo=datetime.timezone.utc)

# largest integer that survives a round trip through an IEEE double
MAX_SAFE_INTEGER = (1 << 53) - 1


def from_iso_epoch(value: int) -> datetime.datetime | None:
    """
    Converts a count of seconds since 1904-01-01 into a datetime. Returns None
    if the value cannot be represented as a millisecond timestamp without
    losing precision, or falls outside the range of datetime.
    """
    millis = (value - ISO_EPOCH_DELTA) * 1000
    if abs(millis) > MAX_SAFE_INTEGER:
        return None
    try:
        return UNIX_EPOCH + datetime.timedelta(milliseconds=millis)
    except OverflowError:
        return None


def toIsoDateTime(value: datetime.datetime) -> str:
    """ Convert a datetime to an ISO8601 formatted dateTime string.

    :param value: the dateTime to convert
    :returns: an ISO8601 formatted string version of the dateTime
    """
    rv = value.isoformat(timespec='milliseconds')
    if value.tzinfo is None or value.utcoffset() == datetime.timedelta(0):
        rv = rv.replace('+00:00', '')
        rv += 'Z'
    return rv


def iso_epoch_field(value: int) -> str | int:
    """
    Value to report for a 1904 epoch field: ISO8601 text when the value is
    representable, otherwise the raw integer.
    """
    when = from_iso_epoch(value)
    if when is None:
        return value
    return toIsoDateTime(when)


def from_isodatetime(date_time: str | None) -> datetime.datetime | None:
    """
    Convert an ISO formated date string to a datetime.datetime object.
    Values without a timezone are taken to be UTC.
    """
    if not date_time:
        return None
    date_time = date_time.strip()
    if date_time.endswith('Z'):
        date_time = date_time[:-1] + '+00:00'
    try:
        rv = datetime.datetime.fromisoformat(date_time)
    except ValueError:
        return None
    if rv.tzinfo is None:
        rv = rv.replace(tzinfo=datetime.timezone.utc)
    return rv
