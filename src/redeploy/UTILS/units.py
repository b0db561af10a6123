# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parsing of compose-style durations ("1m30s") and byte sizes ("512m").
"""
import re
from typing import Union

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)')

_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}

_BYTE_SIZE = re.compile(r'^(\d+(?:\.\d+)?)\s*([kmgt]?)i?b?$', re.IGNORECASE)

_BYTE_UNITS = {
    '': 1,
    'k': 1024,
    'm': 1024 ** 2,
    'g': 1024 ** 3,
    't': 1024 ** 4,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parses a duration into seconds.

    Plain numbers are taken as seconds. Strings follow the compose format,
    a sequence of number/unit pairs such as ``1h2m`` or ``1.5s``.

    :param value: The duration to parse.
    :return: The duration in seconds.
    :raises ValueError: If the string is not a valid duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_byte_size(value: Union[str, int]) -> int:
    """
    Parses a byte size such as ``512m`` or ``1gb`` into bytes.

    :param value: The size to parse; integers are taken as bytes.
    :return: Size in bytes.
    :raises ValueError: If the value is not a valid size.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid byte size: {value!r}")
    if isinstance(value, int):
        return value

    match = _BYTE_SIZE.match(value.strip())
    if not match:
        raise ValueError(f"invalid byte size: {value!r}")
    return int(float(match.group(1)) * _BYTE_UNITS[match.group(2).lower()])


def to_nanoseconds(seconds: float) -> int:
    return int(round(seconds * 1_000_000_000))
