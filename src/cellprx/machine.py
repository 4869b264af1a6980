"""Scalar encoding for the PPU target.

The PPU is a 64bit big-endian PowerPC core, but the images handled here use
the 32bit pointer ABI: every pointer stored in module metadata and import and
export tables is a 32bit word.
"""

import struct
from typing import Dict

import attr

_FORMATS: Dict[int, str] = {1: "B", 2: "H", 4: "I", 8: "Q"}


@attr.s(auto_attribs=True, frozen=True)
class Machine:
    name: str
    #: Size of a pointer as stored in the image
    sizeof_word: int
    big_endian: bool = True

    @property
    def byte_order(self) -> str:
        return ">" if self.big_endian else "<"

    def pack(self, value: int, width: int) -> bytes:
        """Encode ``value`` as an unsigned ``width``-byte scalar, truncating
        any excess high bits."""
        value &= (1 << (width * 8)) - 1
        return struct.pack(self.byte_order + _FORMATS[width], value)

    def unpack(self, raw: bytes, width: int) -> int:
        return struct.unpack(self.byte_order + _FORMATS[width], raw[:width])[0]


PPU = Machine(name="ppc64", sizeof_word=4)

