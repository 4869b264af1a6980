"""Relocation of PRX images.

Two relocation schemes exist and an image uses exactly one of them:

    * Legacy PRXs carry ``SHT_RELA`` sections. Records reference a symbol,
      and the symbol references the section it is defined in.
    * Every later PRX carries a ``PT_SCE_PPURELA`` segment. Records reference
      segments directly: the symbol field of ``r_info`` packs the index of the
      patched segment (low byte) and of the segment the value is relative to
      (the remaining bits).

Both end up in ``RelocationEngine.apply_relocation`` with a target address and
a value (both relative to the relocation base), which hands them to the
relocator registered for the relocation type.
"""

# Relocation codenames glossary:
# A:   The address of the patched field (after adding the relocation base).
# S:   The value to apply: the address of the referenced symbol or segment
#      plus the addend (after adding the relocation base).
# GP:  The TOC value of the image.

from enum import IntEnum
from typing import Callable, ClassVar, Dict, Iterator, List, Optional

import attr
from loguru import logger

from cellprx.commons import u16, u32
from cellprx.database import AnalysisDatabase
from cellprx.exceptions import InvalidMemoryAccess
from cellprx.image import (
    SHN_ABS,
    ExecutableImage,
    SectionType,
    SegmentDescriptor,
    SegmentType,
)
from cellprx.loader.base import LoadContext, Variant
from cellprx.structures import Elf64_Rela


class PPC64RelocationTypes(IntEnum):
    R_PPC64_NONE = 0
    R_PPC64_ADDR32 = 1
    R_PPC64_ADDR16_LO = 4
    R_PPC64_ADDR16_HA = 6
    R_PPC64_REL24 = 10
    R_PPC64_TOC16 = 47
    R_PPC64_TOC16_DS = 63
    R_PPC64_TLSGD = 107


#: Types above this one are not PPC64 relocations at all
MAX_RELOCATION_TYPE: int = PPC64RelocationTypes.R_PPC64_TLSGD

#: Segment index meaning "no segment" in a segment based relocation
SEGMENT_NONE: int = 0xFF

REL24_MASK: int = 0x03FFFFFC
DS_MASK: int = 0xFFFC

Relocator = Callable[[AnalysisDatabase, LoadContext, int, int], None]


@attr.s(auto_attribs=True, frozen=True)
class RelocationRecord:
    #: Position of the record in its table
    index: int
    offset: int
    info: int
    addend: int

    @property
    def type(self) -> int:
        return self.info & 0xFFFFFFFF

    @property
    def symbol(self) -> int:
        return self.info >> 32


@attr.s(auto_attribs=True, frozen=True)
class SegmentReference:
    """The decoded symbol field of a segment based relocation."""

    #: Index of the segment holding the patched field
    target_index: int
    #: Index of the segment the value is relative to
    symbol_index: int

    @staticmethod
    def decode(symbol: int) -> "SegmentReference":
        return SegmentReference(
            target_index=symbol & 0xFF,
            symbol_index=(symbol & 0x7FFFFF00) >> 8,
        )


def iter_relocation_records(data: bytes) -> Iterator[RelocationRecord]:
    """Decode (and byte order normalize) a table of ``Elf64_Rela``. A
    trailing partial record is ignored."""
    count = len(data) // Elf64_Rela.sizeof()
    for index, rela in enumerate(Elf64_Rela[count].parse(data)):
        yield RelocationRecord(index, rela.r_offset, rela.r_info, rela.r_addend)


# Relocation handlers


def addr32(database: AnalysisDatabase, context: LoadContext, address: int, value: int):
    """ S """
    database.patch(address, 4, value)


def addr16_lo(
    database: AnalysisDatabase, context: LoadContext, address: int, value: int
):
    """ #lo(S) """
    database.patch(address, 2, u16(value))


def addr16_ha(
    database: AnalysisDatabase, context: LoadContext, address: int, value: int
):
    """ #ha(S) """
    database.patch(address, 2, u16((value + 0x8000) >> 16))


def rel24(database: AnalysisDatabase, context: LoadContext, address: int, value: int):
    """ (S - A) >> 2, into the LI field of a branch """
    # The instruction is read as it is in the file, so that the opcode and the
    # AA/LK bits are taken from the original encoding
    insn = database.read(address, 4, original=True)
    insn = (insn & ~REL24_MASK) | (u32(value - address) & REL24_MASK)
    database.patch(address, 4, insn)


def toc16(database: AnalysisDatabase, context: LoadContext, address: int, value: int):
    """ S - GP """
    database.patch(address, 2, u16(value - context.gp_value))


def toc16_ds(
    database: AnalysisDatabase, context: LoadContext, address: int, value: int
):
    """ (S - GP) >> 2, into the DS field of an instruction """
    half = database.read(address, 2)
    half = (half & ~DS_MASK) | (u16(value - context.gp_value) & DS_MASK)
    database.patch(address, 2, half)


def tlsgd(database: AnalysisDatabase, context: LoadContext, address: int, value: int):
    """ GP """
    database.patch(address, 4, context.gp_value)


@attr.s(auto_attribs=True)
class RelocationStats:
    applied: int = 0
    skipped: int = 0


class RelocationEngine:
    """Applies all the relocations of a PRX image to the analysis database.
    """

    image: ExecutableImage
    database: AnalysisDatabase
    #: The TOC value must already be resolved
    context: LoadContext
    #: How many relocation segments are processed by the segment based
    #: scheme
    max_relocation_segments: int
    stats: RelocationStats

    #: A dictionary that maps a relocation type to a function that performs it
    RELOCATORS: ClassVar[Dict[int, Relocator]] = {}

    def __init__(
        self,
        image: ExecutableImage,
        database: AnalysisDatabase,
        context: LoadContext,
        max_relocation_segments: int = 1,
    ):
        self.image = image
        self.database = database
        self.context = context
        self.max_relocation_segments = max_relocation_segments
        self.stats = RelocationStats()

    @classmethod
    def register_relocator(cls, r_type: int, relocator: Relocator):
        cls.RELOCATORS[r_type] = relocator

    @classmethod
    def get_relocator(cls, r_type: int) -> Optional[Relocator]:
        return cls.RELOCATORS.get(r_type, None)

    def _skip(self, message: str):
        logger.warning(message)
        self.stats.skipped += 1

    def apply_relocation(self, r_type: int, address: int, value: int) -> bool:
        """Apply a single relocation. ``address`` and ``value`` are relative
        to the relocation base. Returns a boolean success status."""
        address = u32(self.context.rebase(address))
        value = u32(self.context.rebase(value))

        relocator = self.get_relocator(r_type)
        if relocator is None:
            self._skip(f"Unsupported relocation ({r_type}) at {address:#x}")
            return False

        try:
            relocator(self.database, self.context, address, value)
        except InvalidMemoryAccess as error:
            self._skip(f"Relocation ({r_type}) of unmapped memory {error}")
            return False

        self.stats.applied += 1
        return True

    def apply_section_relocations(self):
        """Section based relocations, only found in legacy PRXs."""
        logger.info("Applying section based relocations...")
        sections = self.image.sections
        symbols = self.image.symbols

        for section in sections:
            if section.type != SectionType.SHT_RELA:
                continue
            if section.info >= len(sections):
                self._skip(
                    f"{section.name}: invalid target section index {section.info}"
                )
                continue
            target = sections[section.info]
            # Relocations of non allocatable sections (debug info etc.) are of
            # no interest
            if not target.allocatable:
                continue

            records = iter_relocation_records(self.image.section_data(section))
            for record in records:
                r_type = record.type
                if r_type == PPC64RelocationTypes.R_PPC64_NONE:
                    logger.debug(
                        f"{section.name}[{record.index}]: skipping R_PPC64_NONE"
                    )
                    continue

                if r_type > MAX_RELOCATION_TYPE:
                    self._skip(
                        f"{section.name}[{record.index}]: "
                        f"invalid relocation type ({r_type})"
                    )
                    continue

                if record.symbol >= len(symbols):
                    self._skip(
                        f"{section.name}[{record.index}]: "
                        f"invalid symbol index {record.symbol}"
                    )
                    continue

                symbol = symbols[record.symbol]
                if symbol.shndx == SHN_ABS:
                    symbol_address = symbol.value
                elif symbol.shndx >= len(sections):
                    self._skip(
                        f"{section.name}[{record.index}]: "
                        f"invalid symbol section index {symbol.shndx:#x}"
                    )
                    continue
                else:
                    symbol_address = sections[symbol.shndx].address + symbol.value

                self.apply_relocation(
                    r_type,
                    target.address + record.offset,
                    symbol_address + record.addend,
                )

    def _segment_address(self, index: int, displacement: int) -> Optional[int]:
        """The address ``displacement`` bytes into segment ``index``. The
        "no segment" index stands for address 0, displacement ignored."""
        if index == SEGMENT_NONE:
            return 0
        if index >= len(self.image.segments):
            return None
        return self.image.segments[index].vaddr + displacement

    def _apply_segment_relocations(self, segment: SegmentDescriptor):
        for record in iter_relocation_records(self.image.segment_data(segment)):
            r_type = record.type
            if r_type == PPC64RelocationTypes.R_PPC64_NONE:
                continue

            reference = SegmentReference.decode(record.symbol)
            address = self._segment_address(reference.target_index, record.offset)
            value = self._segment_address(reference.symbol_index, record.addend)
            if address is None or value is None:
                self._skip(
                    f"Relocation segment #{segment.index}[{record.index}]: "
                    f"invalid segment index in {record.symbol:#x}"
                )
                continue

            self.apply_relocation(r_type, address, value)

    def apply_segment_relocations(self):
        """Segment based relocations, used by every PRX but the legacy ones.
        """
        logger.info("Applying segment based relocations...")
        relocation_segments: List[SegmentDescriptor] = list(
            self.image.segments_by_type(SegmentType.PT_SCE_PPURELA)
        )
        for count, segment in enumerate(relocation_segments):
            if count >= self.max_relocation_segments:
                logger.warning(
                    f"Skipping relocation segment #{segment.index}: only "
                    f"{self.max_relocation_segments} relocation segment(s) processed"
                )
                continue
            self._apply_segment_relocations(segment)

    def apply(self, variant: Variant) -> RelocationStats:
        if variant is Variant.LEGACY_PRX:
            self.apply_section_relocations()
        elif variant is Variant.MODERN_PRX:
            self.apply_segment_relocations()
        logger.info(
            f"Relocations: {self.stats.applied} applied, {self.stats.skipped} skipped"
        )
        return self.stats


RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_ADDR32, addr32)
RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_ADDR16_LO, addr16_lo)
RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_ADDR16_HA, addr16_ha)
RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_REL24, rel24)
RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_TOC16, toc16)
RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_TOC16_DS, toc16_ds)
RelocationEngine.register_relocator(PPC64RelocationTypes.R_PPC64_TLSGD, tlsgd)
