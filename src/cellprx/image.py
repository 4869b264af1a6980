"""A read-only view of a PPU ELF image.

The view is built once per load with pyelftools, which takes care of the
byte order of the headers, and is never modified afterwards. All the loader
components work on the normalized descriptors below rather than on pyelftools
objects, which also makes it possible to build synthetic images directly.
"""

from enum import IntEnum
from typing import IO, Dict, Iterator, List, Optional, Union

import attr
from cached_property import cached_property
from elftools.common.exceptions import ELFError
from elftools.elf.constants import P_FLAGS, SH_FLAGS
from elftools.elf.elffile import ELFFile
from elftools.elf.enums import (
    ENUM_E_MACHINE,
    ENUM_E_TYPE,
    ENUM_EI_OSABI,
    ENUM_P_TYPE_BASE,
    ENUM_SH_TYPE_BASE,
    ENUM_ST_INFO_BIND,
    ENUM_ST_INFO_TYPE,
    ENUM_ST_SHNDX,
)
from elftools.elf.sections import SymbolTableSection
from loguru import logger

from cellprx.exceptions import LoaderError

ET_EXEC: int = 2
ET_SCE_PPURELEXEC: int = 0xFFA4
EM_PPC64: int = 21
ELFOSABI_CELLOSLV2: int = 0x66

SHN_ABS: int = 0xFFF1

STT_OBJECT: int = 1
STT_FUNC: int = 2
STT_FILE: int = 4


class SegmentType(IntEnum):
    PT_NULL = 0
    PT_LOAD = 1
    PT_TLS = 7
    PT_PROC_PARAM = 0x60000001
    PT_PROC_PRX = 0x60000002
    PT_SCE_PPURELA = 0x700000A4
    PT_SCE_SEGSYM = 0x700000A8


class SectionType(IntEnum):
    SHT_NULL = 0
    SHT_PROGBITS = 1
    SHT_SYMTAB = 2
    SHT_STRTAB = 3
    SHT_RELA = 4
    SHT_NOBITS = 8


def _enum_value(value: Union[int, str], enum: Dict[str, int]) -> int:
    """pyelftools describes known enumeration values by name and passes
    unknown (vendor specific) ones through as integers."""
    if isinstance(value, str):
        return enum[value]
    return value


@attr.s(auto_attribs=True, frozen=True)
class SegmentDescriptor:
    index: int
    type: int
    flags: int
    offset: int
    vaddr: int
    paddr: int
    filesz: int
    memsz: int
    alignment: int = 0

    @property
    def readable(self) -> bool:
        return bool(self.flags & P_FLAGS.PF_R)

    @property
    def writable(self) -> bool:
        return bool(self.flags & P_FLAGS.PF_W)

    @property
    def executable(self) -> bool:
        return bool(self.flags & P_FLAGS.PF_X)


@attr.s(auto_attribs=True, frozen=True)
class SectionDescriptor:
    index: int
    name: str
    type: int
    flags: int
    address: int
    offset: int
    size: int
    alignment: int = 0
    link: int = 0
    info: int = 0

    @property
    def allocatable(self) -> bool:
        return bool(self.flags & SH_FLAGS.SHF_ALLOC)

    @property
    def writable(self) -> bool:
        return bool(self.flags & SH_FLAGS.SHF_WRITE)

    @property
    def executable(self) -> bool:
        return bool(self.flags & SH_FLAGS.SHF_EXECINSTR)


@attr.s(auto_attribs=True, frozen=True)
class SymbolRecord:
    index: int
    name: str
    value: int
    size: int
    shndx: int
    type: int
    bind: int


@attr.s(auto_attribs=True)
class ExecutableImage:
    """Immutable parsed view of the input file."""

    #: ``e_type`` of the ELF header
    type: int
    machine: int
    osabi: int
    entry: int
    segments: List[SegmentDescriptor]
    sections: List[SectionDescriptor]
    #: The (already byte order normalized) contents of the symbol table
    symbols: List[SymbolRecord]
    #: Raw contents of the whole file
    data: bytes = attr.ib(default=b"", repr=False)

    @property
    def is_prx(self) -> bool:
        return self.type == ET_SCE_PPURELEXEC

    @property
    def is_exec(self) -> bool:
        return self.type == ET_EXEC

    @cached_property
    def _sections_by_name(self) -> Dict[str, SectionDescriptor]:
        # The first section with a given name wins
        names: Dict[str, SectionDescriptor] = {}
        for section in self.sections:
            names.setdefault(section.name, section)
        return names

    def section_by_name(self, name: str) -> Optional[SectionDescriptor]:
        return self._sections_by_name.get(name)

    def section_by_type(self, sh_type: int) -> Optional[SectionDescriptor]:
        for section in self.sections:
            if section.type == sh_type:
                return section
        return None

    def segments_by_type(self, p_type: int) -> Iterator[SegmentDescriptor]:
        for segment in self.segments:
            if segment.type == p_type:
                yield segment

    def read(self, offset: int, size: int) -> bytes:
        """Raw access to the file by offset. Reading past the end of the file
        yields a short buffer rather than an error."""
        return self.data[offset : offset + size]

    def segment_data(self, segment: SegmentDescriptor) -> bytes:
        return self.read(segment.offset, segment.filesz)

    def section_data(self, section: SectionDescriptor) -> bytes:
        if section.type == SectionType.SHT_NOBITS:
            return b""
        return self.read(section.offset, section.size)

    @staticmethod
    def from_elf(elf: ELFFile, data: bytes) -> "ExecutableImage":
        header = elf.header

        segments = [
            SegmentDescriptor(
                index=index,
                type=_enum_value(segment["p_type"], ENUM_P_TYPE_BASE),
                flags=segment["p_flags"],
                offset=segment["p_offset"],
                vaddr=segment["p_vaddr"],
                paddr=segment["p_paddr"],
                filesz=segment["p_filesz"],
                memsz=segment["p_memsz"],
                alignment=segment["p_align"],
            )
            for index, segment in enumerate(elf.iter_segments())
        ]

        sections = []
        symbols: List[SymbolRecord] = []
        for index, section in enumerate(elf.iter_sections()):
            sections.append(
                SectionDescriptor(
                    index=index,
                    name=section.name,
                    type=_enum_value(section["sh_type"], ENUM_SH_TYPE_BASE),
                    flags=section["sh_flags"],
                    address=section["sh_addr"],
                    offset=section["sh_offset"],
                    size=section["sh_size"],
                    alignment=section["sh_addralign"],
                    link=section["sh_link"],
                    info=section["sh_info"],
                )
            )
            if (
                not symbols
                and isinstance(section, SymbolTableSection)
                and section["sh_type"] == "SHT_SYMTAB"
            ):
                symbols = [
                    SymbolRecord(
                        index=sym_index,
                        name=symbol.name,
                        value=symbol["st_value"],
                        size=symbol["st_size"],
                        shndx=_enum_value(symbol["st_shndx"], ENUM_ST_SHNDX),
                        type=_enum_value(symbol["st_info"]["type"], ENUM_ST_INFO_TYPE),
                        bind=_enum_value(symbol["st_info"]["bind"], ENUM_ST_INFO_BIND),
                    )
                    for sym_index, symbol in enumerate(section.iter_symbols())
                ]

        return ExecutableImage(
            type=_enum_value(header["e_type"], ENUM_E_TYPE),
            machine=_enum_value(header["e_machine"], ENUM_E_MACHINE),
            osabi=_enum_value(header["e_ident"]["EI_OSABI"], ENUM_EI_OSABI),
            entry=header["e_entry"],
            segments=segments,
            sections=sections,
            symbols=symbols,
            data=data,
        )

    @staticmethod
    def from_stream(stream: IO[bytes]) -> "ExecutableImage":
        """Parse an image out of a (seekable) binary stream.

        Raises:
            LoaderError: The stream does not hold a well formed ELF file.

        """
        stream.seek(0)
        data = stream.read()
        stream.seek(0)
        try:
            elf = ELFFile(stream)
            image = ExecutableImage.from_elf(elf, data)
        except ELFError as error:
            raise LoaderError(f"Malformed ELF image: {error}") from error
        logger.debug(
            f"Parsed image: {len(image.segments)} segments, "
            f"{len(image.sections)} sections, {len(image.symbols)} symbols"
        )
        return image

    @staticmethod
    def from_file(filename: str) -> "ExecutableImage":
        with open(filename, "rb") as stream:
            return ExecutableImage.from_stream(stream)


def identify_image(image: ExecutableImage) -> Optional[str]:
    """Check whether ``image`` is a PPU image this package can load.

    Returns:
        A human readable name of the file format, or ``None`` if the image is
        not supported.

    """
    if image.machine != EM_PPC64 or image.osabi != ELFOSABI_CELLOSLV2:
        return None
    if image.is_exec:
        kind = "Executable"
    elif image.is_prx:
        kind = "Relocatable Executable"
    else:
        return None
    return f"PlayStation 3 PPU ({kind})"
