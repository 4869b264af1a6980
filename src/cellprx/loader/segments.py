"""Turns the section headers (or, failing that, the program headers) of an
image into address-space regions."""

from typing import List, Tuple

from loguru import logger

from cellprx.commons import (
    CLASS_BSS,
    CLASS_CODE,
    CLASS_CONST,
    CLASS_DATA,
    PROT_EXEC,
    PROT_NONE,
    PROT_READ,
    PROT_WRITE,
)
from cellprx.database import AddressRegion, AnalysisDatabase
from cellprx.exceptions import LoaderError
from cellprx.image import (
    ExecutableImage,
    SectionDescriptor,
    SectionType,
    SegmentDescriptor,
    SegmentType,
)
from cellprx.loader.base import LoadContext, Region


def is_loadable_section(section: SectionDescriptor) -> bool:
    # A section is loadable if it has the ALLOC flag, and it's not empty
    return (
        section.allocatable
        and section.size > 0
        and section.type != SectionType.SHT_NULL
    )


def is_loadable_segment(segment: SegmentDescriptor) -> bool:
    # A segment is loadable if it's type is LOAD, and it's not empty (memory
    # size > 0)
    return segment.type == SegmentType.PT_LOAD and segment.memsz > 0


def classify_section(section: SectionDescriptor) -> Tuple[str, int]:
    """Infer the class and permissions of a region from section flags."""
    permissions = PROT_NONE
    if section.writable:
        permissions |= PROT_WRITE
    if section.executable:
        permissions |= PROT_EXEC

    if section.type == SectionType.SHT_NOBITS:
        sclass = CLASS_BSS
    elif section.executable:
        sclass = CLASS_CODE
    else:
        sclass = CLASS_DATA
    return sclass, permissions


def classify_segment(segment: SegmentDescriptor) -> Tuple[str, int]:
    """Infer the class and permissions of a region from the R/W/X bits of a
    program header. A segment without any file contents is always bss; a
    segment without any permission bit is data without permissions."""
    permissions = PROT_NONE
    if segment.executable:
        permissions |= PROT_EXEC
    if segment.writable:
        permissions |= PROT_WRITE
    if segment.readable:
        permissions |= PROT_READ

    if segment.filesz == 0:
        sclass = CLASS_BSS
    elif segment.executable:
        sclass = CLASS_CODE
    elif segment.writable:
        sclass = CLASS_DATA
    elif segment.readable:
        sclass = CLASS_CONST
    else:
        logger.debug(f"Segment #{segment.index} has no permissions, assuming data")
        sclass = CLASS_DATA
    return sclass, permissions


def region_from_section(index: int, section: SectionDescriptor) -> Region:
    sclass, permissions = classify_section(section)
    loaded = section.type != SectionType.SHT_NOBITS
    return Region(
        index=index,
        address=section.address,
        size=section.size,
        name=section.name,
        sclass=sclass,
        permissions=permissions,
        alignment=section.alignment,
        offset=section.offset,
        filesz=section.size if loaded else 0,
        loaded=loaded,
    )


def region_from_segment(index: int, segment: SegmentDescriptor) -> Region:
    sclass, permissions = classify_segment(segment)
    return Region(
        index=index,
        address=segment.vaddr,
        size=segment.memsz,
        name="",
        sclass=sclass,
        permissions=permissions,
        alignment=segment.alignment,
        offset=segment.offset,
        filesz=segment.filesz,
        loaded=sclass != CLASS_BSS,
    )


def plan_regions(image: ExecutableImage) -> List[Region]:
    """Decide which regions make up the image. Section headers are preferred
    as they are finer grained; program headers are the fallback.

    Raises:
        LoaderError: Neither table has a loadable entry.

    """
    sections = list(filter(is_loadable_section, image.sections))
    if sections:
        logger.info("Applying section headers...")
        return [
            region_from_section(index, section)
            for index, section in enumerate(sections)
        ]

    segments = list(filter(is_loadable_segment, image.segments))
    if segments:
        logger.info("Applying program headers...")
        return [
            region_from_segment(index, segment)
            for index, segment in enumerate(segments)
        ]

    raise LoaderError("No segments available!")


def map_regions(
    image: ExecutableImage, database: AnalysisDatabase, context: LoadContext
) -> List[AddressRegion]:
    mapped = []
    for region in plan_regions(image):
        address_region = region.load(image, database, context)
        logger.debug(
            f"Mapped {region.name or '#' + str(region.index)} ({region.sclass}) "
            f"{address_region.start:#x}..{address_region.end:#x}"
        )
        mapped.append(address_region)
    return mapped
