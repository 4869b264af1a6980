"""Module and process metadata: the structures anchoring the import and export
tables.

A PRX describes itself with a module info structure in its first segment.
A statically linked executable has a ``PT_PROC_PARAM`` segment with process
parameters and a ``PT_PROC_PRX`` segment pointing at its library tables.
"""

from typing import Optional

import attr
from construct import Struct
from loguru import logger

from cellprx.database import AnalysisDatabase
from cellprx.exceptions import InvalidMemoryAccess
from cellprx.image import ExecutableImage, SegmentType
from cellprx.loader.base import LoadContext
from cellprx.loader.tables import LibraryTableWalker
from cellprx.loader.variant import module_info_address
from cellprx.structures import (
    scemoduleinfo_ppu32,
    sys_process_param_t,
    sys_process_prx_info_t,
)

ENTRY_POINT_NAME: str = "_start"
MODULE_INFO_NAME: str = "module_info"


@attr.s(auto_attribs=True, frozen=True)
class ModuleInfo:
    address: int
    attribute: int
    version: bytes
    name: str
    gp_value: int
    ent_top: int
    ent_end: int
    stub_top: int
    stub_end: int


@attr.s(auto_attribs=True, frozen=True)
class ProcessParam:
    address: int
    sdk_version: int
    primary_prio: int
    primary_stacksize: int
    malloc_pagesize: int


@attr.s(auto_attribs=True, frozen=True)
class ProcessPrxInfo:
    address: int
    libent_start: int
    libent_end: int
    libstub_start: int
    libstub_end: int


@attr.s(auto_attribs=True)
class ProcessInfo:
    param: Optional[ProcessParam] = None
    prx_info: Optional[ProcessPrxInfo] = None


def _parse(database: AnalysisDatabase, address: int, struct: Struct, type_id: str):
    raw = database.get_mem(address, struct.sizeof())
    database.declare_typed_record(address, struct.sizeof(), type_id)
    return struct.parse(raw)


def read_module_info(database: AnalysisDatabase, address: int) -> ModuleInfo:
    fields = _parse(database, address, scemoduleinfo_ppu32, "_scemoduleinfo")
    return ModuleInfo(
        address=address,
        attribute=fields.c.modattribute,
        version=fields.c.modversion,
        name=fields.c.modname.split(b"\0", 1)[0].decode("latin-1"),
        gp_value=fields.gp_value,
        ent_top=fields.ent_top,
        ent_end=fields.ent_end,
        stub_top=fields.stub_top,
        stub_end=fields.stub_end,
    )


def apply_module_info(
    image: ExecutableImage,
    database: AnalysisDatabase,
    walker: LibraryTableWalker,
    context: LoadContext,
) -> Optional[ModuleInfo]:
    """Decode the module info of a PRX and walk the tables it points at.

    The module info is read after relocation, so the table bounds it holds
    are already rebased.
    """
    logger.info("Applying Module Info...")
    if not image.segments:
        logger.warning("PRX without segments has no module info")
        return None

    address = module_info_address(image, context)
    try:
        info = read_module_info(database, address)
    except InvalidMemoryAccess:
        logger.warning(f"Module info at {address:#x} is not mapped")
        return None

    logger.info(f"Module {info.name!r} (attribute {info.attribute:#06x})")
    walker.load_exports(info.ent_top, info.ent_end)
    walker.load_imports(info.stub_top, info.stub_end)
    database.register_entry_point(address, MODULE_INFO_NAME, False)
    return info


def apply_process_info(
    image: ExecutableImage,
    database: AnalysisDatabase,
    walker: LibraryTableWalker,
    context: LoadContext,
) -> ProcessInfo:
    """Decode the process metadata segments of an executable, walk the tables
    its PRX info points at and register the entry point."""
    process = ProcessInfo()
    for segment in image.segments:
        address = context.rebase(segment.vaddr)
        try:
            if segment.type == SegmentType.PT_PROC_PARAM:
                fields = _parse(
                    database, address, sys_process_param_t, "sys_process_param_t"
                )
                process.param = ProcessParam(
                    address=address,
                    sdk_version=fields.sdk_version,
                    primary_prio=fields.primary_prio,
                    primary_stacksize=fields.primary_stacksize,
                    malloc_pagesize=fields.malloc_pagesize,
                )
                logger.info(
                    f"Process parameters: priority {fields.primary_prio}, "
                    f"stack size {fields.primary_stacksize:#x}, "
                    f"page size {fields.malloc_pagesize:#x}"
                )
            elif segment.type == SegmentType.PT_PROC_PRX:
                fields = _parse(
                    database, address, sys_process_prx_info_t, "sys_process_prx_info_t"
                )
                process.prx_info = ProcessPrxInfo(
                    address=address,
                    libent_start=fields.libent_start,
                    libent_end=fields.libent_end,
                    libstub_start=fields.libstub_start,
                    libstub_end=fields.libstub_end,
                )
                walker.load_exports(fields.libent_start, fields.libent_end)
                walker.load_imports(fields.libstub_start, fields.libstub_end)
        except InvalidMemoryAccess:
            logger.warning(
                f"Process metadata segment #{segment.index} at {address:#x} "
                "is not mapped"
            )

    database.register_entry_point(image.entry, ENTRY_POINT_NAME, True)
    return process
