"""Loading of PPU executables and PRX modules into an analysis database.

Examples:
    >>> nids = NidDatabase.load("ps3.xml")
    >>> database = MemoryDatabase()
    >>> result = load_file("libfs.prx", nids, database, LoadOptions(0x10000))
    >>> result.variant
    <Variant.MODERN_PRX: 'modern-prx'>
    >>> hex(result.context.gp_value)
    '0x18ad0'
"""

from typing import List, Optional

import attr
from loguru import logger

from cellprx.database import AddressRegion, AnalysisDatabase
from cellprx.exceptions import UnsupportedImage
from cellprx.image import ExecutableImage, identify_image
from cellprx.loader.base import LoadContext, LoadOptions, Variant
from cellprx.loader.moduleinfo import (
    ModuleInfo,
    ProcessInfo,
    apply_module_info,
    apply_process_info,
)
from cellprx.loader.relocation import RelocationEngine, RelocationStats
from cellprx.loader.segments import map_regions
from cellprx.loader.symbols import apply_symbols
from cellprx.loader.tables import LibraryTableWalker, TableStats
from cellprx.loader.variant import detect_variant, resolve_gp
from cellprx.nids import NidDatabase
from cellprx.structures import STRUCTURES, describe_fields


@attr.s(auto_attribs=True)
class LoadResult:
    """A summary of a completed load."""

    variant: Variant
    context: LoadContext
    regions: List[AddressRegion] = attr.ib(factory=list, repr=False)
    relocations: RelocationStats = attr.ib(factory=RelocationStats)
    tables: TableStats = attr.ib(factory=TableStats)
    module_info: Optional[ModuleInfo] = None
    process_info: Optional[ProcessInfo] = None
    symbols_applied: int = 0


class CellLoader:
    """Loads a single image into an analysis database.

    The stages run in a fixed order, each one depending on the previous:

        1. Structure declarations
        2. Address-space regions (from section or program headers)
        3. TOC resolution
        4. Relocations (PRX only)
        5. Module info / process info, and the library tables they point at
        6. The image's own symbols, which override any name given before
    """

    image: ExecutableImage
    database: AnalysisDatabase
    nids: NidDatabase
    options: LoadOptions
    variant: Variant
    context: LoadContext

    def __init__(
        self,
        image: ExecutableImage,
        database: AnalysisDatabase,
        nids: NidDatabase,
        options: Optional[LoadOptions] = None,
    ):
        self.format_name = identify_image(image)
        if self.format_name is None:
            raise UnsupportedImage(
                f"Not a PPU image (type {image.type:#x}, machine {image.machine}, "
                f"OS ABI {image.osabi:#x})"
            )
        self.image = image
        self.database = database
        self.nids = nids
        self.options = options or LoadOptions()
        self.variant = detect_variant(image)
        # Only PRXs can be relocated
        base = self.options.relocation_base if self.variant.is_prx else 0
        self.context = LoadContext(relocation_base=base)

    def declare_structures(self):
        for name, struct in STRUCTURES.items():
            self.database.declare_structure(
                name, struct.sizeof(), describe_fields(struct)
            )

    def resolve_gp(self) -> int:
        gp_value = resolve_gp(self.variant, self.image, self.database, self.context)
        self.context = attr.evolve(self.context, gp_value=gp_value)
        return gp_value

    def apply(self) -> LoadResult:
        logger.info(f"Loading {self.format_name} ({self.variant.value})")
        result = LoadResult(self.variant, self.context)

        logger.info("Declaring Structures...")
        self.declare_structures()

        logger.info("Applying Segments...")
        result.regions = map_regions(self.image, self.database, self.context)

        self.resolve_gp()
        walker = LibraryTableWalker(self.database, self.nids)

        if self.variant.is_prx:
            logger.info("Applying Relocations...")
            engine = RelocationEngine(
                self.image,
                self.database,
                self.context,
                self.options.max_relocation_segments,
            )
            result.relocations = engine.apply(self.variant)
            result.module_info = apply_module_info(
                self.image, self.database, walker, self.context
            )
        else:
            result.process_info = apply_process_info(
                self.image, self.database, walker, self.context
            )
        result.tables = walker.stats

        logger.info(f"gpValue = {self.context.gp_value:08x}")
        self.database.set_global_pointer(self.context.gp_value)

        # The symbols are applied last so that they always override the names
        # derived from NIDs
        if self.options.apply_symbols:
            result.symbols_applied = apply_symbols(
                self.image, self.database, self.variant, self.context
            )

        result.context = self.context
        return result


def load_file(
    filename: str,
    nids: NidDatabase,
    database: AnalysisDatabase,
    options: Optional[LoadOptions] = None,
) -> LoadResult:
    """Load the image in ``filename`` into ``database``.

    Args:
        filename: Path of the executable or PRX to load.
        nids: The NID database used to name imports and exports.
        database: Where the image is loaded.
        options: Session options, such as the relocation base.

    Returns:
        A summary of the load.

    """
    image = ExecutableImage.from_file(filename)
    return CellLoader(image, database, nids, options).apply()
