"""Detection of the image flavour and resolution of the TOC (gp) value.

The TOC is found in a different place for each flavour:

    * Legacy PRX: the address of the ``.toc`` section.
    * Modern PRX: the ``gp_value`` member of the module info.
    * Executable: the second word of the entry point's function descriptor,
      which is what the startup stub loads into r2.

A missing TOC is not an error: it resolves to zero and every TOC relative
relocation is then computed against zero.
"""

from loguru import logger

from cellprx.database import AnalysisDatabase
from cellprx.exceptions import InvalidMemoryAccess
from cellprx.image import ExecutableImage, SegmentType
from cellprx.loader.base import LoadContext, Variant
from cellprx.structures import offsetof, scemoduleinfo_ppu32

TOC_SECTION_NAME: str = ".toc"


def detect_variant(image: ExecutableImage) -> Variant:
    if not image.is_prx:
        return Variant.EXECUTABLE
    # The only known way of telling an early (0.85 SDK) PRX apart is the
    # segment carrying its symbols
    for segment in image.segments:
        if segment.type == SegmentType.PT_SCE_SEGSYM:
            return Variant.LEGACY_PRX
    return Variant.MODERN_PRX


def module_info_address(image: ExecutableImage, context: LoadContext) -> int:
    """The module info lives in the first segment. Its ``p_paddr`` holds the
    file offset of the module info, which is converted to an address in the
    segment."""
    first = image.segments[0]
    return context.rebase(first.vaddr) + (first.paddr - first.offset)


def _read_word(database: AnalysisDatabase, address: int, what: str) -> int:
    try:
        return database.read_word(address)
    except InvalidMemoryAccess:
        logger.warning(f"Cannot read the {what} at {address:#x}, gp resolves to 0")
        return 0


def resolve_gp(
    variant: Variant,
    image: ExecutableImage,
    database: AnalysisDatabase,
    context: LoadContext,
) -> int:
    """Resolve the TOC value of the image. The image's regions must already
    be mapped into ``database``."""
    if variant is Variant.LEGACY_PRX:
        toc = image.section_by_name(TOC_SECTION_NAME)
        if toc is None:
            # TODO: confirm against more 0.85 samples whether a PRX without a
            # .toc section needs a different gp source
            logger.warning(f"Legacy PRX without a {TOC_SECTION_NAME} section")
            return 0
        return context.rebase(toc.address)

    if variant is Variant.MODERN_PRX:
        if not image.segments:
            return 0
        address = module_info_address(image, context) + offsetof(
            scemoduleinfo_ppu32, "gp_value"
        )
        gp_value = _read_word(database, address, "module info gp_value")
        # The member holds a link time address, relocated like any other
        # pointer of the image
        return context.rebase(gp_value) if gp_value else 0

    return _read_word(database, image.entry + 4, "entry point TOC")
