"""Building blocks shared by all the loading stages.

A load is a strictly ordered batch over a single image and a single analysis
database. The stages don't share any ambient state: everything a stage needs
to know about the session (the relocation base and the global pointer) is
passed in a ``LoadContext``.
"""

from enum import Enum

import attr

from cellprx.database import AddressRegion, AnalysisDatabase
from cellprx.image import ExecutableImage


class Variant(Enum):
    """The flavours of PPU images, each loaded slightly differently."""

    #: A statically linked executable, loaded at the addresses it declares
    EXECUTABLE = "executable"
    #: A relocatable module with segment based relocations
    MODERN_PRX = "modern-prx"
    #: An early relocatable module (carries a PT_SCE_SEGSYM segment) with
    #: section based relocations
    LEGACY_PRX = "legacy-prx"

    @property
    def is_prx(self) -> bool:
        return self is not Variant.EXECUTABLE


@attr.s(auto_attribs=True, frozen=True)
class LoadContext:
    #: Added exactly once to every virtual address taken from the file
    relocation_base: int = 0
    #: The TOC value, zero while unresolved
    gp_value: int = 0

    def rebase(self, address: int) -> int:
        return address + self.relocation_base


@attr.s(auto_attribs=True, frozen=True)
class LoadOptions:
    #: Where to load a relocatable image. Executables are always loaded at
    #: the addresses they declare.
    relocation_base: int = 0
    #: How many PT_SCE_PPURELA segments are processed. Further relocation
    #: segments are reported and skipped.
    max_relocation_segments: int = 1
    #: Whether to apply the image's own symbol table once everything else
    #: has been loaded
    apply_symbols: bool = True


@attr.s(auto_attribs=True, frozen=True)
class Region:
    """Everything needed to create a part of the image in the address space.
    """

    #: Index of the region in the order of creation
    index: int
    #: Virtual address as declared in the file (not rebased)
    address: int
    size: int
    name: str
    sclass: str
    permissions: int
    alignment: int
    #: File offset of the backing bytes
    offset: int
    #: Number of bytes backed by the file. The rest of the region is zero
    #: filled.
    filesz: int
    #: ``False`` for regions without a presence in the file (bss)
    loaded: bool = True

    def load(
        self,
        image: ExecutableImage,
        database: AnalysisDatabase,
        context: LoadContext,
    ) -> AddressRegion:
        """Create the region in ``database`` at its rebased address and copy
        its backing bytes into it."""
        data = None
        if self.loaded:
            data = image.read(self.offset, min(self.filesz, self.size))
        return database.create_address_region(
            start=context.rebase(self.address),
            size=self.size,
            name=self.name,
            sclass=self.sclass,
            permissions=self.permissions,
            alignment=self.alignment,
            data=data,
        )
