class CellPrxException(Exception):
    """Base exception for cellprx"""


class LoaderError(CellPrxException):
    """Indicates a fatal image loading error. The load is aborted and the
    analysis database is left as-is."""


class UnsupportedImage(LoaderError):
    """The image is not a PPU executable or relocatable executable."""


class NidDatabaseError(LoaderError):
    """The NID name store is missing or could not be parsed."""


class InvalidMemoryAccess(CellPrxException):
    """Indicates an access to an address not covered by any region of the
    analysis database."""
