def u32(value: int) -> int:
    """Truncate ``value`` to an unsigned 32bit quantity. All address arithmetic
    of the 32bit PPU ABI wraps around at 4GB."""
    return value & MASK_32


def u16(value: int) -> int:
    return value & MASK_16


def sign_extend_16(value: int) -> int:
    value &= MASK_16
    return value - 0x10000 if value & 0x8000 else value


MASK_16: int = 0xFFFF
MASK_32: int = 0xFFFFFFFF

PROT_NONE: int = 0
PROT_READ: int = 1
PROT_WRITE: int = 2
PROT_EXEC: int = 4

CLASS_CODE: str = "CODE"
CLASS_DATA: str = "DATA"
CLASS_CONST: str = "CONST"
CLASS_BSS: str = "BSS"
