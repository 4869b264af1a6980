"""Layouts of the records the loader decodes out of an image.

All of them are big-endian. The 32bit ("ppu32") flavours are the only ones
used by PPU images: every pointer they contain is a 32bit virtual address.
"""

from typing import Dict, List, Tuple

from construct import Bytes, Int8ub, Int16ub, Int32ub, Int64sb, Int64ub, Struct

SYS_MODULE_NAME_LEN: int = 27

Elf64_Rela = Struct(
    "r_offset" / Int64ub,
    "r_info" / Int64ub,
    "r_addend" / Int64sb,
)

scemoduleinfo_common = Struct(
    "modattribute" / Int16ub,
    "modversion" / Bytes(2),
    "modname" / Bytes(SYS_MODULE_NAME_LEN),
    "terminal" / Int8ub,
)

scemoduleinfo_ppu32 = Struct(
    "c" / scemoduleinfo_common,
    "gp_value" / Int32ub,
    "ent_top" / Int32ub,
    "ent_end" / Int32ub,
    "stub_top" / Int32ub,
    "stub_end" / Int32ub,
)

scelibstub_ppu_common = Struct(
    "structsize" / Int8ub,
    "reserved1" / Int8ub,
    "version" / Int16ub,
    "attribute" / Int16ub,
    "nfunc" / Int16ub,
    "nvar" / Int16ub,
    "ntlsvar" / Int16ub,
    "reserved2" / Bytes(4),
)

scelibstub_ppu32 = Struct(
    "c" / scelibstub_ppu_common,
    "libname" / Int32ub,
    "func_nidtable" / Int32ub,
    "func_table" / Int32ub,
    "var_nidtable" / Int32ub,
    "var_table" / Int32ub,
    "tls_nidtable" / Int32ub,
    "tls_table" / Int32ub,
)

scelibent_ppu_common = Struct(
    "structsize" / Int8ub,
    "reserved1" / Int8ub,
    "version" / Int16ub,
    "attribute" / Int16ub,
    "nfunc" / Int16ub,
    "nvar" / Int16ub,
    "ntlsvar" / Int16ub,
    "hashinfo" / Int8ub,
    "hashinfotls" / Int8ub,
    "reserved2" / Int8ub,
    "nidaltsets" / Int8ub,
)

scelibent_ppu32 = Struct(
    "c" / scelibent_ppu_common,
    "libname" / Int32ub,
    "nidtable" / Int32ub,
    "addtable" / Int32ub,
)

sys_process_param_t = Struct(
    "size" / Int32ub,
    "magic" / Int32ub,
    "version" / Int32ub,
    "sdk_version" / Int32ub,
    "primary_prio" / Int32ub,
    "primary_stacksize" / Int32ub,
    "malloc_pagesize" / Int32ub,
    "ppc_seg" / Int32ub,
    "crash_dump_param_addr" / Int32ub,
)

sys_process_prx_info_t = Struct(
    "size" / Int32ub,
    "magic" / Int32ub,
    "version" / Int32ub,
    "sdk_version" / Int32ub,
    "libent_start" / Int32ub,
    "libent_end" / Int32ub,
    "libstub_start" / Int32ub,
    "libstub_end" / Int32ub,
    "major_version" / Int8ub,
    "minor_version" / Int8ub,
    "reserved" / Bytes(6),
)

#: Structures declared to the analysis database, by name. Order matters:
#: the "common" headers are declared before the records embedding them.
STRUCTURES: Dict[str, Struct] = {
    "_scemoduleinfo_common": scemoduleinfo_common,
    "_scemoduleinfo": scemoduleinfo_ppu32,
    "_scelibstub_ppu_common": scelibstub_ppu_common,
    "_scelibstub_ppu32": scelibstub_ppu32,
    "_scelibent_ppu_common": scelibent_ppu_common,
    "_scelibent_ppu32": scelibent_ppu32,
    "sys_process_param_t": sys_process_param_t,
    "sys_process_prx_info_t": sys_process_prx_info_t,
}


def describe_fields(struct: Struct) -> List[Tuple[str, int, int]]:
    """List the ``(name, offset, size)`` of every member of ``struct``."""
    fields = []
    offset = 0
    for subcon in struct.subcons:
        size = subcon.sizeof()
        fields.append((subcon.name, offset, size))
        offset += size
    return fields


def offsetof(struct: Struct, name: str) -> int:
    for field, offset, _ in describe_fields(struct):
        if field == name:
            return offset
    raise KeyError(name)
