"""Public package exports for the Z80 flow analysis engine."""

from .cfg import AsmNode, FlowGraph, FlowGraphBuilder
from .config import DisassemblerSettings, LabelPrefixes, parse_address
from .diagnostics import DiagnosticEntry, DiagnosticKind, Diagnostics
from .disassembler import Disassembler
from .memory import MemAttribute, Memory
from .naming import LabelAssigner
from .opcode import NumberType, Opcode, OpcodeFlag
from .opcode_tables import build_tables, get_opcode_at
from .project import ProjectConfig
from .subroutines import Subroutine, SubroutinePartitioner

__all__ = [
    "AsmNode",
    "FlowGraph",
    "FlowGraphBuilder",
    "DisassemblerSettings",
    "LabelPrefixes",
    "parse_address",
    "DiagnosticEntry",
    "DiagnosticKind",
    "Diagnostics",
    "Disassembler",
    "MemAttribute",
    "Memory",
    "LabelAssigner",
    "NumberType",
    "Opcode",
    "OpcodeFlag",
    "build_tables",
    "get_opcode_at",
    "ProjectConfig",
    "Subroutine",
    "SubroutinePartitioner",
]
