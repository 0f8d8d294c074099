"""Control-flow graph construction for Z80 memory images."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .config import DEFAULT_SETTINGS, DisassemblerSettings
from .diagnostics import Diagnostics
from .memory import ADDRESS_MASK, MAX_MEM_SIZE, MemAttribute, Memory
from .opcode import NumberType, Opcode, OpcodeFlag, SkipOpcode
from .opcode_tables import DecodeTables, build_tables, get_opcode_at


logger = logging.getLogger(__name__)

ANALYSIS_ATTRIBUTES = (
    MemAttribute.CODE
    | MemAttribute.CODE_FIRST
    | MemAttribute.DATA
    | MemAttribute.RET_ANALYZED
    | MemAttribute.FLOW_ANALYZED
)


@dataclass
class AsmNode:
    """A run of instructions entered only at ``start``.

    Edges are stored as node start addresses.  Lists keep duplicates, a
    conditional jump to the following instruction links the successor twice.
    """

    start: int
    length: int = 0
    instructions: List[Opcode] = field(default_factory=list)
    label: Optional[str] = None
    data_references: List[int] = field(default_factory=list)
    is_subroutine: bool = False
    stop: bool = False
    branch_nodes: List[int] = field(default_factory=list)
    predecessors: List[int] = field(default_factory=list)
    callee: Optional[int] = None
    callers: List[int] = field(default_factory=list)

    @property
    def end(self) -> int:
        return self.start + self.length

    def describe(self) -> Dict[str, object]:
        return {
            "start": self.start,
            "length": self.length,
            "label": self.label,
            "is_subroutine": self.is_subroutine,
            "stop": self.stop,
            "branch_nodes": list(self.branch_nodes),
            "predecessors": list(self.predecessors),
            "callee": self.callee,
            "callers": list(self.callers),
            "data_references": list(self.data_references),
            "instructions": [
                {
                    "address": opcode.address,
                    "length": opcode.length,
                    "text": opcode.disassembled_text or opcode.template,
                }
                for opcode in self.instructions
            ],
        }


@dataclass
class FlowGraph:
    """Node table plus everything the later passes attach to it."""

    nodes: Dict[int, AsmNode] = field(default_factory=dict)
    placeholders: Dict[int, AsmNode] = field(default_factory=dict)
    other_labels: Dict[int, str] = field(default_factory=dict)
    blocks: List[Optional[int]] = field(default_factory=lambda: [None] * MAX_MEM_SIZE)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def node_at(self, address: int) -> Optional[AsmNode]:
        node = self.nodes.get(address)
        if node is None:
            node = self.placeholders.get(address)
        return node

    def node_order(self) -> List[AsmNode]:
        return [self.nodes[address] for address in sorted(self.nodes)]

    def get_nodes_for_addresses(self, addresses: Iterable[int]) -> List[AsmNode]:
        found = {address: self.nodes[address] for address in addresses if address in self.nodes}
        return [found[address] for address in sorted(found)]

    def block_start(self, address: int) -> Optional[int]:
        if 0 <= address < MAX_MEM_SIZE:
            return self.blocks[address]
        return None

    def block_node(self, address: int) -> Optional[AsmNode]:
        start = self.block_start(address)
        if start is None:
            return None
        return self.nodes.get(start)

    def branch_closure(self, address: int) -> Set[int]:
        """Return every node reachable through ``branch_nodes``.

        The start node itself is included only when a loop leads back to it.
        """

        node = self.node_at(address)
        closure: Set[int] = set()
        if node is None:
            return closure
        stack = list(node.branch_nodes)
        while stack:
            current = stack.pop()
            if current in closure:
                continue
            closure.add(current)
            successor = self.node_at(current)
            if successor is not None:
                stack.extend(successor.branch_nodes)
        return closure

    def is_other_reference(self, node: AsmNode) -> bool:
        """True when ``node`` is reached other than by plain fallthrough."""

        if node.callers:
            return True
        if len(node.predecessors) > 1:
            return True
        if len(node.predecessors) == 1:
            previous = self.node_at(node.predecessors[0])
            if previous is None or previous.stop:
                return True
            return previous.end != node.start
        return False

    def is_loop_root(self, node: AsmNode) -> bool:
        block = self.block_start(node.start)
        for address in node.predecessors:
            if address >= node.start and self.block_start(address) == block:
                return True
        return False

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def describe(self) -> Dict[str, object]:
        """JSON ready dump of the graph."""

        return {
            "nodes": [node.describe() for node in self.node_order()],
            "placeholders": sorted(self.placeholders),
            "other_labels": {f"0x{address:04X}": label for address, label in sorted(self.other_labels.items())},
            "diagnostics": [
                {"kind": entry.kind.value, "address": entry.address, "target": entry.target, "message": entry.message}
                for entry in self.diagnostics
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.describe(), indent=2)

    def to_text(self) -> str:
        lines: List[str] = [f"flow graph ({len(self.nodes)} nodes)"]
        for node in self.node_order():
            flags = []
            if node.is_subroutine:
                flags.append("sub")
            if node.stop:
                flags.append("stop")
            lines.append(
                f"  node 0x{node.start:04X} len={node.length} label={node.label or '-'}"
                f" branches={[hex(address) for address in node.branch_nodes]}"
                f" callee={hex(node.callee) if node.callee is not None else '-'}"
                + (f" [{','.join(flags)}]" if flags else "")
            )
        if self.placeholders:
            lines.append(f"  placeholders: {[hex(address) for address in sorted(self.placeholders)]}")
        return "\n".join(lines) + "\n"


class FlowGraphBuilder:
    """Discover instruction runs, seed labels and link the nodes.

    ``skips`` maps the address following a call to the number of inline
    parameter bytes the callee consumes.
    """

    def __init__(
        self,
        memory: Memory,
        *,
        tables: Optional[DecodeTables] = None,
        skips: Optional[Mapping[int, int]] = None,
        settings: DisassemblerSettings = DEFAULT_SETTINGS,
    ) -> None:
        self.memory = memory
        self.tables = tables or build_tables(settings.zx_next)
        self.skips: Dict[int, int] = dict(skips or {})
        self.settings = settings

    def build(self, addresses: Iterable[int], labels: Iterable[Tuple[int, str]] = ()) -> FlowGraph:
        graph = FlowGraph(diagnostics=Diagnostics(lambda value: self.settings.format_hex(value, 4)))
        self.memory.reset_attribute_flag(ANALYSIS_ATTRIBUTES)
        self.create_nodes(graph, addresses)
        self.create_nodes_for_labels(graph, labels)
        self.fill_nodes(graph)
        logger.debug(
            "flow graph: %d nodes, %d placeholders, %d diagnostics",
            len(graph.nodes),
            len(graph.placeholders),
            len(graph.diagnostics),
        )
        return graph

    def decode(self, address: int) -> Opcode:
        return get_opcode_at(self.memory, address, self.tables)

    # ------------------------------------------------------------------
    # Pass 1: node discovery
    # ------------------------------------------------------------------
    def create_nodes(self, graph: FlowGraph, addresses: Iterable[int]) -> None:
        for address in sorted(set(addresses)):
            attr = self.memory.get_attribute_at(address)
            if attr & MemAttribute.FLOW_ANALYZED:
                if not attr & MemAttribute.CODE_FIRST:
                    graph.diagnostics.add_ambiguous(address, address)
                continue
            self._create_node_for_address(graph, address)

    def _create_node_for_address(self, graph: FlowGraph, entry: int) -> None:
        queue: Deque[int] = deque([entry])
        memory = self.memory
        while queue:
            address = queue.popleft()
            if address in graph.nodes:
                continue
            attr = memory.get_attribute_at(address)
            if attr & MemAttribute.FLOW_ANALYZED:
                if attr & MemAttribute.CODE_FIRST:
                    graph.nodes[address] = AsmNode(address)
                else:
                    graph.diagnostics.add_ambiguous(address, address)
                continue
            if not attr & MemAttribute.ASSIGNED:
                continue
            graph.nodes[address] = AsmNode(address)
            self._walk(graph, address, queue)

    def _walk(self, graph: FlowGraph, address: int, queue: Deque[int]) -> None:
        memory = self.memory
        while True:
            opcode = self.decode(address)
            overlap = memory.search_addr_with_attribute(
                MemAttribute.FLOW_ANALYZED, address + 1, opcode.length - 1
            )
            memory.add_attributes_at(
                address, opcode.length, MemAttribute.FLOW_ANALYZED | MemAttribute.CODE
            )
            memory.add_attribute_at(address, MemAttribute.CODE_FIRST)
            if overlap is not None:
                graph.diagnostics.add_ambiguous(address, overlap)
                return

            address += opcode.length
            flags = opcode.flags
            if flags & OpcodeFlag.BRANCH_ADDRESS:
                if not flags & OpcodeFlag.STOP:
                    queue.append(self._apply_skips(address))
                queue.append(opcode.value)
                return
            if address > ADDRESS_MASK:
                return
            if flags & OpcodeFlag.RET and flags & OpcodeFlag.CONDITIONAL:
                queue.append(address)
                return
            attr = memory.get_attribute_at(address)
            if attr & MemAttribute.FLOW_ANALYZED:
                return
            if flags & OpcodeFlag.STOP:
                return
            if not attr & MemAttribute.ASSIGNED:
                return

    def _apply_skips(self, address: int) -> int:
        """Step over inline parameter bytes following a call."""

        while True:
            count = self.skips.get(address)
            if not count or count <= 0:
                return address
            self.memory.add_attributes_at(address, count, MemAttribute.DATA)
            address = (address + count) & ADDRESS_MASK

    # ------------------------------------------------------------------
    # Pass 1b: label seeding
    # ------------------------------------------------------------------
    def create_nodes_for_labels(self, graph: FlowGraph, labels: Iterable[Tuple[int, str]]) -> None:
        for address, label in labels:
            if self.memory.get_attribute_at(address) & MemAttribute.CODE_FIRST:
                node = graph.nodes.get(address)
                if node is None:
                    node = graph.nodes[address] = AsmNode(address)
                node.label = label
            else:
                graph.other_labels[address] = label

    # ------------------------------------------------------------------
    # Pass 2: fill
    # ------------------------------------------------------------------
    def fill_nodes(self, graph: FlowGraph) -> None:
        for address in sorted(graph.nodes):
            self._fill_node(graph, graph.nodes[address])

    def _fill_node(self, graph: FlowGraph, node: AsmNode) -> None:
        memory = self.memory
        address = node.start
        while True:
            opcode = self.decode(address)
            if opcode.value_type == NumberType.DATA_LBL:
                node.data_references.append(self._data_reference(opcode.value))
            node.instructions.append(opcode)
            origin = address
            address += opcode.length
            flags = opcode.flags

            if flags & OpcodeFlag.BRANCH_ADDRESS:
                if not flags & OpcodeFlag.STOP:
                    address = self._append_skips(node, address)
                    if address <= ADDRESS_MASK:
                        self._link(node, self._node_for_fill(graph, origin, address))
                target = self._node_for_fill(graph, origin, opcode.value)
                if flags & OpcodeFlag.CALL:
                    node.callee = target.start
                    target.callers.append(node.start)
                else:
                    self._link(node, target)
                if flags & OpcodeFlag.STOP:
                    node.stop = True
                break

            if flags & OpcodeFlag.RET:
                node.is_subroutine = True
            if flags & OpcodeFlag.STOP:
                node.stop = True
                break
            if address > ADDRESS_MASK:
                break
            follower = graph.nodes.get(address)
            if follower is not None:
                self._link(node, follower)
                break
            if memory.search_addr_with_attribute(MemAttribute.CODE_FIRST, origin + 1, opcode.length - 1) is not None:
                break
            if not memory.get_attribute_at(address) & MemAttribute.ASSIGNED:
                self._link(node, self._node_for_fill(graph, origin, address))
                break
        node.length = address - node.start

    def _append_skips(self, node: AsmNode, address: int) -> int:
        while True:
            count = self.skips.get(address)
            if not count or count <= 0:
                return address
            node.instructions.append(SkipOpcode.from_memory(self.memory, address, count))
            address += count

    def _data_reference(self, address: int) -> int:
        attr = self.memory.get_attribute_at(address)
        if attr & MemAttribute.CODE:
            while address > 0 and not attr & MemAttribute.CODE_FIRST:
                address -= 1
                attr = self.memory.get_attribute_at(address)
            return address
        self.memory.add_attribute_at(address, MemAttribute.DATA)
        return address

    def _node_for_fill(self, graph: FlowGraph, origin: int, target: int) -> AsmNode:
        node = graph.nodes.get(target)
        if node is not None:
            return node
        node = graph.placeholders.get(target)
        if node is None:
            node = graph.placeholders[target] = AsmNode(target)
        if self.memory.get_attribute_at(target) & MemAttribute.ASSIGNED:
            graph.diagnostics.add_ambiguous(origin, target)
        else:
            graph.diagnostics.add_branch_to_unassigned(origin, target)
        return node

    @staticmethod
    def _link(node: AsmNode, successor: AsmNode) -> None:
        node.branch_nodes.append(successor.start)
        successor.predecessors.append(node.start)
