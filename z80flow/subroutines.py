"""Subroutine marking, block partitioning and call depth."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from .cfg import FlowGraph
from .memory import MAX_MEM_SIZE


logger = logging.getLogger(__name__)


@dataclass
class Subroutine:
    """A start node together with every node its branches reach."""

    start: int
    nodes: List[int] = field(default_factory=list)
    callees: List[int] = field(default_factory=list)
    depth: int = 0

    @classmethod
    def from_graph(cls, graph: FlowGraph, start: int) -> "Subroutine":
        members = graph.branch_closure(start)
        members.add(start)
        callees: Set[int] = set()
        for address in members:
            node = graph.node_at(address)
            if node is not None and node.callee is not None:
                callees.add(node.callee)
        return cls(start=start, nodes=sorted(members), callees=sorted(callees))


class SubroutinePartitioner:
    """Runs the two structural passes over a filled :class:`FlowGraph`."""

    def __init__(self, graph: FlowGraph) -> None:
        self.graph = graph

    def run(self) -> None:
        self.mark_subroutines()
        self.partition_blocks()

    def mark_subroutines(self) -> None:
        """Propagate ``is_subroutine`` from returning nodes to everything
        leading to them, then mark every called node."""

        graph = self.graph
        pending: Deque[int] = deque()
        for node in graph.node_order():
            if node.is_subroutine:
                pending.extend(node.predecessors)
        visited: Set[int] = set()
        while pending:
            address = pending.popleft()
            if address in visited:
                continue
            visited.add(address)
            node = graph.nodes.get(address)
            if node is None:
                continue
            node.is_subroutine = True
            pending.extend(node.predecessors)
        for node in graph.nodes.values():
            if node.callers:
                node.is_subroutine = True

    def partition_blocks(self) -> None:
        graph = self.graph
        blocks: List[Optional[int]] = [None] * MAX_MEM_SIZE
        block_start: Optional[int] = None
        closure: Set[int] = set()
        expected: Optional[int] = None
        count = 0
        for node in graph.node_order():
            if node.start != expected or node.callers or node.start not in closure:
                block_start = node.start
                closure = graph.branch_closure(node.start)
                count += 1
            for address in range(node.start, min(node.end, MAX_MEM_SIZE)):
                blocks[address] = block_start
            expected = node.end
        graph.blocks = blocks
        logger.debug("partitioned %d nodes into %d blocks", len(graph.nodes), count)

    # ------------------------------------------------------------------
    # Call graph helpers
    # ------------------------------------------------------------------
    def subroutine_for(self, start: int) -> Subroutine:
        return Subroutine.from_graph(self.graph, start)

    def get_subroutines_for(self, starts: Iterable[int]) -> Tuple[int, Dict[int, Subroutine]]:
        """Collect the subroutines called from ``starts``.

        Returns the maximum call depth and the subroutines keyed by start
        address.  A subroutine without callees has depth 0; recursion does
        not add to the depth.
        """

        subroutines: Dict[int, Subroutine] = {}
        stack: List[int] = [address for address in starts if self.graph.node_at(address) is not None]
        while stack:
            address = stack.pop()
            if address in subroutines:
                continue
            subroutine = self.subroutine_for(address)
            subroutines[address] = subroutine
            stack.extend(callee for callee in subroutine.callees if callee not in subroutines)

        depths: Dict[int, int] = {}
        for address in sorted(subroutines):
            self._compute_depth(address, subroutines, depths)
        for address, subroutine in subroutines.items():
            subroutine.depth = depths.get(address, 0)
        max_depth = max(depths.values(), default=0)
        return max_depth, subroutines

    @staticmethod
    def _compute_depth(root: int, subroutines: Dict[int, Subroutine], depths: Dict[int, int]) -> None:
        if root in depths:
            return
        on_path: Set[int] = {root}
        stack: List[Tuple[int, int]] = [(root, 0)]
        while stack:
            address, index = stack[-1]
            callees = subroutines[address].callees if address in subroutines else []
            if index < len(callees):
                stack[-1] = (address, index + 1)
                callee = callees[index]
                # Depth of a subroutine already on the path is cut at the cycle.
                if callee in depths or callee in on_path or callee not in subroutines:
                    continue
                on_path.add(callee)
                stack.append((callee, 0))
                continue
            stack.pop()
            on_path.discard(address)
            deepest = -1
            for callee in callees:
                if callee in on_path or callee == address:
                    continue
                deepest = max(deepest, depths.get(callee, 0))
            depths[address] = deepest + 1
