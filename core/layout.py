"""
Global unknown layout for a domain stack, and vector pack/bind utilities.

Principles:
- Domain blocks follow stack order: block d covers [offset_d, offset_d + size_d).
- Within a domain, unknowns are point-major: offset + point * n_components + comp.
- No gaps and no overlaps; checked when the layout is built.
- Unknown indices must come from StackLayout helpers (no hand-rolled math).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

import logging
import numpy as np

from core.domain import Domain

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DomainBlock:
    """Placement of one domain in the global vector."""

    index: int
    name: str
    offset: int
    n_components: int
    n_points: int

    @property
    def size(self) -> int:
        return self.n_components * self.n_points

    @property
    def block_slice(self) -> slice:
        return slice(self.offset, self.offset + self.size)


@dataclass(slots=True)
class StackLayout:
    """Layout of the global unknown vector."""

    blocks: List[DomainBlock]
    size: int

    def __post_init__(self) -> None:
        expected = 0
        for blk in self.blocks:
            if blk.offset != expected:
                raise RuntimeError(
                    f"Layout block '{blk.name}' is not contiguous: offset={blk.offset}, expected={expected}"
                )
            expected += blk.size
        if expected != self.size:
            raise RuntimeError(f"Layout size mismatch: blocks cover {expected}, size={self.size}")

    def n_dof(self) -> int:
        return self.size

    def block(self, d: int) -> DomainBlock:
        return self.blocks[d]

    def domain_slice(self, d: int) -> slice:
        return self.blocks[d].block_slice

    def index(self, d: int, comp: int, point: int) -> int:
        blk = self.blocks[d]
        if comp < 0 or comp >= blk.n_components:
            raise IndexError(f"component {comp} out of range [0,{blk.n_components}) in '{blk.name}'")
        if point < 0 or point >= blk.n_points:
            raise IndexError(f"point {point} out of range [0,{blk.n_points}) in '{blk.name}'")
        return blk.offset + point * blk.n_components + comp

    def domain_view(self, vec: np.ndarray, d: int) -> np.ndarray:
        """(n_components, n_points) view of domain d inside a global vector."""
        blk = self.blocks[d]
        return vec[blk.block_slice].reshape(blk.n_points, blk.n_components).T

    def point_chain(self) -> Iterator[Tuple[int, int, int, int]]:
        """
        Iterate (domain, point, start, stop) over every grid point of the stack
        in order; [start, stop) are the global indices of that point's unknowns.
        Points of component-free domains are yielded with start == stop.
        """
        for blk in self.blocks:
            for j in range(blk.n_points):
                start = blk.offset + j * blk.n_components
                yield blk.index, j, start, start + blk.n_components


def build_layout(domains: Sequence[Domain]) -> StackLayout:
    blocks: List[DomainBlock] = []
    offset = 0
    for d, dom in enumerate(domains):
        blk = DomainBlock(
            index=d,
            name=dom.name,
            offset=offset,
            n_components=dom.n_components,
            n_points=dom.n_points,
        )
        blocks.append(blk)
        offset += blk.size
    layout = StackLayout(blocks=blocks, size=offset)
    logger.debug("built stack layout: %d domains, %d unknowns", len(blocks), offset)
    return layout


def pack_domains(domains: Sequence[Domain], layout: StackLayout) -> np.ndarray:
    """Concatenate each domain's current values into a new global vector."""
    x = np.empty(layout.size, dtype=np.float64)
    for d, dom in enumerate(domains):
        layout.domain_view(x, d)[:, :] = dom.values
    return x


def bind_domains(domains: Sequence[Domain], layout: StackLayout, x: np.ndarray) -> None:
    """Make every domain's `values` a view into x."""
    for d, dom in enumerate(domains):
        dom.bind(layout.domain_view(x, d))
