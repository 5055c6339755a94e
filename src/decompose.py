"""
Decomposition of a stream network into independently solvable parts.

Two splits are provided:

- :func:`split_basins` — one part per outlet-rooted tree
- :func:`split_trunk_tributaries` — the trunk (longest flow path of every
  basin) plus one tributary per trunk junction

Every part is a :class:`SubNetwork` that records which parent nodes it covers
and which of those it owns.  A tributary contains its junction node as its
outlet so the junction can act as a fixed boundary, but the junction is owned
by the trunk.  :func:`check_partition` verifies that the owned node sets
cover the parent exactly once.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from network import StreamNetwork

logger = logging.getLogger(__name__)


class SubNetwork:
    """Part of a parent network.

    Attributes
    ----------
    label : str
        Human-readable identity, e.g. ``"basin 2/tributary 0"``.
    nodes : np.ndarray
        Sorted parent indices of the sub-network's nodes.  Sub-network node
        *k* is parent node ``nodes[k]``.
    network : StreamNetwork
        Induced sub-network.
    owned : np.ndarray
        Boolean mask over *nodes*: ``True`` where results are written back
        to the parent.
    junction : int or None
        Parent index of the trunk node a tributary drains into.
    """

    def __init__(
        self,
        label: str,
        nodes: np.ndarray,
        network: StreamNetwork,
        owned: np.ndarray | None = None,
        junction: int | None = None,
    ) -> None:
        self.label = label
        self.nodes = np.asarray(nodes, dtype=int)
        self.network = network
        self.owned = np.ones(len(self.nodes), dtype=bool) if owned is None else np.asarray(owned, dtype=bool)
        self.junction = junction

    @property
    def n_nodes(self) -> int:
        return len(self.nodes)

    @property
    def owned_nodes(self) -> np.ndarray:
        """Parent indices written back by this sub-network."""
        return self.nodes[self.owned]

    def lift(self, parent: "SubNetwork") -> "SubNetwork":
        """Re-express this part of *parent* in *parent*'s own parent indices."""
        return SubNetwork(
            f"{parent.label}/{self.label}",
            parent.nodes[self.nodes],
            self.network,
            owned=self.owned,
            junction=None if self.junction is None else int(parent.nodes[self.junction]),
        )

    def __repr__(self) -> str:
        return (
            f"SubNetwork({self.label!r}, n_nodes={self.n_nodes}, "
            f"n_owned={int(self.owned.sum())}, junction={self.junction})"
        )


def whole(network: StreamNetwork, label: str = "network") -> SubNetwork:
    """Wrap *network* as a single part that owns every node."""
    return SubNetwork(label, np.arange(network.n_nodes), network)


def split_basins(network: StreamNetwork) -> list[SubNetwork]:
    """Split *network* into its outlet-rooted trees.

    Parameters
    ----------
    network : StreamNetwork

    Returns
    -------
    list[SubNetwork]
        One part per outlet, ordered by the smallest node index of each tree.
    """
    outlet = network.outlet_of()
    outlets, first = np.unique(outlet, return_index=True)
    basins = []
    for r, o in enumerate(outlets[np.argsort(first)]):
        nodes = np.flatnonzero(outlet == o)
        basins.append(SubNetwork(f"basin {r}", nodes, network.subnetwork(nodes)))
    logger.debug("Split %d nodes into %d basins", network.n_nodes, len(basins))
    return basins


def trunk(network: StreamNetwork) -> np.ndarray:
    """Nodes on the trunk of every basin.

    The trunk of a basin is the flow path from the headwater farthest from
    the outlet (along-channel) down to the outlet.  Ties go to the headwater
    with the lowest index.

    Returns
    -------
    np.ndarray
        Sorted node indices.
    """
    dfo = network.distance_from_outlet()
    outlet = network.outlet_of()
    heads = np.flatnonzero(network.headwaters())
    receivers = network.receivers

    on_trunk = np.zeros(network.n_nodes, dtype=bool)
    for o in np.flatnonzero(network.outlets()):
        candidates = heads[outlet[heads] == o]
        k = int(candidates[np.argmax(dfo[candidates])])
        while k >= 0:
            on_trunk[k] = True
            k = int(receivers[k])
    return np.flatnonzero(on_trunk)


def split_trunk_tributaries(
    network: StreamNetwork,
) -> tuple[SubNetwork, list[SubNetwork]]:
    """Split *network* into its trunk and the tributaries draining to it.

    Each tributary holds every non-trunk node that first reaches the trunk at
    the same junction node, plus that junction as its outlet.  The junction
    is not owned by the tributary.

    Returns
    -------
    trunk_part : SubNetwork
    tributaries : list[SubNetwork]
        Ordered by junction index.
    """
    trunk_nodes = trunk(network)
    on_trunk = np.zeros(network.n_nodes, dtype=bool)
    on_trunk[trunk_nodes] = True
    trunk_part = SubNetwork("trunk", trunk_nodes, network.subnetwork(trunk_nodes))

    receivers = network.receivers
    junction_of = np.arange(network.n_nodes)
    for k in network.topological_order()[::-1]:
        if not on_trunk[k]:
            junction_of[k] = junction_of[receivers[k]]

    tributaries = []
    off_trunk = np.flatnonzero(~on_trunk)
    for r, j in enumerate(np.unique(junction_of[off_trunk])):
        nodes = np.union1d(off_trunk[junction_of[off_trunk] == j], [j])
        tributaries.append(SubNetwork(
            f"tributary {r}",
            nodes,
            network.subnetwork(nodes),
            owned=nodes != j,
            junction=int(j),
        ))

    logger.debug(
        "Split %d nodes into a trunk of %d nodes and %d tributaries",
        network.n_nodes, len(trunk_nodes), len(tributaries),
    )
    return trunk_part, tributaries


def check_partition(n_nodes: int, parts: Sequence[SubNetwork]) -> None:
    """Check that *parts* own every node of the parent exactly once.

    Raises
    ------
    ValueError
        If a node is owned by no part or by more than one part.
    """
    counts = np.zeros(n_nodes, dtype=int)
    for part in parts:
        np.add.at(counts, part.owned_nodes, 1)
    if np.any(counts != 1):
        missing = np.flatnonzero(counts == 0)
        duplicated = np.flatnonzero(counts > 1)
        raise ValueError(
            f"Decomposition is not a partition: {len(missing)} nodes uncovered "
            f"(e.g. {missing[:5].tolist()}), {len(duplicated)} nodes covered "
            f"more than once (e.g. {duplicated[:5].tolist()})."
        )
