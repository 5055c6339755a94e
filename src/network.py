"""
Read-only stream network topology.

A :class:`StreamNetwork` stores a forest of flow trees as a fixed node
ordering, one directed edge per non-outlet node (``ix[k] → ixc[k]``) and a
per-node along-channel distance.  Node attribute lists are plain 1-D arrays
aligned with the node ordering.

Functions
---------
- :func:`node_attribute_list` — validate an elevation (or other) vector
- :func:`sample_grid` — read raster values at the network nodes
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

D8_OFFSETS: dict[int, tuple[int, int]] = {
    1: (1, 0),
    2: (1, 1),
    4: (0, 1),
    8: (-1, 1),
    16: (-1, 0),
    32: (-1, -1),
    64: (0, -1),
    128: (1, -1),
}
"""D8 flow-direction code → (di, dj) offset lookup."""


# ---------------------------------------------------------------------------
# Shared private helpers
# ---------------------------------------------------------------------------

def _topological_order(receivers: np.ndarray) -> np.ndarray:
    """Order nodes so that every node comes before its receiver.

    Parameters
    ----------
    receivers : np.ndarray
        1-D integer array giving each node's downstream node (−1 for outlets).

    Returns
    -------
    np.ndarray
        Node indices, headwaters first.

    Raises
    ------
    ValueError
        If the receiver graph contains a cycle.
    """
    n = len(receivers)
    has_receiver = receivers >= 0
    indegree = np.bincount(receivers[has_receiver], minlength=n)

    queue = deque(np.flatnonzero(indegree == 0).tolist())
    order: list[int] = []
    while queue:
        k = queue.popleft()
        order.append(k)
        k_down = receivers[k]
        if k_down >= 0:
            indegree[k_down] -= 1
            if indegree[k_down] == 0:
                queue.append(int(k_down))

    if len(order) != n:
        raise ValueError(
            f"Stream network contains a cycle: {n - len(order)} of {n} nodes "
            "never reach an outlet."
        )
    return np.asarray(order, dtype=int)


def _accumulate_downstream_first(
    receivers: np.ndarray,
    order: np.ndarray,
    values: np.ndarray,
) -> np.ndarray:
    """Sum *values* along each flow path from the outlet to every node."""
    acc = np.zeros(len(receivers), dtype=float)
    for k in order[::-1]:
        k_down = receivers[k]
        if k_down >= 0:
            acc[k] = acc[k_down] + values[k]
    return acc


# ---------------------------------------------------------------------------
# Stream network
# ---------------------------------------------------------------------------

class StreamNetwork:
    """Directed, tree-shaped drainage network.

    Parameters
    ----------
    ix, ixc : array-like of int
        Upstream (giver) and downstream (receiver) node of every edge.
    distance : array-like of float
        Along-channel distance per node.  Either measured upstream from the
        outlet (``distance[ix] > distance[ixc]`` on every edge) or downstream
        from the network origin (``distance[ix] < distance[ixc]`` on every
        edge).  Mixing both orientations is rejected.
    ixgrid : array-like of int or None
        Optional C-order flat raster index of every node, used by
        :func:`sample_grid`.
    grid_shape : tuple[int, int] or None
        Shape of the raster that *ixgrid* indexes into.

    Raises
    ------
    ValueError
        If the arrays are inconsistent or do not describe a forest of
        outlet-rooted trees.
    """

    def __init__(
        self,
        ix: Any,
        ixc: Any,
        distance: Any,
        ixgrid: Any = None,
        grid_shape: tuple[int, int] | None = None,
    ) -> None:
        self._ix = np.array(ix, dtype=int).ravel()
        self._ixc = np.array(ixc, dtype=int).ravel()
        self._distance = np.array(distance, dtype=float).ravel()
        self._ixgrid = None if ixgrid is None else np.array(ixgrid, dtype=int).ravel()
        self.grid_shape = None if grid_shape is None else tuple(int(s) for s in grid_shape)

        for arr in (self._ix, self._ixc, self._distance):
            arr.flags.writeable = False
        if self._ixgrid is not None:
            self._ixgrid.flags.writeable = False

        self.validate()

    # -- constructors -------------------------------------------------------

    @classmethod
    def from_receivers(
        cls,
        receivers: Any,
        distance: Any,
        ixgrid: Any = None,
        grid_shape: tuple[int, int] | None = None,
    ) -> "StreamNetwork":
        """Build a network from a per-node receiver array (−1 marks outlets)."""
        receivers = np.asarray(receivers, dtype=int).ravel()
        ix = np.flatnonzero(receivers >= 0)
        return cls(ix, receivers[ix], distance, ixgrid=ixgrid, grid_shape=grid_shape)

    @classmethod
    def from_d8(
        cls,
        flow_direction: Any,
        dx: float | None = None,
        mask: np.ndarray | None = None,
    ) -> "StreamNetwork":
        """Build a network from a D8 flow-direction grid.

        Every cell in *mask* becomes a node (C-order).  A cell whose D8
        neighbour lies outside the grid or outside *mask*, or whose code is
        not a valid D8 code, is an outlet.  Distances are measured upstream
        from the outlet, with diagonal steps of length ``dx·√2``.

        Parameters
        ----------
        flow_direction : np.ndarray or FlowDirectionD8-like object
            2-D D8 code array, or an object exposing ``._griddata`` and
            ``._georef_info.dx``.
        dx : float or None
            Cell size.  Taken from ``flow_direction._georef_info.dx`` when
            omitted.
        mask : np.ndarray or None
            Boolean channel mask.  Defaults to all finite cells.

        Returns
        -------
        StreamNetwork
        """
        FD = np.asarray(getattr(flow_direction, "_griddata", flow_direction))
        if dx is None:
            dx = flow_direction._georef_info.dx
        if FD.ndim != 2:
            raise ValueError(f"flow_direction must be 2-D, got shape {FD.shape}")
        Ny, Nx = FD.shape

        valid = np.isfinite(FD) if mask is None else (np.asarray(mask, dtype=bool) & np.isfinite(FD))
        rev_j, rev_i = np.nonzero(valid)
        n = len(rev_j)
        idx_map = np.full((Ny, Nx), -1, dtype=int)
        idx_map[rev_j, rev_i] = np.arange(n)

        receivers = np.full(n, -1, dtype=int)
        step = np.zeros(n, dtype=float)
        for k in range(n):
            i, j = rev_i[k], rev_j[k]
            code = int(FD[j, i])
            if code not in D8_OFFSETS:
                continue
            di, dj = D8_OFFSETS[code]
            ni, nj = i + di, j + dj
            if 0 <= ni < Nx and 0 <= nj < Ny and valid[nj, ni]:
                receivers[k] = idx_map[nj, ni]
                step[k] = dx * (np.sqrt(2.0) if (di != 0 and dj != 0) else 1.0)

        order = _topological_order(receivers)
        distance = _accumulate_downstream_first(receivers, order, step)

        logger.debug(
            "D8 network: %d nodes, %d outlets on a %dx%d grid",
            n, int(np.sum(receivers < 0)), Ny, Nx,
        )
        return cls.from_receivers(
            receivers, distance,
            ixgrid=np.ravel_multi_index((rev_j, rev_i), (Ny, Nx)),
            grid_shape=(Ny, Nx),
        )

    # -- basic properties ---------------------------------------------------

    @property
    def n_nodes(self) -> int:
        return len(self._distance)

    @property
    def n_edges(self) -> int:
        return len(self._ix)

    @property
    def ix(self) -> np.ndarray:
        return self._ix

    @property
    def ixc(self) -> np.ndarray:
        return self._ixc

    @property
    def distance(self) -> np.ndarray:
        return self._distance

    @property
    def ixgrid(self) -> np.ndarray | None:
        return self._ixgrid

    @property
    def receivers(self) -> np.ndarray:
        """Downstream node of every node (−1 for outlets)."""
        return self._receivers

    def __len__(self) -> int:
        return self.n_nodes

    def __repr__(self) -> str:
        return (
            f"StreamNetwork(n_nodes={self.n_nodes}, n_edges={self.n_edges}, "
            f"n_outlets={int(np.sum(self.outlets()))})"
        )

    # -- validation ---------------------------------------------------------

    def validate(self) -> None:
        """Check that the arrays describe a forest of outlet-rooted trees.

        Raises
        ------
        ValueError
            On length mismatches, out-of-range indices, nodes with more than
            one outgoing edge, zero-length edges, inconsistent distance
            orientation, or cycles.
        """
        n = self.n_nodes
        if len(self._ix) != len(self._ixc):
            raise ValueError(
                f"ix and ixc must have equal length, got {len(self._ix)} and {len(self._ixc)}"
            )
        if self.n_edges and (
            self._ix.min() < 0 or self._ixc.min() < 0
            or self._ix.max() >= n or self._ixc.max() >= n
        ):
            raise ValueError(f"Edge indices must lie in [0, {n}).")
        if not np.all(np.isfinite(self._distance)):
            raise ValueError("Distance may not contain NaN or infinite values.")
        if self._ixgrid is not None and len(self._ixgrid) != n:
            raise ValueError(
                f"ixgrid has {len(self._ixgrid)} entries for {n} nodes."
            )

        counts = np.bincount(self._ix, minlength=n)
        if np.any(counts > 1):
            bad = np.flatnonzero(counts > 1)
            raise ValueError(
                f"Nodes {bad[:10].tolist()} have more than one outgoing edge."
            )

        diff = self._distance[self._ix] - self._distance[self._ixc]
        if np.any(diff == 0):
            raise ValueError(
                "Distance difference along an edge must never be zero "
                f"({int(np.sum(diff == 0))} zero-length edges)."
            )
        if np.all(diff > 0):
            self._orientation = 1.0
        elif np.all(diff < 0):
            self._orientation = -1.0
        else:
            raise ValueError(
                "Distance must decrease downstream on every edge (or increase "
                "on every edge); got mixed orientations."
            )
        self._edge_lengths = np.abs(diff)

        receivers = np.full(n, -1, dtype=int)
        receivers[self._ix] = self._ixc
        self._receivers = receivers
        self._receivers.flags.writeable = False
        self._order = _topological_order(receivers)

    # -- topology queries ---------------------------------------------------

    def outlets(self) -> np.ndarray:
        """Boolean mask of nodes without an outgoing edge."""
        return self._receivers < 0

    def headwaters(self) -> np.ndarray:
        """Boolean mask of nodes without an incoming edge."""
        return np.bincount(self._ixc, minlength=self.n_nodes) == 0

    def edge_lengths(self) -> np.ndarray:
        """Strictly positive along-channel length of every edge."""
        return self._edge_lengths.copy()

    def topological_order(self) -> np.ndarray:
        """Node indices ordered so that every node precedes its receiver."""
        return self._order.copy()

    def distance_from_outlet(self) -> np.ndarray:
        """Along-channel distance from every node to its outlet."""
        step = np.zeros(self.n_nodes, dtype=float)
        step[self._ix] = self._edge_lengths
        return _accumulate_downstream_first(self._receivers, self._order, step)

    def outlet_of(self) -> np.ndarray:
        """Index of the outlet each node drains to."""
        outlet = np.arange(self.n_nodes)
        for k in self._order[::-1]:
            k_down = self._receivers[k]
            if k_down >= 0:
                outlet[k] = outlet[k_down]
        return outlet

    def subnetwork(self, nodes: Any) -> "StreamNetwork":
        """Induced sub-network on *nodes*, keeping the parent node ordering.

        Edges are kept when both endpoints are selected.  The sub-network's
        node *k* corresponds to parent node ``np.sort(nodes)[k]``.
        """
        nodes = np.unique(np.asarray(nodes, dtype=int))
        local = np.full(self.n_nodes, -1, dtype=int)
        local[nodes] = np.arange(len(nodes))

        keep = (local[self._ix] >= 0) & (local[self._ixc] >= 0)
        return StreamNetwork(
            local[self._ix[keep]],
            local[self._ixc[keep]],
            self._distance[nodes],
            ixgrid=None if self._ixgrid is None else self._ixgrid[nodes],
            grid_shape=self.grid_shape,
        )


# ---------------------------------------------------------------------------
# Node attribute lists
# ---------------------------------------------------------------------------

def node_attribute_list(network: StreamNetwork, values: Any) -> np.ndarray:
    """Validate *values* as a node attribute list of *network*.

    Parameters
    ----------
    network : StreamNetwork
    values : array-like
        One value per node, aligned with the network's node ordering.

    Returns
    -------
    np.ndarray
        Float copy of *values*.

    Raises
    ------
    ValueError
        If *values* is not 1-D, has the wrong length, or contains NaN or
        infinite entries.
    """
    z = np.array(values, dtype=float)
    if z.ndim != 1:
        raise ValueError(f"Node attribute list must be 1-D, got shape {z.shape}")
    if len(z) != network.n_nodes:
        raise ValueError(
            f"Node attribute list has {len(z)} values for {network.n_nodes} nodes."
        )
    if np.any(np.isnan(z)):
        raise ValueError("DEM or z may not contain any NaNs")
    if not np.all(np.isfinite(z)):
        raise ValueError("DEM or z may not contain infinite values")
    return z


def sample_grid(network: StreamNetwork, grid: Any) -> np.ndarray:
    """Read raster values at the network nodes.

    Parameters
    ----------
    network : StreamNetwork
        Must carry ``ixgrid`` (e.g. built with :meth:`StreamNetwork.from_d8`).
    grid : np.ndarray or Elevation-like object
        2-D raster, or an object exposing ``._griddata``.

    Returns
    -------
    np.ndarray
        1-D float array with one value per node.

    Raises
    ------
    ValueError
        If the network has no raster indices or the raster shape does not
        match the network's grid.
    """
    if network.ixgrid is None:
        raise ValueError("Network carries no grid indices; pass a node attribute list.")
    data = np.asarray(getattr(grid, "_griddata", grid), dtype=float)
    if network.grid_shape is not None and data.shape != network.grid_shape:
        raise ValueError(
            f"Grid shape {data.shape} does not match network grid {network.grid_shape}."
        )
    return data.ravel()[network.ixgrid]
