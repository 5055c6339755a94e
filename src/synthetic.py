"""
Synthetic stream networks and elevation profiles.

Provides small networks with known topology (linear chains, a trunk with one
tributary, random trees, disjoint unions of these) and noisy concave
profiles on them.  Used by the tests and for quick experiments with
quantile carving.
"""

from __future__ import annotations

import numpy as np

from network import StreamNetwork


# ---------------------------------------------------------------------------
# Network construction
# ---------------------------------------------------------------------------

def linear_chain(n: int, dx: float = 10.0) -> StreamNetwork:
    """Build a single channel of *n* nodes.

    Node 0 is the headwater and node ``n - 1`` the outlet.  Distances are
    measured upstream from the outlet.

    Parameters
    ----------
    n : int
        Number of nodes (≥ 1).
    dx : float
        Spacing between consecutive nodes.

    Returns
    -------
    StreamNetwork
    """
    if n < 1:
        raise ValueError("n must be at least 1.")
    receivers = np.arange(1, n + 1)
    receivers[-1] = -1
    distance = dx * np.arange(n - 1, -1, -1, dtype=float)
    return StreamNetwork.from_receivers(receivers, distance)


def y_network(
    n_trunk: int,
    n_branch: int,
    dx: float = 10.0,
    junction: int | None = None,
) -> StreamNetwork:
    """Build a trunk with a single tributary.

    Nodes ``0 … n_trunk-1`` form the trunk (node ``n_trunk - 1`` is the
    outlet).  Nodes ``n_trunk … n_trunk+n_branch-1`` form the tributary,
    whose last node drains into trunk node *junction*.

    Parameters
    ----------
    n_trunk, n_branch : int
        Number of trunk and tributary nodes.
    dx : float
        Node spacing.
    junction : int or None
        Trunk node receiving the tributary (default ``n_trunk // 2``).  The
        tributary must be shorter than the trunk above the junction so that
        the trunk remains the longest flow path.

    Returns
    -------
    StreamNetwork

    Raises
    ------
    ValueError
        If the tributary would be at least as long as the trunk.
    """
    if junction is None:
        junction = n_trunk // 2
    if not 0 <= junction < n_trunk:
        raise ValueError(f"junction must lie on the trunk, got {junction}")
    if n_branch > junction:
        raise ValueError("Tributary must be shorter than the trunk above the junction.")

    n = n_trunk + n_branch
    receivers = np.full(n, -1, dtype=int)
    receivers[:n_trunk - 1] = np.arange(1, n_trunk)
    if n_branch:
        receivers[n_trunk:n - 1] = np.arange(n_trunk + 1, n)
        receivers[n - 1] = junction

    distance = np.empty(n, dtype=float)
    distance[:n_trunk] = dx * np.arange(n_trunk - 1, -1, -1)
    distance[n_trunk:] = distance[junction] + dx * np.arange(n_branch, 0, -1)
    return StreamNetwork.from_receivers(receivers, distance)


def random_tree(n: int, dx: float = 10.0, seed: int | None = None) -> StreamNetwork:
    """Build a random tree of *n* nodes draining to node 0.

    Every node ``k > 0`` drains to a uniformly chosen node ``< k``; edge
    lengths are drawn from ``[dx, 2·dx)``.
    """
    rng = np.random.default_rng(seed)
    receivers = np.full(n, -1, dtype=int)
    distance = np.zeros(n, dtype=float)
    for k in range(1, n):
        receivers[k] = rng.integers(0, k)
        distance[k] = distance[receivers[k]] + dx * (1.0 + rng.random())
    return StreamNetwork.from_receivers(receivers, distance)


def disjoint_union(*networks: StreamNetwork) -> StreamNetwork:
    """Concatenate networks into one multi-basin network.

    Node ordering follows the argument order; node *k* of the *r*-th network
    becomes node ``offset_r + k``.  All networks must use the same distance
    orientation.
    """
    ix, ixc, distance = [], [], []
    offset = 0
    for S in networks:
        ix.append(S.ix + offset)
        ixc.append(S.ixc + offset)
        distance.append(S.distance)
        offset += S.n_nodes
    return StreamNetwork(
        np.concatenate(ix) if ix else [],
        np.concatenate(ixc) if ixc else [],
        np.concatenate(distance) if distance else [],
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

def concave_profile(
    network: StreamNetwork,
    z_outlet: float = 100.0,
    relief: float = 200.0,
    length_scale: float = 500.0,
    noise: float = 0.0,
    seed: int | None = None,
) -> np.ndarray:
    """Concave-up elevation profile with optional Gaussian noise.

    ``z = z_outlet + relief · (1 - exp(-x / length_scale)) + noise · ε``
    where *x* is the distance from the outlet.

    Returns
    -------
    np.ndarray
        Node attribute list of elevations.
    """
    rng = np.random.default_rng(seed)
    x = network.distance_from_outlet()
    z = z_outlet + relief * (1.0 - np.exp(-x / length_scale))
    if noise:
        z = z + noise * rng.standard_normal(network.n_nodes)
    return z
