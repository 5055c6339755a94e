r"""
Quantile-regression linear programme for a stream network.

The decision vector is ``[r_pos (n), r_neg (n), fitted (n)]``.  The programme

.. math::

    \min \; \tau \sum r^+ + (1 - \tau) \sum r^-

subject to ``z = r_pos - r_neg + fitted`` at every node, and
``(fitted[d] - fitted[u]) / Δ ≤ -mingradient`` along every edge ``u → d``.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import scipy.sparse as sp

from network import StreamNetwork, node_attribute_list

logger = logging.getLogger(__name__)


class QuantileProgram:
    """Sparse LP instance in ``scipy.optimize.linprog`` form.

    Attributes
    ----------
    c : np.ndarray
        Objective coefficients (length ``3n``).
    A_ub : scipy.sparse.csr_matrix or None
        Gradient constraints, one row per edge.  ``None`` without edges.
    b_ub : np.ndarray or None
    A_eq : scipy.sparse.csr_matrix
        Residual coupling, one row per node.
    b_eq : np.ndarray
        Observed (or boundary) elevations.
    bounds : list[tuple[float | None, float | None]]
        Residuals ``[0, ∞)``, fitted elevations free.
    n : int
        Number of nodes.
    """

    def __init__(self, c, A_ub, b_ub, A_eq, b_eq, bounds, n: int) -> None:
        self.c = c
        self.A_ub = A_ub
        self.b_ub = b_ub
        self.A_eq = A_eq
        self.b_eq = b_eq
        self.bounds = bounds
        self.n = n

    @property
    def n_variables(self) -> int:
        return 3 * self.n

    def split_solution(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(r_pos, r_neg, fitted)`` from a solution vector."""
        n = self.n
        return x[:n], x[n:2 * n], x[2 * n:]

    def __repr__(self) -> str:
        n_ub = 0 if self.A_ub is None else self.A_ub.shape[0]
        return f"QuantileProgram(n={self.n}, n_eq={self.A_eq.shape[0]}, n_ub={n_ub})"


def validate_tau(tau: Any) -> float:
    """Return *tau* as float, raising ``ValueError`` unless 0 < tau < 1."""
    tau = float(tau)
    if not (0.0 < tau < 1.0):
        raise ValueError(f"tau must lie in the open interval (0, 1), got {tau}")
    return tau


def validate_mingradient(mingradient: Any) -> float:
    """Return *mingradient* as float, raising ``ValueError`` unless finite and ≥ 0."""
    mingradient = float(mingradient)
    if not np.isfinite(mingradient) or mingradient < 0:
        raise ValueError(f"mingradient must be a non-negative scalar, got {mingradient}")
    return mingradient


def build_quantile_program(
    network: StreamNetwork,
    z: Any,
    tau: float = 0.5,
    mingradient: float = 0.0,
    fixed_outlet: bool = False,
) -> QuantileProgram:
    """Assemble the quantile-carving LP for *network*.

    Parameters
    ----------
    network : StreamNetwork
        Sub-network to fit.
    z : array-like
        Node attribute list of observed elevations.  When *fixed_outlet* is
        set, the outlet entries are the externally imposed boundary values.
    tau : float
        Quantile in (0, 1).
    mingradient : float
        Minimum downward gradient per unit distance (default 0).
    fixed_outlet : bool
        Pin every outlet's fitted elevation to ``z[outlet]`` by removing its
        residual terms from the equality rows.

    Returns
    -------
    QuantileProgram

    Raises
    ------
    ValueError
        If *tau*, *mingradient* or *z* are invalid.
    """
    tau = validate_tau(tau)
    mingradient = validate_mingradient(mingradient)
    z = node_attribute_list(network, z)
    n = network.n_nodes

    c = np.concatenate([
        np.full(n, tau),
        np.full(n, 1.0 - tau),
        np.zeros(n),
    ])

    # Equalities
    I = sp.identity(n, format="csr")
    if fixed_outlet:
        P = sp.diags((~network.outlets()).astype(float), 0, shape=(n, n), format="csr")
    else:
        P = I
    A_eq = sp.hstack([P, -P, I], format="csr")

    # Gradient constraints
    n_edges = network.n_edges
    if n_edges:
        inv_d = 1.0 / network.edge_lengths()
        rows = np.arange(n_edges)
        G = sp.csr_matrix(
            (
                np.concatenate([inv_d, -inv_d]),
                (np.concatenate([rows, rows]), np.concatenate([network.ixc, network.ix])),
            ),
            shape=(n_edges, n),
        )
        A_ub = sp.hstack([sp.csr_matrix((n_edges, 2 * n)), G], format="csr")
        b_ub = np.full(n_edges, -mingradient)
    else:
        A_ub = None
        b_ub = None

    bounds = [(0.0, None)] * (2 * n) + [(None, None)] * n

    logger.debug(
        "Built quantile programme: %d nodes, %d edges, tau=%.3f, "
        "mingradient=%g, fixed_outlet=%s",
        n, n_edges, tau, mingradient, fixed_outlet,
    )
    return QuantileProgram(c, A_ub, b_ub, A_eq, z, bounds, n)
