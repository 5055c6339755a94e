"""
Diagnostics for carved elevation profiles.

Provides along-edge gradients, the pinball (quantile) loss of a fit,
empirical quantile coverage, and a linear profile gradient estimate.
"""

from __future__ import annotations

import numpy as np
from scipy.stats import linregress

from network import StreamNetwork


def edge_gradients(network: StreamNetwork, zs: np.ndarray) -> np.ndarray:
    """Downward gradient ``(zs[u] - zs[d]) / Δ`` along every edge ``u → d``.

    Parameters
    ----------
    network : StreamNetwork
    zs : np.ndarray
        Node attribute list of elevations.

    Returns
    -------
    np.ndarray
        One value per edge, in the network's edge order.  Positive values
        descend downstream.
    """
    zs = np.asarray(zs, dtype=float)
    return (zs[network.ix] - zs[network.ixc]) / network.edge_lengths()


def check_descent(
    network: StreamNetwork,
    zs: np.ndarray,
    mingradient: float = 0.0,
    atol: float = 1e-6,
) -> bool:
    """Return ``True`` if every edge descends by at least *mingradient*.

    The test is ``zs[d] <= zs[u] - mingradient·Δ + atol`` on every edge.
    NaN elevations fail the test.
    """
    zs = np.asarray(zs, dtype=float)
    drop = zs[network.ix] - zs[network.ixc]
    required = mingradient * network.edge_lengths()
    return bool(np.all(drop + atol >= required))


def pinball_loss(z: np.ndarray, zs: np.ndarray, tau: float) -> float:
    r"""Total pinball loss of the fit *zs* to observations *z*.

    .. math::

        L = \sum_i \tau \, (z_i - zs_i)^+ + (1 - \tau) \, (zs_i - z_i)^+

    NaN entries of either array are ignored.
    """
    r = np.asarray(z, dtype=float) - np.asarray(zs, dtype=float)
    r = r[np.isfinite(r)]
    return float(np.sum(tau * np.clip(r, 0, None) + (1.0 - tau) * np.clip(-r, 0, None)))


def quantile_coverage(z: np.ndarray, zs: np.ndarray, atol: float = 1e-6) -> float:
    """Fraction of nodes whose observation lies at or below the fit.

    For a tau-quantile fit the coverage is close to tau.  Nodes where either
    array is NaN are excluded.
    """
    z = np.asarray(z, dtype=float)
    zs = np.asarray(zs, dtype=float)
    ok = np.isfinite(z) & np.isfinite(zs)
    if not np.any(ok):
        return float("nan")
    return float(np.mean(z[ok] <= zs[ok] + atol))


def profile_gradient(network: StreamNetwork, zs: np.ndarray) -> tuple[float, float]:
    """Least-squares gradient of elevation against distance from the outlet.

    Returns
    -------
    gradient : float
        Regression slope (elevation per unit distance).
    r2 : float
        Coefficient of determination.

    Raises
    ------
    ValueError
        If fewer than two finite nodes are available.
    """
    zs = np.asarray(zs, dtype=float)
    x = network.distance_from_outlet()
    ok = np.isfinite(zs)
    if ok.sum() < 2:
        raise ValueError("At least two finite elevations are required.")
    res = linregress(x[ok], zs[ok])
    return float(res.slope), float(res.rvalue ** 2)
