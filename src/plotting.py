"""
Plotting utilities for carved longitudinal profiles.

Profiles are drawn as elevation against distance from the outlet, one line
segment per network edge, so that tributaries appear as separate branches.
Includes a Nature-style matplotlib configuration helper.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection, PolyCollection

from network import StreamNetwork


# ---------------------------------------------------------------------------
# Style helper
# ---------------------------------------------------------------------------

def set_nature_style() -> None:
    """Apply Nature-style matplotlib defaults (300 dpi, Helvetica, 8 pt).

    Configures ``plt.rcParams`` for publication-quality figures.  Safe to
    call multiple times.
    """
    plt.rcParams.update({
        "figure.dpi": 300,
        "font.family": "sans-serif",
        "font.sans-serif": ["Helvetica", "Arial", "DejaVu Sans"],
        "font.size": 8,
        "axes.labelsize": 8,
        "axes.titlesize": 8,
        "axes.linewidth": 0.5,
        "xtick.direction": "in",
        "ytick.direction": "in",
        "xtick.labelsize": 7,
        "ytick.labelsize": 7,
        "savefig.bbox": "tight",
        "savefig.dpi": 300,
    })


# ---------------------------------------------------------------------------
# Profile plots
# ---------------------------------------------------------------------------

def _edge_segments(network: StreamNetwork, z: np.ndarray) -> np.ndarray:
    """Return an ``(n_edges, 2, 2)`` array of (distance, elevation) segments."""
    x = network.distance_from_outlet()
    return np.stack([
        np.column_stack([x[network.ix], z[network.ix]]),
        np.column_stack([x[network.ixc], z[network.ixc]]),
    ], axis=1)


def plot_profile(
    network: StreamNetwork,
    z: np.ndarray,
    ax: plt.Axes | None = None,
    **kwargs: Any,
) -> LineCollection:
    """Plot a node attribute list against distance from the outlet.

    Parameters
    ----------
    network : StreamNetwork
    z : np.ndarray
        Node attribute list of elevations.
    ax : Axes or None
        Target axes (default: current axes).
    **kwargs
        Passed to :class:`~matplotlib.collections.LineCollection`
        (e.g. ``color``, ``linewidth``).

    Returns
    -------
    LineCollection
    """
    ax = ax or plt.gca()
    z = np.asarray(z, dtype=float)
    kwargs.setdefault("color", "k")
    lines = LineCollection(_edge_segments(network, z), **kwargs)
    ax.add_collection(lines)

    x = network.distance_from_outlet()
    finite = np.isfinite(z)
    if np.any(finite):
        ax.update_datalim(np.column_stack([x[finite], z[finite]]))
        ax.autoscale_view()
    ax.set_xlabel("Distance from outlet")
    ax.set_ylabel("Elevation")
    return lines


def plot_profile_band(
    network: StreamNetwork,
    z_lower: np.ndarray,
    z_upper: np.ndarray,
    ax: plt.Axes | None = None,
    color: Any = "0.7",
    alpha: float = 0.5,
) -> PolyCollection:
    """Shade the band between two profiles, e.g. the 10 % and 90 % quantiles.

    Returns
    -------
    PolyCollection
    """
    ax = ax or plt.gca()
    lo = _edge_segments(network, np.asarray(z_lower, dtype=float))
    hi = _edge_segments(network, np.asarray(z_upper, dtype=float))
    quads = np.concatenate([lo, hi[:, ::-1]], axis=1)
    band = PolyCollection(quads, facecolor=color, edgecolor="none", alpha=alpha)
    ax.add_collection(band)
    if len(quads):
        pts = quads.reshape(-1, 2)
        ax.update_datalim(pts[np.all(np.isfinite(pts), axis=1)])
        ax.autoscale_view()
    return band


def plot_quantile_profiles(
    network: StreamNetwork,
    z: np.ndarray,
    quantiles: dict[float, np.ndarray],
    figsize: tuple[float, float] = (7, 4),
) -> tuple[plt.Figure, plt.Axes]:
    """Observed profile with carved quantile profiles.

    The lowest and highest quantiles are shaded as a band; a median (0.5)
    profile, when present, is drawn as a solid black line.

    Parameters
    ----------
    network : StreamNetwork
    z : np.ndarray
        Observed elevations.
    quantiles : dict[float, np.ndarray]
        ``{tau: zs}`` for each carved profile.
    figsize : tuple[float, float]
        Figure size in inches.

    Returns
    -------
    fig : matplotlib.figure.Figure
    ax : Axes
    """
    fig, ax = plt.subplots(figsize=figsize)
    plot_profile(network, z, ax=ax, color="0.6", linewidth=0.8)

    taus = sorted(quantiles)
    if len(taus) >= 2:
        plot_profile_band(network, quantiles[taus[0]], quantiles[taus[-1]], ax=ax)
    if 0.5 in quantiles:
        plot_profile(network, quantiles[0.5], ax=ax, color="k", linewidth=1.5)
    ax.set_title(
        "Quantile carving (" + ", ".join(f"τ={t:g}" for t in taus) + ")"
    )
    return fig, ax
