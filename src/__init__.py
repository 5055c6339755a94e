"""Quantile carving of elevation profiles along stream networks.

Modules
-------
network
    Read-only stream network topology, node attribute list validation,
    raster sampling, and D8 network construction.
constraints
    Assembly of the quantile-regression linear programme.
solver
    ``scipy.optimize.linprog`` wrapper and per-call solver options.
decompose
    Basin and trunk/tributary decomposition into independent parts.
carving
    ``quantcarve`` entry point: task graph, worker pool, result merging.
analysis
    Edge gradients, pinball loss, quantile coverage.
synthetic
    Synthetic networks and noisy profiles.
plotting
    Longitudinal profile plots and Nature-style matplotlib configuration.
"""

__version__ = "0.1.0"
