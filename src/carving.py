"""
Quantile carving of elevation profiles along stream networks.

Conversely to conventional carving, quantile carving does not run along the
minima of the DEM.  It returns a profile that follows the tau-th quantile of
elevation conditional on along-channel distance, while descending
monotonically downstream.

Large networks are decomposed before solving:

- ``SplitMode.FULL`` — split into drainage basins, then split every basin
  into its trunk and tributaries
- ``SplitMode.TRUNK`` — split into trunk and tributaries only
- ``SplitMode.NONE`` — solve the network as one linear programme

Trunks are solved with a free outlet.  Each tributary is solved afterwards
with its outlet pinned to the trunk's fitted elevation at the junction.
Basins, and tributaries of the same trunk, run concurrently on a worker pool.

Example
-------
::

    S = StreamNetwork.from_d8(fd, dx=30.0)
    zs50, diagnostics = quantcarve(S, dem, 0.5)
    zs90, _ = quantcarve(S, dem, 0.9, mingradient=1e-4)
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from constraints import build_quantile_program, validate_mingradient, validate_tau
from decompose import (
    SubNetwork,
    check_partition,
    split_basins,
    split_trunk_tributaries,
    whole,
)
from network import StreamNetwork, node_attribute_list, sample_grid
from solver import STATUS_MESSAGES, SolverOptions, solve_program

logger = logging.getLogger(__name__)

POOLS = ("thread", "process", "serial")


# ---------------------------------------------------------------------------
# Options and diagnostics
# ---------------------------------------------------------------------------

class SplitMode(enum.Enum):
    """Decomposition level at which :func:`quantcarve` starts."""

    FULL = "full"
    TRUNK = "trunk"
    NONE = "none"

    @classmethod
    def coerce(cls, value: Any) -> "SplitMode":
        """Accept a member, its name or value, or a bool (``True`` → FULL)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.FULL if value else cls.NONE
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise ValueError(
            f"split must be a SplitMode, one of {[m.value for m in cls]}, or a bool; "
            f"got {value!r}"
        )


@dataclass(frozen=True)
class CarveOptions:
    """Settings for :func:`quantcarve`.

    Attributes
    ----------
    mingradient : float
        Minimum downward gradient (default 0).  Choose carefully, because the
        profile may dip too steeply.
    split : SplitMode
        Decomposition level to start from (default ``SplitMode.FULL``).
    fixed_outlet : bool
        Pin the outlet elevations of the input network to the input values.
    pool : str
        ``"thread"`` (default), ``"process"`` or ``"serial"``.
    max_workers : int or None
        Worker count for the pool (``None`` lets the executor decide).
    solver : SolverOptions
        LP solver settings passed to every leaf solve.
    """

    mingradient: float = 0.0
    split: SplitMode = SplitMode.FULL
    fixed_outlet: bool = False
    pool: str = "thread"
    max_workers: int | None = None
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self) -> None:
        object.__setattr__(self, "split", SplitMode.coerce(self.split))
        object.__setattr__(self, "mingradient", validate_mingradient(self.mingradient))
        if self.pool not in POOLS:
            raise ValueError(f"pool must be one of {POOLS}, got {self.pool!r}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")


@dataclass(frozen=True)
class SolveDiagnostics:
    """Outcome of one leaf solve."""

    label: str
    n_nodes: int
    fixed_outlet: bool
    success: bool
    status: int
    message: str
    nit: int | None = None
    fun: float | None = None


# ---------------------------------------------------------------------------
# Leaf solve
# ---------------------------------------------------------------------------

def solve_leaf(
    label: str,
    network: StreamNetwork,
    z: np.ndarray,
    tau: float,
    mingradient: float,
    fixed_outlet: bool,
    solver: SolverOptions,
) -> tuple[np.ndarray, SolveDiagnostics]:
    """Build and solve the quantile programme of one sub-network.

    Returns
    -------
    fitted : np.ndarray
        Fitted elevations, all NaN when the solver did not succeed.
    diagnostics : SolveDiagnostics
    """
    program = build_quantile_program(network, z, tau, mingradient, fixed_outlet)
    result = solve_program(program, solver)

    success = result.status == 0 and result.x is not None
    if success:
        fitted = np.asarray(program.split_solution(result.x)[2], dtype=float)
    else:
        fitted = np.full(network.n_nodes, np.nan)

    diagnostics = SolveDiagnostics(
        label=label,
        n_nodes=network.n_nodes,
        fixed_outlet=fixed_outlet,
        success=success,
        status=int(result.status),
        message=str(result.get("message", STATUS_MESSAGES.get(result.status, ""))),
        nit=None if result.get("nit") is None else int(result.nit),
        fun=None if result.get("fun") is None else float(result.fun),
    )
    return fitted, diagnostics


# ---------------------------------------------------------------------------
# Task graph
# ---------------------------------------------------------------------------

class LeafTask:
    """One leaf solve; *depends_on* is the index of the trunk task it waits for."""

    def __init__(self, part: SubNetwork, fixed_outlet: bool, depends_on: int | None = None) -> None:
        self.part = part
        self.fixed_outlet = fixed_outlet
        self.depends_on = depends_on


def plan_leaf_tasks(
    network: StreamNetwork,
    split: SplitMode,
    fixed_outlet: bool = False,
) -> list[LeafTask]:
    """Expand the decomposition of *network* into leaf tasks.

    Decomposition tasks are processed from an explicit stack; each either
    produces further decomposition tasks or leaf tasks.  Tributary leaves
    record a dependency on their trunk leaf.

    Raises
    ------
    ValueError
        If the resulting parts do not partition the network.
    """
    stack: list[tuple[SubNetwork, SplitMode]] = [(whole(network), split)]
    leaves: list[LeafTask] = []

    while stack:
        part, level = stack.pop()

        if level is SplitMode.FULL:
            basins = split_basins(part.network)
            if len(basins) == 1:
                stack.append((part, SplitMode.TRUNK))
            else:
                for basin in reversed(basins):
                    stack.append((basin.lift(part), SplitMode.TRUNK))

        elif level is SplitMode.TRUNK:
            trunk_part, tributaries = split_trunk_tributaries(part.network)
            if not tributaries:
                leaves.append(LeafTask(part, fixed_outlet))
                continue
            trunk_index = len(leaves)
            leaves.append(LeafTask(trunk_part.lift(part), fixed_outlet))
            for trib in tributaries:
                leaves.append(LeafTask(trib.lift(part), True, depends_on=trunk_index))

        else:
            leaves.append(LeafTask(part, fixed_outlet))

    check_partition(network.n_nodes, [leaf.part for leaf in leaves])
    return leaves


def _make_executor(options: CarveOptions) -> Executor:
    if options.pool == "process":
        return ProcessPoolExecutor(max_workers=options.max_workers)
    if options.pool == "serial":
        return ThreadPoolExecutor(max_workers=1)
    return ThreadPoolExecutor(max_workers=options.max_workers)


def _run_leaf_tasks(
    leaves: list[LeafTask],
    z: np.ndarray,
    tau: float,
    options: CarveOptions,
) -> tuple[np.ndarray, list[SolveDiagnostics]]:
    """Dispatch *leaves* honouring trunk → tributary dependencies."""
    zs = np.full(len(z), np.nan)
    diagnostics: list[SolveDiagnostics | None] = [None] * len(leaves)

    dependents: dict[int, list[int]] = defaultdict(list)
    for i, leaf in enumerate(leaves):
        if leaf.depends_on is not None:
            dependents[leaf.depends_on].append(i)

    with _make_executor(options) as executor:
        running = {}

        def submit(i: int) -> None:
            leaf = leaves[i]
            part = leaf.part
            z_part = z[part.nodes].copy()
            fixed = leaf.fixed_outlet
            if part.junction is not None:
                boundary = zs[part.junction]
                if np.isnan(boundary):
                    logger.warning(
                        "%s: trunk elevation at junction %d is missing, "
                        "solving with a free outlet", part.label, part.junction,
                    )
                    fixed = False
                else:
                    z_part[np.searchsorted(part.nodes, part.junction)] = boundary
            logger.debug("Dispatching %s (%d nodes, fixed_outlet=%s)", part.label, part.n_nodes, fixed)
            future = executor.submit(
                solve_leaf, part.label, part.network, z_part, tau,
                options.mingradient, fixed, options.solver,
            )
            running[future] = i

        for i, leaf in enumerate(leaves):
            if leaf.depends_on is None:
                submit(i)

        while running:
            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in sorted(done, key=running.get):
                i = running.pop(future)
                fitted, diag = future.result()
                part = leaves[i].part
                zs[part.owned_nodes] = fitted[part.owned]
                diagnostics[i] = diag
                if not diag.success:
                    logger.warning(
                        "%s: solver failed with status %d (%s); %d nodes set to NaN",
                        diag.label, diag.status, diag.message, int(part.owned.sum()),
                    )
                for j in dependents.pop(i, []):
                    submit(j)

    return zs, diagnostics


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def quantcarve(
    network: StreamNetwork,
    z: Any,
    tau: float = 0.5,
    options: CarveOptions | None = None,
    **overrides: Any,
) -> tuple[np.ndarray, list[SolveDiagnostics]]:
    """Quantile carving of elevations along *network*.

    Parameters
    ----------
    network : StreamNetwork
    z : array-like or raster
        Node attribute list of elevations, or a 2-D raster (or object
        exposing ``._griddata``) aligned with the network's grid.
    tau : float
        Quantile in (0, 1) (default 0.5).
    options : CarveOptions or None
        Settings; defaults to ``CarveOptions()``.
    **overrides
        Individual :class:`CarveOptions` fields, e.g. ``mingradient=1e-3``
        or ``split=False``.

    Returns
    -------
    zs : np.ndarray
        Node attribute list of carved elevations.  Nodes of sub-networks
        whose solve failed are NaN.
    diagnostics : list[SolveDiagnostics]
        One entry per leaf solve, in decomposition order.

    Raises
    ------
    ValueError
        If *tau* is outside (0, 1), *z* is misaligned or contains NaNs, or
        an option is invalid.
    """
    options = options or CarveOptions()
    if overrides:
        options = replace(options, **overrides)
    tau = validate_tau(tau)

    if hasattr(z, "_griddata") or np.ndim(z) == 2:
        z = sample_grid(network, z)
    z = node_attribute_list(network, z)

    if network.n_nodes == 0:
        return z, []

    leaves = plan_leaf_tasks(network, options.split, options.fixed_outlet)
    logger.debug(
        "Quantile carving: %d nodes split into %d leaf problems (split=%s, pool=%s)",
        network.n_nodes, len(leaves), options.split.value, options.pool,
    )

    zs, diagnostics = _run_leaf_tasks(leaves, z, tau, options)

    n_failed = sum(not d.success for d in diagnostics)
    logger.info(
        "Quantile carving (tau=%.3f): %d leaf problems solved, %d failed",
        tau, len(diagnostics) - n_failed, n_failed,
    )
    return zs, diagnostics
