"""
Thin wrapper around :func:`scipy.optimize.linprog` for quantile programmes.

Solver verbosity and tolerances travel with each call in a
:class:`SolverOptions` instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from scipy.optimize import OptimizeResult, linprog

from constraints import QuantileProgram

logger = logging.getLogger(__name__)

LINPROG_METHODS = ("highs", "highs-ipm", "highs-ds")

STATUS_MESSAGES: dict[int, str] = {
    0: "optimal",
    1: "iteration or time limit reached",
    2: "infeasible",
    3: "unbounded",
    4: "numerical difficulties",
}
"""``linprog`` status code → short description."""


@dataclass(frozen=True)
class SolverOptions:
    """Per-call settings for the LP solver.

    Attributes
    ----------
    method : str
        ``linprog`` method, one of ``"highs"``, ``"highs-ipm"`` (interior
        point, default) and ``"highs-ds"`` (dual simplex).
    display : bool
        Print solver progress.
    time_limit : float or None
        Wall-clock limit in seconds per leaf solve.
    primal_feasibility_tolerance, dual_feasibility_tolerance : float or None
        Passed to HiGHS when set.
    """

    method: str = "highs-ipm"
    display: bool = False
    time_limit: float | None = None
    primal_feasibility_tolerance: float | None = None
    dual_feasibility_tolerance: float | None = None

    def __post_init__(self) -> None:
        if self.method not in LINPROG_METHODS:
            raise ValueError(
                f"Unknown solver method {self.method!r}; expected one of {LINPROG_METHODS}"
            )
        if self.time_limit is not None and self.time_limit <= 0:
            raise ValueError(f"time_limit must be positive, got {self.time_limit}")

    def linprog_options(self) -> dict:
        """Return the ``options`` mapping for :func:`linprog`."""
        options: dict = {"disp": self.display}
        if self.time_limit is not None:
            options["time_limit"] = self.time_limit
        if self.primal_feasibility_tolerance is not None:
            options["primal_feasibility_tolerance"] = self.primal_feasibility_tolerance
        if self.dual_feasibility_tolerance is not None:
            options["dual_feasibility_tolerance"] = self.dual_feasibility_tolerance
        return options


def solve_program(
    program: QuantileProgram,
    options: SolverOptions | None = None,
) -> OptimizeResult:
    """Solve *program* and return the raw ``linprog`` result.

    The result is returned whatever its status; callers inspect
    ``result.status`` / ``result.success``.
    """
    options = options or SolverOptions()
    result = linprog(
        program.c,
        A_ub=program.A_ub,
        b_ub=program.b_ub,
        A_eq=program.A_eq,
        b_eq=program.b_eq,
        bounds=program.bounds,
        method=options.method,
        options=options.linprog_options(),
    )
    logger.debug(
        "linprog (%s) on %d variables: status=%d (%s), nit=%s",
        options.method, program.n_variables, result.status,
        STATUS_MESSAGES.get(result.status, "unknown"), result.get("nit"),
    )
    return result
