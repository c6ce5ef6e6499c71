# qp.py
"""Convex quadratic program interface.

Solves

    minimize    0.5 * x^T H x + g^T x
    subject to  A x <= b
                Aeq x == beq

with OSQP. Callers only see arrays in and a solution vector out; any status
other than a (possibly inaccurate) solution raises SolverFailure.
"""

import logging

import numpy as np
import osqp
import scipy.sparse as sp

from config import QPSettings
from errors import SolverFailure

logger = logging.getLogger(__name__)

ACCEPTED_STATUS = ("solved", "solved inaccurate")


def solve_qp(
        H: np.ndarray,
        g: np.ndarray,
        A: np.ndarray,
        b: np.ndarray,
        Aeq: np.ndarray,
        beq: np.ndarray,
        x0: np.ndarray | None = None,
        settings: QPSettings | None = None,
    ) -> np.ndarray:
    """Return the minimizer of the problem, or raise SolverFailure."""
    settings = settings or QPSettings()
    nx = H.shape[0]

    # OSQP expects l <= C x <= u and only the upper triangle of P
    C = sp.csc_matrix(np.vstack((A, Aeq)))
    lower = np.concatenate((np.full(A.shape[0], -np.inf), beq))
    upper = np.concatenate((b, beq))
    P = sp.csc_matrix(np.triu(H))

    prob = osqp.OSQP()
    prob.setup(P=P, q=np.asarray(g, dtype=float), A=C, l=lower, u=upper, **settings.as_dict())
    if x0 is not None:
        prob.warm_start(x=np.asarray(x0, dtype=float))

    res = prob.solve(raise_error=False)
    status = str(getattr(res.info, "status", "unknown"))

    if status not in ACCEPTED_STATUS or res.x is None:
        raise SolverFailure(f"Contact force QP failed with status '{status}'.", status=status)
    if status == "solved inaccurate":
        logger.warning("Contact force QP solved inaccurately (%d iterations).", res.info.iter)

    x = np.asarray(res.x, dtype=float)
    if x.shape != (nx,) or not np.all(np.isfinite(x)):
        raise SolverFailure("Contact force QP returned a non-finite solution.", status=status)
    return x
