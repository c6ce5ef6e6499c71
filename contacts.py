# contacts.py
"""Ground contact forces and impacts for the two feet of a floating-base robot.

Every foot touches the ground through 4 vertices fixed in its sole frame. Each
step the solver

    1. builds the linear Jacobians of the 8 vertices,
    2. flags the vertices whose world height is <= 0 as in contact,
    3. predicts the vertex accelerations without contact forces,
    4. solves a QP for the vertex forces (friction pyramid, unilateral,
       no force on vertices that are not touching the ground),
    5. maps the forces to a generalized wrench and to sole-frame wrenches,
    6. projects the velocity if a vertex has just hit the ground,
    7. stores the contact flags for the next step.
"""

import logging

import numpy as np
import scipy.linalg

from config import ContactConfig, DEFAULT_WARM_START, NUM_FEET, NUM_VERTICES, QPSettings
from errors import ConfigurationError, SolverFailure
from qp import solve_qp
from robot import ContactOutput, ContactState, Robot, RobotSnapshot
from spatial import rotation, skew, transform_point

logger = logging.getLogger(__name__)

TOTAL_VERTICES = NUM_VERTICES * NUM_FEET
NUM_FORCES = 3 * TOTAL_VERTICES

# relative eigenvalue threshold of J M^-1 J^T below which a direction is singular
RANK_TOLERANCE = 1e-10


def friction_cone(mu: float) -> np.ndarray:
    """Pyramidal friction cone plus non-negative normal force, for one vertex."""
    return np.array([
        [1.0, 0.0, -mu],
        [0.0, 1.0, -mu],
        [-1.0, 0.0, -mu],
        [0.0, -1.0, -mu],
        [0.0, 0.0, -1.0],
    ])


class ContactSolver:
    """Resolves foot contact forces and impacts, one call per timestep."""

    def __init__(
            self,
            footprint: np.ndarray,
            ndof: int,
            friction_coefficient: float,
            qp_settings: QPSettings | None = None,
            warm_start: float = DEFAULT_WARM_START,
            pinv_impacts: bool = False,
        ):
        """
        Args:
            footprint: 4x3 array, one row per vertex (xyz in the sole frame).
            ndof: number of actuated joints.
            friction_coefficient: Coulomb coefficient used for the friction pyramid.
            qp_settings: OSQP settings for the force problem.
            warm_start: initial guess for every force component.
            pinv_impacts: how to handle redundant impact constraints. The
                vertices of one rigid sole are never independent, so a flat
                landing, or a sole settling after one vertex has already
                touched, gives a singular impact projector. With the default
                False such a step raises SolverFailure; pass True to project
                with a pseudo-inverse instead. Simulations with ordinary
                landings need True.
        """
        self.footprint = self._validate_footprint(footprint)
        self.ndof = self._validate_ndof(ndof)
        self.mu = self._validate_mu(friction_coefficient)
        self.qp_settings = qp_settings or QPSettings()

        # torques only act on the joints, never on the floating base
        self.S = np.vstack((np.zeros((6, self.ndof)), np.eye(self.ndof)))
        self.S.flags.writeable = False

        self._prepare_optimization_matrix()
        self.x0 = np.full(NUM_FORCES, float(warm_start))
        self.pinv_impacts = pinv_impacts

        # NOTE: every vertex starts flagged as in contact, so an impact in the
        # very first step does not trigger a velocity projection.
        self._state = ContactState()

        self.last_forces = None
        self.last_heights = None

    @classmethod
    def from_config(cls, config: ContactConfig, ndof: int) -> "ContactSolver":
        return cls(
            config.footprint,
            ndof,
            config.friction_coefficient,
            qp_settings=config.qp,
            warm_start=config.warm_start,
            pinv_impacts=config.pinv_impacts,
        )

    # --- Public interface ----------------------------------------------------

    @property
    def contact_state(self) -> ContactState:
        return self._state.copy()

    def reset(self):
        """Back to the construction-time contact history."""
        self._state = ContactState()
        self.last_forces = None
        self.last_heights = None

    def compute_contact(
            self,
            robot: Robot,
            torque: np.ndarray,
            generalized_ext_wrench: np.ndarray,
            base_velocity: np.ndarray,
            joint_velocity: np.ndarray,
        ) -> ContactOutput:
        """Contact forces and configuration velocity after a (possible) impact.

        Args:
            robot: dynamics provider, queried read-only.
            torque: joint torques (ndof).
            generalized_ext_wrench: external wrench already mapped to the
                generalized coordinates (6 + ndof).
            base_velocity, joint_velocity: configuration velocity before the step.

        Returns:
            ContactOutput with the external plus contact generalized wrench,
            the wrenches in the two sole frames and the configuration velocity
            (unchanged unless a vertex has just hit the ground).
        """
        snapshot = RobotSnapshot.from_robot(robot)
        nv = 6 + self.ndof
        if snapshot.nv != nv:
            raise ValueError(f"Robot has {snapshot.nv} velocity DOF, solver expects {nv}.")

        torque = self._as_vector(torque, self.ndof, "torque")
        generalized_ext_wrench = self._as_vector(generalized_ext_wrench, nv, "generalized_ext_wrench")
        base_velocity = self._as_vector(base_velocity, 6, "base_velocity")
        joint_velocity = self._as_vector(joint_velocity, self.ndof, "joint_velocity")

        M_factor = self._factorize_mass_matrix(snapshot.M)
        J_feet, JDot_nu_feet = self.compute_J_and_JDot_nu(snapshot)

        state = self._state.copy()
        heights, state.current = self.compute_contact_points(snapshot)

        forces = self.compute_unilateral_linear_contact(
            J_feet, M_factor, snapshot.h, torque, JDot_nu_feet, heights, generalized_ext_wrench
        )

        generalized_total_wrench = generalized_ext_wrench + J_feet.T @ forces
        wrench_left_foot, wrench_right_foot = self.compute_contact_wrench_in_sole_frames(forces, snapshot)

        base_velocity, joint_velocity = self.compute_velocity(
            M_factor, J_feet, state, base_velocity, joint_velocity
        )

        self.last_forces = forces.copy()
        self.last_heights = heights.copy()

        # single mutation point of the contact history
        state.commit()
        self._state = state

        return ContactOutput(
            generalized_total_wrench,
            wrench_left_foot,
            wrench_right_foot,
            base_velocity,
            joint_velocity,
        )

    # --- Pipeline steps --------------------------------------------------------

    def compute_J_and_JDot_nu(self, snapshot: RobotSnapshot) -> tuple[np.ndarray, np.ndarray]:
        """Jacobian and JDot_nu of the vertices (not of the sole frames).

        A vertex only receives a pure force, so only its linear Jacobian is
        needed:  J_i = J_linear - skew(R p_i) J_angular.
        """
        J_blocks = []
        JDot_nu_blocks = []
        feet = (
            (snapshot.H_left, snapshot.J_left, snapshot.JDot_nu_left),
            (snapshot.H_right, snapshot.J_right, snapshot.JDot_nu_right),
        )
        for H, J, JDot_nu in feet:
            R = rotation(H)
            for p in self.footprint:
                S_p = skew(R @ p)
                J_blocks.append(J[:3] - S_p @ J[3:])
                JDot_nu_blocks.append(JDot_nu[:3] - S_p @ JDot_nu[3:])

        return np.vstack(J_blocks), np.concatenate(JDot_nu_blocks)

    def compute_contact_points(self, snapshot: RobotSnapshot) -> tuple[np.ndarray, np.ndarray]:
        """World height of every vertex and the resulting contact flags."""
        heights = np.array([
            transform_point(H, p)[2]
            for H in (snapshot.H_left, snapshot.H_right)
            for p in self.footprint
        ])
        return heights, heights <= 0

    def compute_free_acceleration(self, M_factor, h, torque, generalized_ext_wrench) -> np.ndarray:
        """dot{nu} = M^-1 (S tau + f_ext - h), i.e. with no contact forces."""
        return scipy.linalg.cho_solve(M_factor, self.S @ torque + generalized_ext_wrench - h)

    def compute_free_contact_acceleration(self, J_feet, free_acceleration, JDot_nu_feet) -> np.ndarray:
        return J_feet @ free_acceleration + JDot_nu_feet

    def compute_unilateral_linear_contact(
            self, J_feet, M_factor, h, torque, JDot_nu_feet, heights, generalized_ext_wrench
        ) -> np.ndarray:
        """Pure forces acting on the feet vertices, stacked as [f_0; ...; f_7]."""
        free_acceleration = self.compute_free_acceleration(M_factor, h, torque, generalized_ext_wrench)
        free_contact_acceleration = self.compute_free_contact_acceleration(
            J_feet, free_acceleration, JDot_nu_feet
        )

        H = J_feet @ scipy.linalg.cho_solve(M_factor, J_feet.T)
        if not np.array_equal(H, H.T):
            logger.debug("Symmetrizing contact Hessian (max asymmetry %.3g).", np.abs(H - H.T).max())
            H = (H + H.T) / 2

        Aeq, beq = self.equality_constraints(heights)

        try:
            return solve_qp(
                H, free_contact_acceleration, self.A, self.b, Aeq, beq,
                x0=self.x0, settings=self.qp_settings,
            )
        except SolverFailure:
            logger.error("Contact force QP failed; contact heights: %s", np.round(heights, 6))
            raise

    def equality_constraints(self, heights: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Zero vertical force on every vertex above the ground."""
        Aeq = self.Aeq.copy()
        for i, z in enumerate(heights):
            Aeq[i, 3 * i + 2] = float(z > 0)
        return Aeq, self.beq

    def compute_contact_wrench_in_sole_frames(
            self, contact_forces: np.ndarray, snapshot: RobotSnapshot
        ) -> tuple[np.ndarray, np.ndarray]:
        """Vertex forces summed into a [force; moment] wrench per sole frame."""
        wrenches = []
        forces = contact_forces.reshape(NUM_FEET, NUM_VERTICES, 3)
        for H, foot_forces in zip((snapshot.H_left, snapshot.H_right), forces):
            R = rotation(H)
            wrench = np.zeros(6)
            for p, f in zip(self.footprint, foot_forces):
                f_sole = R.T @ f
                wrench[:3] += f_sole
                wrench[3:] -= skew(p) @ f_sole
            wrenches.append(wrench)
        return wrenches[0], wrenches[1]

    def compute_velocity(
            self, M_factor, J_feet, state: ContactState, base_velocity, joint_velocity
        ) -> tuple[np.ndarray, np.ndarray]:
        """Configuration velocity after the step.

        Unchanged without impact. When a vertex hits the ground, the velocity
        is projected so that the new contacts and the ones already established
        have zero velocity (plastic impact).
        """
        impacts = state.impacts()
        if not impacts.any():
            return base_velocity, joint_velocity

        rows = np.concatenate((
            self._vertex_rows(np.flatnonzero(impacts)),
            self._vertex_rows(np.flatnonzero(state.previous)),
        ))
        J = J_feet[rows]
        logger.debug("Impact on vertices %s.", np.flatnonzero(impacts).tolist())

        N = self.null_space_projector(M_factor, J)
        x = N @ np.concatenate((base_velocity, joint_velocity))
        return x[:6], x[6:]

    def null_space_projector(self, M_factor, J: np.ndarray) -> np.ndarray:
        """N = I - M^-1 J^T (J M^-1 J^T)^-1 J, with a pseudo-inverse if pinv_impacts is set."""
        Minv_Jt = scipy.linalg.cho_solve(M_factor, J.T)
        Lambda_inv = J @ Minv_Jt
        nv = J.shape[1]

        w, V = np.linalg.eigh((Lambda_inv + Lambda_inv.T) / 2)
        keep = w > RANK_TOLERANCE * max(w.max(), 0.0)
        rank = int(keep.sum())
        if rank < Lambda_inv.shape[0]:
            if not self.pinv_impacts:
                raise SolverFailure(
                    f"Impact Jacobian is rank deficient (rank {rank}, {J.shape[0]} constrained rows).",
                    status="singular impact projector",
                )
            # redundant rows of one rigid sole: J nu = 0 is still consistent
            logger.debug("Redundant impact constraints (rank %d of %d).", rank, J.shape[0])

        Lambda = (V[:, keep] / w[keep]) @ V[:, keep].T
        return np.eye(nv) - Minv_Jt @ Lambda @ J

    # --- Private methods -----------------------------------------------------

    def _prepare_optimization_matrix(self):
        """Fill the matrices of the force optimization problem."""
        self.A = scipy.linalg.block_diag(*[friction_cone(self.mu)] * TOTAL_VERTICES)
        self.b = np.zeros(self.A.shape[0])
        self.A.flags.writeable = False
        self.b.flags.writeable = False

        self.Aeq = np.zeros((TOTAL_VERTICES, NUM_FORCES))
        self.beq = np.zeros(TOTAL_VERTICES)
        self.Aeq.flags.writeable = False
        self.beq.flags.writeable = False

    def _factorize_mass_matrix(self, M: np.ndarray):
        try:
            return scipy.linalg.cho_factor(M)
        except np.linalg.LinAlgError as e:
            raise SolverFailure("Mass matrix is not positive definite.", status="invalid mass matrix") from e

    @staticmethod
    def _vertex_rows(vertices: np.ndarray) -> np.ndarray:
        return (3 * np.asarray(vertices, dtype=int)[:, None] + np.arange(3)).reshape(-1)

    @staticmethod
    def _as_vector(value, size: int, name: str) -> np.ndarray:
        v = np.asarray(value, dtype=float).reshape(-1)
        if v.shape != (size,):
            raise ValueError(f"Parameter '{name}' must have {size} entries, got {v.size}.")
        return v

    @staticmethod
    def _validate_footprint(footprint) -> np.ndarray:
        fp = np.array(footprint, dtype=float)
        if fp.shape != (NUM_VERTICES, 3):
            raise ConfigurationError(
                f"The foot print must be a {NUM_VERTICES}x3 array, one row of xyz "
                f"coordinates per vertex; got shape {fp.shape}."
            )
        if not np.all(np.isfinite(fp)):
            raise ConfigurationError("The foot print coordinates must be finite.")
        fp.flags.writeable = False
        return fp

    @staticmethod
    def _validate_ndof(ndof) -> int:
        if isinstance(ndof, bool) or not isinstance(ndof, (int, np.integer)) or ndof < 0:
            raise ConfigurationError(f"Actuated DOF must be a non-negative integer, got {ndof!r}.")
        return int(ndof)

    @staticmethod
    def _validate_mu(mu) -> float:
        try:
            mu = float(mu)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Friction coefficient must be a number, got {mu!r}.") from e
        if not np.isfinite(mu) or mu <= 0:
            raise ConfigurationError(f"Friction coefficient must be positive, got {mu}.")
        return mu
