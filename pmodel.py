# pmodel.py
# Floating-base robot model for the contact solver, backed by Pinocchio

import logging

import numpy as np
import pinocchio as pin

from config import RobotConfig
from errors import ConfigurationError

logger = logging.getLogger(__name__)


class PinocchioModel:
    """Wrapper class exposing the dynamics queries used by ContactSolver.

    The velocity is the free-flyer base followed by the actuated joints in
    ``joint_order``, whatever their order in the URDF tree. Base velocity
    follows the Pinocchio free-flyer convention (linear and angular velocity
    in the base frame); foot Jacobians and JDot_nu are expressed in the
    world-aligned frame of each sole.
    """

    def __init__(self, config: RobotConfig | None = None, model: pin.Model | None = None):
        """Initialize the robot model and data.

        Args:
            config: robot description and initial conditions.
            model: an already built model with a free-flyer root joint. When
                given, the URDF in ``config`` is ignored, the joints keep the
                model's own order and the robot starts at the neutral
                configuration.
        """
        self.config = config or RobotConfig()
        if model is None:
            self.model = self._load_model()
            self.joint_order = list(self.config.joint_order)
        else:
            self.model = model
            self.joint_order = None
        self.model.gravity = pin.Motion(np.array([0.0, 0.0, -self.config.gravity]), np.zeros(3))
        self.data = self.model.createData()

        self.ndof = self.model.nv - 6
        self._idx_q, self._idx_v = self._joint_indices(self.joint_order)
        # velocity permutation from Pinocchio order to (base, joint_order)
        self._perm = np.concatenate((np.arange(6), self._idx_v))
        self.left_foot_id = self._frame_id(self.config.left_foot_frame)
        self.right_foot_id = self._frame_id(self.config.right_foot_frame)

        if model is not None:
            self.q = pin.neutral(self.model)
            self.v = np.zeros(self.model.nv)
            self._update()
        else:
            self.set_state(
                self.config.initial_base_pose(),
                self.config.joints,
                self.config.base_velocity,
                self.config.initial_joint_velocity(),
            )

    # --- Private methods -----------------------------------------------------

    def _load_model(self) -> pin.Model:
        """Load the robot from URDF and keep only the joints in the joint order."""
        model = pin.buildModelFromUrdf(str(self.config.urdf_path), pin.JointModelFreeFlyer())

        kept = set(self.config.joint_order)
        if len(kept) != len(self.config.joint_order):
            raise ConfigurationError(f"Joint order has duplicate names: {self.config.joint_order}")
        missing = kept.difference(model.names)
        if missing:
            raise ConfigurationError(f"Joints not found in {self.config.urdf_path}: {sorted(missing)}")

        # index 0 is the universe, index 1 the free-flyer
        locked = [i for i, name in enumerate(model.names) if i > 1 and name not in kept]
        if locked:
            model = pin.buildReducedModel(model, locked, pin.neutral(model))
        logger.info("Loaded %s: nq=%d, nv=%d", self.config.urdf_path, model.nq, model.nv)
        return model

    def _joint_indices(self, names) -> tuple[np.ndarray, np.ndarray]:
        """Return the q and v indices of the named joints, in the given order."""
        if names is None:
            return np.arange(7, self.model.nq), np.arange(6, self.model.nv)

        idx_q, idx_v = [], []
        for name in names:
            joint = self.model.joints[self.model.getJointId(name)]
            if joint.nq != 1 or joint.nv != 1:
                raise ConfigurationError(
                    f"Joint '{name}' must have one degree of freedom (nq={joint.nq}, nv={joint.nv})."
                )
            idx_q.append(joint.idx_q)
            idx_v.append(joint.idx_v)
        if len(idx_v) != self.ndof:
            raise ConfigurationError(f"Joint order names {len(idx_v)} joints, the model has {self.ndof}.")
        return np.array(idx_q, dtype=int), np.array(idx_v, dtype=int)

    def _frame_id(self, name: str) -> int:
        if not self.model.existFrame(name):
            raise ConfigurationError(f"Frame '{name}' not found in the robot model.")
        return self.model.getFrameId(name)

    def _update(self):
        """Recompute every quantity queried by the contact solver."""
        model, data, q, v = self.model, self.data, self.q, self.v
        perm = self._perm

        M = pin.crba(model, data, q)
        M = np.triu(M) + np.triu(M, 1).T
        self._M = M[np.ix_(perm, perm)]
        self._h = pin.nonLinearEffects(model, data, q, v)[perm]

        pin.computeJointJacobians(model, data, q)
        pin.updateFramePlacements(model, data)
        feet = (self.left_foot_id, self.right_foot_id)
        self._H_feet = tuple(data.oMf[fid].homogeneous.copy() for fid in feet)
        self._J_feet = tuple(
            pin.getFrameJacobian(model, data, fid, pin.LOCAL_WORLD_ALIGNED)[:, perm] for fid in feet
        )

        # classical acceleration with zero joint acceleration is JDot * nu
        pin.forwardKinematics(model, data, q, v, np.zeros(model.nv))
        self._JDot_nu_feet = tuple(
            pin.getFrameClassicalAcceleration(model, data, fid, pin.LOCAL_WORLD_ALIGNED).vector.copy()
            for fid in feet
        )

    def _model_velocity(self, base_velocity, joint_velocity) -> np.ndarray:
        v = np.zeros(self.model.nv)
        v[:6] = base_velocity
        v[self._idx_v] = joint_velocity
        return v

    # --- State ---------------------------------------------------------------

    def set_state(self, base_pose: np.ndarray, joints, base_velocity, joint_velocity):
        """Set configuration and velocity.

        Joint values follow ``joint_order`` when the model was loaded from a
        URDF, and the model's joint order otherwise.

        Args:
            base_pose: 4x4 world transform of the base.
            joints, joint_velocity: ndof entries each.
            base_velocity: 6 entries (linear, angular) in the base frame.
        """
        base_pose = np.asarray(base_pose, dtype=float)
        if base_pose.shape != (4, 4):
            raise ValueError(f"Parameter 'base_pose' must be 4x4, got {base_pose.shape}.")
        joints = np.asarray(joints, dtype=float).reshape(-1)
        base_velocity = np.asarray(base_velocity, dtype=float).reshape(-1)
        joint_velocity = np.asarray(joint_velocity, dtype=float).reshape(-1)
        if joints.shape != (self.ndof,) or joint_velocity.shape != (self.ndof,):
            raise ValueError(f"Joint position and velocity must have {self.ndof} entries.")
        if base_velocity.shape != (6,):
            raise ValueError(f"Parameter 'base_velocity' must have 6 entries, got {base_velocity.size}.")

        placement = pin.SE3(base_pose[:3, :3], base_pose[:3, 3])
        q = np.zeros(self.model.nq)
        q[:7] = pin.SE3ToXYZQUAT(placement)
        q[self._idx_q] = joints
        self.q = q
        self.v = self._model_velocity(base_velocity, joint_velocity)
        self._update()

    def integrate(self, base_velocity, joint_velocity, dt: float):
        """Advance the configuration by dt with the given velocity."""
        self.v = self._model_velocity(
            np.asarray(base_velocity, dtype=float), np.asarray(joint_velocity, dtype=float)
        )
        self.q = pin.integrate(self.model, self.q, self.v * dt)
        self._update()

    def base_pose(self) -> np.ndarray:
        return pin.XYZQUATToSE3(self.q[:7]).homogeneous

    def joint_positions(self) -> np.ndarray:
        return self.q[self._idx_q]

    def base_velocity(self) -> np.ndarray:
        return self.v[:6].copy()

    def joint_velocity(self) -> np.ndarray:
        return self.v[self._idx_v]

    def total_mass(self) -> float:
        return pin.computeTotalMass(self.model)

    # --- Dynamics queries ----------------------------------------------------

    def mass_matrix(self) -> np.ndarray:
        return self._M.copy()

    def bias_forces(self) -> np.ndarray:
        return self._h.copy()

    def feet_transforms(self) -> tuple[np.ndarray, np.ndarray]:
        return self._H_feet[0].copy(), self._H_feet[1].copy()

    def feet_jacobians(self) -> tuple[np.ndarray, np.ndarray]:
        return self._J_feet[0].copy(), self._J_feet[1].copy()

    def feet_jacobian_time_derivative_contraction(self) -> tuple[np.ndarray, np.ndarray]:
        return self._JDot_nu_feet[0].copy(), self._JDot_nu_feet[1].copy()

    # --- Public utility ------------------------------------------------------

    def print_info(self):
        """Print basic robot information."""
        print(f"Model DOF (nq): {self.model.nq}")
        print(f"Velocity DOF (nv): {self.model.nv}")
        print("Joint order:", self.joint_order or list(self.model.names)[2:])
        print(f"Total mass: {self.total_mass():.3f} kg")


# --- Standalone test --------------------------------------------------------
def main():
    robot = PinocchioModel()
    robot.print_info()
    print("Initial configuration q0:\n", robot.q)


if __name__ == "__main__":
    main()
