# config.py
# Default parameters for the foot contact solver and the example robot

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np


# === Configuration ===
REPO_ROOT = Path(__file__).resolve().parent
URDF_PATH = REPO_ROOT / "robot_description" / "icub" / "model.urdf"

GRAVITY_ACC = 9.81
NUM_VERTICES = 4
NUM_FEET = 2

# Rectangular sole, one row per vertex (xyz in the sole frame)
DEFAULT_FOOTPRINT = np.array([
    [-0.07, -0.045, 0.0],
    [-0.07,  0.05,  0.0],
    [ 0.12, -0.045, 0.0],
    [ 0.12,  0.05,  0.0],
])

DEFAULT_FRICTION_COEFFICIENT = 1.0

# Initial guess handed to the QP, per force component (N)
DEFAULT_WARM_START = 100.0

JOINT_ORDER = [
    "torso_pitch", "torso_roll", "torso_yaw",
    "l_shoulder_pitch", "l_shoulder_roll", "l_shoulder_yaw", "l_elbow",
    "r_shoulder_pitch", "r_shoulder_roll", "r_shoulder_yaw", "r_elbow",
    "l_hip_pitch", "l_hip_roll", "l_hip_yaw", "l_knee", "l_ankle_pitch", "l_ankle_roll",
    "r_hip_pitch", "r_hip_roll", "r_hip_yaw", "r_knee", "r_ankle_pitch", "r_ankle_roll",
]

DEFAULT_JOINTS = np.array([
    0.1744, 0.0007, 0.0001,
    -0.1745, 0.4363, 0.6981, 0.2618,
    -0.1745, 0.4363, 0.6981, 0.2618,
    0.0003, 0.0000, -0.0001, 0.0004, -0.0004, 0.3,
    0.0002, 0.0001, -0.0002, 0.0004, -0.0005, 0.0003,
])


@dataclass
class QPSettings:
    """OSQP settings used for the contact force problem."""
    eps_abs: float = 1e-8
    eps_rel: float = 1e-8
    max_iter: int = 100000
    polishing: bool = True
    verbose: bool = False

    def as_dict(self) -> dict:
        return {
            "eps_abs": self.eps_abs,
            "eps_rel": self.eps_rel,
            "max_iter": self.max_iter,
            "polishing": self.polishing,
            "verbose": self.verbose,
        }


@dataclass
class ContactConfig:
    """Foot geometry and friction model."""
    footprint: np.ndarray = field(default_factory=lambda: DEFAULT_FOOTPRINT.copy())
    friction_coefficient: float = DEFAULT_FRICTION_COEFFICIENT
    warm_start: float = DEFAULT_WARM_START
    qp: QPSettings = field(default_factory=QPSettings)
    # Redundant impact constraints (e.g. a whole flat sole) make the impact
    # projector singular. False: raise SolverFailure. True: use a pseudo-inverse.
    pinv_impacts: bool = False


@dataclass
class RobotConfig:
    """Model file, joint order, sole frames and initial conditions."""
    urdf_path: Path = URDF_PATH
    joint_order: list = field(default_factory=lambda: list(JOINT_ORDER))
    left_foot_frame: str = "l_sole"
    right_foot_frame: str = "r_sole"
    gravity: float = GRAVITY_ACC
    base_position: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.70]))
    base_orientation: np.ndarray = field(default_factory=lambda: np.diag([-1.0, -1.0, 1.0]))
    joints: np.ndarray = field(default_factory=lambda: DEFAULT_JOINTS.copy())
    base_velocity: np.ndarray = field(default_factory=lambda: np.zeros(6))
    joints_velocity: np.ndarray | None = None

    def initial_joint_velocity(self) -> np.ndarray:
        if self.joints_velocity is None:
            return np.zeros(len(self.joint_order))
        return np.asarray(self.joints_velocity, dtype=float)

    def initial_base_pose(self) -> np.ndarray:
        H = np.eye(4)
        H[:3, :3] = self.base_orientation
        H[:3, 3] = self.base_position
        return H
