# robot.py

from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

import numpy as np

from config import NUM_FEET, NUM_VERTICES


class Robot(Protocol):
    """Read-only dynamics queries the contact solver needs every step."""

    def mass_matrix(self) -> np.ndarray: ...

    def bias_forces(self) -> np.ndarray: ...

    def feet_transforms(self) -> tuple[np.ndarray, np.ndarray]: ...

    def feet_jacobians(self) -> tuple[np.ndarray, np.ndarray]: ...

    def feet_jacobian_time_derivative_contraction(self) -> tuple[np.ndarray, np.ndarray]: ...


@dataclass(frozen=True)
class RobotSnapshot:
    """Dynamics quantities captured once per timestep."""
    M: np.ndarray  # n x n
    h: np.ndarray  # n
    H_left: np.ndarray  # 4 x 4, world <- sole
    H_right: np.ndarray
    J_left: np.ndarray  # 6 x n, [linear; angular]
    J_right: np.ndarray
    JDot_nu_left: np.ndarray  # 6
    JDot_nu_right: np.ndarray

    @property
    def nv(self) -> int:
        return self.M.shape[0]

    @classmethod
    def from_robot(cls, robot: Robot) -> "RobotSnapshot":
        M = np.asarray(robot.mass_matrix(), dtype=float)
        h = np.asarray(robot.bias_forces(), dtype=float).reshape(-1)
        H_left, H_right = (np.asarray(H, dtype=float) for H in robot.feet_transforms())
        J_left, J_right = (np.asarray(J, dtype=float) for J in robot.feet_jacobians())
        JDot_nu_left, JDot_nu_right = (
            np.asarray(a, dtype=float).reshape(-1)
            for a in robot.feet_jacobian_time_derivative_contraction()
        )

        n = M.shape[0]
        if M.shape != (n, n):
            raise ValueError(f"Mass matrix must be square, got {M.shape}.")
        if h.shape != (n,):
            raise ValueError(f"Bias forces must have shape ({n},), got {h.shape}.")
        for name, H in (("left", H_left), ("right", H_right)):
            if H.shape != (4, 4):
                raise ValueError(f"The {name} foot transform must be 4x4, got {H.shape}.")
        for name, J in (("left", J_left), ("right", J_right)):
            if J.shape != (6, n):
                raise ValueError(f"The {name} foot Jacobian must be 6x{n}, got {J.shape}.")
        for name, a in (("left", JDot_nu_left), ("right", JDot_nu_right)):
            if a.shape != (6,):
                raise ValueError(f"The {name} foot JDot_nu must have 6 entries, got {a.shape}.")

        return cls(M, h, H_left, H_right, J_left, J_right, JDot_nu_left, JDot_nu_right)


def _all_in_contact() -> np.ndarray:
    return np.ones(NUM_VERTICES * NUM_FEET, dtype=bool)


@dataclass
class ContactState:
    """Per-vertex contact flags: left foot vertices first, then right foot."""
    previous: np.ndarray = field(default_factory=_all_in_contact)
    current: np.ndarray = field(default_factory=_all_in_contact)

    def impacts(self) -> np.ndarray:
        """Vertices that went from free to contact in this step."""
        return self.current & ~self.previous

    def commit(self):
        self.previous = self.current.copy()

    def copy(self) -> "ContactState":
        return ContactState(self.previous.copy(), self.current.copy())


class ContactOutput(NamedTuple):
    total_wrench: np.ndarray
    left_foot_wrench: np.ndarray
    right_foot_wrench: np.ndarray
    base_velocity: np.ndarray
    joint_velocity: np.ndarray
