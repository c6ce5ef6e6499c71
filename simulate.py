#!/usr/bin/env python3
"""
simulate.py - Example time-stepping loop using the foot contact solver
Drops the robot from its initial configuration and lets it land and stand
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
import scipy.linalg

from config import ContactConfig, RobotConfig, URDF_PATH
from contacts import ContactSolver
from errors import SolverFailure
from pmodel import PinocchioModel


class JointPDController:
    """Joint PD control towards a fixed posture."""

    def __init__(self, q_desired: np.ndarray, kp: float, kd: float):
        self.q_desired = np.asarray(q_desired, dtype=float).copy()
        self.kp = kp
        self.kd = kd

    def get_torque(self, q: np.ndarray, qd: np.ndarray) -> np.ndarray:
        qd_desired = np.zeros_like(qd)
        return self.kp * (self.q_desired - q) + self.kd * (qd_desired - qd)


def step(robot: PinocchioModel, solver: ContactSolver, torque: np.ndarray, ext_wrench: np.ndarray, dt: float):
    """Advance the robot by one semi-implicit Euler step."""
    M = robot.mass_matrix()
    h = robot.bias_forces()

    out = solver.compute_contact(robot, torque, ext_wrench, robot.base_velocity(), robot.joint_velocity())

    nu = np.concatenate((out.base_velocity, out.joint_velocity))
    nu_dot = scipy.linalg.solve(M, solver.S @ torque + out.total_wrench - h, assume_a='pos')
    nu = nu + dt * nu_dot

    robot.integrate(nu[:6], nu[6:], dt)
    return out


def run(robot: PinocchioModel, solver: ContactSolver, steps: int, dt: float,
        controller: JointPDController | None = None, verbose: bool = False) -> dict:
    """Run the simulation and record base height and vertical foot forces."""
    ext_wrench = np.zeros(robot.model.nv)
    history = {"time": [], "base_height": [], "left_fz": [], "right_fz": []}

    for k in range(steps):
        if controller is None:
            torque = np.zeros(robot.ndof)
        else:
            torque = controller.get_torque(robot.joint_positions(), robot.joint_velocity())

        out = step(robot, solver, torque, ext_wrench, dt)

        t = (k + 1) * dt
        history["time"].append(t)
        history["base_height"].append(robot.base_pose()[2, 3])
        history["left_fz"].append(out.left_foot_wrench[2])
        history["right_fz"].append(out.right_foot_wrench[2])

        if verbose:
            print(f"Time: {t:.3f}s | Height: {history['base_height'][-1]:.3f}m | "
                  f"Fz L/R: {out.left_foot_wrench[2]:.1f}/{out.right_foot_wrench[2]:.1f}N", end='\r')

    return {key: np.array(values) for key, values in history.items()}


def main():
    parser = argparse.ArgumentParser(description='Foot contact simulation')
    parser.add_argument('--urdf', type=Path, default=URDF_PATH, help='Robot URDF file')
    parser.add_argument('--steps', type=int, default=1000, help='Number of timesteps (default: 1000)')
    parser.add_argument('--dt', type=float, default=0.001, help='Timestep in seconds (default: 0.001)')
    parser.add_argument('--mu', type=float, default=1.0, help='Friction coefficient (default: 1.0)')
    parser.add_argument('--kp', type=float, default=0.0, help='Joint PD stiffness (default: 0, no control)')
    parser.add_argument('--kd', type=float, default=0.0, help='Joint PD damping (default: 0)')
    parser.add_argument('--strict-impacts', action='store_true',
                        help='Stop on redundant impact constraints instead of using a pseudo-inverse')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s',
    )

    robot_config = RobotConfig(urdf_path=args.urdf)
    robot = PinocchioModel(robot_config)
    contact_config = ContactConfig(friction_coefficient=args.mu, pinv_impacts=not args.strict_impacts)
    solver = ContactSolver.from_config(contact_config, robot.ndof)

    controller = None
    if args.kp > 0 or args.kd > 0:
        controller = JointPDController(robot.joint_positions(), args.kp, args.kd)

    print(f"[SIM] {args.urdf.name}: {robot.ndof} joints, {robot.total_mass():.2f} kg")
    try:
        history = run(robot, solver, args.steps, args.dt, controller, verbose=True)
    except SolverFailure as e:
        print(f"\n[SIM] Stopped: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nSimulation stopped")
        sys.exit(0)

    print(f"\n[SIM] Final base height: {history['base_height'][-1]:.3f}m")


if __name__ == "__main__":
    main()
