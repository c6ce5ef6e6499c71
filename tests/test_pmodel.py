import tempfile
import unittest
from pathlib import Path

import numpy as np

from config import DEFAULT_FOOTPRINT, GRAVITY_ACC, RobotConfig
from contacts import ContactSolver
from errors import ConfigurationError
from pmodel import PinocchioModel
from sample_robot import TOTAL_MASS, build_model, standing_pose


class TestPinocchioModel(unittest.TestCase):

    def setUp(self):
        self.robot = PinocchioModel(model=build_model())
        self.robot.set_state(standing_pose(), np.zeros(1), np.zeros(6), np.zeros(1))

    def test_dimensions(self):
        self.assertEqual(self.robot.ndof, 1)
        self.assertEqual(self.robot.mass_matrix().shape, (7, 7))
        self.assertAlmostEqual(self.robot.total_mass(), TOTAL_MASS)

    def test_mass_matrix_is_symmetric(self):
        M = self.robot.mass_matrix()
        np.testing.assert_allclose(M, M.T)
        self.assertAlmostEqual(M[2, 2], TOTAL_MASS)

    def test_bias_forces_at_rest_are_gravity(self):
        h = self.robot.bias_forces()
        self.assertAlmostEqual(h[2], TOTAL_MASS * GRAVITY_ACC, places=6)
        np.testing.assert_allclose(h[:2], np.zeros(2), atol=1e-9)

    def test_feet(self):
        H_left, H_right = self.robot.feet_transforms()
        np.testing.assert_allclose(H_left[:3, 3], [0.0, 0.1, 0.0], atol=1e-12)
        np.testing.assert_allclose(H_right[:3, 3], [0.0, -0.1, 0.0], atol=1e-12)

        J_left, _ = self.robot.feet_jacobians()
        nu = np.array([0.0, 0.0, -1.0, 0.0, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(J_left @ nu, [0.0, 0.0, -1.0, 0.0, 0.0, 0.0], atol=1e-12)

        JDot_nu_left, JDot_nu_right = self.robot.feet_jacobian_time_derivative_contraction()
        np.testing.assert_allclose(JDot_nu_left, np.zeros(6), atol=1e-12)
        np.testing.assert_allclose(JDot_nu_right, np.zeros(6), atol=1e-12)

    def test_integrate(self):
        self.robot.integrate(np.array([0.0, 0.0, -1.0, 0.0, 0.0, 0.0]), np.zeros(1), 0.01)
        self.assertAlmostEqual(self.robot.base_pose()[2, 3], 0.49)
        np.testing.assert_allclose(self.robot.base_velocity(), [0.0, 0.0, -1.0, 0.0, 0.0, 0.0])

    def test_invalid_state(self):
        with self.assertRaises(ValueError):
            self.robot.set_state(standing_pose(), np.zeros(2), np.zeros(6), np.zeros(2))
        with self.assertRaises(ValueError):
            self.robot.set_state(np.eye(3), np.zeros(1), np.zeros(6), np.zeros(1))

    def test_missing_frame(self):
        with self.assertRaises(ConfigurationError):
            PinocchioModel(RobotConfig(left_foot_frame="l_foot"), model=build_model())

    def test_standing_on_both_feet(self):
        solver = ContactSolver(DEFAULT_FOOTPRINT, self.robot.ndof, 1.0)
        out = solver.compute_contact(self.robot, np.zeros(1), np.zeros(7), np.zeros(6), np.zeros(1))

        weight = TOTAL_MASS * GRAVITY_ACC
        self.assertTrue(solver.contact_state.current.all())
        np.testing.assert_allclose(solver.last_forces.reshape(8, 3)[:, 2].sum(), weight, rtol=1e-4)
        np.testing.assert_allclose(out.left_foot_wrench[2] + out.right_foot_wrench[2], weight, rtol=1e-4)


def link(name: str, mass: float, com_z: float) -> str:
    return f"""
  <link name="{name}">
    <inertial>
      <origin xyz="0 0 {com_z}" rpy="0 0 0"/>
      <mass value="{mass}"/>
      <inertia ixx="0.01" ixy="0" ixz="0" iyy="0.01" iyz="0" izz="0.01"/>
    </inertial>
  </link>"""


def joint(name: str, parent: str, child: str, z: float, kind: str = "revolute", y: float = 0.0) -> str:
    limit = '<axis xyz="0 1 0"/><limit lower="-3" upper="3" effort="100" velocity="10"/>'
    return f"""
  <joint name="{name}" type="{kind}">
    <parent link="{parent}"/>
    <child link="{child}"/>
    <origin xyz="0 {y} {z}" rpy="0 0 0"/>
    {limit if kind == "revolute" else ""}
  </joint>"""


# a serial leg base -> b_joint -> a_joint -> extra_joint, soles fixed to the base
CHAIN_URDF = (
    '<?xml version="1.0"?>\n<robot name="chain">'
    + link("base", 10.0, 0.0)
    + link("link_b", 1.0, -0.1)
    + link("link_a", 1.0, -0.1)
    + link("link_extra", 0.5, -0.1)
    + '\n  <link name="l_sole"/>\n  <link name="r_sole"/>'
    + joint("b_joint", "base", "link_b", -0.1)
    + joint("a_joint", "link_b", "link_a", -0.2)
    + joint("extra_joint", "link_a", "link_extra", -0.2)
    + joint("l_sole_fixed", "base", "l_sole", -0.5, kind="fixed", y=0.1)
    + joint("r_sole_fixed", "base", "r_sole", -0.5, kind="fixed", y=-0.1)
    + "\n</robot>\n"
)


class TestURDFLoading(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.urdf_path = Path(self.tmp.name) / "chain.urdf"
        self.urdf_path.write_text(CHAIN_URDF)

    def tearDown(self):
        self.tmp.cleanup()

    def make_config(self, joint_order, joints=(0.3, -0.2), joints_velocity=(1.0, -2.0)) -> RobotConfig:
        # joint order deliberately differs from the tree order (b before a)
        return RobotConfig(
            urdf_path=self.urdf_path,
            joint_order=list(joint_order),
            joints=np.array(joints),
            joints_velocity=np.array(joints_velocity),
        )

    def test_unlisted_joint_is_locked(self):
        robot = PinocchioModel(self.make_config(["a_joint", "b_joint"]))
        self.assertEqual(robot.ndof, 2)
        self.assertEqual(robot.model.nv, 8)
        self.assertNotIn("extra_joint", list(robot.model.names))
        # the locked link still carries its mass
        self.assertAlmostEqual(robot.total_mass(), 12.5)

    def test_missing_joint_raises(self):
        with self.assertRaises(ConfigurationError):
            PinocchioModel(self.make_config(["a_joint", "knee_joint"]))

    def test_duplicate_joint_raises(self):
        with self.assertRaises(ConfigurationError):
            PinocchioModel(self.make_config(["a_joint", "a_joint"]))

    def test_configured_values_land_on_named_joints(self):
        robot = PinocchioModel(self.make_config(["a_joint", "b_joint"]))
        model = robot.model
        a = model.joints[model.getJointId("a_joint")]
        b = model.joints[model.getJointId("b_joint")]

        self.assertAlmostEqual(robot.q[a.idx_q], 0.3)
        self.assertAlmostEqual(robot.q[b.idx_q], -0.2)
        self.assertAlmostEqual(robot.v[a.idx_v], 1.0)
        self.assertAlmostEqual(robot.v[b.idx_v], -2.0)
        np.testing.assert_allclose(robot.joint_positions(), [0.3, -0.2])
        np.testing.assert_allclose(robot.joint_velocity(), [1.0, -2.0])

    def test_dynamics_follow_joint_order(self):
        robot = PinocchioModel(self.make_config(["a_joint", "b_joint"]))
        M = robot.mass_matrix()
        # b_joint moves the whole leg, a_joint only its lower part
        self.assertLess(M[6, 6], M[7, 7])
        np.testing.assert_allclose(M, M.T)

        swapped = PinocchioModel(self.make_config(["b_joint", "a_joint"], joints=(-0.2, 0.3),
                                                  joints_velocity=(-2.0, 1.0)))
        np.testing.assert_allclose(swapped.mass_matrix()[6:, 6:], M[6:, 6:][::-1, ::-1], atol=1e-12)
        np.testing.assert_allclose(swapped.bias_forces()[6:], robot.bias_forces()[6:][::-1], atol=1e-9)
        np.testing.assert_allclose(swapped.q, robot.q)

    def test_integrate_keeps_joint_order(self):
        robot = PinocchioModel(self.make_config(["a_joint", "b_joint"], joints_velocity=(0.0, 0.0)))
        robot.integrate(np.zeros(6), np.array([1.0, 0.0]), 0.1)
        np.testing.assert_allclose(robot.joint_positions(), [0.4, -0.2])
        a = robot.model.joints[robot.model.getJointId("a_joint")]
        self.assertAlmostEqual(robot.q[a.idx_q], 0.4)


if __name__ == "__main__":
    unittest.main(verbosity=2)
