import unittest

import numpy as np

from spatial import rotation, skew, transform_from_rpy, transform_point


class TestSpatial(unittest.TestCase):

    def test_skew_is_cross_product(self):
        a = np.array([0.3, -1.2, 2.0])
        b = np.array([-0.7, 0.4, 1.1])
        np.testing.assert_allclose(skew(a) @ b, np.cross(a, b))
        np.testing.assert_array_equal(skew(a), -skew(a).T)

    def test_transform_point(self):
        H = transform_from_rpy([1.0, 2.0, 3.0], [0.0, 0.0, np.pi / 2])
        np.testing.assert_allclose(transform_point(H, np.array([1.0, 0.0, 0.0])), [1.0, 3.0, 3.0], atol=1e-12)
        np.testing.assert_allclose(H[:3, 3], [1.0, 2.0, 3.0])
        np.testing.assert_allclose(rotation(H) @ rotation(H).T, np.eye(3), atol=1e-12)


if __name__ == "__main__":
    unittest.main(verbosity=2)
