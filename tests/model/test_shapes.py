import numpy as np
import pytest

import greta.model.shapes as shapes
from greta.exceptions import ShapeError


class TestNormalize:
    def test_int(self) -> None:
        assert shapes.normalize_dim(3) == (3, 1)

    def test_one_element(self) -> None:
        assert shapes.normalize_dim([4]) == (4, 1)

    def test_pair(self) -> None:
        assert shapes.normalize_dim((2, 5)) == (2, 5)

    def test_rejects_empty_dimension(self) -> None:
        with pytest.raises(ShapeError):
            shapes.normalize_dim((0, 2))

    def test_rejects_three_dimensions(self) -> None:
        with pytest.raises(ShapeError):
            shapes.normalize_dim((1, 2, 3))

    def test_shape_of_value(self) -> None:
        assert shapes.shape_of_value(np.array(1.0)) == (1, 1)
        assert shapes.shape_of_value(np.zeros(3)) == (3, 1)
        assert shapes.shape_of_value(np.zeros((2, 4))) == (2, 4)

        with pytest.raises(ShapeError):
            shapes.shape_of_value(np.zeros((2, 2, 2)))


class TestBroadcast:
    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ((3, 1), (1, 1), (3, 1)),
            ((3, 1), (1, 4), (3, 4)),
            ((2, 2), (2, 2), (2, 2)),
            ((1, 5), (3, 5), (3, 5)),
        ],
    )
    def test_rule(self, a, b, expected) -> None:
        assert shapes.broadcast(a, b) == expected

    def test_commutative(self) -> None:
        pairs = [((3, 1), (1, 4)), ((1, 1), (2, 3)), ((2, 1), (2, 6))]

        for a, b in pairs:
            assert shapes.broadcast(a, b) == shapes.broadcast(b, a)

    def test_associative(self) -> None:
        a, b, c = (3, 1), (1, 4), (3, 4)
        left = shapes.broadcast(shapes.broadcast(a, b), c)
        right = shapes.broadcast(a, shapes.broadcast(b, c))
        assert left == right == shapes.broadcast(a, b, c)

    def test_incompatible(self) -> None:
        with pytest.raises(ShapeError, match="incompatible sizes"):
            shapes.broadcast((3, 1), (2, 1))


def test_matmul() -> None:
    assert shapes.matmul((3, 2), (2, 5)) == (3, 5)

    with pytest.raises(ShapeError):
        shapes.matmul((3, 2), (3, 2))


def test_solve() -> None:
    assert shapes.solve((3, 3), (3, 2)) == (3, 2)

    with pytest.raises(ShapeError, match="square"):
        shapes.solve((3, 2), (3, 1))

    with pytest.raises(ShapeError):
        shapes.solve((3, 3), (2, 1))


def test_reduce() -> None:
    assert shapes.reduce((3, 4)) == (1, 1)
    assert shapes.reduce((3, 4), axis=0) == (1, 4)
    assert shapes.reduce((3, 4), axis=1) == (3, 1)


def test_bind() -> None:
    assert shapes.bind([(3, 1), (3, 2)], axis=1) == (3, 3)
    assert shapes.bind([(1, 2), (4, 2)], axis=0) == (5, 2)

    with pytest.raises(ShapeError, match="rows"):
        shapes.bind([(3, 1), (2, 1)], axis=1)

    with pytest.raises(ShapeError, match="columns"):
        shapes.bind([(3, 1), (3, 2)], axis=0)


class TestIndex:
    def test_pair_keeps_two_dimensions(self) -> None:
        spec = shapes.index((3, 4), (0, slice(None)))
        assert spec.shape == (1, 4)
        assert spec.rows.tolist() == [0]
        assert spec.cols.tolist() == [0, 1, 2, 3]

    def test_linear_is_column_major_column(self) -> None:
        spec = shapes.index((3, 4), [0, 5, 11])
        assert spec.shape == (3, 1)
        assert spec.linear.tolist() == [0, 5, 11]

    def test_negative_and_mask(self) -> None:
        spec = shapes.index((3, 2), ([True, False, True], -1))
        assert spec.shape == (2, 1)
        assert spec.rows.tolist() == [0, 2]
        assert spec.cols.tolist() == [1]

    def test_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            shapes.index((3, 1), (3, 0))

        with pytest.raises(IndexError):
            shapes.index((3, 1), 3)

    def test_malformed(self) -> None:
        with pytest.raises(ShapeError):
            shapes.index((3, 3), (0, 1, 2))

        with pytest.raises(ShapeError):
            shapes.index((3, 3), (slice(0, 0), 1))

        with pytest.raises(TypeError):
            shapes.index((3, 3), True)

    def test_replace(self) -> None:
        spec = shapes.replace((3, 3), (slice(0, 2), 0), (2, 1))
        assert spec.shape == (3, 3)

        assert shapes.replace((3, 3), 4, (1, 1)).shape == (3, 3)

        with pytest.raises(ShapeError, match="does not fit"):
            shapes.replace((3, 3), (slice(0, 2), 0), (3, 1))
