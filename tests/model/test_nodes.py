import numpy as np
import pytest

import greta.model as gm
from greta.exceptions import ShapeError
from greta.model.nodes import Kind, Transform


class TestArray:
    def test_data_is_column_vector(self, gb) -> None:
        x = gb.data([1.0, 2.0, 3.0], name="x")

        assert x.shape == (3, 1)
        assert x.kind is Kind.DATA
        assert x.is_data
        assert x.value.dtype == np.float32
        assert repr(x) == 'GretaArray(name="x", kind=data, shape=(3, 1))'

    def test_operators_build_operations(self, gb) -> None:
        x = gb.data(np.ones((2, 3)))
        y = 2.0 * x - 1.0

        assert y.kind is Kind.OPERATION
        assert y.operation == "subtract"
        assert y.shape == (2, 3)

        z = y.T @ x
        assert z.operation == "matmul"
        assert z.shape == (3, 3)

    def test_numpy_on_the_left(self, gb) -> None:
        x = gb.data([1.0, 2.0])
        y = np.array([[3.0], [4.0]]) + x

        assert isinstance(y, gm.GretaArray)
        assert y.shape == (2, 1)

    def test_operands_are_not_modified(self, gb) -> None:
        x = gb.variable(dim=3)
        y = x + 1.0

        assert x.kind is Kind.VARIABLE
        assert y.operands[0] is x
        assert len(gb) == 3

    def test_shape_error_leaves_graph_unchanged(self, gb) -> None:
        a = gb.data(np.ones((3, 1)))
        b = gb.data(np.ones((2, 1)))
        n = len(gb)

        with pytest.raises(ShapeError):
            a + b

        with pytest.raises(ShapeError):
            a @ b

        assert len(gb) == n

    def test_truth_value_is_unknown(self, gb) -> None:
        x = gb.variable()

        with pytest.raises(TypeError):
            bool(x)

    def test_mixing_graphs(self, gb) -> None:
        other = gm.GraphBuilder()
        x = gb.variable()
        y = other.variable()

        with pytest.raises(ValueError, match="different graph builder"):
            x + y

    def test_data_only_arrays_hold_values(self, gb) -> None:
        x = gb.variable()

        with pytest.raises(AttributeError):
            x.value

        with pytest.raises(AttributeError):
            gb.data(1.0).lower


class TestVariable:
    def test_transforms(self, gb) -> None:
        assert gb.variable().transform is Transform.IDENTITY
        assert gb.variable(lower=0.0).transform is Transform.LOG
        assert gb.variable(upper=1.0).transform is Transform.LOG
        assert gb.variable(lower=0.0, upper=1.0).transform is Transform.LOGIT

    def test_bounds_are_broadcast(self, gb) -> None:
        x = gb.variable(lower=[0.0, 1.0], dim=(2, 3))
        assert x.shape == (2, 3)
        assert x.lower.shape == (2, 3)
        assert np.all(np.isinf(x.upper))

    def test_shape_from_bounds(self, gb) -> None:
        assert gb.variable(lower=np.zeros(4)).shape == (4, 1)

    def test_mixed_bounds(self, gb) -> None:
        with pytest.raises(ValueError, match="all finite or all"):
            gb.variable(lower=[0.0, -np.inf])

    def test_lower_above_upper(self, gb) -> None:
        with pytest.raises(ValueError):
            gb.variable(lower=1.0, upper=0.0)

    def test_bounds_do_not_fit(self, gb) -> None:
        with pytest.raises(ShapeError):
            gb.variable(lower=np.zeros(3), dim=2)


class TestFunctions:
    @pytest.mark.parametrize(
        "fn, shape",
        [
            (gm.exp, (3, 2)),
            (gm.log1p, (3, 2)),
            (gm.ilogit, (3, 2)),
            (gm.sum, (1, 1)),
            (gm.mean, (1, 1)),
            (gm.rowsums, (3, 1)),
            (gm.rowmeans, (3, 1)),
            (gm.colsums, (1, 2)),
            (gm.colmeans, (1, 2)),
            (gm.t, (2, 3)),
        ],
    )
    def test_shapes(self, gb, fn, shape) -> None:
        x = gb.data(np.ones((3, 2)))
        assert fn(x).shape == shape

    def test_bind(self, gb) -> None:
        a = gb.data(np.ones((3, 1)))
        b = gb.variable(dim=(3, 2))

        assert gm.cbind(a, b).shape == (3, 3)
        assert gm.rbind(a.T, b.T).shape == (3, 3)

        with pytest.raises(ShapeError):
            gm.rbind(a, b)

    def test_chol_and_solve(self, gb) -> None:
        a = gb.data(np.eye(3))
        b = gb.data(np.ones((3, 2)))

        assert gm.chol(a).shape == (3, 3)
        assert gm.solve(a, b).shape == (3, 2)

        with pytest.raises(ShapeError):
            gm.chol(b)

    def test_plain_numbers_are_rejected(self) -> None:
        with pytest.raises(TypeError):
            gm.cbind(1.0, 2.0)


class TestIndexing:
    def test_index(self, gb) -> None:
        x = gb.data(np.arange(12.0).reshape(3, 4))

        assert x[0, :].shape == (1, 4)
        assert x[:, 1].shape == (3, 1)
        assert x[[0, 2], 1:3].shape == (2, 2)
        assert x[0:5].shape == (5, 1)

    def test_index_errors(self, gb) -> None:
        x = gb.data(np.ones((3, 4)))

        with pytest.raises(IndexError):
            x[3, 0]

        with pytest.raises(ShapeError):
            x[0, 0, 0]

    def test_assign(self, gb) -> None:
        x = gb.data(np.zeros((3, 3)))
        y = gm.assign(x, (0, slice(None)), gb.variable(dim=(1, 3)))

        assert y.shape == (3, 3)
        assert y.operation == "replace"
        assert x.kind is Kind.DATA

        with pytest.raises(ShapeError):
            gm.assign(x, (0, slice(None)), gb.variable(dim=(3, 1)))


class TestDistributionNode:
    def test_constructor_binds_a_fresh_variable(self, gb) -> None:
        x = gb.normal(0.0, 1.0, dim=3, name="x")

        assert x.kind is Kind.DISTRIBUTION_VALUE
        assert x.is_variable
        assert x.shape == (3, 1)
        assert x.distribution.spec.name == "normal"
        assert x.distribution.value is x
        assert len(x.distribution.params) == 2

    def test_support_becomes_bounds(self, gb) -> None:
        x = gb.gamma(2.0, 1.0)
        assert x.transform is Transform.LOG
        assert x.lower.item() == 0.0

        y = gb.beta(1.0, 1.0)
        assert y.transform is Transform.LOGIT
