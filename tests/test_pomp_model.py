import numpy as np
import pandas as pd
import pytest

from covariates import CovariateTable
from epi_model import MALARIA_IMMIGRATION_THETA_NAMES, MALARIA_THETA_NAMES
from param_transform import ParameterTransform, draw_uniform_start, inv_logit, logit
from pomp_model import make_malaria_model, observations_frame


def test_observations_from_pairs_and_series():
    from_pairs = observations_frame([(1, 3), (2, 0), (3, 5)])
    from_series = observations_frame(pd.Series([3, 0, 5], index=[1, 2, 3]))
    assert list(from_pairs.columns) == ['time', 'obs']
    assert from_pairs.equals(from_series)
    assert from_pairs['obs'].dtype == np.int64


def test_negative_counts_are_rejected():
    with pytest.raises(ValueError):
        observations_frame([(1, -2)])


def test_model_structure_selection(small_obs):
    assert make_malaria_model(small_obs).theta_names == MALARIA_THETA_NAMES
    model = make_malaria_model(small_obs, immigration=True)
    assert model.theta_names == MALARIA_IMMIGRATION_THETA_NAMES
    assert model.transforms['iota'] == 'log'


def test_model_builds_covariates_covering_the_data(small_obs):
    model = make_malaria_model(small_obs)
    assert model.covariates.dim == 5
    assert model.covariates.times[-1] >= small_obs['time'].max()


def test_model_rejects_wrong_covariates(small_obs):
    with pytest.raises(ValueError):
        make_malaria_model(small_obs, covariates=CovariateTable([0.0, 1.0], np.zeros((2, 3))))


def test_model_rejects_unsorted_observations():
    with pytest.raises(ValueError):
        make_malaria_model(pd.DataFrame({'time': [2.0, 1.0], 'obs': [1, 1]}))


def test_model_is_immutable(small_model):
    with pytest.raises(AttributeError):
        small_model.dt = 1.0


def test_transform_round_trip_and_domains():
    transform = ParameterTransform(('a', 'p', 'x'), {'a': 'log', 'p': 'logit'})
    theta = np.array([[2.0, 0.25, -3.0], [0.5, 0.9, 4.0]])
    estimated = transform.to_estimation_scale(theta)
    np.testing.assert_allclose(estimated[0], [np.log(2.0), logit(0.25), -3.0])
    np.testing.assert_allclose(transform.from_estimation_scale(estimated), theta)
    natural = transform.from_estimation_scale(np.array([-50.0, 50.0, 1.0]))
    assert natural[0] > 0 and 0 < inv_logit(-50.0) and natural[1] <= 1


def test_transform_unknown_kind():
    with pytest.raises(ValueError):
        ParameterTransform(('a',), {'a': 'sqrt'})


def test_transform_orders_named_values():
    transform = ParameterTransform(('a', 'b'))
    np.testing.assert_array_equal(transform.as_array({'b': 2.0, 'a': 1.0, 'extra': 9.0}), [1.0, 2.0])
    with pytest.raises(KeyError):
        transform.as_array({'a': 1.0})


def test_uniform_start_inside_box():
    rng = np.random.default_rng(0)
    for _ in range(20):
        start = draw_uniform_start({'a': (1.0, 2.0)}, {'a': 0.0, 'b': 7.0}, rng)
        assert 1.0 <= start['a'] <= 2.0 and start['b'] == 7.0
