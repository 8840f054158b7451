import numpy as np

from conftest import theta_array
from epi_model import (MALARIA_THETA_NAMES, MALARIA_IMMIGRATION_THETA_NAMES, STATE_NAMES,
                       gamma_white_noise, initial_state, malaria_seir_model,
                       malaria_seir_immigration_model)

COVAR = np.array([0.1, 0.4, 0.3, 0.15, 0.05])
S, E, I, R, C, N = range(6)


def _run(step, theta, names, steps=200, num_particles=50, seed=1, dt=1 / 24):
    rng = np.random.default_rng(seed)
    y = initial_state(theta, names, num_particles)
    history = [y]
    for _ in range(steps):
        y = step(y, theta, names, COVAR, dt, rng)
        history.append(y)
    return np.array(history)


def test_population_is_conserved_exactly(small_theta):
    theta = theta_array(small_theta)
    history = _run(malaria_seir_model, theta, MALARIA_THETA_NAMES)
    compartments = history[..., [S, E, I, R]].sum(axis=-1)
    np.testing.assert_array_equal(compartments, history[..., N])


def test_population_is_conserved_with_immigration(small_theta):
    theta = theta_array({**small_theta, 'iota': 50.0}, immigration=True)
    history = _run(malaria_seir_immigration_model, theta, MALARIA_IMMIGRATION_THETA_NAMES)
    np.testing.assert_array_equal(history[..., [S, E, I, R]].sum(axis=-1), history[..., N])
    assert history[-1, :, N].mean() > history[0, :, N].mean()


def test_compartments_stay_non_negative_under_extreme_rates(small_theta):
    extreme = {**small_theta, 'mu_H': 5.0, 'mu_EI': 40.0, 'mu_IR': 40.0, 'g': 4.0, 'sigma_P': 2.0}
    for seed in range(5):
        history = _run(malaria_seir_model, theta_array(extreme), MALARIA_THETA_NAMES,
                       steps=100, seed=seed, dt=0.5)
        assert np.all(history[..., [S, E, I, R, N]] >= 0)
        np.testing.assert_array_equal(history[..., [S, E, I, R]].sum(axis=-1), history[..., N])


def test_counts_stay_integer_valued(small_theta):
    history = _run(malaria_seir_model, theta_array(small_theta), MALARIA_THETA_NAMES, steps=50)
    counts = history[..., [S, E, I, R, N]]
    np.testing.assert_array_equal(counts, np.round(counts))


def test_step_is_reproducible_with_a_seed(small_theta):
    theta = theta_array(small_theta)
    a = _run(malaria_seir_model, theta, MALARIA_THETA_NAMES, steps=20, seed=7)
    b = _run(malaria_seir_model, theta, MALARIA_THETA_NAMES, steps=20, seed=7)
    c = _run(malaria_seir_model, theta, MALARIA_THETA_NAMES, steps=20, seed=8)
    np.testing.assert_array_equal(a, b)
    assert not np.array_equal(a, c)


def test_accumulator_tracks_reported_progressions(small_theta):
    theta = theta_array({**small_theta, 'mu_H': 1e-12, 'r': 1e-12})
    rng = np.random.default_rng(3)
    y = initial_state(theta, MALARIA_THETA_NAMES, 200)
    y_next = malaria_seir_model(y, theta, MALARIA_THETA_NAMES, COVAR, 0.1, rng)
    # Without deaths, new infectious individuals are the ones that left E minus the new exposures
    progressed = (y[:, E] - y_next[:, E]) + (y[:, S] - y_next[:, S])
    np.testing.assert_allclose(y_next[:, C], small_theta['rho'] * progressed)


def test_each_particle_uses_its_own_parameters(small_theta):
    theta = np.tile(theta_array(small_theta), (2, 1))
    idx = MALARIA_THETA_NAMES.index('mu_EI')
    theta[0, idx], theta[1, idx] = 1e-9, 1e3
    rng = np.random.default_rng(0)
    y = initial_state(theta, MALARIA_THETA_NAMES, 2)
    y_next = malaria_seir_model(y, theta, MALARIA_THETA_NAMES, COVAR, 1.0, rng)
    assert y_next[0, C] == 0
    assert y_next[1, C] > 0


def test_gamma_white_noise_moments():
    rng = np.random.default_rng(11)
    sigma, dt = 0.4, 1 / 24
    draws = gamma_white_noise(rng, sigma, dt, 400_000)
    assert abs(draws.mean() - 1) < 0.02
    assert abs(draws.var() / (sigma ** 2 / dt) - 1) < 0.05


def test_gamma_white_noise_without_noise_is_one():
    rng = np.random.default_rng(0)
    np.testing.assert_array_equal(gamma_white_noise(rng, 0.0, 0.1, 10), np.ones(10))


def test_initial_state_without_infection():
    theta = {'E_0': 0, 'I_0': 0, 'R_0': 0, 'N_0': 100, 'C_0': 0}
    y = initial_state(list(theta.values()), list(theta), 3)
    np.testing.assert_array_equal(y, np.tile([100, 0, 0, 0, 0, 100], (3, 1)))


def test_initial_state_overfull_population_starts_recovered():
    theta = {'E_0': 60, 'I_0': 60, 'R_0': 0, 'N_0': 100, 'C_0': 0}
    y = initial_state(list(theta.values()), list(theta), 1)
    np.testing.assert_array_equal(y[0, [S, E, I, R, N]], [0, 0, 0, 100, 100])


def test_initial_state_negative_size_gives_minimal_state():
    theta = {'E_0': 0, 'I_0': -1, 'R_0': 0, 'N_0': 100, 'C_0': 0}
    y = initial_state(list(theta.values()), list(theta), 1)
    np.testing.assert_array_equal(y[0, [S, E, I, R, N]], [1, 0, 0, 0, 1])


def test_initial_state_rounds_sizes_and_keeps_accumulator():
    theta = {'E_0': 2.4, 'I_0': 3.6, 'R_0': 0.2, 'N_0': 50.4, 'C_0': 1.5}
    y = initial_state(list(theta.values()), list(theta), 1)
    np.testing.assert_array_equal(y[0], [44, 2, 4, 0, 1.5, 50])
    assert STATE_NAMES == ('S', 'E', 'I', 'R', 'C', 'N')


def test_initial_state_per_particle():
    names = ['E_0', 'I_0', 'R_0', 'N_0', 'C_0']
    theta = np.array([[0, 0, 0, 10, 0], [8, 8, 0, 10, 0], [0, -3, 0, 10, 0]], dtype=float)
    y = initial_state(theta, names, 3)
    np.testing.assert_array_equal(y[:, [S, E, I, R, N]], [[10, 0, 0, 0, 10], [0, 0, 0, 10, 10], [1, 0, 0, 0, 1]])


def test_initial_state_fractional_negative_size_gives_minimal_state():
    theta = {'E_0': 0, 'I_0': -0.4, 'R_0': 0, 'N_0': 100, 'C_0': 0}
    y = initial_state(list(theta.values()), list(theta), 1)
    np.testing.assert_array_equal(y[0], [1, 0, 0, 0, 0, 1])
    assert not np.signbit(y).any()


def test_initial_state_overfull_before_rounding_starts_recovered():
    theta = {'E_0': 0.4, 'I_0': 0.4, 'R_0': 0.4, 'N_0': 1, 'C_0': 0}
    y = initial_state(list(theta.values()), list(theta), 1)
    np.testing.assert_array_equal(y[0, [S, E, I, R, N]], [0, 0, 0, 1, 1])
