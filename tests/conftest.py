import numpy as np
import pandas as pd
import pytest

from epi_model import MALARIA_THETA_NAMES, MALARIA_IMMIGRATION_THETA_NAMES
from pomp_model import make_malaria_model

# Small population so that the tests run quickly
SMALL_THETA = {
    'mu_H': 1 / (70 * 12), 'mu_EI': 2.0, 'mu_IR': 1.5, 'r': 0.001, 'rho': 0.5,
    'b1': 0.2, 'b2': 0.4, 'b3': 0.6, 'b4': 0.4, 'b5': 0.2, 'g': 0.3,
    'sigma_P': 0.2, 'tau': 0.2, 'epsilon': 1.0,
    'E_0': 20.0, 'I_0': 30.0, 'R_0': 100.0, 'N_0': 5000.0, 'C_0': 0.0,
    'iota': 5.0,
}

SMALL_OBS = pd.DataFrame({
    'time': np.arange(1.0, 13.0),
    'obs': [14, 12, 15, 19, 22, 25, 28, 27, 24, 20, 17, 15],
})


def theta_array(values, immigration=False):
    names = MALARIA_IMMIGRATION_THETA_NAMES if immigration else MALARIA_THETA_NAMES
    return np.array([values[name] for name in names], dtype=float)


@pytest.fixture
def small_theta():
    return dict(SMALL_THETA)


@pytest.fixture
def small_obs():
    return SMALL_OBS.copy()


@pytest.fixture
def small_model(small_obs):
    return make_malaria_model(small_obs, dt=1 / 12)


@pytest.fixture
def immigration_model(small_obs):
    return make_malaria_model(small_obs, immigration=True, dt=1 / 12)


@pytest.fixture
def small_config(small_theta):
    params = {name: small_theta[name] for name in MALARIA_THETA_NAMES}
    return {
        'params': params,
        'dt': 1 / 12,
        'num_particles': 40,
        'num_iterations': 3,
        'num_filter_reps': 3,
        'num_replicates': 3,
        'seed': 2024,
        'bounds': {'g': (0.0, 0.6), 'rho': (0.3, 0.7), 'I_0': (10.0, 50.0)},
        'rw_sd': {'g': 0.05, 'rho': 0.05, 'I_0': 0.1},
    }
