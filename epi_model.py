###############################################################################################################
#  This file contains the stochastic SEIR models for the monthly malaria counts and the rule used to build
#  the initial compartments from the initial-value parameters
#################################################################################################################


import numpy as np


STATE_NAMES = ('S', 'E', 'I', 'R', 'C', 'N')

MALARIA_THETA_NAMES = (
    'mu_H', 'mu_EI', 'mu_IR', 'r', 'rho',
    'b1', 'b2', 'b3', 'b4', 'b5', 'g',
    'sigma_P', 'tau', 'epsilon',
    'E_0', 'I_0', 'R_0', 'N_0', 'C_0',
)

MALARIA_IMMIGRATION_THETA_NAMES = MALARIA_THETA_NAMES + ('iota',)

INITIAL_VALUE_NAMES = ('E_0', 'I_0', 'R_0', 'N_0', 'C_0')

# Estimation scale used by the random walk of the iterated filter
MALARIA_TRANSFORMS = {
    'mu_H': 'log', 'mu_EI': 'log', 'mu_IR': 'log', 'r': 'log', 'rho': 'logit',
    'b1': 'none', 'b2': 'none', 'b3': 'none', 'b4': 'none', 'b5': 'none', 'g': 'none',
    'sigma_P': 'log', 'tau': 'log', 'epsilon': 'log',
    'E_0': 'log', 'I_0': 'log', 'R_0': 'log', 'N_0': 'log', 'C_0': 'none',
    'iota': 'log',
}

# Monthly time unit. Florida-sized population with a handful of reported cases a month
MALARIA_DEFAULT_THETA = {
    'mu_H': 1 / (78 * 12), 'mu_EI': 2.0, 'mu_IR': 1.5, 'r': 0.0012, 'rho': 0.02,
    'b1': 0.3, 'b2': 0.5, 'b3': 0.9, 'b4': 0.7, 'b5': 0.4, 'g': -1.2,
    'sigma_P': 0.3, 'tau': 0.2, 'epsilon': 5.0,
    'E_0': 150.0, 'I_0': 250.0, 'R_0': 2000.0, 'N_0': 1.9e7, 'C_0': 0.0,
    'iota': 5.0,
}


def unpack_theta(theta, theta_names):
    """
    Map parameter names to values. A 2D theta (one row per particle) gives one
    column per name so that every particle uses its own parameters.
    """
    theta = np.asarray(theta, dtype=float)
    columns = theta.T if theta.ndim == 2 else theta
    return dict(zip(theta_names, columns))


def _prob(rate, dt):
    # Probability of leaving a compartment during dt for an exponential hazard
    return np.clip(-np.expm1(-rate * dt), 0.0, 1.0)


def gamma_white_noise(rng, sigma, dt, size):
    """
    Multiplicative gamma white noise with mean 1 and variance sigma^2 / dt.

    The increment over dt is Gamma(shape=dt/sigma^2, scale=sigma^2), which has mean dt
    and variance sigma^2 * dt; dividing by dt gives the rate multiplier. sigma = 0
    gives the deterministic multiplier 1.
    """
    sigma2 = np.broadcast_to(np.asarray(sigma, dtype=float) ** 2, (size,))
    noisy = sigma2 > 0
    safe_sigma2 = np.where(noisy, sigma2, 1.0)
    increments = rng.gamma(shape=dt / safe_sigma2, scale=safe_sigma2, size=size)
    return np.where(noisy, increments / dt, 1.0)


######################################################################################################
#####  Malaria SEIR model with seasonal transmission, births and deaths ###############################

def malaria_seir_model(y, theta, theta_names, covar, dt, rng, immigration=False):
    """
    Vectorized one-step stochastic SEIR model with seasonal force of infection.

    Parameters:
    ----------
    y : np.ndarray
        A 2D array of compartments with shape (num_particles, 6).
        Columns are [S, E, I, R, C (reported cases accumulator), N (population)].
    theta : np.ndarray
        Parameter values ordered as `theta_names`. Either 1D (shared by all particles)
        or 2D with one row per particle.
    theta_names : sequence of str
        Names of the parameters, see `MALARIA_THETA_NAMES`.
    covar : np.ndarray
        Seasonal basis values (s_1..s_5) at the start of the step.
    dt : float
        Size of the time step.
    rng : np.random.Generator
        Random number generator used for every draw of the step.
    immigration : bool, optional
        Add imported infections straight into I (requires the `iota` parameter).

    Returns:
    -------
    np.ndarray
        Updated 2D array of compartments with the same shape as `y`.
    """

    # Unpack compartments (columns of y). Binomial counts must be integers
    S, E, I, R, C, N = y.T
    S, E, I, R, N = (X.astype(np.int64) for X in (S, E, I, R, N))
    num_particles = y.shape[0]

    param = unpack_theta(theta, theta_names)
    b = np.stack([param[f'b{k}'] for k in range(1, 6)], axis=-1)
    covar = np.asarray(covar, dtype=float)

    # Force of infection with multiplicative gamma noise
    beta = np.exp(np.sum(b * covar, axis=-1) + param['g'])
    dW = gamma_white_noise(rng, param['sigma_P'], dt, num_particles)
    lam = beta * (I + param['epsilon']) / np.maximum(N, 1) * dW

    # Transitions drawn from the state at the start of the step
    Y_SE = rng.binomial(S, _prob(lam, dt))                       # S -> E
    Y_EI = rng.binomial(E, _prob(param['mu_EI'], dt))            # E -> I
    Y_IR = rng.binomial(I, _prob(param['mu_IR'], dt))            # I -> R
    births = rng.binomial(N, _prob(param['r'], dt))              # -> S

    # Natural deaths among those who did not move on during the step, so that no
    # compartment can lose more individuals than it holds
    p_death = _prob(param['mu_H'], dt)
    D_S = rng.binomial(S - Y_SE, p_death)
    D_E = rng.binomial(E - Y_EI, p_death)
    D_I = rng.binomial(I - Y_IR, p_death)
    D_R = rng.binomial(R, p_death)

    if immigration:
        imported = rng.poisson(np.broadcast_to(param['iota'] * dt, (num_particles,)))
    else:
        imported = np.zeros(num_particles, dtype=np.int64)

    # Apply all changes at once
    S_next = S - Y_SE - D_S + births
    E_next = E + Y_SE - Y_EI - D_E
    I_next = I + Y_EI - Y_IR - D_I + imported
    R_next = R + Y_IR - D_R
    N_next = N + births + imported - D_S - D_E - D_I - D_R
    C_next = C + param['rho'] * Y_EI

    return np.column_stack((S_next, E_next, I_next, R_next, C_next, N_next)).astype(float)


def malaria_seir_immigration_model(y, theta, theta_names, covar, dt, rng):
    """SEIR model with Poisson-distributed imported infections at rate `iota`."""
    return malaria_seir_model(y, theta, theta_names, covar, dt, rng, immigration=True)


######################################################################################################
#####  Initial compartments ##########################################################################

def initial_state(theta, theta_names, num_particles):
    """
    Build the initial compartments from the initial-value parameters.

    The checks use the parameter values as given, the sizes are rounded to the nearest
    integer afterwards:
    - if any of E_0, I_0, R_0, N_0 is negative the particle starts at the minimal state S=1, N=1;
    - if E_0 + I_0 + R_0 exceeds N_0 everybody starts recovered, R = N = N_0;
    - otherwise S = N_0 - E_0 - I_0 - R_0 and C = C_0.

    Parameters:
    - theta: Parameter array (1D shared, or 2D with one row per particle).
    - theta_names: Names of the parameters.
    - num_particles: Number of particles to initialize.

    Returns:
    - state: Array (num_particles x 6) ordered as `STATE_NAMES`.
    """
    param = unpack_theta(theta, theta_names)
    shape = (num_particles,)
    E0, I0, R0, N0 = (np.broadcast_to(param[name], shape).astype(float)
                      for name in ('E_0', 'I_0', 'R_0', 'N_0'))
    C0 = np.broadcast_to(np.asarray(param.get('C_0', 0.0), dtype=float), shape)

    negative = (E0 < 0) | (I0 < 0) | (R0 < 0) | (N0 < 0)
    E, I, R, N = (np.abs(np.rint(X)) for X in (E0, I0, R0, N0))
    C = C0.copy()
    S = N - E - I - R

    # Rounding alone can push S below zero
    overfull = (E0 + I0 + R0 > N0) | (S < 0)
    S[overfull], E[overfull], I[overfull], C[overfull] = 0, 0, 0, 0
    R[overfull] = N[overfull]

    S[negative], N[negative] = 1, 1
    E[negative], I[negative], R[negative], C[negative] = 0, 0, 0, 0

    return np.column_stack((S, E, I, R, C, N))
