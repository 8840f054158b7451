
######################################################################################################
#####  Fonctions to propagate the state forward between observation times ###########################

import numpy as np
import pandas as pd

from epi_model import initial_state


def euler_steps(t_start, t_end, dt):
    """
    Split [t_start, t_end] into the smallest number of equal steps no longer than dt.

    Returns:
    - times: Start time of each step.
    - step: The step size actually used.
    """
    span = t_end - t_start
    if span <= 0:
        return np.empty(0), dt
    num_steps = max(int(np.ceil(span / dt - 1e-8)), 1)
    step = span / num_steps
    return t_start + step * np.arange(num_steps), step


def state_transition(model, theta, current_state, t_start, t_end, rng):
    """
    Propagate the particles from t_start to t_end with the model's one-step simulator.

    The reported cases accumulator C is reset at t_start, so on return it holds the
    cases accrued over (t_start, t_end].

    Parameters:
    - model: PompModel holding the step function, covariates and time step.
    - theta: Parameter array (1D shared, or 2D with one row per particle).
    - current_state: Initial state array (num_particles x num_compartments).
    - t_start: Start time
    - t_end: End time
    - rng: np.random.Generator

    Returns:
    - state: Array (num_particles x num_compartments) at t_end
    """
    state = np.array(current_state, dtype=float)
    state[:, model.state_names.index('C')] = 0.0

    times, dt = euler_steps(t_start, t_end, model.dt)
    for t in times:
        state = model.step(state, theta, model.theta_names, model.covariates.value_at(t), dt, rng)
    return state


def simulate(model, theta, n_replicates=1, seed=None, include_states=True):
    """
    Simulate the model at the observation times.

    Parameters:
    - model: PompModel.
    - theta: Parameter vector (natural scale), array or {name: value}.
    - n_replicates: Number of independent trajectories.
    - seed: Seed (int, SeedSequence or Generator).
    - include_states (bool): Keep the compartments next to the simulated observations.

    Returns:
    - sims: List of DataFrames, one per replicate, with columns
      time, S, E, I, R, C, N, obs (only time and obs when include_states is False).
    """
    if isinstance(theta, dict):
        theta = model.transform.as_array(theta)
    theta = np.asarray(theta, dtype=float)
    rng = np.random.default_rng(seed)

    times = model.times
    states = np.zeros((len(times), n_replicates, len(model.state_names)))
    obs = np.zeros((len(times), n_replicates), dtype=np.int64)

    # All replicates are simulated together, one row per replicate
    current_state = initial_state(theta, model.theta_names, n_replicates)
    t_prev = model.t0
    for k, t in enumerate(times):
        current_state = state_transition(model, theta, current_state, t_prev, t, rng)
        states[k] = current_state
        obs[k] = model.rmeasure(current_state, theta, model.theta_names, rng)
        t_prev = t

    sims = []
    for j in range(n_replicates):
        df = pd.DataFrame(states[:, j, :], columns=list(model.state_names))
        df.insert(0, 'time', times)
        df['obs'] = obs[:, j]
        sims.append(df if include_states else df[['time', 'obs']])
    return sims
