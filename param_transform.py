########################################################################################
# This file contains the code to handle constrained parameters: the transformation to
# the unconstrained scale used by the random walk, and the draw of starting points
##########################################################################################


import numpy as np


#################################################################################
###### Function to transform/ untransform constrain parametres #####################

# Define the logit and inverse logit functions
def logit(x):
    return np.log(x / (1 - x))

def inv_logit(x):
    return 1 / (1 + np.exp(-x))


_FORWARD = {'log': np.log, 'logit': logit, 'none': lambda x: x}
_BACKWARD = {'log': np.exp, 'logit': inv_logit, 'none': lambda x: x}


class ParameterTransform:
    """
    Bijection between the natural parameter scale and the estimation scale.

    Positive parameters are mapped with log, probabilities with logit, everything
    else is left unchanged. Works on a single parameter vector or on a matrix with
    one row per particle.
    """

    def __init__(self, theta_names, transforms=None):
        transforms = transforms or {}
        self.theta_names = tuple(theta_names)
        self.kinds = tuple(transforms.get(name, 'none') for name in self.theta_names)
        unknown = sorted(set(self.kinds) - set(_FORWARD))
        if unknown:
            raise ValueError(f"Unknown transformation(s): {unknown}")

    def _apply(self, theta, table):
        theta = np.array(theta, dtype=float)
        out = np.empty_like(theta)
        with np.errstate(divide='ignore', over='ignore', invalid='ignore'):
            for i, kind in enumerate(self.kinds):
                out[..., i] = table[kind](theta[..., i])
        return out

    def to_estimation_scale(self, theta):
        return self._apply(theta, _FORWARD)

    def from_estimation_scale(self, theta):
        return self._apply(theta, _BACKWARD)

    def as_dict(self, theta):
        return dict(zip(self.theta_names, np.asarray(theta, dtype=float)))

    def as_array(self, values):
        """Order a {name: value} mapping as a parameter vector."""
        missing = [name for name in self.theta_names if name not in values]
        if missing:
            raise KeyError(f"Missing parameter(s): {missing}")
        return np.array([values[name] for name in self.theta_names], dtype=float)


#################################################################################
###### Starting points for the global search #####################################

def draw_uniform_start(bounds, base, rng):
    """
    Draw a starting point uniformly inside a box.

    Parameters:
    - bounds (dict): {name: (lower, upper)} for the parameters to randomize.
    - base (dict): Values used for every parameter without bounds.
    - rng (np.random.Generator): Random number generator.

    Returns:
    - start (dict): Starting point on the natural scale.
    """
    start = dict(base)
    for name, (lower, upper) in bounds.items():
        start[name] = rng.uniform(lower, upper)
    return start
