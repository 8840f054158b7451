import numpy as np
import pandas as pd


def trace_mif(results):
    """
    Stack the parameter traces of several iterated filtering fits in long format.

    Returns a DataFrame with columns replicate, iteration, name, value where name is
    'loglik' or a parameter name, ready for parameter-versus-iteration plots.
    """
    frames = []
    for replicate, result in enumerate(results):
        trace = result.trace.reset_index().melt(id_vars='iteration', var_name='name', value_name='value')
        trace.insert(0, 'replicate', replicate)
        frames.append(trace)
    if not frames:
        return pd.DataFrame(columns=['replicate', 'iteration', 'name', 'value'])
    return pd.concat(frames, ignore_index=True)


def search_table(results):
    """Final estimates with their log-likelihood, one row per fit, best first."""
    table = pd.DataFrame([r.as_series() for r in results])
    if table.empty:
        return table
    return table.sort_values('logLik', ascending=False).reset_index(drop=True)


def loglik_profile(results, name, max_drop=None):
    """
    Pairs (parameter value, log-likelihood) for a log-likelihood-versus-parameter scatter.

    With max_drop, only fits within max_drop log units of the best one are kept.
    """
    table = search_table(results)
    if table.empty:
        return pd.DataFrame(columns=[name, 'logLik', 'se'])
    if max_drop is not None:
        table = table[table['logLik'] >= table['logLik'].max() - max_drop]
    return table[[name, 'logLik', 'se']].sort_values(name).reset_index(drop=True)


def convergence_summary(results, last=10):
    """
    Spread of the final estimates and of the last `last` iterations of every trace.

    A parameter whose traces still move a lot at the end, or whose estimates disagree
    across replicates, has not converged.
    """
    if not results:
        return pd.DataFrame(columns=['mean', 'sd_between', 'sd_within'])
    rows = {}
    for name in results[0].trace.columns:
        if name == 'loglik':
            continue
        tails = np.array([r.trace[name].to_numpy()[-last:] for r in results])
        finals = tails[:, -1]
        rows[name] = {
            'mean': np.mean(finals),
            'sd_between': np.std(finals, ddof=1) if len(finals) > 1 else np.nan,
            'sd_within': np.mean(np.std(tails, axis=1)),
        }
    return pd.DataFrame.from_dict(rows, orient='index')
