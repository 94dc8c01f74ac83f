import logging
import numpy as np
import scipy.optimize

import scbadger.em


_logger = logging.getLogger(__name__)


def nll_betabin_M(param, betabin, k, n, p, w):
    """ Weighted negative log likelihood with respect to log over-dispersion
    """
    betabin.M = np.exp(param[0])

    return -(w * betabin.log_likelihood(k, n, p)).sum()


def nll_betabin_M_partial(param, betabin, k, n, p, w):
    """ Partial derivative of the weighted negative log likelihood with
    respect to log over-dispersion
    """
    M = np.exp(param[0])
    betabin.M = M

    ll_partial_M = (w * betabin.log_likelihood_partial_M(k, n, p)).sum()

    return -np.array([ll_partial_M * M])


def learn_betabin_M_weighted(betabin, k, n, p, w, M_bounds=(1e-1, 1e6)):
    """ Learn the beta binomial dispersion parameter for weighted
    observations with known allele fraction.

    Args:
        betabin (BetaBinDistribution): beta binomial distribution
        k (numpy.array): observed alternate allelic read counts
        n (numpy.array): observed total allelic read counts
        p (float or numpy.array): expected alternate allele fraction
        w (numpy.array): weight of each observation

    KwArgs:
        M_bounds (tuple): bounds on the over-dispersion

    Returns:
        float: over-dispersion, also set on `betabin`

    """

    M0 = np.clip(betabin.M, M_bounds[0], M_bounds[1])
    param0 = np.array([np.log(M0)])

    bounds = ((np.log(M_bounds[0]), np.log(M_bounds[1])),)

    result = scipy.optimize.minimize(nll_betabin_M, param0,
        jac=nll_betabin_M_partial,
        method='L-BFGS-B',
        args=(betabin, k, n, p, w),
        bounds=bounds)

    if not np.all(np.isfinite(result.x)) or not np.isfinite(result.fun):
        raise scbadger.em.OptimizeError(repr(result))

    if not result.success:
        _logger.warning('over-dispersion optimization: %s', result.message)

    # Retain the initial value if the optimizer did not improve on it
    if result.fun > nll_betabin_M(param0, betabin, k, n, p, w):
        M = M0
    else:
        M = np.exp(result.x[0])

    betabin.M = M

    return M

