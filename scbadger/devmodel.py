import collections
import logging
import numpy as np

import scbadger.config
import scbadger.em
import scbadger.ingest
import scbadger.likelihood
import scbadger.paramlearn
import scbadger.utils


_logger = logging.getLogger(__name__)


class FitError(Exception):
    pass


retest_states = ('amplified', 'deleted', 'neutral')


class _DevianceModel(object):
    """ Shared emission calculations of fitted deviance models.
    """

    __slots__ = ()

    def log_likelihood_states(self, observations, states):
        """ Log likelihood of observations for each of a list of states.

        Args:
            observations (tuple of numpy.array): observations from a matrix
            states (list of str): states to evaluate

        Returns:
            numpy.array: log likelihood with states along the last axis

        """

        ll = np.stack([self.state_log_likelihood(state, observations) for state in states], axis=-1)

        return scbadger.likelihood.check_log_likelihood(ll, model=self)


class ExpressionDevianceModel(collections.namedtuple('ExpressionDevianceModel', [
    'mean',
    'sigma',
    'sigma_cnv',
    'cnv_weight',
    'shift',
    'log_likelihood',
    'num_values',
]), _DevianceModel):
    """ Fitted model of expression deviance from the reference.

    Attributes:
        mean (float): location of neutral deviance
        sigma (float): scale of neutral deviance
        sigma_cnv (float): scale of the inflated variance component
        cnv_weight (float): weight of the inflated variance component
        shift (float): deviance shift of amplified and deleted states
        log_likelihood (float): log likelihood of the mixture fit
        num_values (int): number of deviance values used in the fit

    """

    __slots__ = ()

    evidence = 'expression'
    hmm_states = ('deleted', 'neutral', 'amplified')

    def state_log_likelihood(self, state, observations):
        deviance, = observations

        offset = {
            'deleted': -self.shift,
            'neutral': 0.,
            'amplified': self.shift,
        }[state]

        dist = scbadger.likelihood.NormalDistribution(self.mean + offset, self.sigma)

        is_informative = np.isfinite(deviance)
        ll = dist.log_likelihood(np.where(is_informative, deviance, self.mean))

        return np.where(is_informative, ll, 0.)


class AlleleDevianceModel(collections.namedtuple('AlleleDevianceModel', [
    'dispersion',
    'mono_rate',
    'error_rate',
    'log_likelihood',
    'num_values',
]), _DevianceModel):
    """ Fitted model of allele fraction deviance from heterozygosity.

    Attributes:
        dispersion (float): beta binomial over-dispersion of biallelic expression
        mono_rate (float): proportion of observations expressed from a single allele
        error_rate (float): allele fraction of mono-allelic observations
        log_likelihood (float): log likelihood of the mixture fit
        num_values (int): number of covered snp observations used in the fit

    Deleted represents loss of heterozygosity, all reads from a single allele.
    Amplified represents allelic imbalance at 1/3 or 2/3.

    """

    __slots__ = ()

    evidence = 'allele'
    hmm_states = ('deleted', 'neutral')

    def state_log_likelihood(self, state, observations):
        k, n = observations

        log_mono = scbadger.likelihood.log_mono_allelic(k, n, self.error_rate)

        if state == 'deleted':
            ll = log_mono

        elif state in ('neutral', 'amplified'):
            fraction = {'neutral': 0.5, 'amplified': 1./3.}[state]
            log_biallelic = scbadger.likelihood.log_biallelic(k, n, self.dispersion, fraction=fraction)
            ll = np.logaddexp(
                np.log(1. - self.mono_rate) + log_biallelic,
                np.log(self.mono_rate) + log_mono)

        else:
            raise KeyError(state)

        return np.where(n > 0, ll, 0.)


class ScaleMixture(object):

    def __init__(self, x, var_floor=1e-8):
        """ Two component normal scale mixture with shared location.

        Args:
            x (numpy.array): observed deviance

        KwArgs:
            var_floor (float): minimum variance of each component

        Attributes:
            mu (float): shared location
            sigma (numpy.array): scale of the neutral and inflated components
            weight (numpy.array): weight of the neutral and inflated components

        """

        self.x = x
        self.var_floor = var_floor

        # Robust initial estimates
        self.mu = np.median(x)
        sigma = 1.4826 * np.median(np.abs(x - self.mu))
        if sigma <= 0:
            sigma = np.std(x)

        self.sigma = np.array([sigma, 3. * sigma])
        self.weight = np.array([0.9, 0.1])

    def component_log_likelihood(self):
        return np.array([
            np.log(self.weight[s]) + scbadger.likelihood.NormalDistribution(self.mu, self.sigma[s]).log_likelihood(self.x)
            for s in range(2)])

    def posterior_marginals(self):
        ll = self.component_log_likelihood()
        norm = np.logaddexp(ll[0], ll[1])
        weights = np.exp(ll - norm)
        return norm.sum(), weights

    def update_params(self, weights):
        self.weight = np.clip(weights.sum(axis=1) / weights.sum(), 1e-6, 1. - 1e-6)
        self.weight /= self.weight.sum()

        precision = weights / (self.sigma[:, np.newaxis] ** 2)
        self.mu = (precision * self.x).sum() / precision.sum()

        sq_dev = (self.x - self.mu) ** 2
        var = (weights * sq_dev).sum(axis=1) / np.maximum(weights.sum(axis=1), 1e-16)
        self.sigma = np.sqrt(np.maximum(var, self.var_floor))


class AlleleMixture(object):

    def __init__(self, k, n, error_rate, M=50.):
        """ Biallelic and mono-allelic mixture of allele counts.

        Args:
            k (numpy.array): observed alternate allelic read counts
            n (numpy.array): observed total allelic read counts
            error_rate (float): allele fraction of mono-allelic observations

        KwArgs:
            M (float): initial beta binomial over-dispersion

        Attributes:
            mono_rate (float): weight of the mono-allelic component

        """

        self.k = k
        self.n = n
        self.error_rate = error_rate
        self.betabin = scbadger.likelihood.BetaBinDistribution(M=M)

        # Initial mono-allelic rate from observations with one allele
        is_multi = n >= 2
        if is_multi.sum() > 0:
            is_mono = (k[is_multi] == 0) | (k[is_multi] == n[is_multi])
            self.mono_rate = np.clip(is_mono.mean(), 0.05, 0.95)
        else:
            self.mono_rate = 0.5

        self.log_mono = scbadger.likelihood.log_mono_allelic(k, n, error_rate)

    def posterior_marginals(self):
        ll = np.array([
            np.log(1. - self.mono_rate) + self.betabin.log_likelihood(self.k, self.n, 0.5),
            np.log(self.mono_rate) + self.log_mono,
        ])
        norm = np.logaddexp(ll[0], ll[1])
        weights = np.exp(ll - norm)
        return norm.sum(), weights

    def update_params(self, weights):
        self.mono_rate = np.clip(weights[1].mean(), 1e-6, 1. - 1e-6)

        scbadger.paramlearn.learn_betabin_M_weighted(
            self.betabin, self.k, self.n, 0.5, weights[0])


def _subsample(values, max_values, seed):
    if values.shape[0] <= max_values:
        return values
    with scbadger.utils.TempRandomSeed(seed):
        idx = np.sort(np.random.choice(values.shape[0], size=max_values, replace=False))
    return values[idx]


def _create_estimator(config):
    return scbadger.em.ExpectationMaximizationEstimator(
        num_em_iter=scbadger.config.get_param(config, 'num_em_iter'),
        likelihood_tol=scbadger.config.get_param(config, 'likelihood_tol'),
    )


def fit_expression_model(matrix, config=None):
    """ Fit the expression deviance model.

    Args:
        matrix (ExpressionMatrix): expression matrix

    KwArgs:
        config (dict): configuration overrides

    Returns:
        ExpressionDevianceModel: fitted model

    Raises:
        FitError: insufficient or degenerate data, or no convergence

    Deviance of all genes in all cells is pooled and modelled as a mixture
    of a neutral normal component and a normal component of inflated
    variance with the same location.  Copy number changes of magnitude
    `shift` in either direction inflate the variance of affected values
    by `shift ** 2`, from which the shift is estimated.

    """

    min_fit_values = scbadger.config.get_param(config, 'min_fit_values')
    max_fit_values = scbadger.config.get_param(config, 'max_fit_values')
    min_expression_shift = scbadger.config.get_param(config, 'min_expression_shift')
    random_seed = scbadger.config.get_param(config, 'random_seed')

    x = matrix.deviance[np.isfinite(matrix.deviance)]

    if x.shape[0] < min_fit_values:
        raise FitError('{} deviance values, at least {} required'.format(x.shape[0], min_fit_values))

    x = _subsample(x, max_fit_values, random_seed)

    total_var = np.var(x)
    if not total_var > 0:
        raise FitError('deviance has zero variance')

    mixture = ScaleMixture(x, var_floor=1e-6 * total_var)

    estimator = _create_estimator(config)
    log_likelihood = estimator.learn_param(mixture)

    if not estimator.converged:
        raise FitError('expression mixture fit failed: ' + estimator.error_message)

    sigma, sigma_cnv = mixture.sigma
    weight, cnv_weight = mixture.weight

    # Neutral is the narrower component
    if sigma_cnv < sigma:
        sigma, sigma_cnv = sigma_cnv, sigma
        cnv_weight = weight

    shift = max(np.sqrt(max(sigma_cnv ** 2 - sigma ** 2, 0.)), min_expression_shift * sigma)

    if not np.isfinite(shift) or not sigma > 0:
        raise FitError('degenerate expression mixture, sigma={}, shift={}'.format(sigma, shift))

    model = ExpressionDevianceModel(
        mean=float(mixture.mu),
        sigma=float(sigma),
        sigma_cnv=float(sigma_cnv),
        cnv_weight=float(cnv_weight),
        shift=float(shift),
        log_likelihood=float(log_likelihood),
        num_values=int(x.shape[0]),
    )

    _logger.info('fit expression model in %d iterations: %s', estimator.em_iter, model)

    return model


def fit_allele_model(matrix, config=None):
    """ Fit the allele deviance model.

    Args:
        matrix (AlleleMatrix): allele count matrix

    KwArgs:
        config (dict): configuration overrides

    Returns:
        AlleleDevianceModel: fitted model

    Raises:
        FitError: insufficient or degenerate data, or no convergence

    Allele counts of all covered snps in all cells are modelled as a
    mixture of biallelic expression, beta binomial around 0.5, and
    mono-allelic expression of either allele.  Higher coverage gives a
    tighter biallelic distribution through the binomial component.

    """

    min_fit_values = scbadger.config.get_param(config, 'min_fit_values')
    max_fit_values = scbadger.config.get_param(config, 'max_fit_values')
    error_rate = scbadger.config.get_param(config, 'sequencing_error')
    random_seed = scbadger.config.get_param(config, 'random_seed')

    is_covered = matrix.coverage > 0
    kn = np.array([matrix.alt_counts[is_covered], matrix.coverage[is_covered]]).T

    if kn.shape[0] < min_fit_values:
        raise FitError('{} covered snp observations, at least {} required'.format(kn.shape[0], min_fit_values))

    kn = _subsample(kn, max_fit_values, random_seed)
    k = kn[:, 0].astype(float)
    n = kn[:, 1].astype(float)

    mixture = AlleleMixture(k, n, error_rate)

    estimator = _create_estimator(config)
    log_likelihood = estimator.learn_param(mixture)

    if not estimator.converged:
        raise FitError('allele mixture fit failed: ' + estimator.error_message)

    model = AlleleDevianceModel(
        dispersion=float(mixture.betabin.M),
        mono_rate=float(mixture.mono_rate),
        error_rate=float(error_rate),
        log_likelihood=float(log_likelihood),
        num_values=int(k.shape[0]),
    )

    _logger.info('fit allele model in %d iterations: %s', estimator.em_iter, model)

    return model


def fit_deviance_model(matrix, config=None):
    """ Fit the deviance model appropriate for a matrix.

    Args:
        matrix (ExpressionMatrix or AlleleMatrix): ingested matrix

    KwArgs:
        config (dict): configuration overrides

    Returns:
        ExpressionDevianceModel or AlleleDevianceModel: fitted model

    Raises:
        FitError: the model could not be fit, including for empty matrices

    """

    scbadger.config.validate_config(config)

    if matrix.is_empty:
        raise FitError('cannot fit {} model to an empty matrix'.format(matrix.evidence))

    if isinstance(matrix, scbadger.ingest.ExpressionMatrix):
        return fit_expression_model(matrix, config=config)

    elif isinstance(matrix, scbadger.ingest.AlleleMatrix):
        return fit_allele_model(matrix, config=config)

    raise TypeError('unsupported matrix type {}'.format(type(matrix).__name__))

