import numpy as np
from scipy.special import gammaln
from scipy.special import digamma


class ProbabilityError(ValueError):
    def __init__(self, message, **variables):
        """ Error calculating a probability.

        Args:
            message (str): message detailing error

        KwArgs:
            **variables: variables to be printed

        """

        for name, value in variables.items():
            message += '\n{0}={1}'.format(name, value)

        ValueError.__init__(self, message)


class NormalDistribution(object):

    def __init__(self, mu=0., sigma=1.):
        """ Normal distribution for expression deviance.

        Attributes:
            mu (float): location
            sigma (float): scale

        """

        self.mu = mu
        self.sigma = sigma

    def log_likelihood(self, x):
        """ Calculate normal log likelihood.

        Args:
            x (numpy.array): observed deviance

        Returns:
            numpy.array: log likelihood per observation

        The log pdf of the normal is:

            -0.5 * log(2 * pi) - log(sigma) - 0.5 * ((x - mu) / sigma)**2

        """

        z = (x - self.mu) / self.sigma

        return -0.5 * np.log(2. * np.pi) - np.log(self.sigma) - 0.5 * z * z


class BinomialDistribution(object):

    def log_likelihood(self, k, n, p):
        """ Calculate binomial allele count log likelihood.

        Args:
            k (numpy.array): observed alternate allelic read counts
            n (numpy.array): observed total allelic read counts
            p (numpy.array): expected alternate allele fraction

        Returns:
            numpy.array: log likelihood per snp

        The pmf of the binomial is:

            C(n, k) * p**k * (1-p)**(n-k)

        The log likelihood is thus:

            log(G(n+1)) - log(G(k+1)) - log(G(n-k+1))
                + k * log(p) + (n - k) * log(1 - p)

        """

        ll = (gammaln(n+1) - gammaln(k+1) - gammaln(n-k+1)
            + k * np.log(p) + (n - k) * np.log(1 - p))

        return ll


class BetaBinDistribution(object):

    def __init__(self, M=500.):
        """ Beta binomial distribution for allele count data.

        Attributes:
            M (float): beta binomial allele counts over-dispersion

        """

        self.M = M

    def log_likelihood(self, k, n, p):
        """ Calculate beta binomial allele count log likelihood.

        Args:
            k (numpy.array): observed alternate allelic read counts
            n (numpy.array): observed total allelic read counts
            p (numpy.array): expected alternate allele fraction

        Returns:
            numpy.array: log likelihood per snp

        The pmf of the beta binomial is:

            C(n, k) * B(k + M * p, n - k + M * (1 - p)) / B(M * p, M * (1 - p))

        The log likelihood is thus:

            log(G(n+1)) - log(G(k+1)) - log(G(n-k+1))
                + log(G(k + M * p)) + log(G(n - k + M * (1 - p)))
                - log(G(n + M))
                - log(G(M * p)) - log(G(M * (1 - p)))
                + log(G(M))

        """

        M = self.M

        ll = (gammaln(n+1) - gammaln(k+1) - gammaln(n-k+1)
            + gammaln(k + M * p) + gammaln(n - k + M * (1 - p))
            - gammaln(n + M)
            - gammaln(M * p) - gammaln(M * (1 - p))
            + gammaln(M))

        return ll

    def log_likelihood_partial_M(self, k, n, p):
        """ Calculate the partial derivative of the beta binomial allele count
        log likelihood with respect to M

        Args:
            k (numpy.array): observed alternate allelic read counts
            n (numpy.array): observed total allelic read counts
            p (numpy.array): expected alternate allele fraction

        Returns:
            numpy.array: log likelihood derivative per snp

        The partial derivative of the log pmf of the beta binomial with
        respect to M is:

            p * digamma(k + M * p)
                + (1 - p) * digamma(n - k + M * (1 - p))
                - digamma(n + M)
                - p * digamma(M * p)
                - (1 - p) * digamma(M * (1 - p))
                + digamma(M)

        """

        M = self.M

        partial_M = (p * digamma(k + M * p)
            + (1 - p) * digamma(n - k + M * (1 - p))
            - digamma(n + M)
            - p * digamma(M * p)
            - (1 - p) * digamma(M * (1 - p))
            + digamma(M))

        return partial_M


def log_mono_allelic(k, n, error_rate):
    """ Log likelihood of reads from a single allele, either allele equally likely.

    Args:
        k (numpy.array): observed alternate allelic read counts
        n (numpy.array): observed total allelic read counts
        error_rate (float): alternate allele fraction when only the reference is expressed

    Returns:
        numpy.array: log likelihood per snp

    """

    binom = BinomialDistribution()

    return np.logaddexp(
        binom.log_likelihood(k, n, error_rate),
        binom.log_likelihood(k, n, 1. - error_rate)) + np.log(0.5)


def log_biallelic(k, n, M, fraction=0.5):
    """ Log likelihood of reads from both alleles at a given allele fraction.

    Args:
        k (numpy.array): observed alternate allelic read counts
        n (numpy.array): observed total allelic read counts
        M (float): beta binomial over-dispersion
        fraction (float): expected fraction of the lesser allele

    Returns:
        numpy.array: log likelihood per snp

    Snps are not phased, so for fractions other than 0.5 either allele
    is equally likely to be the lesser one.

    """

    betabin = BetaBinDistribution(M=M)

    if fraction == 0.5:
        return betabin.log_likelihood(k, n, 0.5)

    return np.logaddexp(
        betabin.log_likelihood(k, n, fraction),
        betabin.log_likelihood(k, n, 1. - fraction)) + np.log(0.5)


def check_log_likelihood(ll, **variables):
    for n in zip(*np.where(np.isnan(ll))):
        raise ProbabilityError('ll is nan', n=n, **variables)
    return ll

