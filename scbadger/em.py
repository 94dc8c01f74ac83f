import logging
import numpy as np


_logger = logging.getLogger(__name__)


class OptimizeError(Exception):
    pass


class ExpectationMaximizationEstimator(object):

    def __init__(self, num_em_iter=100, likelihood_tol=1e-3):
        """Create an expectation maximization estimator

        KwArgs:
            num_em_iter (int): number of em iterations
            likelihood_tol (float): relative likelihood increase tolerance

        """

        self.num_em_iter = num_em_iter
        self.likelihood_tol = likelihood_tol
        self.likelihood_error_tol = 1e-2

        self.em_iter = None
        self.converged = False
        self.error_message = 'no errors'

    def expectation_step(self, model):
        """ Expectation Step: Calculate weights for variable states

        Args:
            model (object): probabilistic model

        Returns:
            float: log likelihood
            numpy.array: state weights matrix

        Weights matrix has shape (S,N) for N variables with S states

        Weights are interpreted as posterior marginal probabilities.

        """

        log_likelihood, weights = model.posterior_marginals()

        if np.isnan(log_likelihood):
            raise OptimizeError('log likelihood is nan')

        return log_likelihood, weights

    def maximization_step(self, model, weights):
        """ Maximization Step.  Maximize Q with respect to model parameters.

        Args:
            model (object): probabilistic model to optimize
            weights (numpy.array): state weights matrix

        """

        model.update_params(weights)

    def learn_param(self, model):
        """ Optimize model parameters given an initial estimate.

        Args:
            model (object): probabilistic model to optimize

        Returns:
            float: log likelihood

        On return, `converged` is set if the log likelihood stabilized
        within `num_em_iter` iterations, and `error_message` describes
        any failure.

        """

        self.converged = False
        self.error_message = 'no errors'

        log_likelihood_prev = None

        for self.em_iter in range(self.num_em_iter):

            try:
                log_likelihood, weights = self.expectation_step(model)
            except OptimizeError as e:
                self.error_message = 'error during e step: ' + str(e)
                return log_likelihood_prev

            _logger.debug('iteration %d log likelihood %f', self.em_iter, log_likelihood)

            if log_likelihood_prev is not None and (log_likelihood_prev - log_likelihood) > self.likelihood_error_tol:
                self.error_message = 'log likelihood decreased from {} to {} for e step'.format(log_likelihood_prev, log_likelihood)
                return log_likelihood

            if log_likelihood_prev is not None and abs(log_likelihood_prev - log_likelihood) < self.likelihood_tol * max(1., abs(log_likelihood)):
                self.converged = True
                return log_likelihood

            try:
                self.maximization_step(model, weights)
            except OptimizeError as e:
                self.error_message = 'error during m step: ' + str(e)
                return log_likelihood

            log_likelihood_prev = log_likelihood

        self.error_message = 'no convergence after {} iterations'.format(self.num_em_iter)

        return log_likelihood_prev

