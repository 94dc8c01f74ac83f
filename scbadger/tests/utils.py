import numpy as np
import statsmodels.tools.numdiff


def assert_grad_correct(func, grad, x0, *args, **kwargs):
    """ Assert correct gradient compared to a centered finite difference approximation
    """

    decimal = kwargs.get('decimal', 5)

    analytic_fprime = grad(x0, *args)
    approx_fprime = statsmodels.tools.numdiff.approx_fprime(x0, func, args=args, centered=True)

    np.testing.assert_almost_equal(analytic_fprime, approx_fprime.flatten(), decimal)
