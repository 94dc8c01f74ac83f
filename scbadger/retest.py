import collections
import logging
import numpy as np
import pandas as pd
from scipy.special import logsumexp

import scbadger.config
import scbadger.devmodel
import scbadger.parallel


_logger = logging.getLogger(__name__)


posterior_columns = [
    'region_id',
    'source',
    'chromosome',
    'start',
    'end',
    'cell',
    'evidence',
    'num_bins',
    'p_amplified',
    'p_deleted',
    'p_neutral',
    'status',
]


PosteriorTable = collections.namedtuple('PosteriorTable', [
    'evidence',
    'data',
])


def create_posterior_table(evidence, records=()):
    data = pd.DataFrame(list(records), columns=posterior_columns)
    return PosteriorTable(evidence=evidence, data=data)


def log_prior(prior):
    """ Normalized log prior of the retest states.

    Args:
        prior (list of float): prior of amplified, deleted and neutral

    Returns:
        numpy.array: log prior, -inf for states with zero prior

    """

    prior = np.asarray(prior, dtype=float)
    with np.errstate(divide='ignore'):
        return np.log(prior / prior.sum())


def select_regions(regions, config=None):
    """ Select regions to retest based on the source of each region.

    Args:
        regions (list of ConsensusRegion): candidate regions

    KwArgs:
        config (dict): configuration overrides

    Returns:
        list of ConsensusRegion: regions enabled by `retest_bound_genes` and `retest_bound_snps`

    """

    sources = set()
    if scbadger.config.get_param(config, 'retest_bound_genes'):
        sources.add('expression')
    if scbadger.config.get_param(config, 'retest_bound_snps'):
        sources.add('allele')

    return [region for region in regions if region.source in sources]


def retest_region(model, observations, informative, log_prior_probs):
    """ Posterior probability of each retest state in each cell of a region.

    Args:
        model (object): fitted deviance model
        observations (tuple of numpy.array): observations of the region, bins by cells
        informative (numpy.array): mask of informative observations, bins by cells
        log_prior_probs (numpy.array): log prior of amplified, deleted and neutral

    Returns:
        numpy.array: posteriors, cells by states, NaN for cells without informative bins
        numpy.array: number of informative bins per cell

    """

    num_bins = informative.sum(axis=0)

    # Uninformative observations contribute zero log likelihood
    ll = model.log_likelihood_states(observations, scbadger.devmodel.retest_states)
    ll = ll.sum(axis=0) + log_prior_probs[np.newaxis, :]

    posteriors = np.exp(ll - logsumexp(ll, axis=1)[:, np.newaxis])
    posteriors[num_bins == 0, :] = np.nan

    return posteriors, num_bins


def retest(regions, matrix, model, config=None, cancel_event=None):
    """ Retest consensus regions in every cell of a matrix.

    Args:
        regions (list of ConsensusRegion): regions to retest
        matrix (ExpressionMatrix or AlleleMatrix): evidence for the retest
        model (object): deviance model fit to the matrix

    KwArgs:
        config (dict): configuration overrides
        cancel_event (threading.Event): event signalling cancellation

    Returns:
        PosteriorTable: posterior of amplified, deleted and neutral per region and cell

    Raises:
        ConfigError: no regions to retest

    The posterior of each state combines the prior with the likelihood of
    the informative bins of the matrix overlapping the region.  Regions
    are genomic intervals and may be retested against either evidence.
    Cells with no informative bins in a region are indeterminate, with
    missing posteriors.

    """

    scbadger.config.validate_config(config)

    if len(regions) == 0:
        raise scbadger.config.ConfigError('no regions to retest')

    selected = select_regions(regions, config=config)

    if len(selected) == 0:
        raise scbadger.config.ConfigError('retest options exclude all {} regions'.format(len(regions)))

    if matrix.evidence != model.evidence:
        raise scbadger.config.ConfigError('{} model cannot be applied to {} matrix'.format(model.evidence, matrix.evidence))

    log_prior_probs = log_prior(scbadger.config.get_param(config, 'retest_prior'))

    pool = scbadger.parallel.WorkerPool.from_config(config)

    tasks = list()
    for region in selected:
        rows = matrix.region_rows(region.chromosome, region.start, region.end)
        tasks.append((
            model,
            matrix.observations(rows),
            matrix.informative(rows),
            log_prior_probs,
        ))

    results = pool.map(retest_region, tasks, cancel_event=cancel_event)

    records = list()
    for region, (posteriors, num_bins) in zip(selected, results):
        for cell_idx, cell in enumerate(matrix.cells):
            records.append({
                'region_id': region.region_id,
                'source': region.source,
                'chromosome': region.chromosome,
                'start': region.start,
                'end': region.end,
                'cell': cell,
                'evidence': matrix.evidence,
                'num_bins': int(num_bins[cell_idx]),
                'p_amplified': posteriors[cell_idx, 0],
                'p_deleted': posteriors[cell_idx, 1],
                'p_neutral': posteriors[cell_idx, 2],
                'status': 'indeterminate' if num_bins[cell_idx] == 0 else 'ok',
            })

    table = create_posterior_table(matrix.evidence, records)

    num_indeterminate = (table.data['status'] == 'indeterminate').sum()
    _logger.info('retested %d regions in %d cells using %s, %d indeterminate',
        len(selected), len(matrix.cells), matrix.evidence, num_indeterminate)

    return table

