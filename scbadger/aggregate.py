import logging
import numpy as np
import pandas as pd

import scbadger.config
import scbadger.devmodel
import scbadger.ingest
import scbadger.retest


_logger = logging.getLogger(__name__)


summary_columns = [
    'region_id',
    'source',
    'chromosome',
    'start',
    'end',
    'evidence',
    'num_informative_cells',
    'num_cells',
]


def combine_posteriors(tables):
    """ Combine posterior tables into a single table.

    Args:
        tables (list of PosteriorTable): posteriors from each evidence

    Returns:
        pandas.DataFrame: posteriors keyed by region, cell and evidence

    Raises:
        InputError: duplicate region, cell and evidence

    """

    tables = list(tables)

    if len(tables) == 0:
        return scbadger.retest.create_posterior_table(None).data

    data = pd.concat([table.data for table in tables], ignore_index=True)

    if data.duplicated(['region_id', 'cell', 'evidence']).any():
        raise scbadger.ingest.InputError('posterior tables have duplicate region, cell and evidence')

    return data


def _state_posterior(data, state):
    if state is None:
        return np.fmax(data['p_amplified'].values, data['p_deleted'].values)

    if state not in scbadger.devmodel.retest_states:
        raise scbadger.config.ConfigError('unknown state {!r}'.format(state))

    return data['p_' + state].values


def posterior_matrix(tables, state, evidence=None):
    """ Matrix of posterior probabilities of one state, regions by cells.

    Args:
        tables (list of PosteriorTable): posteriors from each evidence
        state (str): 'amplified', 'deleted' or 'neutral'

    KwArgs:
        evidence (str): restrict to one evidence, otherwise rows are indexed by region and evidence

    Returns:
        pandas.DataFrame: posteriors with NaN for indeterminate cells

    """

    if state not in scbadger.devmodel.retest_states:
        raise scbadger.config.ConfigError('unknown state {!r}'.format(state))

    data = combine_posteriors(tables)

    if evidence is not None:
        data = data[data['evidence'] == evidence]
        row_keys = ['region_id']
    else:
        row_keys = ['region_id', 'evidence']

    rows = data[row_keys].drop_duplicates()
    cells = data['cell'].drop_duplicates()

    matrix = data.set_index(row_keys + ['cell'])['p_' + state].unstack('cell')

    if evidence is not None:
        matrix = matrix.reindex(index=rows['region_id'].values, columns=cells.values)
    else:
        matrix = matrix.reindex(index=pd.MultiIndex.from_frame(rows), columns=cells.values)

    return matrix


def summarize(tables, threshold=None, min_cells=None, state=None):
    """ Count cells confidently in a state for each region.

    Args:
        tables (list of PosteriorTable): posteriors from each evidence

    KwArgs:
        threshold (float): posterior cutoff, default `posterior_threshold`
        min_cells (int): minimum confident cells, default `summary_min_cells`
        state (str): state to count, None for the greater of amplified and deleted

    Returns:
        pandas.DataFrame: regions with at least `min_cells` confident cells

    Cells are counted if their posterior strictly exceeds `threshold`.
    Indeterminate cells are excluded from both counts.  Each evidence of
    a region is summarized separately.

    """

    if threshold is None:
        threshold = scbadger.config.get_param(None, 'posterior_threshold')
    if min_cells is None:
        min_cells = scbadger.config.get_param(None, 'summary_min_cells')

    scbadger.config.validate_config({'posterior_threshold': threshold, 'summary_min_cells': min_cells})

    if state is not None and state not in scbadger.devmodel.retest_states:
        raise scbadger.config.ConfigError('unknown state {!r}'.format(state))

    data = combine_posteriors(tables)

    if len(data.index) == 0:
        return pd.DataFrame(columns=summary_columns)

    data = data.assign(
        is_informative=(data['status'] == 'ok'),
        is_confident=(data['status'] == 'ok') & (_state_posterior(data, state) > threshold),
    )

    group_keys = ['region_id', 'evidence']

    summary = (
        data
        .groupby(group_keys, sort=False)
        .agg(
            source=('source', 'first'),
            chromosome=('chromosome', 'first'),
            start=('start', 'first'),
            end=('end', 'first'),
            num_informative_cells=('is_informative', 'sum'),
            num_cells=('is_confident', 'sum'),
        )
        .reset_index()
    )

    summary['num_informative_cells'] = summary['num_informative_cells'].astype(int)
    summary['num_cells'] = summary['num_cells'].astype(int)

    summary = summary[summary['num_cells'] >= min_cells][summary_columns].reset_index(drop=True)

    _logger.info('%d region evidence pairs with at least %d cells above %s', len(summary.index), min_cells, threshold)

    return summary

