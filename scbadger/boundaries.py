import collections
import logging
import numpy as np
import scipy.stats
import statsmodels.stats.multitest

import scbadger.config
import scbadger.hmm
import scbadger.ingest
import scbadger.parallel
import scbadger.segalg
import scbadger.utils


_logger = logging.getLogger(__name__)


CandidateBoundary = collections.namedtuple('CandidateBoundary', [
    'chromosome',
    'cell',
    'start_idx',
    'end_idx',
    'start',
    'end',
    'state',
    'num_bins',
    'llr',
    'pvalue',
])


ConsensusRegion = collections.namedtuple('ConsensusRegion', [
    'region_id',
    'source',
    'chromosome',
    'start',
    'end',
    'start_idx',
    'end_idx',
    'cells',
    'states',
])


def _check_model(matrix, model):
    if matrix.evidence != model.evidence:
        raise scbadger.config.ConfigError('{} model cannot be applied to {} matrix'.format(model.evidence, matrix.evidence))


def segment_cell(model, observations, informative, min_num_bins, min_boundary_bins, transition_prob, start_neutral_prob, decode_method):
    """ Segment the bins of one chromosome in one cell.

    Args:
        model (object): fitted deviance model
        observations (tuple of numpy.array): observations of each bin
        informative (numpy.array): mask of informative bins
        min_num_bins (int): minimum informative bins for segmentation
        min_boundary_bins (int): minimum bins of a reported run
        transition_prob (float): probability of switching state between bins
        start_neutral_prob (float): probability of starting in the neutral state
        decode_method (str): 'viterbi' or 'posterior'

    Returns:
        list of tuple: start index, end index, state, number of bins and
            likelihood ratio statistic of each non-neutral run, or None
            if there are too few informative bins

    Indices are into the bins of the chromosome, and runs span informative
    bins only.

    """

    rows = np.where(informative)[0]

    if rows.shape[0] < min_num_bins:
        return None

    observations = tuple(a[rows] for a in observations)

    states = model.hmm_states
    neutral = states.index('neutral')

    frame_log_prob = model.log_likelihood_states(observations, states)

    log_start_prob = scbadger.hmm.log_start_probs(len(states), neutral, start_neutral_prob)
    log_trans_mat = scbadger.hmm.log_transition_matrix(len(states), transition_prob)

    state_sequence = scbadger.hmm.decode(log_start_prob, log_trans_mat, frame_log_prob, method=decode_method)

    runs = list()
    for start, end, state in zip(*scbadger.segalg.find_runs(state_sequence, neutral)):
        num_bins = end - start + 1
        if num_bins < min_boundary_bins:
            continue
        llr = 2. * (frame_log_prob[start:end+1, state] - frame_log_prob[start:end+1, neutral]).sum()
        runs.append((int(rows[start]), int(rows[end]), states[state], int(num_bins), float(llr)))

    return runs


def find_candidate_boundaries(matrix, model, config=None, cancel_event=None):
    """ Find per cell candidate boundaries of copy number change.

    Args:
        matrix (ExpressionMatrix or AlleleMatrix): ingested matrix
        model (object): deviance model fit to the matrix

    KwArgs:
        config (dict): configuration overrides
        cancel_event (threading.Event): event signalling cancellation

    Returns:
        list of CandidateBoundary: candidate boundaries ordered by chromosome, cell and position
        pandas.DataFrame: skipped chromosomes of each cell

    Each chromosome of each cell is segmented independently.  Candidates
    are filtered for significance of the likelihood ratio of the called
    state against neutral, controlling the false discovery rate over all
    candidates.

    """

    scbadger.config.validate_config(config)
    _check_model(matrix, model)

    min_num_bins = scbadger.config.get_param(config, 'min_num_bins')
    min_boundary_bins = scbadger.config.get_param(config, 'min_boundary_bins')
    transition_prob = scbadger.config.get_param(config, 'transition_prob')
    start_neutral_prob = scbadger.config.get_param(config, 'start_neutral_prob')
    decode_method = scbadger.config.get_param(config, 'decode_method')
    boundary_fdr = scbadger.config.get_param(config, 'boundary_fdr')

    pool = scbadger.parallel.WorkerPool.from_config(config)

    task_keys = list()
    tasks = list()

    for chromosome in matrix.chromosomes():
        rows = matrix.chromosome_rows(chromosome)
        observations = matrix.observations(rows)
        informative = matrix.informative(rows)

        for cell_idx, cell in enumerate(matrix.cells):
            task_keys.append((chromosome, cell_idx, rows))
            tasks.append((
                model,
                tuple(a[:, cell_idx] for a in observations),
                informative[:, cell_idx],
                min_num_bins,
                min_boundary_bins,
                transition_prob,
                start_neutral_prob,
                decode_method,
            ))

    results = pool.map(segment_cell, tasks, cancel_event=cancel_event)

    candidates = list()
    skipped = list()

    for (chromosome, cell_idx, rows), runs in zip(task_keys, results):
        cell = matrix.cells[cell_idx]

        if runs is None:
            skipped.append({
                'stage': 'detect_boundaries',
                'chromosome': chromosome,
                'cell': cell,
                'bin_id': None,
                'reason': 'fewer than {} informative bins'.format(min_num_bins),
            })
            continue

        starts = matrix.bins['start'].values[rows]
        ends = matrix.bins['end'].values[rows]

        for start_idx, end_idx, state, num_bins, llr in runs:
            candidates.append(CandidateBoundary(
                chromosome=chromosome,
                cell=cell,
                start_idx=start_idx,
                end_idx=end_idx,
                start=int(starts[start_idx]),
                end=int(ends[start_idx:end_idx+1].max()),
                state=state,
                num_bins=num_bins,
                llr=llr,
                pvalue=float(scipy.stats.chi2.sf(max(llr, 0.), 1)),
            ))

    _logger.info('%d candidate %s boundaries, %d chromosome cell pairs skipped',
        len(candidates), matrix.evidence, len(skipped))

    if boundary_fdr is not None and len(candidates) > 0:
        pvalues = np.array([a.pvalue for a in candidates])
        reject = statsmodels.stats.multitest.multipletests(pvalues, alpha=boundary_fdr, method='fdr_bh')[0]
        candidates = [a for a, is_significant in zip(candidates, reject) if is_significant]

        _logger.info('%d candidate %s boundaries significant at fdr %s',
            len(candidates), matrix.evidence, boundary_fdr)

    return candidates, scbadger.ingest.create_skipped_table(skipped)


def merge_boundaries(candidates, matrix, config=None):
    """ Merge overlapping candidate boundaries into consensus regions.

    Args:
        candidates (list of CandidateBoundary): candidate boundaries
        matrix (ExpressionMatrix or AlleleMatrix): matrix the candidates were found in

    KwArgs:
        config (dict): configuration overrides

    Returns:
        list of ConsensusRegion: regions ordered by chromosome and position

    Candidates on the same chromosome overlapping by at least
    `merge_min_overlap` bins are merged, transitively, into the union of
    their extents.  With `merge_by_state`, only candidates with the same
    state are merged.

    """

    scbadger.config.validate_config(config)

    merge_min_overlap = scbadger.config.get_param(config, 'merge_min_overlap')
    merge_by_state = scbadger.config.get_param(config, 'merge_by_state')
    min_region_cells = scbadger.config.get_param(config, 'min_region_cells')

    cell_order = dict((cell, idx) for idx, cell in enumerate(matrix.cells))

    groups = collections.defaultdict(list)
    for candidate in candidates:
        key = (candidate.chromosome, candidate.state if merge_by_state else None)
        groups[key].append(candidate)

    def group_sort_key(key):
        return (scbadger.utils.get_chromosome_key(key[0]), key[1] or '')

    regions = list()

    for key in sorted(groups.keys(), key=group_sort_key):
        chromosome = key[0]
        group = sorted(groups[key], key=lambda a: (a.start_idx, a.end_idx, cell_order[a.cell]))

        intervals = np.array([[a.start_idx, a.end_idx] for a in group])
        labels = scbadger.segalg.merge_overlapping(intervals, min_overlap=merge_min_overlap)

        rows = matrix.chromosome_rows(chromosome)
        starts = matrix.bins['start'].values[rows]
        ends = matrix.bins['end'].values[rows]

        for label in range(labels.max() + 1):
            members = [a for a, b in zip(group, labels) if b == label]

            cells = sorted(set(a.cell for a in members), key=lambda a: cell_order[a])
            if len(cells) < min_region_cells:
                continue

            start_idx = min(a.start_idx for a in members)
            end_idx = max(a.end_idx for a in members)
            start = int(starts[start_idx])
            end = int(ends[start_idx:end_idx+1].max())
            states = tuple(sorted(set(a.state for a in members)))

            region_id = '{}:{}:{}-{}'.format(matrix.evidence, chromosome, start, end)
            if merge_by_state:
                region_id += ':' + key[1]

            regions.append(ConsensusRegion(
                region_id=region_id,
                source=matrix.evidence,
                chromosome=chromosome,
                start=start,
                end=end,
                start_idx=int(start_idx),
                end_idx=int(end_idx),
                cells=tuple(cells),
                states=states,
            ))

    regions.sort(key=lambda a: (scbadger.utils.get_chromosome_key(a.chromosome), a.start_idx, a.end_idx, a.region_id))

    _logger.info('merged %d candidate boundaries into %d %s regions', len(candidates), len(regions), matrix.evidence)

    return regions


def detect_boundaries(matrix, model, config=None, cancel_event=None):
    """ Detect consensus regions of copy number change.

    Args:
        matrix (ExpressionMatrix or AlleleMatrix): ingested matrix
        model (object): deviance model fit to the matrix

    KwArgs:
        config (dict): configuration overrides
        cancel_event (threading.Event): event signalling cancellation

    Returns:
        list of ConsensusRegion: consensus regions

    Raises:
        InputError: the matrix is empty

    """

    scbadger.config.validate_config(config)

    if matrix.is_empty:
        raise scbadger.ingest.InputError('cannot detect boundaries in an empty {} matrix'.format(matrix.evidence))

    candidates, skipped = find_candidate_boundaries(matrix, model, config=config, cancel_event=cancel_event)

    for row in skipped.itertuples():
        _logger.warning('skipped chromosome %s in cell %s: %s', row.chromosome, row.cell, row.reason)

    return merge_boundaries(candidates, matrix, config=config)

