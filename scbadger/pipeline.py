import collections
import logging
import pandas as pd

import scbadger.aggregate
import scbadger.boundaries
import scbadger.config
import scbadger.devmodel
import scbadger.ingest
import scbadger.retest


_logger = logging.getLogger(__name__)


PipelineResult = collections.namedtuple('PipelineResult', [
    'models',
    'regions',
    'posteriors',
    'calls',
    'summary',
    'skipped',
])


def _shared_cells(expression, allele):
    allele_cells = set(allele.cells)
    expression_cells = set(expression.cells)

    shared = [a for a in expression.cells if a in allele_cells]

    skipped = list()
    for cell in expression.cells:
        if cell not in allele_cells:
            skipped.append({'stage': 'pipeline', 'chromosome': None, 'cell': cell, 'bin_id': None, 'reason': 'missing from allele matrix'})
    for cell in allele.cells:
        if cell not in expression_cells:
            skipped.append({'stage': 'pipeline', 'chromosome': None, 'cell': cell, 'bin_id': None, 'reason': 'missing from expression matrix'})

    return shared, skipped


def run_pipeline(expression=None, allele=None, config=None, cancel_event=None):
    """ Detect and retest copy number changes in single cells.

    KwArgs:
        expression (ExpressionMatrix): ingested expression
        allele (AlleleMatrix): ingested allele counts
        config (dict): configuration overrides
        cancel_event (threading.Event): event signalling cancellation

    Returns:
        PipelineResult: fitted models, consensus regions, posteriors, summary and skipped items

    Raises:
        ConfigError: invalid configuration
        InputError: no matrices, or no cells shared between matrices
        FitError: a deviance model could not be fit

    Models are fit to each matrix, regions are detected in each matrix,
    and every region is retested against every matrix subject to the
    `retest_bound_genes` and `retest_bound_snps` options.

    """

    scbadger.config.validate_config(config)

    if expression is None and allele is None:
        raise scbadger.ingest.InputError('at least one of expression or allele matrices is required')

    skipped = list()

    if expression is not None and allele is not None:
        cells, cell_skipped = _shared_cells(expression, allele)

        if len(cells) == 0:
            raise scbadger.ingest.InputError('expression and allele matrices share no cells')

        for record in cell_skipped:
            _logger.warning('skipped cell %s: %s', record['cell'], record['reason'])

        skipped.append(scbadger.ingest.create_skipped_table(cell_skipped).assign(evidence=None))

        expression = scbadger.ingest.subset_cells(expression, cells)
        allele = scbadger.ingest.subset_cells(allele, cells)

    matrices = collections.OrderedDict()
    if expression is not None:
        matrices['expression'] = expression
    if allele is not None:
        matrices['allele'] = allele

    for evidence, matrix in matrices.items():
        skipped.append(matrix.skipped.assign(evidence=evidence))

    models = collections.OrderedDict()
    for evidence, matrix in matrices.items():
        models[evidence] = scbadger.devmodel.fit_deviance_model(matrix, config=config)

    regions = list()
    for evidence, matrix in matrices.items():
        candidates, boundary_skipped = scbadger.boundaries.find_candidate_boundaries(
            matrix, models[evidence], config=config, cancel_event=cancel_event)
        skipped.append(boundary_skipped.assign(evidence=evidence))
        regions.extend(scbadger.boundaries.merge_boundaries(candidates, matrix, config=config))

    posteriors = list()
    if len(scbadger.retest.select_regions(regions, config=config)) == 0:
        _logger.warning('no regions to retest')
    else:
        for evidence, matrix in matrices.items():
            posteriors.append(scbadger.retest.retest(
                regions, matrix, models[evidence], config=config, cancel_event=cancel_event))

    calls = scbadger.aggregate.combine_posteriors(posteriors)

    summary = scbadger.aggregate.summarize(
        posteriors,
        threshold=scbadger.config.get_param(config, 'posterior_threshold'),
        min_cells=scbadger.config.get_param(config, 'summary_min_cells'),
    )

    skipped = pd.concat(skipped, ignore_index=True)

    _logger.info('%d regions, %d confidently recurrent, %d items skipped',
        len(regions), len(summary.index), len(skipped.index))

    return PipelineResult(
        models=models,
        regions=regions,
        posteriors=posteriors,
        calls=calls,
        summary=summary,
        skipped=skipped,
    )

