import collections
import logging
import re
import numpy as np
import pandas as pd

import scbadger.config
import scbadger.parallel
import scbadger.segalg
import scbadger.utils


_logger = logging.getLogger(__name__)


class InputError(ValueError):
    pass


bin_columns = ['bin_id', 'chromosome', 'start', 'end']
skipped_columns = ['stage', 'chromosome', 'cell', 'bin_id', 'reason']


def create_skipped_table(records=()):
    """ Create a table of skipped bins, chromosomes or cells.

    Args:
        records (list of dict): skipped items with keys from `skipped_columns`

    Returns:
        pandas.DataFrame: skipped table

    """

    skipped = pd.DataFrame(list(records), columns=skipped_columns)
    skipped['chromosome'] = skipped['chromosome'].astype(object)

    return skipped


class TableCoordinateResolver(object):

    def __init__(self, annotations):
        """ Resolve bin coordinates from an annotation table.

        Args:
            annotations (pandas.DataFrame): table with columns 'bin_id', 'chromosome', 'start', 'end'

        """

        missing = set(bin_columns) - set(annotations.columns)
        if len(missing) > 0:
            raise InputError('annotation table missing columns: {}'.format(', '.join(sorted(missing))))

        start = pd.to_numeric(annotations['start'], errors='coerce').astype(float)
        end = pd.to_numeric(annotations['end'], errors='coerce').astype(float)
        chromosome = annotations['chromosome']

        # Rows without integer coordinates leave their bins unresolved
        is_valid = (
            chromosome.notnull() &
            (chromosome.astype(str).str.strip() != '') &
            np.isfinite(start) & np.isfinite(end) &
            (start == np.floor(start)) & (end == np.floor(end))
        )

        if not is_valid.all():
            _logger.warning('ignoring %d annotations without valid coordinates', (~is_valid).sum())

        annotations = annotations.assign(start=start, end=end)[is_valid]
        annotations = annotations.drop_duplicates('bin_id', keep='first')

        self.coordinates = dict(zip(
            annotations['bin_id'].astype(str),
            zip(annotations['chromosome'].astype(str), annotations['start'].astype(int), annotations['end'].astype(int)),
        ))

    @classmethod
    def read_table(cls, annotation_filename):
        annotations = pd.read_csv(annotation_filename, sep='\t', converters={'chromosome': str, 'bin_id': str})
        return cls(annotations)

    def lookup(self, bin_id):
        return self.coordinates.get(str(bin_id))


class LocusCoordinateResolver(object):
    """ Resolve bins named by locus, 'chr1:4600000' or 'chr1:4600000-4600000'.
    """

    locus_re = re.compile(r'^\s*([^:\s]+):(\d+)(?:-(\d+))?\s*$')

    def lookup(self, bin_id):
        match = self.locus_re.match(str(bin_id))
        if match is None:
            return None
        chromosome, start, end = match.groups()
        start = int(start)
        end = int(end) if end is not None else start
        if end < start:
            return None
        return (chromosome, start, end)


def resolve_bins(bin_ids, resolver):
    """ Resolve genomic coordinates of bins and sort by position.

    Args:
        bin_ids (list): bin identifiers
        resolver (object): coordinate resolver providing `lookup(bin_id)`

    Returns:
        pandas.DataFrame: resolved bins sorted by chromosome and start
        list: identifiers of bins that could not be resolved

    Returned dataframe has columns 'bin_id', 'chromosome', 'start', 'end'
    and is indexed by the position of each bin in `bin_ids`.

    """

    resolved = list()
    unresolved = list()

    for idx, bin_id in enumerate(bin_ids):
        coordinates = resolver.lookup(bin_id)
        if coordinates is None:
            unresolved.append(bin_id)
            continue
        chromosome, start, end = coordinates
        resolved.append((idx, bin_id, str(chromosome), int(start), int(end)))

    bins = pd.DataFrame(resolved, columns=['idx'] + bin_columns).set_index('idx')
    bins['chromosome_key'] = bins['chromosome'].apply(scbadger.utils.get_chromosome_key)
    bins = bins.sort_values(['chromosome_key', 'start', 'end'], kind='mergesort')
    bins = bins.drop('chromosome_key', axis=1)

    return bins, unresolved


class _BinnedMatrix(object):
    """ Shared accessors for matrices of bins by cells.
    """

    __slots__ = ()

    @property
    def is_empty(self):
        return len(self.bins.index) == 0 or len(self.cells) == 0

    @property
    def num_bins(self):
        return len(self.bins.index)

    def chromosomes(self):
        return scbadger.utils.sort_chromosome_names(self.bins['chromosome'].unique())

    def chromosome_rows(self, chromosome):
        return np.where(self.bins['chromosome'].values == chromosome)[0]

    def region_rows(self, chromosome, start, end):
        rows = self.chromosome_rows(chromosome)
        overlapping = scbadger.segalg.find_overlapping_bins(
            self.bins['start'].values[rows],
            self.bins['end'].values[rows],
            start, end)
        return rows[overlapping]


class ExpressionMatrix(collections.namedtuple('ExpressionMatrix', [
    'bins',
    'cells',
    'values',
    'reference_mean',
    'deviance',
    'skipped',
]), _BinnedMatrix):
    """ Log expression of genes by cells, with a matched reference.

    Attributes:
        bins (pandas.DataFrame): genes with coordinates, sorted by position
        cells (tuple): cell identifiers
        values (numpy.array): log expression, genes by cells
        reference_mean (numpy.array): mean reference log expression per gene
        deviance (numpy.array): expression minus reference mean, genes by cells
        skipped (pandas.DataFrame): genes dropped during ingestion

    """

    __slots__ = ()

    evidence = 'expression'

    def observations(self, rows, cols=slice(None)):
        return (self.deviance[rows][:, cols],)

    def informative(self, rows, cols=slice(None)):
        return np.isfinite(self.deviance[rows][:, cols])


class AlleleMatrix(collections.namedtuple('AlleleMatrix', [
    'bins',
    'cells',
    'alt_counts',
    'ref_counts',
    'coverage',
    'skipped',
]), _BinnedMatrix):
    """ Allele read counts of snps by cells.

    Attributes:
        bins (pandas.DataFrame): snps with coordinates, sorted by position
        cells (tuple): cell identifiers
        alt_counts (numpy.array): alternate allele read counts, snps by cells
        ref_counts (numpy.array): reference allele read counts, snps by cells
        coverage (numpy.array): total read coverage, snps by cells
        skipped (pandas.DataFrame): snps dropped during ingestion

    """

    __slots__ = ()

    evidence = 'allele'

    def observations(self, rows, cols=slice(None)):
        return (self.alt_counts[rows][:, cols], self.coverage[rows][:, cols])

    def informative(self, rows, cols=slice(None)):
        return self.coverage[rows][:, cols] > 0


def _skip_records(stage, bin_ids, reason):
    return [{'stage': stage, 'chromosome': None, 'cell': None, 'bin_id': str(a), 'reason': reason} for a in bin_ids]


def _check_unique(table, name):
    if table.index.has_duplicates:
        raise InputError('{} has duplicate row identifiers'.format(name))
    if table.columns.has_duplicates:
        raise InputError('{} has duplicate cell identifiers'.format(name))


def scale_library_size(values):
    """ Scale each cell by its library size.

    Args:
        values (pandas.DataFrame): expression, genes by cells

    Returns:
        pandas.DataFrame: expression scaled to the median library size

    """

    library_size = values.sum(axis=0)
    library_size = library_size.where(library_size > 0)
    return values / library_size * library_size.median()


def filter_expressed_genes(test, reference, min_mean_test, min_mean_reference, min_mean_both):
    """ Mask of genes passing mean expression thresholds.

    Args:
        test (pandas.DataFrame): single cell log expression, genes by cells
        reference (pandas.DataFrame): reference log expression, same genes
        min_mean_test (float): minimum mean expression in test
        min_mean_reference (float): minimum mean expression in reference
        min_mean_both (float): minimum mean expression in both

    Returns:
        pandas.Series: boolean mask per gene

    A gene passes if it is well expressed in either the test or reference,
    and at least moderately expressed in both.

    """

    mean_test = test.mean(axis=1)
    mean_reference = reference.mean(axis=1)

    either = (mean_test >= min_mean_test) | (mean_reference >= min_mean_reference)
    both = (mean_test >= min_mean_both) & (mean_reference >= min_mean_both)

    return either & both


def create_expression_matrix(test, reference, resolver, config=None):
    """ Create an expression matrix aligned to genomic coordinates.

    Args:
        test (pandas.DataFrame): single cell log expression, genes by cells
        reference (pandas.DataFrame): reference log expression, genes by reference samples
        resolver (object): coordinate resolver providing `lookup(gene)`

    KwArgs:
        config (dict): configuration overrides

    Returns:
        ExpressionMatrix: expression restricted to resolved and expressed genes

    Genes missing from the reference, without coordinates, or failing the
    expression thresholds are recorded in the `skipped` table.  An empty
    matrix is returned if no genes remain.  With `scale_library_size`,
    each cell is scaled by its library size over the retained genes, so
    ingesting an ingested matrix leaves it unchanged.

    """

    scbadger.config.validate_config(config)

    filter_genes = scbadger.config.get_param(config, 'filter_genes')
    scale = scbadger.config.get_param(config, 'scale_library_size')

    _check_unique(test, 'test matrix')
    _check_unique(reference, 'reference matrix')

    skipped = list()

    test = test.astype(float)
    reference = reference.astype(float)

    missing = test.index.difference(reference.index, sort=False)
    skipped.extend(_skip_records('ingest', missing, 'missing from reference'))
    shared = test.index[test.index.isin(reference.index)]

    test = test.loc[shared]
    reference = reference.loc[shared]

    bins, unresolved = resolve_bins(list(test.index), resolver)
    skipped.extend(_skip_records('ingest', unresolved, 'unresolved coordinates'))

    order = bins.index.values.astype(int)
    raw_test = test.iloc[order]
    raw_reference = reference.iloc[order]
    bins = bins.reset_index(drop=True)

    # Library sizes are calculated over retained genes, so scaling and
    # filtering are repeated until no further genes are removed
    is_expressed = np.ones(len(bins.index), dtype=bool)

    while True:
        test = raw_test.loc[is_expressed]
        reference = raw_reference.loc[is_expressed]

        if scale:
            test = scale_library_size(test)
            reference = scale_library_size(reference)

        if not filter_genes:
            break

        is_passing = filter_expressed_genes(
            test, reference,
            scbadger.config.get_param(config, 'min_mean_test'),
            scbadger.config.get_param(config, 'min_mean_reference'),
            scbadger.config.get_param(config, 'min_mean_both'),
        ).values

        if np.all(is_passing):
            break

        is_expressed[np.where(is_expressed)[0][~is_passing]] = False

    skipped.extend(_skip_records('ingest', bins.loc[~is_expressed, 'bin_id'], 'low expression'))

    bins = bins.loc[is_expressed].reset_index(drop=True)

    if len(bins.index) == 0:
        _logger.warning('no genes remain after ingestion')

    _logger.info('ingested expression for %d genes and %d cells, %d genes skipped',
        len(bins.index), test.shape[1], len(skipped))

    reference_mean = reference.mean(axis=1).values
    values = test.values

    return ExpressionMatrix(
        bins=bins,
        cells=tuple(test.columns),
        values=scbadger.utils.read_only(values),
        reference_mean=scbadger.utils.read_only(reference_mean),
        deviance=scbadger.utils.read_only(values - reference_mean[:, np.newaxis]),
        skipped=create_skipped_table(skipped),
    )


def create_allele_matrix(alt_counts, ref_counts, resolver, coverage=None, bulk_alt=None, bulk_coverage=None, config=None):
    """ Create an allele count matrix aligned to genomic coordinates.

    Args:
        alt_counts (pandas.DataFrame): alternate allele counts, snps by cells
        ref_counts (pandas.DataFrame): reference allele counts, snps by cells
        resolver (object): coordinate resolver providing `lookup(snp)`

    KwArgs:
        coverage (pandas.DataFrame): total coverage, snps by cells, default alt + ref
        bulk_alt (pandas.Series): alternate allele counts of a bulk or normal sample per snp
        bulk_coverage (pandas.Series): coverage of a bulk or normal sample per snp
        config (dict): configuration overrides

    Returns:
        AlleleMatrix: allele counts restricted to resolved heterozygous snps

    The pooled allele fraction of each snp is calculated from the bulk
    counts if given, otherwise from the sum over cells.  Snps whose pooled
    fraction deviates from 0.5 by more than `het_deviance_threshold` are
    considered not heterozygous and removed.

    """

    scbadger.config.validate_config(config)

    het_deviance_threshold = scbadger.config.get_param(config, 'het_deviance_threshold')
    min_snp_cells = scbadger.config.get_param(config, 'min_snp_cells')

    _check_unique(alt_counts, 'alternate count matrix')
    _check_unique(ref_counts, 'reference count matrix')

    if not alt_counts.index.equals(ref_counts.index) or list(alt_counts.columns) != list(ref_counts.columns):
        raise InputError('alternate and reference count matrices must have identical snps and cells')

    if coverage is None:
        coverage = alt_counts + ref_counts
    elif not coverage.index.equals(alt_counts.index) or list(coverage.columns) != list(alt_counts.columns):
        raise InputError('coverage matrix must have identical snps and cells to the allele count matrices')

    if (bulk_alt is None) != (bulk_coverage is None):
        raise InputError('bulk_alt and bulk_coverage must be both set or unset')

    if np.any(alt_counts.values < 0) or np.any(ref_counts.values < 0) or np.any(coverage.values < 0):
        raise InputError('allele counts must be non-negative')

    alt = alt_counts.values.astype(int)
    ref = ref_counts.values.astype(int)
    cov = np.maximum(coverage.values.astype(int), alt + ref)

    skipped = list()

    bins, unresolved = resolve_bins(list(alt_counts.index), resolver)
    skipped.extend(_skip_records('ingest', unresolved, 'unresolved coordinates'))

    order = bins.index.values.astype(int)
    alt = alt[order]
    ref = ref[order]
    cov = cov[order]
    bins = bins.reset_index(drop=True)

    # Snps with too few covered cells
    num_cells = (cov > 0).sum(axis=1)
    is_covered = num_cells >= max(min_snp_cells, 1)
    skipped.extend(_skip_records('ingest', bins.loc[~is_covered, 'bin_id'], 'insufficient cells'))

    # Snps with non heterozygous pooled allele fraction
    if bulk_alt is not None:
        pooled_alt = bulk_alt.reindex(bins['bin_id']).fillna(0).values.astype(float)
        pooled_cov = bulk_coverage.reindex(bins['bin_id']).fillna(0).values.astype(float)
    else:
        pooled_alt = alt.sum(axis=1).astype(float)
        pooled_cov = cov.sum(axis=1).astype(float)

    with np.errstate(divide='ignore', invalid='ignore'):
        pooled_fraction = pooled_alt / pooled_cov
    is_het = (pooled_cov > 0) & (np.abs(pooled_fraction - 0.5) <= het_deviance_threshold)
    skipped.extend(_skip_records('ingest', bins.loc[is_covered & ~is_het, 'bin_id'], 'not heterozygous'))

    keep = is_covered & is_het

    alt = alt[keep]
    ref = ref[keep]
    cov = cov[keep]
    bins = bins.loc[keep].reset_index(drop=True)

    if len(bins.index) == 0:
        _logger.warning('no snps remain after ingestion')

    _logger.info('ingested allele counts for %d snps and %d cells, %d snps skipped',
        len(bins.index), alt_counts.shape[1], len(skipped))

    return AlleleMatrix(
        bins=bins,
        cells=tuple(alt_counts.columns),
        alt_counts=scbadger.utils.read_only(alt),
        ref_counts=scbadger.utils.read_only(ref),
        coverage=scbadger.utils.read_only(cov),
        skipped=create_skipped_table(skipped),
    )


def subset_cells(matrix, cells):
    """ Restrict a matrix to a subset of its cells, in the given order.

    Args:
        matrix (ExpressionMatrix or AlleleMatrix): matrix to subset
        cells (list): cell identifiers

    Returns:
        ExpressionMatrix or AlleleMatrix: subset matrix

    """

    cell_index = dict((cell, idx) for idx, cell in enumerate(matrix.cells))
    missing = [a for a in cells if a not in cell_index]
    if len(missing) > 0:
        raise InputError('cells not in matrix: {}'.format(', '.join(str(a) for a in missing)))

    cols = np.array([cell_index[a] for a in cells], dtype=int)

    if isinstance(matrix, ExpressionMatrix):
        return matrix._replace(
            cells=tuple(cells),
            values=scbadger.utils.read_only(matrix.values[:, cols]),
            deviance=scbadger.utils.read_only(matrix.deviance[:, cols]),
        )

    return matrix._replace(
        cells=tuple(cells),
        alt_counts=scbadger.utils.read_only(matrix.alt_counts[:, cols]),
        ref_counts=scbadger.utils.read_only(matrix.ref_counts[:, cols]),
        coverage=scbadger.utils.read_only(matrix.coverage[:, cols]),
    )


def _cell_read_counts(provider, sites, cell):
    counts = np.zeros((len(sites), 3), dtype=int)
    for idx, site in enumerate(sites):
        counts[idx] = provider.read_counts(site, cell)
    return counts


def read_count_matrices(provider, sites, cells, config=None, cancel_event=None):
    """ Build allele count matrices from a read count provider.

    Args:
        provider (object): read count provider with `read_counts(site, cell) -> (ref, alt, total)`
        sites (list): snp site identifiers
        cells (list): cell identifiers

    KwArgs:
        config (dict): configuration overrides
        cancel_event (threading.Event): event signalling cancellation

    Returns:
        pandas.DataFrame: alternate allele counts, sites by cells
        pandas.DataFrame: reference allele counts, sites by cells
        pandas.DataFrame: total coverage, sites by cells

    Each cell is counted as an independent task of the worker pool.

    """

    pool = scbadger.parallel.WorkerPool.from_config(config)

    sites = list(sites)
    cells = list(cells)

    tasks = [(provider, sites, cell) for cell in cells]
    cell_counts = pool.map(_cell_read_counts, tasks, cancel_event=cancel_event)

    if len(cell_counts) == 0:
        cell_counts = np.zeros((0, len(sites), 3), dtype=int)
    else:
        cell_counts = np.array(cell_counts)

    def create_table(col):
        return pd.DataFrame(cell_counts[:, :, col].T, index=sites, columns=cells)

    return create_table(1), create_table(0), create_table(2)

