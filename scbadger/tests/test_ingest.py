import os
import shutil
import tempfile
import threading
import unittest
import numpy as np
import pandas as pd

import scbadger.config
import scbadger.ingest
import scbadger.parallel
import scbadger.simulations.simple


np.random.seed(2014)


class ReadCountProvider(object):

    def __init__(self, counts):
        self.counts = counts

    def read_counts(self, site, cell):
        return self.counts[(site, cell)]


class ingest_unittest(unittest.TestCase):


    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()


    def tearDown(self):
        shutil.rmtree(self.temp_dir)


    def test_resolve_bins_sorted(self):

        bin_ids = ['chr2:500-600', 'chrX:10-20', 'chr10:5-10', 'chr2:100-200', 'unknown']

        bins, unresolved = scbadger.ingest.resolve_bins(bin_ids, scbadger.ingest.LocusCoordinateResolver())

        self.assertEqual(unresolved, ['unknown'])
        self.assertEqual(list(bins['bin_id']), ['chr2:100-200', 'chr2:500-600', 'chr10:5-10', 'chrX:10-20'])
        self.assertEqual(list(bins.index), [3, 0, 2, 1])


    def test_table_resolver(self):

        annotations = pd.DataFrame({
            'bin_id': ['GENE1', 'GENE2'],
            'chromosome': ['7', '7'],
            'start': [100, 500],
            'end': [200, 900],
        })

        resolver = scbadger.ingest.TableCoordinateResolver(annotations)

        self.assertEqual(resolver.lookup('GENE2'), ('7', 500, 900))
        self.assertIsNone(resolver.lookup('GENE3'))

        with self.assertRaises(scbadger.ingest.InputError):
            scbadger.ingest.TableCoordinateResolver(annotations.drop('end', axis=1))


    def test_table_resolver_missing_coordinates(self):

        annotations = pd.DataFrame({
            'bin_id': ['GENE1', 'GENE2', 'GENE3', 'GENE4', 'GENE4'],
            'chromosome': ['7', None, '7', '7', '8'],
            'start': [100, 300, np.nan, 100.5, 1000],
            'end': [200, 400, np.nan, 200, 2000],
        })

        resolver = scbadger.ingest.TableCoordinateResolver(annotations)

        self.assertEqual(resolver.lookup('GENE1'), ('7', 100, 200))
        self.assertIsNone(resolver.lookup('GENE2'))
        self.assertIsNone(resolver.lookup('GENE3'))
        self.assertEqual(resolver.lookup('GENE4'), ('8', 1000, 2000))

        bins, unresolved = scbadger.ingest.resolve_bins(['GENE1', 'GENE2', 'GENE3'], resolver)

        self.assertEqual(list(bins['bin_id']), ['GENE1'])
        self.assertEqual(unresolved, ['GENE2', 'GENE3'])


    def test_table_resolver_read_table(self):

        annotation_filename = os.path.join(self.temp_dir, 'annotations.tsv')

        with open(annotation_filename, 'w') as annotation_file:
            annotation_file.write('bin_id\tchromosome\tstart\tend\n')
            annotation_file.write('GENE1\t7\t100\t200\n')
            annotation_file.write('GENE2\tX\t500\t900\n')
            annotation_file.write('GENE3\t7\t\t\n')

        resolver = scbadger.ingest.TableCoordinateResolver.read_table(annotation_filename)

        self.assertEqual(resolver.lookup('GENE1'), ('7', 100, 200))
        self.assertEqual(resolver.lookup('GENE2'), ('X', 500, 900))
        self.assertIsNone(resolver.lookup('GENE3'))


    def test_expression_filter(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=3)

        # Poorly expressed gene in test and reference
        test.iloc[5] = 1.
        reference.iloc[5] = 1.

        matrix = scbadger.ingest.create_expression_matrix(test, reference, scbadger.ingest.LocusCoordinateResolver())

        self.assertEqual(matrix.num_bins, test.shape[0] - 1)
        self.assertNotIn(test.index[5], set(matrix.bins['bin_id']))
        self.assertEqual(list(matrix.skipped['reason']), ['low expression'])
        self.assertEqual(matrix.cells, tuple(test.columns))

        np.testing.assert_almost_equal(matrix.deviance, matrix.values - matrix.reference_mean[:, np.newaxis])


    def test_expression_unresolved_and_missing(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=2, genes_per_chromosome=10)

        test = test.rename(index={test.index[0]: 'no_coordinates'})
        reference = reference.rename(index={reference.index[0]: 'no_coordinates'})
        reference = reference.drop(reference.index[1])

        matrix = scbadger.ingest.create_expression_matrix(test, reference, scbadger.ingest.LocusCoordinateResolver())

        self.assertEqual(matrix.num_bins, test.shape[0] - 2)

        reasons = dict(zip(matrix.skipped['bin_id'], matrix.skipped['reason']))
        self.assertEqual(reasons['no_coordinates'], 'unresolved coordinates')
        self.assertEqual(reasons[test.index[1]], 'missing from reference')


    def test_expression_idempotent(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=3)

        test.iloc[:20] -= 4.
        reference.iloc[10:30] -= 4.

        resolver = scbadger.ingest.LocusCoordinateResolver()

        matrix = scbadger.ingest.create_expression_matrix(test, reference, resolver)

        test_filtered = pd.DataFrame(matrix.values, index=matrix.bins['bin_id'], columns=matrix.cells)
        reference_filtered = reference.loc[matrix.bins['bin_id']]

        matrix_again = scbadger.ingest.create_expression_matrix(test_filtered, reference_filtered, resolver)

        self.assertTrue(matrix.bins.equals(matrix_again.bins))
        self.assertTrue(np.all(matrix.deviance == matrix_again.deviance))
        self.assertEqual(len(matrix_again.skipped.index), 0)


    def test_expression_idempotent_scaled(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=3)

        test.iloc[:20] -= 4.
        reference.iloc[10:30] -= 4.

        resolver = scbadger.ingest.LocusCoordinateResolver()
        config = {'scale_library_size': True}

        matrix = scbadger.ingest.create_expression_matrix(test, reference, resolver, config=config)

        self.assertTrue(matrix.num_bins < test.shape[0])

        # Library sizes of retained genes are equal
        library_size = matrix.values.sum(axis=0)
        np.testing.assert_almost_equal(library_size / library_size[0], np.ones(len(matrix.cells)))

        test_filtered = pd.DataFrame(matrix.values, index=matrix.bins['bin_id'], columns=matrix.cells)
        reference_filtered = reference.loc[matrix.bins['bin_id']]

        matrix_again = scbadger.ingest.create_expression_matrix(test_filtered, reference_filtered, resolver, config=config)

        self.assertTrue(matrix.bins.equals(matrix_again.bins))
        np.testing.assert_almost_equal(matrix.values, matrix_again.values)
        np.testing.assert_almost_equal(matrix.deviance, matrix_again.deviance)
        self.assertEqual(len(matrix_again.skipped.index), 0)


    def test_allele_idempotent(self):

        alt, ref, bulk_alt, bulk_coverage, is_loh = scbadger.simulations.simple.generate_allele_counts()

        # Homozygous snp and snp covered in a single cell
        alt.iloc[3] = alt.iloc[3] + ref.iloc[3]
        ref.iloc[3] = 0
        bulk_alt.iloc[3] = bulk_coverage.iloc[3]
        alt.iloc[7, 1:] = 0
        ref.iloc[7, 1:] = 0

        resolver = scbadger.ingest.LocusCoordinateResolver()

        for bulk_kwargs in ({'bulk_alt': bulk_alt, 'bulk_coverage': bulk_coverage}, {}):
            matrix = scbadger.ingest.create_allele_matrix(alt, ref, resolver, **bulk_kwargs)

            self.assertNotIn(alt.index[3], set(matrix.bins['bin_id']))
            self.assertNotIn(alt.index[7], set(matrix.bins['bin_id']))

            def create_table(counts):
                return pd.DataFrame(counts, index=matrix.bins['bin_id'].values, columns=list(matrix.cells))

            matrix_again = scbadger.ingest.create_allele_matrix(
                create_table(matrix.alt_counts), create_table(matrix.ref_counts), resolver,
                coverage=create_table(matrix.coverage), **bulk_kwargs)

            self.assertTrue(matrix.bins.equals(matrix_again.bins))
            self.assertEqual(matrix.cells, matrix_again.cells)
            np.testing.assert_array_equal(matrix.alt_counts, matrix_again.alt_counts)
            np.testing.assert_array_equal(matrix.ref_counts, matrix_again.ref_counts)
            np.testing.assert_array_equal(matrix.coverage, matrix_again.coverage)
            self.assertEqual(len(matrix_again.skipped.index), 0)


    def test_expression_empty(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=2, genes_per_chromosome=10)

        matrix = scbadger.ingest.create_expression_matrix(test - 10., reference - 10., scbadger.ingest.LocusCoordinateResolver())

        self.assertTrue(matrix.is_empty)
        self.assertEqual(len(matrix.skipped.index), test.shape[0])


    def test_scale_library_size(self):

        values = pd.DataFrame({'a': [1., 3.], 'b': [2., 6.], 'c': [4., 4.]})

        scaled = scbadger.ingest.scale_library_size(values)

        np.testing.assert_almost_equal(scaled.sum(axis=0).values, np.array([8., 8., 8.]))


    def test_allele_het_filter(self):

        alt, ref, bulk_alt, bulk_coverage, is_loh = scbadger.simulations.simple.generate_allele_counts()

        # Homozygous snp
        alt.iloc[3] = alt.iloc[3] + ref.iloc[3]
        ref.iloc[3] = 0
        bulk_alt.iloc[3] = bulk_coverage.iloc[3]

        matrix = scbadger.ingest.create_allele_matrix(
            alt, ref, scbadger.ingest.LocusCoordinateResolver(),
            bulk_alt=bulk_alt, bulk_coverage=bulk_coverage)

        self.assertNotIn(alt.index[3], set(matrix.bins['bin_id']))

        reasons = dict(zip(matrix.skipped['bin_id'], matrix.skipped['reason']))
        self.assertEqual(reasons[alt.index[3]], 'not heterozygous')

        np.testing.assert_array_equal(matrix.coverage, matrix.alt_counts + matrix.ref_counts)


    def test_allele_pooled_het_filter(self):

        alt, ref, bulk_alt, bulk_coverage, is_loh = scbadger.simulations.simple.generate_allele_counts(num_loh_cells=0)

        alt.iloc[3] = 0

        matrix = scbadger.ingest.create_allele_matrix(alt, ref, scbadger.ingest.LocusCoordinateResolver())

        self.assertNotIn(alt.index[3], set(matrix.bins['bin_id']))


    def test_allele_min_cells(self):

        alt, ref, bulk_alt, bulk_coverage, is_loh = scbadger.simulations.simple.generate_allele_counts(num_loh_cells=0)

        alt.iloc[0] = 0
        ref.iloc[0] = 0
        ref.iloc[0, 0] = 10
        alt.iloc[0, 0] = 10

        matrix = scbadger.ingest.create_allele_matrix(
            alt, ref, scbadger.ingest.LocusCoordinateResolver(),
            bulk_alt=bulk_alt, bulk_coverage=bulk_coverage)

        reasons = dict(zip(matrix.skipped['bin_id'], matrix.skipped['reason']))
        self.assertEqual(reasons[alt.index[0]], 'insufficient cells')


    def test_allele_mismatched_cells(self):

        alt, ref, bulk_alt, bulk_coverage, is_loh = scbadger.simulations.simple.generate_allele_counts()

        with self.assertRaises(scbadger.ingest.InputError):
            scbadger.ingest.create_allele_matrix(alt, ref.iloc[:, 1:], scbadger.ingest.LocusCoordinateResolver())

        with self.assertRaises(scbadger.ingest.InputError):
            scbadger.ingest.create_allele_matrix(alt, -ref, scbadger.ingest.LocusCoordinateResolver())


    def test_region_rows(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=3, genes_per_chromosome=10)

        matrix = scbadger.ingest.create_expression_matrix(test, reference, scbadger.ingest.LocusCoordinateResolver())

        rows = matrix.region_rows('2', 200000, 400000)

        self.assertEqual(list(matrix.bins['bin_id'].values[rows]), ['2:200000-219999', '2:300000-319999', '2:400000-419999'])


    def test_subset_cells(self):

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression(num_chromosomes=2, genes_per_chromosome=10)

        matrix = scbadger.ingest.create_expression_matrix(test, reference, scbadger.ingest.LocusCoordinateResolver())

        subset = scbadger.ingest.subset_cells(matrix, ['cell_3', 'cell_1'])

        self.assertEqual(subset.cells, ('cell_3', 'cell_1'))
        np.testing.assert_array_equal(subset.deviance[:, 0], matrix.deviance[:, 3])

        with self.assertRaises(scbadger.ingest.InputError):
            scbadger.ingest.subset_cells(matrix, ['cell_100'])


    def test_read_count_matrices(self):

        sites = ['1:100-100', '1:200-200']
        cells = ['a', 'b', 'c']

        counts = dict()
        for site_idx, site in enumerate(sites):
            for cell_idx, cell in enumerate(cells):
                counts[(site, cell)] = (site_idx, cell_idx, site_idx + cell_idx + 1)

        provider = ReadCountProvider(counts)

        alt, ref, coverage = scbadger.ingest.read_count_matrices(provider, sites, cells, config={'batch_size': 2})

        self.assertEqual(list(alt.columns), cells)
        self.assertEqual(alt.loc['1:200-200', 'c'], 2)
        self.assertEqual(ref.loc['1:200-200', 'c'], 1)
        self.assertEqual(coverage.loc['1:200-200', 'c'], 4)


    def test_read_count_matrices_cancelled(self):

        cancel_event = threading.Event()
        cancel_event.set()

        provider = ReadCountProvider({})

        with self.assertRaises(scbadger.parallel.Cancelled):
            scbadger.ingest.read_count_matrices(provider, ['1:100-100'], ['a'], cancel_event=cancel_event)


if __name__ == '__main__':
    unittest.main()

