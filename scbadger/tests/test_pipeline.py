import unittest
import numpy as np

import scbadger.devmodel
import scbadger.ingest
import scbadger.pipeline
import scbadger.simulations.simple


np.random.seed(2014)


class pipeline_unittest(unittest.TestCase):


    @classmethod
    def setUpClass(cls):

        resolver = scbadger.ingest.LocusCoordinateResolver()

        test, reference, is_shifted = scbadger.simulations.simple.generate_expression()
        cls.expression = scbadger.ingest.create_expression_matrix(test, reference, resolver)

        alt, ref, bulk_alt, bulk_coverage, is_loh = scbadger.simulations.simple.generate_allele_counts()

        # Extra cell without expression
        alt['cell_extra'] = alt['cell_19']
        ref['cell_extra'] = ref['cell_19']

        cls.allele = scbadger.ingest.create_allele_matrix(
            alt, ref, resolver, bulk_alt=bulk_alt, bulk_coverage=bulk_coverage)


    def test_run_pipeline(self):

        result = scbadger.pipeline.run_pipeline(expression=self.expression, allele=self.allele)

        self.assertEqual(list(result.models.keys()), ['expression', 'allele'])
        self.assertIsInstance(result.models['allele'], scbadger.devmodel.AlleleDevianceModel)

        self.assertTrue(any(a.source == 'expression' and a.chromosome == '7' for a in result.regions))
        self.assertTrue(any(a.source == 'allele' and a.chromosome == '3' for a in result.regions))

        self.assertEqual([a.evidence for a in result.posteriors], ['expression', 'allele'])
        self.assertEqual(set(result.calls['cell']), set(self.expression.cells))

        summary = result.summary.set_index(['source', 'chromosome', 'evidence'])

        self.assertTrue(summary.loc[('expression', '7', 'expression'), 'num_cells'].max() >= 10)
        self.assertTrue(summary.loc[('allele', '3', 'allele'), 'num_cells'].max() >= 8)

        # No allele evidence for expression regions on chromosome 7
        chr7_allele = result.calls[(result.calls['chromosome'] == '7') & (result.calls['evidence'] == 'allele')]
        self.assertTrue(np.all(chr7_allele['status'] == 'indeterminate'))

        skipped_cells = result.skipped.loc[result.skipped['stage'] == 'pipeline', 'cell'].tolist()
        self.assertEqual(skipped_cells, ['cell_extra'])


    def test_run_pipeline_expression_only(self):

        result = scbadger.pipeline.run_pipeline(expression=self.expression, config={'retest_bound_snps': False})

        self.assertEqual(list(result.models.keys()), ['expression'])
        self.assertEqual(len(result.posteriors), 1)
        self.assertTrue(np.all(result.calls['evidence'] == 'expression'))


    def test_run_pipeline_no_regions(self):

        result = scbadger.pipeline.run_pipeline(expression=self.expression, config={'min_region_cells': 100})

        self.assertEqual(result.regions, [])
        self.assertEqual(result.posteriors, [])
        self.assertEqual(len(result.summary.index), 0)


    def test_run_pipeline_fit_error(self):

        allele = self.allele._replace(bins=self.allele.bins.iloc[:0])

        with self.assertRaises(scbadger.devmodel.FitError):
            scbadger.pipeline.run_pipeline(expression=self.expression, allele=allele)


    def test_run_pipeline_no_shared_cells(self):

        allele = scbadger.ingest.subset_cells(self.allele, ['cell_extra'])
        expression = scbadger.ingest.subset_cells(self.expression, ['cell_0'])

        with self.assertRaises(scbadger.ingest.InputError):
            scbadger.pipeline.run_pipeline(expression=expression, allele=allele)


    def test_run_pipeline_no_input(self):

        with self.assertRaises(scbadger.ingest.InputError):
            scbadger.pipeline.run_pipeline()


if __name__ == '__main__':
    unittest.main()

