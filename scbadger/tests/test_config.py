import os
import shutil
import tempfile
import unittest

import scbadger.config
import scbadger.defaults


class config_unittest(unittest.TestCase):


    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()


    def tearDown(self):
        shutil.rmtree(self.temp_dir)


    def test_get_param(self):

        self.assertEqual(scbadger.config.get_param(None, 'transition_prob'), scbadger.defaults.transition_prob)
        self.assertEqual(scbadger.config.get_param({'transition_prob': 0.1}, 'transition_prob'), 0.1)


    def test_load_config(self):

        config_filename = os.path.join(self.temp_dir, 'config.yaml')

        with open(config_filename, 'w') as config_file:
            config_file.write('posterior_threshold: 0.9\n')
            config_file.write('retest_prior: [0.25, 0.25, 0.5]\n')
            config_file.write('boundary_fdr: null\n')

        config = scbadger.config.load_config(config_filename)

        self.assertEqual(config['posterior_threshold'], 0.9)
        self.assertEqual(config['retest_prior'], [0.25, 0.25, 0.5])
        self.assertIsNone(scbadger.config.get_param(config, 'boundary_fdr'))


    def test_load_config_boolean(self):

        config_filename = os.path.join(self.temp_dir, 'config.yaml')

        with open(config_filename, 'w') as config_file:
            config_file.write('scale_library_size: true\n')

        self.assertIs(scbadger.config.load_config(config_filename)['scale_library_size'], True)

        with open(config_filename, 'w') as config_file:
            config_file.write('scale_library_size: "false"\n')

        with self.assertRaises(scbadger.config.ConfigError):
            scbadger.config.load_config(config_filename)


    def test_load_config_empty(self):

        config_filename = os.path.join(self.temp_dir, 'config.yaml')
        open(config_filename, 'w').close()

        self.assertEqual(scbadger.config.load_config(config_filename), {})


    def test_load_config_invalid(self):

        config_filename = os.path.join(self.temp_dir, 'config.yaml')

        with open(config_filename, 'w') as config_file:
            config_file.write('min_num_bins: -3\n')

        with self.assertRaises(scbadger.config.ConfigError):
            scbadger.config.load_config(config_filename)


    def test_sample_config(self):

        config = {
            'posterior_threshold': 0.9,
            'sample_specific': {
                'sample_1': {'posterior_threshold': 0.7},
            },
        }

        sample_config = scbadger.config.get_sample_config(config, 'sample_1')

        self.assertEqual(sample_config, {'posterior_threshold': 0.7})
        self.assertEqual(scbadger.config.get_sample_config(config, 'sample_2'), {'posterior_threshold': 0.9})


    def test_validate_config(self):

        scbadger.config.validate_config(None)
        scbadger.config.validate_config({'n_jobs': -1, 'decode_method': 'posterior'})
        scbadger.config.validate_config({'filter_genes': False, 'merge_by_state': True})

        invalid_configs = [
            {'unknown_param': 1},
            {'min_mean_test': -1.},
            {'transition_prob': 0.},
            {'transition_prob': 1.},
            {'posterior_threshold': 1.5},
            {'min_num_bins': 2.5},
            {'min_region_cells': 0},
            {'n_jobs': 0},
            {'decode_method': 'greedy'},
            {'boundary_fdr': 0.},
            {'retest_prior': [0.5, 0.5]},
            {'retest_prior': [0., 0., 0.]},
            {'retest_prior': [-1., 1., 1.]},
            {'min_fit_values': 100, 'max_fit_values': 50},
            {'sequencing_error': 0.5},
            {'filter_genes': 'false'},
            {'scale_library_size': 1},
            {'merge_by_state': None},
            {'retest_bound_genes': 'no'},
            {'retest_bound_snps': 0},
        ]

        for config in invalid_configs:
            with self.assertRaises(scbadger.config.ConfigError):
                scbadger.config.validate_config(config)


if __name__ == '__main__':
    unittest.main()

