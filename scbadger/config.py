import numbers
import yaml

import scbadger.defaults


class ConfigError(ValueError):
    pass


def _default_params():
    return dict((k, v) for k, v in vars(scbadger.defaults).items() if not k.startswith('_'))


def get_full_config(config):
    full_config = _default_params()
    if config is not None:
        full_config.update(config)
    return full_config


def get_param(config, name):
    return get_full_config(config)[name]


def get_sample_config(config, sample_id):
    sample_config = config.copy()
    sample_config.update(config.get('sample_specific', dict()).get(sample_id, dict()))
    sample_config.pop('sample_specific', None)
    return sample_config


def load_config(config_filename):
    """ Load configuration overrides from a yaml file.

    Args:
        config_filename (str): yaml configuration filename

    Returns:
        dict: configuration overrides

    """

    with open(config_filename, 'r') as config_file:
        config = yaml.safe_load(config_file)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise ConfigError('configuration file {} must contain a mapping'.format(config_filename))

    validate_config(config)

    return config


def _check_number(config, name, low=None, high=None, low_open=False, high_open=False):
    value = config[name]
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigError('{} must be a number, got {!r}'.format(name, value))
    if low is not None and (value < low or (low_open and value == low)):
        raise ConfigError('{} out of range: {}'.format(name, value))
    if high is not None and (value > high or (high_open and value == high)):
        raise ConfigError('{} out of range: {}'.format(name, value))


def _check_bool(config, name):
    value = config[name]
    if not isinstance(value, bool):
        raise ConfigError('{} must be true or false, got {!r}'.format(name, value))


def _check_int(config, name, low):
    value = config[name]
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigError('{} must be an integer, got {!r}'.format(name, value))
    if value < low:
        raise ConfigError('{} must be at least {}, got {}'.format(name, low, value))


def validate_config(config):
    """ Check a configuration for invalid parameter values.

    Args:
        config (dict): configuration overrides

    Raises:
        ConfigError: unknown parameter or invalid value

    """

    if config is None:
        return

    known = set(_default_params().keys()) | set(['sample_specific'])
    unknown = set(config.keys()) - known
    if len(unknown) > 0:
        raise ConfigError('unknown parameters: {}'.format(', '.join(sorted(unknown))))

    full_config = get_full_config(config)

    for name in ('min_mean_test', 'min_mean_reference', 'min_mean_both'):
        _check_number(full_config, name, low=0.)

    _check_number(full_config, 'het_deviance_threshold', low=0., high=0.5)
    _check_number(full_config, 'likelihood_tol', low=0., low_open=True)
    _check_number(full_config, 'min_expression_shift', low=0.)
    _check_number(full_config, 'sequencing_error', low=0., high=0.5, low_open=True, high_open=True)
    _check_number(full_config, 'transition_prob', low=0., high=1., low_open=True, high_open=True)
    _check_number(full_config, 'start_neutral_prob', low=0., high=1., low_open=True, high_open=True)
    _check_number(full_config, 'posterior_threshold', low=0., high=1.)

    _check_int(full_config, 'min_snp_cells', 0)
    _check_int(full_config, 'num_em_iter', 1)
    _check_int(full_config, 'min_fit_values', 1)
    _check_int(full_config, 'max_fit_values', full_config['min_fit_values'])
    _check_int(full_config, 'min_num_bins', 1)
    _check_int(full_config, 'min_boundary_bins', 1)
    _check_int(full_config, 'merge_min_overlap', 1)
    _check_int(full_config, 'min_region_cells', 1)
    _check_int(full_config, 'summary_min_cells', 0)
    _check_int(full_config, 'batch_size', 1)
    _check_int(full_config, 'random_seed', 0)

    for name in ('filter_genes', 'scale_library_size', 'merge_by_state', 'retest_bound_genes', 'retest_bound_snps'):
        _check_bool(full_config, name)

    n_jobs = full_config['n_jobs']
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, numbers.Integral) or n_jobs == 0:
        raise ConfigError('n_jobs must be a non-zero integer, got {!r}'.format(n_jobs))

    if full_config['decode_method'] not in ('viterbi', 'posterior'):
        raise ConfigError('decode_method must be viterbi or posterior, got {!r}'.format(full_config['decode_method']))

    if full_config['boundary_fdr'] is not None:
        _check_number(full_config, 'boundary_fdr', low=0., high=1., low_open=True)

    prior = full_config['retest_prior']
    try:
        prior_values = [float(a) for a in prior]
    except (TypeError, ValueError):
        raise ConfigError('retest_prior must be a list of 3 numbers, got {!r}'.format(prior))
    if len(prior_values) != 3 or any(a < 0 for a in prior_values) or sum(prior_values) <= 0:
        raise ConfigError('retest_prior must be 3 non-negative numbers with positive sum, got {!r}'.format(prior))

