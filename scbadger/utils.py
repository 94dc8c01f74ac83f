import numpy as np


class TempRandomSeed(object):
    def __init__(self, seed=2014):
        self.seed = seed
    def __enter__(self):
        self.rng_state = np.random.get_state()
        np.random.seed(self.seed)
        return self
    def __exit__(self, exc_type, exc_value, traceback):
        np.random.set_state(self.rng_state)


def get_chromosome_key(chromosome):
    chromosome = str(chromosome)
    name = chromosome[3:] if chromosome.lower().startswith('chr') else chromosome
    try:
        return (0, int(name), '')
    except ValueError:
        return (1, 0, name)


def sort_chromosome_names(chromosomes):
    return [chromosome for chromosome in sorted(chromosomes, key=get_chromosome_key)]


def read_only(array):
    """ Copy of an array that cannot be modified in place.
    """
    array = np.array(array)
    array.setflags(write=False)
    return array

