import numpy as np
import pandas as pd


def locus_names(chromosomes, num_bins, spacing, length):
    """ Generate locus named bins evenly spaced along chromosomes.

    Args:
        chromosomes (list of str): chromosome names
        num_bins (int): bins per chromosome
        spacing (int): distance between bin starts
        length (int): length of each bin

    Returns:
        list of str: bin names 'chr:start-end' ordered by chromosome and position

    """

    names = list()
    for chromosome in chromosomes:
        for idx in range(num_bins):
            start = (idx + 1) * spacing
            names.append('{}:{}-{}'.format(chromosome, start, start + length - 1))
    return names


def generate_expression(
        num_chromosomes=10,
        genes_per_chromosome=50,
        num_cells=20,
        cnv_chromosome='7',
        num_cnv_cells=10,
        cnv_shift=2.,
        noise_sigma=0.5,
        num_reference=5,
        reference_sigma=0.05,
        mean_low=8.,
        mean_high=11.):
    """ Generate single cell log expression with a copy number change.

    KwArgs:
        num_chromosomes (int): number of chromosomes, named '1' to str(num_chromosomes)
        genes_per_chromosome (int): genes on each chromosome
        num_cells (int): number of single cells
        cnv_chromosome (str): chromosome with a copy number change
        num_cnv_cells (int): number of cells, the first, with the change
        cnv_shift (float): shift of log expression in units of `noise_sigma`, negative for a loss
        noise_sigma (float): standard deviation of single cell log expression
        num_reference (int): number of reference samples
        reference_sigma (float): standard deviation of reference log expression
        mean_low (float): lower bound of mean log expression per gene
        mean_high (float): upper bound of mean log expression per gene

    Returns:
        pandas.DataFrame: single cell log expression, genes by cells
        pandas.DataFrame: reference log expression, genes by samples
        numpy.array: boolean matrix of shifted values, genes by cells

    Genes are named by locus and can be resolved with
    `scbadger.ingest.LocusCoordinateResolver`.

    """

    chromosomes = [str(a) for a in range(1, num_chromosomes + 1)]
    genes = locus_names(chromosomes, genes_per_chromosome, 100000, 20000)
    cells = ['cell_{}'.format(a) for a in range(num_cells)]

    gene_mean = np.random.uniform(low=mean_low, high=mean_high, size=len(genes))

    test = gene_mean[:, np.newaxis] + np.random.normal(scale=noise_sigma, size=(len(genes), num_cells))
    reference = gene_mean[:, np.newaxis] + np.random.normal(scale=reference_sigma, size=(len(genes), num_reference))

    gene_chromosome = np.array([a.split(':')[0] for a in genes])

    is_shifted = np.zeros((len(genes), num_cells), dtype=bool)
    is_shifted[np.ix_(gene_chromosome == cnv_chromosome, np.arange(num_cnv_cells))] = True

    test[is_shifted] += cnv_shift * noise_sigma

    test = pd.DataFrame(test, index=genes, columns=cells)
    reference = pd.DataFrame(reference, index=genes, columns=['reference_{}'.format(a) for a in range(num_reference)])

    return test, reference, is_shifted


def generate_allele_counts(
        num_chromosomes=5,
        snps_per_chromosome=40,
        num_cells=20,
        loh_chromosome='3',
        num_loh_cells=8,
        mean_depth=20.,
        dropout_rate=0.2,
        mono_rate=0.05,
        dispersion=50.,
        error_rate=0.01,
        bulk_depth=100):
    """ Generate single cell allele counts with loss of heterozygosity.

    KwArgs:
        num_chromosomes (int): number of chromosomes, named '1' to str(num_chromosomes)
        snps_per_chromosome (int): heterozygous snps on each chromosome
        num_cells (int): number of single cells
        loh_chromosome (str): chromosome with loss of heterozygosity
        num_loh_cells (int): number of cells, the first, with the loss
        mean_depth (float): mean read depth of covered snps
        dropout_rate (float): probability a snp has no reads in a cell
        mono_rate (float): probability of random mono-allelic expression
        dispersion (float): beta binomial over-dispersion of biallelic expression
        error_rate (float): alternate allele fraction of mono-allelic expression
        bulk_depth (int): read depth of the bulk sample

    Returns:
        pandas.DataFrame: alternate allele counts, snps by cells
        pandas.DataFrame: reference allele counts, snps by cells
        pandas.Series: alternate allele counts of the bulk sample
        pandas.Series: coverage of the bulk sample
        numpy.array: boolean matrix of values with loss of heterozygosity, snps by cells

    The retained allele is the same for all snps of a cell, and is
    the alternate allele at a random half of the snps.

    """

    chromosomes = [str(a) for a in range(1, num_chromosomes + 1)]
    snps = locus_names(chromosomes, snps_per_chromosome, 50000, 1)
    cells = ['cell_{}'.format(a) for a in range(num_cells)]

    shape = (len(snps), num_cells)

    coverage = np.random.poisson(mean_depth, size=shape)
    coverage[np.random.uniform(size=shape) < dropout_rate] = 0

    # Biallelic expression
    p = np.random.beta(dispersion * 0.5, dispersion * 0.5, size=shape)

    # Random mono-allelic expression
    is_mono = np.random.uniform(size=shape) < mono_rate
    mono_p = np.where(np.random.uniform(size=shape) < 0.5, error_rate, 1. - error_rate)
    p = np.where(is_mono, mono_p, p)

    # Loss of heterozygosity
    snp_chromosome = np.array([a.split(':')[0] for a in snps])
    is_loh = np.zeros(shape, dtype=bool)
    is_loh[np.ix_(snp_chromosome == loh_chromosome, np.arange(num_loh_cells))] = True

    is_alt_phase = np.random.uniform(size=len(snps)) < 0.5
    loh_p = np.where(is_alt_phase, 1. - error_rate, error_rate)[:, np.newaxis] * np.ones(shape)
    p = np.where(is_loh, loh_p, p)

    alt = np.random.binomial(coverage, p)
    ref = coverage - alt

    bulk_alt = np.random.binomial(bulk_depth, 0.5, size=len(snps))

    alt = pd.DataFrame(alt, index=snps, columns=cells)
    ref = pd.DataFrame(ref, index=snps, columns=cells)
    bulk_alt = pd.Series(bulk_alt, index=snps)
    bulk_coverage = pd.Series(bulk_depth, index=snps)

    return alt, ref, bulk_alt, bulk_coverage, is_loh

