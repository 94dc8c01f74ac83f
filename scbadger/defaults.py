
################################################
# Default configuration for scbadger
################################################

###
# Matrix ingestion
###

# Filter genes by mean expression in test and reference matrices
filter_genes                                = True

# Minimum mean log expression in the single cell test matrix
min_mean_test                               = 6.0

# Minimum mean log expression in the reference matrix
min_mean_reference                          = 8.0

# Minimum mean log expression required in both matrices
min_mean_both                               = 4.5

# Scale each cell by its library size, disable for pre-normalized matrices
scale_library_size                          = False

# Maximum deviation of the pooled allele fraction from 0.5 for a snp
# to be considered heterozygous
het_deviance_threshold                      = 0.1

# Minimum number of cells with coverage for a snp to be retained
min_snp_cells                               = 3

###
# Deviance model fitting
###

# Maximum number of EM iterations for mixture fitting
num_em_iter                                 = 1000

# EM convergence tolerance, relative change in log likelihood
likelihood_tol                              = 1e-6

# Minimum number of informative values for a model fit
min_fit_values                              = 10

# Maximum number of values used in a model fit, larger inputs are
# randomly subsampled
max_fit_values                              = 1000000

# Minimum expression shift of copy number states, in units of the
# neutral standard deviation
min_expression_shift                        = 1.0

# Per base error rate, allele fraction of mono-allelic sites
sequencing_error                            = 0.01

# Seed for any stochastic step
random_seed                                 = 2014

###
# HMM boundary detection
###

# Probability of switching state between adjacent bins
transition_prob                             = 1e-3

# Probability of starting a chromosome in the neutral state
start_neutral_prob                          = 0.9

# Decoding method, 'viterbi' or 'posterior'
decode_method                               = 'viterbi'

# Minimum informative bins for a chromosome to be segmented in a cell
min_num_bins                                = 5

# Minimum number of bins in a candidate boundary
min_boundary_bins                           = 1

# False discovery rate for candidate boundaries, None to keep all
boundary_fdr                                = 0.05

# Minimum overlap, in bins, for merging candidate boundaries
merge_min_overlap                           = 1

# Only merge candidate boundaries with the same state
merge_by_state                              = False

# Minimum number of cells supporting a consensus region
min_region_cells                            = 1

###
# Region retesting
###

# Prior probability of amplified, deleted and neutral states
retest_prior                                = [1./3., 1./3., 1./3.]

# Retest regions found from expression
retest_bound_genes                          = True

# Retest regions found from allele counts
retest_bound_snps                           = True

###
# Summary
###

# Posterior probability cutoff for counting a cell
posterior_threshold                         = 0.8

# Minimum number of confident cells for a region to be reported
summary_min_cells                           = 1

###
# Parallelism
###

# Number of joblib workers, 1 for in process execution
n_jobs                                      = 1

# Number of tasks dispatched between cancellation checks
batch_size                                  = 64

