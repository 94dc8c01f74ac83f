import numpy as np
from scipy.special import logsumexp


def log_transition_matrix(num_states, transition_prob):
    """ Transition matrix favouring the current state.

    Args:
        num_states (int): number of hidden states
        transition_prob (float): total probability of leaving a state

    Returns:
        numpy.array: log transition probabilities with shape (S,S), from by to

    """

    if num_states == 1:
        return np.zeros((1, 1))

    trans = np.full((num_states, num_states), transition_prob / (num_states - 1))
    np.fill_diagonal(trans, 1. - transition_prob)

    return np.log(trans)


def log_start_probs(num_states, background, background_prob):
    """ Start probabilities favouring a background state.

    Args:
        num_states (int): number of hidden states
        background (int): index of the background state
        background_prob (float): probability of starting in the background state

    Returns:
        numpy.array: log start probabilities, length S

    """

    if num_states == 1:
        return np.zeros(1)

    start = np.full(num_states, (1. - background_prob) / (num_states - 1))
    start[background] = background_prob

    return np.log(start)


def viterbi(log_start_prob, log_trans_mat, frame_log_prob):
    """ Calculate the most likely state sequence.

    Args:
        log_start_prob (numpy.array): log start probabilities, length S
        log_trans_mat (numpy.array): log transition probabilities, shape (S,S)
        frame_log_prob (numpy.array): log emission probabilities, shape (N,S)

    Returns:
        numpy.array: state sequence, length N
        float: log probability of the state sequence

    Ties are broken towards the lowest state index.

    """

    N, S = frame_log_prob.shape

    if N == 0:
        return np.zeros(0, dtype=int), 0.

    lattice = np.zeros((N, S))
    backpointers = np.zeros((N, S), dtype=int)

    lattice[0] = log_start_prob + frame_log_prob[0]

    for n in range(1, N):
        scores = lattice[n-1][:, np.newaxis] + log_trans_mat
        backpointers[n] = np.argmax(scores, axis=0)
        lattice[n] = scores[backpointers[n], np.arange(S)] + frame_log_prob[n]

    state_sequence = np.zeros(N, dtype=int)
    state_sequence[-1] = np.argmax(lattice[-1])

    for n in range(N - 1, 0, -1):
        state_sequence[n-1] = backpointers[n, state_sequence[n]]

    return state_sequence, lattice[-1, state_sequence[-1]]


def forward_backward(log_start_prob, log_trans_mat, frame_log_prob):
    """ Calculate the forward backward posterior marginals.

    Args:
        log_start_prob (numpy.array): log start probabilities, length S
        log_trans_mat (numpy.array): log transition probabilities, shape (S,S)
        frame_log_prob (numpy.array): log emission probabilities, shape (N,S)

    Returns:
        numpy.array: posterior marginals, shape (N,S)
        float: log probability of the observations

    """

    N, S = frame_log_prob.shape

    if N == 0:
        return np.zeros((0, S)), 0.

    fwd_lattice = np.zeros((N, S))
    bwd_lattice = np.zeros((N, S))

    fwd_lattice[0] = log_start_prob + frame_log_prob[0]
    for n in range(1, N):
        fwd_lattice[n] = logsumexp(fwd_lattice[n-1][:, np.newaxis] + log_trans_mat, axis=0) + frame_log_prob[n]

    for n in range(N - 2, -1, -1):
        bwd_lattice[n] = logsumexp(log_trans_mat + (frame_log_prob[n+1] + bwd_lattice[n+1])[np.newaxis, :], axis=1)

    log_prob = logsumexp(fwd_lattice[-1])

    gamma = fwd_lattice + bwd_lattice
    posteriors = np.exp(gamma - logsumexp(gamma, axis=1)[:, np.newaxis])

    return posteriors, log_prob


def decode(log_start_prob, log_trans_mat, frame_log_prob, method='viterbi'):
    """ Decode a state sequence.

    Args:
        log_start_prob (numpy.array): log start probabilities, length S
        log_trans_mat (numpy.array): log transition probabilities, shape (S,S)
        frame_log_prob (numpy.array): log emission probabilities, shape (N,S)

    KwArgs:
        method (str): 'viterbi' for the most likely sequence, 'posterior'
            for the maximum posterior marginal state of each frame

    Returns:
        numpy.array: state sequence, length N

    """

    if method == 'viterbi':
        state_sequence, _ = viterbi(log_start_prob, log_trans_mat, frame_log_prob)

    elif method == 'posterior':
        posteriors, _ = forward_backward(log_start_prob, log_trans_mat, frame_log_prob)
        state_sequence = np.argmax(posteriors, axis=1)

    else:
        raise ValueError('unknown decode method {}'.format(method))

    return state_sequence

