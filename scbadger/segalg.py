import numpy as np


def is_contained(a, b):
    """ Check if segment b is fully contained within segment a """
    return b[0] >= a[0] and b[1] <= a[1]


def find_overlapping_bins(starts, ends, region_start, region_end):
    """ Find bins overlapping a region

    Args:
        starts (numpy.array): start of each bin, length N
        ends (numpy.array): end of each bin, length N
        region_start (int): start of the region
        region_end (int): end of the region

    Returns:
        numpy.array: indices of bins overlapping the region, in bin order

    Coordinates are inclusive at both ends.

    """

    starts = np.asarray(starts)
    ends = np.asarray(ends)

    mask = (starts <= region_end) & (ends >= region_start)

    return np.where(mask)[0]


def find_runs(states, background):
    """ Find runs of identical states differing from a background state

    Args:
        states (numpy.array): state of each bin, length N
        background (int): state ignored when finding runs

    Returns:
        numpy.array: start index of each run
        numpy.array: end index of each run, inclusive
        numpy.array: state of each run

    See the following illustrative example:

        states = np.array([1, 1, 2, 2, 0, 1, 0, 0])

        print(find_runs(states, 1))
        >>> (array([2, 4, 6]), array([3, 4, 7]), array([2, 0, 0]))

    """

    states = np.asarray(states)

    if states.shape[0] == 0:
        empty = np.array([], dtype=int)
        return empty, empty, empty

    # Run boundaries at each change of state
    is_diff = np.concatenate([[True], states[1:] != states[:-1]])
    run_start = np.where(is_diff)[0]
    run_end = np.concatenate([run_start[1:] - 1, [states.shape[0] - 1]])
    run_state = states[run_start]

    keep = run_state != background

    return run_start[keep], run_end[keep], run_state[keep]


def merge_overlapping_unopt(intervals, min_overlap=1):
    """ Group intervals connected by overlaps (unopt)

    Args:
        intervals (numpy.array): start and end of intervals with shape (N,2), inclusive

    KwArgs:
        min_overlap (int): minimum overlap for two intervals to be connected

    Returns:
        numpy.array: group label of each interval, length N

    """

    N = intervals.shape[0]
    labels = list(range(N))

    def find(n):
        while labels[n] != n:
            n = labels[n]
        return n

    for i in range(N):
        for j in range(i + 1, N):
            overlap = min(intervals[i, 1], intervals[j, 1]) - max(intervals[i, 0], intervals[j, 0]) + 1
            if overlap >= min_overlap:
                labels[find(j)] = find(i)

    roots = [find(n) for n in range(N)]

    # Relabel groups by order of their leftmost interval
    group_start = dict()
    for n, root in enumerate(roots):
        group_start[root] = min(group_start.get(root, (np.inf, np.inf, n)), (intervals[n, 0], intervals[n, 1], n))
    ordered = sorted(group_start.keys(), key=lambda a: group_start[a])
    relabel = dict((root, idx) for idx, root in enumerate(ordered))

    return np.array([relabel[root] for root in roots], dtype=int)


def merge_overlapping(intervals, min_overlap=1):
    """ Group intervals connected by overlaps

    Args:
        intervals (numpy.array): start and end of intervals with shape (N,2), inclusive

    KwArgs:
        min_overlap (int): minimum overlap for two intervals to be connected

    Returns:
        numpy.array: group label of each interval, length N

    Groups are labelled in order of their leftmost start.  Connection is
    transitive: an interval overlapping any interval of a group joins it.
    Overlap with a group is measured against the running maximum end of
    the group, so a single interval spanning two others joins all three.
    Intervals shorter than `min_overlap` cannot overlap any other interval
    sufficiently and form groups of their own.

    """

    N = intervals.shape[0]
    labels = np.zeros(N, dtype=int)

    order = np.lexsort((intervals[:, 1], intervals[:, 0]))

    next_label = 0
    group = None
    group_end = None

    for idx in order:
        start, end = intervals[idx]

        if end - start + 1 < min_overlap:
            labels[idx] = next_label
            next_label += 1
            continue

        if group is None or min(group_end, end) - start + 1 < min_overlap:
            group = next_label
            next_label += 1
            group_end = end
        else:
            group_end = max(group_end, end)

        labels[idx] = group

    return labels

