#!/usr/bin/env python3
"""
Phenotypic fingerprinting of flow cytometry samples.

Each sample is summarised by the kernel density of its events on a fixed
grid. For every pair of channels a bivariate density is estimated by binning
the events and smoothing the counts with a Gaussian kernel; the densities of
all channel pairs are concatenated into one vector. All samples share the
same bin edges, so fingerprints can be compared cell by cell.
"""

from itertools import combinations

import numpy as np
import pandas as pd
from scipy.ndimage import gaussian_filter


def compute_bin_edges(samples, channels, n_bins, bounds=None):
    """
    Build one set of bin edges per channel, shared by all samples.

    Args:
        samples: Dict of sample name -> DataFrame of events
        channels: Channels to bin
        n_bins: Number of bins per channel
        bounds: Optional dict of channel -> (low, high); otherwise the
            range of the pooled data is used

    Returns:
        Dict of channel -> array of ``n_bins + 1`` edges
    """
    if n_bins < 2:
        raise ValueError(f"Need at least 2 bins per channel, got {n_bins}")

    edges = {}
    for channel in channels:
        if bounds is not None and channel in bounds:
            low, high = bounds[channel]
        else:
            values = [data[channel].to_numpy(dtype=float) for data in samples.values() if len(data) > 0]
            if not values:
                raise ValueError("Cannot derive bin edges: all samples are empty")
            pooled = np.concatenate(values)
            low, high = float(pooled.min()), float(pooled.max())

        if high <= low:
            low, high = low - 0.5, high + 0.5
        edges[channel] = np.linspace(low, high, n_bins + 1)

    return edges


def binned_kde_2d(x, y, edges_x, edges_y, bandwidth):
    """
    Bivariate binned kernel density estimate.

    Events are counted on the grid and the counts are convolved with a
    Gaussian kernel whose standard deviation is ``bandwidth`` in data units.
    The result integrates to one over the grid.

    Returns:
        2-D array of shape ``(len(edges_x) - 1, len(edges_y) - 1)``
    """
    counts, _, _ = np.histogram2d(x, y, bins=[edges_x, edges_y])

    dx = edges_x[1] - edges_x[0]
    dy = edges_y[1] - edges_y[0]
    sigma = (bandwidth / dx, bandwidth / dy)
    density = gaussian_filter(counts, sigma=sigma, mode='constant')

    total = density.sum() * dx * dy
    if total > 0:
        density = density / total
    return density


def channel_pairs(channels):
    return list(combinations(channels, 2))


def fingerprint_labels(channels, n_bins):
    """Column labels of a fingerprint, one per (channel pair, grid cell)."""
    labels = []
    for x_channel, y_channel in channel_pairs(channels):
        labels.extend(f"{x_channel}~{y_channel}_{i}_{j}"
                      for i in range(n_bins) for j in range(n_bins))
    return labels


def compute_fingerprint(data, channels, edges, bandwidth, normalize=None):
    """
    Fingerprint of a single sample.

    Args:
        data: DataFrame of gated, transformed events
        channels: Channels entering the fingerprint (at least two)
        edges: Dict of channel -> bin edges, see ``compute_bin_edges``
        bandwidth: Kernel standard deviation in data units
        normalize: Function applied to the concatenated densities

    Returns:
        1-D numpy array
    """
    if len(channels) < 2:
        raise ValueError("A fingerprint needs at least two channels")
    if len(data) == 0:
        raise ValueError("Cannot fingerprint a sample without events")

    blocks = []
    for x_channel, y_channel in channel_pairs(channels):
        density = binned_kde_2d(data[x_channel].to_numpy(dtype=float),
                                data[y_channel].to_numpy(dtype=float),
                                edges[x_channel], edges[y_channel], bandwidth)
        blocks.append(density.ravel())

    fingerprint = np.concatenate(blocks)
    if normalize is not None:
        fingerprint = np.asarray(normalize(fingerprint), dtype=float)
    return fingerprint


def fingerprint_samples(samples, channels, n_bins=128, bandwidth=0.01, bounds=None, normalize=None):
    """
    Fingerprint every sample on a common grid.

    Args:
        samples: Dict of sample name -> DataFrame of gated, transformed events
        channels: Channels entering the fingerprint
        n_bins: Number of bins per channel
        bandwidth: Kernel standard deviation in data units
        bounds: Optional fixed bin ranges per channel
        normalize: Function applied to each fingerprint (identity if None)

    Returns:
        DataFrame with one row per sample and one column per grid cell
    """
    empty = [name for name, data in samples.items() if len(data) == 0]
    if empty:
        raise ValueError(f"Samples without events after gating: {empty}")

    edges = compute_bin_edges(samples, channels, n_bins, bounds)
    rows = {name: compute_fingerprint(data, channels, edges, bandwidth, normalize)
            for name, data in samples.items()}

    fingerprints = pd.DataFrame.from_dict(rows, orient='index',
                                          columns=fingerprint_labels(channels, n_bins))
    fingerprints.index.name = 'sample'
    return fingerprints
