#!/usr/bin/env python3
"""
Static plots for the gating and ordination steps.

Functions draw on a matplotlib Axes (a new figure is created when none is
given) and return the Axes so callers can combine panels.
"""

import os

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns


def _get_axes(ax, figsize=(7, 6)):
    if ax is None:
        _, ax = plt.subplots(figsize=figsize)
    return ax


def plot_gate(data, polygon, channels, gated=None, ax=None, title='Polygonal Gate'):
    """
    Scatter the events of one sample in the gate channels with the gate outline.

    Args:
        data: DataFrame of transformed events
        polygon: Gate vertices
        channels: (x, y) gate channels
        gated: Optional DataFrame of events kept by the gate, highlighted
    """
    ax = _get_axes(ax)
    x_channel, y_channel = channels

    ax.scatter(data[x_channel], data[y_channel], alpha=0.3, s=1, color='lightgray', label='All events')
    if gated is not None:
        ax.scatter(gated[x_channel], gated[y_channel], alpha=0.6, s=1, color='darkgreen', label='Gated events')

    polygon_patch = plt.Polygon(np.asarray(polygon, dtype=float), fill=False,
                                edgecolor='black', linewidth=2, linestyle='--')
    ax.add_patch(polygon_patch)

    ax.set_xlabel(f'{x_channel} (arcsinh)')
    ax.set_ylabel(f'{y_channel} (arcsinh)')
    ax.set_title(title)
    ax.legend(loc='upper left', markerscale=5)
    ax.grid(True, alpha=0.3)
    return ax


def _axis_label(result, i):
    axis = result['coordinates'].columns[i]
    return f"{axis} ({result['explained_variance_ratio'][i] * 100:.1f}%)"


def plot_ordination(result, metadata=None, hue=None, style=None, ax=None, title=None):
    """
    Scatter the first two axes of a PCA or PCoA result.

    Args:
        result: Dict returned by ``run_pca`` or ``run_pcoa``
        metadata: Table indexed like the coordinates, used for grouping
        hue: Metadata column mapped to colour
        style: Metadata column mapped to marker
    """
    coordinates = result['coordinates']
    if coordinates.shape[1] < 2:
        raise ValueError("Ordination result has fewer than two axes to plot")

    ax = _get_axes(ax)
    plot_data = coordinates.iloc[:, :2].copy()
    if metadata is not None:
        plot_data = plot_data.join(metadata, how='left')

    x_axis, y_axis = coordinates.columns[:2]
    sns.scatterplot(data=plot_data, x=x_axis, y=y_axis, hue=hue, style=style,
                    s=60, alpha=0.85, edgecolor='black', linewidth=0.3, ax=ax)

    ax.axhline(0, color='gray', linewidth=0.5, linestyle=':')
    ax.axvline(0, color='gray', linewidth=0.5, linestyle=':')
    ax.set_xlabel(_axis_label(result, 0))
    ax.set_ylabel(_axis_label(result, 1))
    ax.set_title(title or result.get('method', 'Ordination'))
    if hue is not None or style is not None:
        ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', fontsize=8)
    ax.grid(True, alpha=0.3)
    return ax


def plot_pca_biplot(result, ax=None, title='Environmental PCA'):
    """PCA scores with variable loadings drawn as arrows."""
    ax = _get_axes(ax)
    scores = result['coordinates']
    loadings = result['loadings']
    if scores.shape[1] < 2:
        raise ValueError("PCA result has fewer than two axes to plot")

    ax.scatter(scores.iloc[:, 0], scores.iloc[:, 1], s=30, alpha=0.7, color='steelblue')

    # Stretch the unit-length loadings to the extent of the scores
    scale = np.abs(scores.iloc[:, :2].to_numpy()).max()
    for variable, (x, y) in loadings.iloc[:, :2].iterrows():
        ax.arrow(0, 0, x * scale, y * scale, color='firebrick', alpha=0.8,
                 head_width=0.03 * scale, length_includes_head=True)
        ax.text(x * scale * 1.1, y * scale * 1.1, variable, color='firebrick',
                ha='center', va='center', fontsize=9)

    ax.set_xlabel(_axis_label(result, 0))
    ax.set_ylabel(_axis_label(result, 1))
    ax.set_title(title)
    ax.grid(True, alpha=0.3)
    return ax


def save_figure(fig, path, dpi=300):
    """Write a figure to disk, creating the directory if needed, and close it."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return path
