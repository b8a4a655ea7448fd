#!/usr/bin/env python3
"""
Flow cytometry preprocessing: arcsinh transform, polygonal gating and
rescaling by the maximum of a reference channel.

Every function returns new tables; the input event tables are left untouched.
"""

import numpy as np
import pandas as pd
from matplotlib.path import Path


def arcsinh_transform(data, channels, cofactor=1.0):
    """
    Apply the arcsinh transform ``asinh(x / cofactor)`` to selected channels.

    Args:
        data: DataFrame of events
        channels: Channels to transform
        cofactor: Scale divisor applied before the transform

    Returns:
        Transformed copy of ``data``
    """
    if cofactor <= 0:
        raise ValueError(f"Arcsinh cofactor must be positive, got {cofactor}")

    missing = [c for c in channels if c not in data.columns]
    if missing:
        raise ValueError(f"Channels not found in data: {missing}")

    transformed = data.copy()
    transformed[list(channels)] = np.arcsinh(transformed[list(channels)].to_numpy(dtype=float) / cofactor)
    return transformed


def _as_vertices(polygon):
    vertices = np.asarray(polygon, dtype=float)
    if vertices.ndim != 2 or vertices.shape[1] != 2:
        raise ValueError("Polygon must be a sequence of (x, y) vertices")

    # An explicitly closed ring repeats its first vertex
    if len(vertices) > 1 and np.allclose(vertices[0], vertices[-1]):
        vertices = vertices[:-1]

    if len(vertices) < 3:
        raise ValueError(f"Polygon needs at least 3 vertices, got {len(vertices)}")
    return vertices


def _on_boundary(points, vertices, rtol=1e-9):
    """Flag points lying on any polygon edge, vertices included."""
    extent = np.ptp(vertices, axis=0).max()
    tol = rtol * max(extent, 1.0)

    on_edge = np.zeros(len(points), dtype=bool)
    for start, end in zip(vertices, np.roll(vertices, -1, axis=0)):
        edge = end - start
        rel = points - start
        length = np.hypot(edge[0], edge[1])
        if length == 0:
            on_edge |= np.hypot(rel[:, 0], rel[:, 1]) <= tol
            continue

        distance = np.abs(edge[0] * rel[:, 1] - edge[1] * rel[:, 0]) / length
        position = (rel @ edge) / length
        on_edge |= (distance <= tol) & (position >= -tol) & (position <= length + tol)

    return on_edge


def polygon_gate_mask(data, polygon, channels):
    """
    Select events strictly inside a closed polygon.

    Points on an edge or a vertex are treated as outside the gate, so
    the result does not depend on how the point-in-polygon test breaks ties.

    Args:
        data: DataFrame of events
        polygon: Ordered (x, y) vertices of the gate
        channels: Pair of channels giving the x and y coordinates

    Returns:
        Boolean numpy array, True for events inside the gate
    """
    x_channel, y_channel = channels
    for channel in (x_channel, y_channel):
        if channel not in data.columns:
            raise ValueError(f"Gate channel not found in data: {channel}")

    vertices = _as_vertices(polygon)
    points = np.column_stack([data[x_channel].to_numpy(dtype=float),
                              data[y_channel].to_numpy(dtype=float)])
    if len(points) == 0:
        return np.zeros(0, dtype=bool)

    inside_mask = Path(vertices).contains_points(points)
    return inside_mask & ~_on_boundary(points, vertices)


def apply_polygon_gate(data, polygon, channels):
    """Return the events of ``data`` that fall inside the gate."""
    inside_mask = polygon_gate_mask(data, polygon, channels)
    return data[inside_mask].copy()


def rescale_by_channel_max(samples, channel, max_value=None):
    """
    Divide every channel of every sample by the maximum of one channel.

    The maximum is taken over all samples together so that the rescaled
    data share one scale.

    Args:
        samples: Dict of sample name -> DataFrame of events
        channel: Reference channel
        max_value: Use this maximum instead of computing it

    Returns:
        Tuple of (dict of rescaled DataFrames, maximum used)
    """
    if max_value is None:
        maxima = [data[channel].max() for data in samples.values() if len(data) > 0]
        if not maxima:
            raise ValueError("No events available to compute the normalization maximum")
        max_value = float(np.max(maxima))

    if not np.isfinite(max_value) or max_value <= 0:
        raise ValueError(f"Normalization maximum must be positive, got {max_value}")

    rescaled = {name: data / max_value for name, data in samples.items()}
    return rescaled, max_value


def gate_statistics(raw, gated):
    """Count events before and after gating for each sample."""
    rows = []
    for name, data in raw.items():
        n_total = len(data)
        n_gated = len(gated.get(name, []))
        rows.append({
            'sample': name,
            'events_total': n_total,
            'events_gated': n_gated,
            'fraction_gated': n_gated / n_total if n_total else np.nan,
        })
    return pd.DataFrame(rows, columns=['sample', 'events_total', 'events_gated', 'fraction_gated']).set_index('sample')
