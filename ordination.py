#!/usr/bin/env python3
"""
Ordination methods.

- PCA on standardized environmental variables, with Kaiser-Guttman axis
  selection.
- Bray-Curtis dissimilarity between fingerprints and Principal Coordinates
  Analysis (classical scaling) of the resulting distance matrix.

Results are returned as plain dicts of numpy arrays and DataFrames.
"""

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler


def standardize(df):
    """Scale every column to zero mean and unit variance."""
    scaled = StandardScaler().fit_transform(df.to_numpy(dtype=float))
    return pd.DataFrame(scaled, index=df.index, columns=df.columns)


def kaiser_guttman(eigenvalues, n_variables=None):
    """
    Boolean mask of the axes whose eigenvalue exceeds the mean eigenvalue.

    With fewer samples than variables a PCA yields fewer eigenvalues than
    variables. Passing ``n_variables`` averages the total variance over all
    variables, counting the missing eigenvalues as zero.
    """
    eigenvalues = np.asarray(eigenvalues, dtype=float)
    n = n_variables if n_variables is not None else len(eigenvalues)
    return eigenvalues > eigenvalues.sum() / n


def _axis_names(prefix, n):
    return [f"{prefix}{i + 1}" for i in range(n)]


def run_pca(df, standardized=True):
    """
    Principal Component Analysis of a samples x variables table.

    Args:
        df: DataFrame of numeric variables, one row per sample
        standardized: Standardize the variables first (correlation PCA)

    Returns:
        Dict with 'coordinates' (sample scores), 'loadings', 'eigenvalues'
        (descending), 'explained_variance_ratio' and 'retained' (axes kept
        by the Kaiser-Guttman rule)
    """
    if df.shape[0] < 2 or df.shape[1] < 1:
        raise ValueError(f"PCA needs at least 2 samples and 1 variable, got shape {df.shape}")
    if df.isnull().to_numpy().any():
        raise ValueError("PCA input contains missing values")

    X = standardize(df) if standardized else df.astype(float)

    n_components = min(X.shape)
    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(X.to_numpy())

    axes = _axis_names('PC', n_components)
    eigenvalues = np.clip(pca.explained_variance_, 0.0, None)
    retained = kaiser_guttman(eigenvalues, n_variables=df.shape[1])

    return {
        'coordinates': pd.DataFrame(scores, index=df.index, columns=axes),
        'loadings': pd.DataFrame(pca.components_.T, index=df.columns, columns=axes),
        'eigenvalues': eigenvalues,
        'explained_variance_ratio': pca.explained_variance_ratio_,
        'retained': [axis for axis, keep in zip(axes, retained) if keep],
        'method': 'PCA',
    }


def bray_curtis_matrix(fingerprints):
    """
    Pairwise Bray-Curtis dissimilarity ``sum|u - v| / sum(u + v)``.

    Args:
        fingerprints: DataFrame with one non-negative vector per row

    Returns:
        Square DataFrame indexed by sample on both axes
    """
    X = fingerprints.to_numpy(dtype=float)
    if (X < 0).any():
        raise ValueError("Bray-Curtis dissimilarity requires non-negative values")

    with np.errstate(invalid='ignore', divide='ignore'):
        condensed = pdist(X, metric='braycurtis')
    # Two empty profiles are identical
    condensed = np.nan_to_num(condensed, nan=0.0)

    return pd.DataFrame(squareform(condensed), index=fingerprints.index, columns=fingerprints.index)


def _double_centre(D2):
    n = D2.shape[0]
    J = np.eye(n) - np.ones((n, n)) / n
    return -0.5 * J @ D2 @ J


def _sorted_eigh(B):
    evals, evecs = np.linalg.eigh(B)
    idx = np.argsort(evals)[::-1]
    return evals[idx], evecs[:, idx]


def run_pcoa(distance, n_axes=None, correction=None):
    """
    Principal Coordinates Analysis (classical multidimensional scaling).

    Non-Euclidean dissimilarities such as Bray-Curtis can produce negative
    eigenvalues. Their axes are dropped from the coordinates and the
    eigenvalues are reported under 'negative_eigenvalues'. With
    ``correction='lingoes'`` a constant is added to the squared
    off-diagonal distances so that none remain.

    Args:
        distance: Square symmetric distance matrix (DataFrame or array)
        n_axes: Number of axes to keep (all positive axes if None)
        correction: None or 'lingoes'

    Returns:
        Dict with 'coordinates', 'eigenvalues', 'explained_variance_ratio',
        'negative_eigenvalues' and 'correction'
    """
    if isinstance(distance, pd.DataFrame):
        index = distance.index
        D = distance.to_numpy(dtype=float)
    else:
        D = np.asarray(distance, dtype=float)
        index = pd.RangeIndex(D.shape[0])

    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise ValueError(f"Distance matrix must be square, got shape {D.shape}")
    if D.shape[0] < 2:
        raise ValueError("PCoA needs at least 2 samples")
    if not np.allclose(D, D.T):
        raise ValueError("Distance matrix must be symmetric")
    if not np.allclose(np.diag(D), 0.0):
        raise ValueError("Distance matrix must have a zero diagonal")
    if correction not in (None, 'lingoes'):
        raise ValueError(f"Unknown PCoA correction: {correction}")

    D2 = D ** 2
    evals, evecs = _sorted_eigh(_double_centre(D2))
    tol = 1e-10 * max(np.abs(evals).max(), 1.0)

    if correction == 'lingoes' and evals.min() < -tol:
        constant = -evals.min()
        D2 = D2 + 2 * constant * (1 - np.eye(D.shape[0]))
        evals, evecs = _sorted_eigh(_double_centre(D2))
        tol = 1e-10 * max(np.abs(evals).max(), 1.0)

    negative = evals[evals < -tol]
    positive = evals > tol
    pos_evals = evals[positive]
    pos_evecs = evecs[:, positive]

    if n_axes is not None:
        pos_evals = pos_evals[:n_axes]
        pos_evecs = pos_evecs[:, :n_axes]

    coordinates = pos_evecs * np.sqrt(pos_evals)
    total = evals[positive].sum()
    explained = pos_evals / total if total > 0 else np.zeros_like(pos_evals)

    if len(negative) > 0:
        print(f"PCoA: dropped {len(negative)} negative eigenvalues "
              f"(most negative {negative.min():.4g})")

    return {
        'coordinates': pd.DataFrame(coordinates, index=index, columns=_axis_names('PCoA', len(pos_evals))),
        'eigenvalues': pos_evals,
        'explained_variance_ratio': explained,
        'negative_eigenvalues': negative,
        'correction': correction,
        'method': 'PCoA',
    }
