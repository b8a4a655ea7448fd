#!/usr/bin/env python3
"""
Phenotypic alpha diversity from fingerprints, expressed as Hill numbers.
"""

import numpy as np
import pandas as pd


def hill_numbers(fingerprints, n_digits=4):
    """
    Hill numbers of order 0, 1 and 2 for each fingerprint.

    Each fingerprint is scaled by its maximum and rounded to ``n_digits``
    so that negligible density cells count as absent.

    Args:
        fingerprints: DataFrame with one non-negative fingerprint per row
        n_digits: Decimal places kept after scaling

    Returns:
        DataFrame with columns D0 (richness), D1 (exp Shannon entropy)
        and D2 (inverse Simpson index)
    """
    X = fingerprints.to_numpy(dtype=float)
    if (X < 0).any():
        raise ValueError("Fingerprints must be non-negative")

    row_max = X.max(axis=1, keepdims=True)
    with np.errstate(invalid='ignore', divide='ignore'):
        scaled = np.where(row_max > 0, X / row_max, 0.0)
    scaled = np.round(scaled, n_digits)

    totals = scaled.sum(axis=1, keepdims=True)
    with np.errstate(invalid='ignore', divide='ignore'):
        p = np.where(totals > 0, scaled / totals, 0.0)
        plogp = np.where(p > 0, p * np.log(p), 0.0)

        d2 = 1.0 / (p ** 2).sum(axis=1)

    d0 = (scaled > 0).sum(axis=1).astype(float)
    d1 = np.exp(-plogp.sum(axis=1))

    empty = totals.ravel() == 0
    d1 = np.where(empty, np.nan, d1)
    d2 = np.where(empty, np.nan, d2)

    return pd.DataFrame({'D0': d0, 'D1': d1, 'D2': d2}, index=fingerprints.index)
