#!/usr/bin/env python3
"""
Environmental covariate preprocessing and joining with flow cytometry samples.
"""

import pandas as pd


def select_and_rename(df, column_map):
    """Keep only the mapped columns and rename them."""
    missing = [c for c in column_map if c not in df.columns]
    if missing:
        raise KeyError(f"Environmental table is missing columns: {missing}")
    return df[list(column_map)].rename(columns=column_map)


def _key_string(value):
    # Spreadsheets read integer columns with blanks as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _normalize_keys(df, key_columns):
    keyed = df.copy()
    for column in key_columns:
        keyed[column] = keyed[column].map(_key_string)
    return keyed


def apply_corrections(df, corrections, key_columns):
    """
    Overwrite known bad values.

    Args:
        df: Environmental table with key columns
        corrections: Iterable of (key values, column, corrected value), with
            key values in the order of ``key_columns``
        key_columns: Columns identifying a row

    Returns:
        Corrected copy of ``df``
    """
    corrected = df.copy()
    for key_values, column, value in corrections:
        if column not in corrected.columns:
            raise KeyError(f"Correction targets unknown column: {column}")

        mask = pd.Series(True, index=corrected.index)
        for key_column, key_value in zip(key_columns, key_values):
            mask &= corrected[key_column] == _key_string(key_value)

        if not mask.any():
            print(f"Correction skipped, no row for key {tuple(key_values)}")
            continue
        corrected.loc[mask, column] = value
    return corrected


def drop_missing(df):
    """Drop every row holding at least one missing value."""
    return df.dropna(how='any')


def preprocess_environment(raw, column_map, key_columns, corrections=()):
    """
    Clean the environmental table for ordination and joining.

    Columns are selected and renamed, rows without a key are dropped,
    whole-number keys are written without a decimal part, corrections are
    applied, the measured variables are coerced to numbers and incomplete
    rows are dropped.

    Returns:
        Tuple of (keys, values), both indexed by an identifier built from
        the key columns
    """
    env = select_and_rename(raw, column_map)
    env = env.dropna(subset=key_columns)
    env = _normalize_keys(env, key_columns)
    env = apply_corrections(env, corrections, key_columns)

    value_columns = [c for c in env.columns if c not in key_columns]
    env[value_columns] = env[value_columns].apply(pd.to_numeric, errors='coerce')
    env = drop_missing(env)

    env.index = env[key_columns].agg('_'.join, axis=1)
    env.index.name = 'environment_id'
    if env.index.duplicated().any():
        duplicated = sorted(set(env.index[env.index.duplicated()]))
        raise ValueError(f"Duplicate environmental keys: {duplicated}")

    return env[key_columns].copy(), env[value_columns].copy()


def join_with_environment(metadata, environment, key_columns):
    """
    Attach environmental covariates to samples.

    Only samples whose key matches an environmental row exactly are kept.

    Args:
        metadata: Sample metadata indexed by sample name
        environment: Table holding ``key_columns`` and covariates
        key_columns: Columns shared by both tables

    Returns:
        DataFrame indexed by sample name
    """
    environment = _normalize_keys(environment, key_columns)
    if environment.duplicated(subset=key_columns).any():
        raise ValueError("Environmental table has duplicate keys")

    samples = _normalize_keys(metadata, key_columns)
    index_name = samples.index.name or 'sample'
    joined = samples.reset_index().merge(environment, on=key_columns, how='inner', validate='many_to_one')
    return joined.set_index(index_name)
