#!/usr/bin/env python3
"""
FCS and environmental table loading.

Instrument files are decoded by fcsparser; this module only maps file names
to sample keys and collects the per-sample event tables.
"""

import glob
import os
import re
from typing import Dict, List, Optional, Tuple

import fcsparser
import pandas as pd

from config import SAMPLE_NAME_PATTERN

SAMPLE_KEY_COLUMNS = ["location", "stain", "timepoint", "replicate"]


def parse_sample_name(name: str, pattern: str = SAMPLE_NAME_PATTERN) -> Optional[Dict[str, str]]:
    """
    Split a sample name into its composite key.

    Args:
        name: File name or stem, e.g. ``"Inlet_SYBR_T03_2.fcs"``
        pattern: Regular expression with named groups for each key part

    Returns:
        Dict of key parts, or None if the name does not follow the pattern
    """
    stem = os.path.splitext(os.path.basename(name))[0]
    match = re.match(pattern, stem)
    if match is None:
        return None
    return match.groupdict()


def load_fcs_file(path: str, channels: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Load the event table of one FCS file.

    Args:
        path: Path to FCS file
        channels: Channels to keep (all channels if None)

    Returns:
        DataFrame with one row per event and one column per channel
    """
    _, data = fcsparser.parse(path, reformat_meta=True, channel_naming='$PnN')
    data = pd.DataFrame(data)

    if channels is not None:
        missing = [c for c in channels if c not in data.columns]
        if missing:
            raise ValueError(f"{os.path.basename(path)} is missing channels: {missing}")
        data = data[list(channels)]

    return data.astype(float)


def load_multiple_files(data_dir: str, file_pattern: str = "*.fcs",
                        channels: Optional[List[str]] = None,
                        pattern: str = SAMPLE_NAME_PATTERN) -> Tuple[Dict[str, pd.DataFrame], pd.DataFrame]:
    """
    Load every FCS file of a directory.

    Files whose name does not follow the sample-name pattern, or that
    cannot be decoded, are reported and skipped.

    Args:
        data_dir: Directory containing FCS files
        file_pattern: Glob pattern to match files
        channels: Channels to keep
        pattern: Sample-name regular expression

    Returns:
        Tuple of (dict of sample name -> event table, sample metadata table)
    """
    files = sorted(glob.glob(os.path.join(data_dir, file_pattern)))
    samples = {}
    records = []

    for file_path in files:
        key = parse_sample_name(file_path, pattern)
        if key is None:
            print(f"Skipping {file_path}: name does not match sample pattern")
            continue

        try:
            data = load_fcs_file(file_path, channels)
        except Exception as e:
            print(f"Error loading {file_path}: {e}")
            continue

        name = os.path.splitext(os.path.basename(file_path))[0]
        samples[name] = data
        records.append({'sample': name, **key, 'source_file': os.path.basename(file_path)})
        print(f"Loaded {file_path}: {len(data)} events")

    metadata = build_metadata(records)
    return samples, metadata


def build_metadata(records) -> pd.DataFrame:
    """Assemble sample metadata records into a table indexed by sample name."""
    columns = ['sample'] + SAMPLE_KEY_COLUMNS + ['source_file']
    metadata = pd.DataFrame(records, columns=columns)
    return metadata.set_index('sample')


def load_environment_table(path: str, sheet_name: str) -> pd.DataFrame:
    """Read the environmental covariates spreadsheet (or CSV export)."""
    if path.lower().endswith('.csv'):
        return pd.read_csv(path)
    return pd.read_excel(path, sheet_name=sheet_name)
