#!/usr/bin/env python3
"""
Configuration for the phenotypic fingerprinting pipeline.

All constants used by the analysis live here so that a new campaign only
needs a new channel set, gate or column map.
"""

import os


# =============================================================================
# Paths
# =============================================================================
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
FCS_DIR = os.path.join(BASE_DIR, "data", "fcs")
ENV_FILE = os.path.join(BASE_DIR, "data", "water_quality.xlsx")
OUT_DIR = os.path.join(BASE_DIR, "outputs")

# =============================================================================
# Flow cytometry
# =============================================================================
FC_CHANNELS = ["FL1-H", "FL3-H", "FSC-H", "SSC-H"]

# Gate drawn on arcsinh-transformed green (FL1) vs red (FL3) fluorescence
GATE_CHANNELS = ("FL1-H", "FL3-H")
GATE_POLYGON = [
    [8.75, 3.0],
    [8.75, 7.5],
    [14.0, 14.0],
    [14.0, 3.0],
]

ARCSINH_COFACTOR = 1.0
NORMALIZATION_CHANNEL = "FL1-H"

# Fingerprint grid
N_BINS = 128
BANDWIDTH = 0.01

# <location>_<stain>_<timepoint>_<replicate>.fcs
SAMPLE_NAME_PATTERN = (
    r"^(?P<location>[^_]+)_(?P<stain>[^_]+)_(?P<timepoint>[^_]+)_(?P<replicate>[^_]+)$"
)

# =============================================================================
# Environmental covariates
# =============================================================================
ENV_SHEET_NAME = "Chemistry"

ENV_COLUMN_MAP = {
    "Location": "location",
    "Timepoint": "timepoint",
    "Temperature (°C)": "Temperature",
    "pH": "pH",
    "Conductivity (µS/cm)": "Conductivity",
    "Dissolved oxygen (mg/L)": "DO",
    "Nitrate (mg/L)": "NO3",
    "Ammonium (mg/L)": "NH4",
    "Phosphate (mg/L)": "PO4",
    "TOC (mg/L)": "TOC",
}

ENV_KEY_COLUMNS = ["location", "timepoint"]

# Known bad values: (key values, column, corrected value)
ENV_CORRECTIONS = []

RANDOM_SEED = 42
