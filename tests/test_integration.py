#!/usr/bin/env python3
"""
Integration tests for the complete phenotypic fingerprinting pipeline.

Synthetic FCS event tables and an environmental table are fed to the
pipeline in memory; figures and tables go to a temporary directory.
"""

import matplotlib
matplotlib.use('Agg')

import os

import pytest
import numpy as np
import pandas as pd

from fcs_loader import build_metadata
from phenotypic_pipeline import PhenotypicFingerprintPipeline

CHANNELS = ['FL1-H', 'FL3-H', 'FSC-H', 'SSC-H']
LOCATIONS = ['Inlet', 'Outlet', 'Lake']
TIMEPOINTS = ['T1', 'T2']

ENV_COLUMN_MAP = {
    'Site': 'location',
    'Time': 'timepoint',
    'Temp': 'Temperature',
    'pH': 'pH',
    'NO3': 'NO3',
}


def synthetic_sample(rng, shift, n_cells=400, n_noise=100):
    """Raw events: cells land inside the gate after arcsinh, noise below it."""
    cells = pd.DataFrame({
        'FL1-H': np.exp(rng.normal(10.5 + shift, 0.3, n_cells)),
        'FL3-H': np.exp(rng.normal(5.0 + shift, 0.3, n_cells)),
        'FSC-H': np.exp(rng.normal(7.0, 0.5, n_cells)),
        'SSC-H': np.exp(rng.normal(6.5 + shift, 0.5, n_cells)),
    })
    noise = pd.DataFrame({
        'FL1-H': np.exp(rng.normal(4.0, 0.5, n_noise)),
        'FL3-H': np.exp(rng.normal(2.0, 0.5, n_noise)),
        'FSC-H': np.exp(rng.normal(5.0, 0.5, n_noise)),
        'SSC-H': np.exp(rng.normal(4.0, 0.5, n_noise)),
    })
    return pd.concat([cells, noise], ignore_index=True)


@pytest.fixture
def synthetic_inputs():
    rng = np.random.RandomState(42)
    samples = {}
    records = []
    for i, location in enumerate(LOCATIONS):
        for timepoint in TIMEPOINTS:
            for replicate in ['1', '2']:
                name = f'{location}_SG_{timepoint}_{replicate}'
                samples[name] = synthetic_sample(rng, shift=0.4 * i)
                records.append({'sample': name, 'location': location, 'stain': 'SG',
                                'timepoint': timepoint, 'replicate': replicate,
                                'source_file': f'{name}.fcs'})

    # No chemistry for Lake at T2
    environment = pd.DataFrame({
        'Site': ['Inlet', 'Inlet', 'Outlet', 'Outlet', 'Lake'],
        'Time': ['T1', 'T2', 'T1', 'T2', 'T1'],
        'Temp': [12.1, 13.4, 11.8, 12.9, 15.2],
        'pH': [7.4, 7.6, 7.2, 7.3, 8.1],
        'NO3': [2.1, 2.3, 1.7, 1.9, 0.4],
    })
    return samples, build_metadata(records), environment


@pytest.fixture
def pipeline(tmp_path):
    return PhenotypicFingerprintPipeline(out_dir=str(tmp_path), channels=CHANNELS, n_bins=16,
                                         env_column_map=ENV_COLUMN_MAP)


@pytest.mark.slow
class TestPipelineIntegration:
    """End-to-end tests of the pipeline."""

    def test_complete_pipeline(self, pipeline, synthetic_inputs):
        samples, metadata, environment = synthetic_inputs

        results = pipeline.run_complete_pipeline(samples, metadata, environment)

        assert results is not None
        assert results['fingerprints'].shape == (12, 6 * 16 * 16)
        assert results['fingerprint_pcoa']['coordinates'].shape[0] == 12
        assert results['environment_pca']['coordinates'].shape == (5, 3)
        assert len(results['diversity']) == 12

    def test_join_keeps_matching_samples_only(self, pipeline, synthetic_inputs):
        pipeline.run_complete_pipeline(*synthetic_inputs)

        assert len(pipeline.joined) == 10
        assert not any(name.startswith('Lake_SG_T2') for name in pipeline.joined.index)
        assert {'PCoA1', 'PCoA2', 'D1', 'pH'} <= set(pipeline.joined.columns)

    def test_gating_removes_noise(self, pipeline, synthetic_inputs):
        pipeline.run_complete_pipeline(*synthetic_inputs)
        stats = pipeline.gate_stats

        assert (stats['events_total'] == 500).all()
        assert (stats['events_gated'] <= 400).all()
        assert (stats['fraction_gated'] > 0.5).all()

    def test_rescaled_reference_channel(self, pipeline, synthetic_inputs):
        pipeline.run_complete_pipeline(*synthetic_inputs)

        maxima = [data['FL1-H'].max() for data in pipeline.normalized_samples.values()]
        assert max(maxima) == pytest.approx(1.0)

    def test_raw_samples_not_mutated(self, pipeline, synthetic_inputs):
        samples, metadata, environment = synthetic_inputs
        original = {name: data.copy() for name, data in samples.items()}

        pipeline.run_complete_pipeline(samples, metadata, environment)

        for name, data in samples.items():
            pd.testing.assert_frame_equal(data, original[name])

    def test_outputs_written(self, pipeline, synthetic_inputs, tmp_path):
        pipeline.run_complete_pipeline(*synthetic_inputs)

        for filename in ['gate.png', 'environment_pca.png', 'fingerprint_pcoa.png']:
            assert os.path.exists(tmp_path / 'figures' / filename)
        for filename in ['joined_samples.csv', 'fingerprint_pcoa_coordinates.csv',
                         'environment_pca_variance.csv', 'gate_statistics.csv']:
            assert os.path.exists(tmp_path / 'tables' / filename)

        coordinates = pd.read_csv(tmp_path / 'tables' / 'fingerprint_pcoa_coordinates.csv', index_col=0)
        assert len(coordinates) == 12

    def test_replicates_closer_than_locations(self, pipeline, synthetic_inputs):
        pipeline.run_complete_pipeline(*synthetic_inputs)
        D = pipeline.distance

        within = D.loc['Inlet_SG_T1_1', 'Inlet_SG_T1_2']
        between = D.loc['Inlet_SG_T1_1', 'Lake_SG_T1_1']
        assert within < between

    def test_stage_out_of_order_raises(self, pipeline):
        with pytest.raises(ValueError, match="run load_data"):
            pipeline.preprocess_flow()

    def test_failure_returns_none(self, pipeline, synthetic_inputs):
        samples, metadata, environment = synthetic_inputs

        results = pipeline.run_complete_pipeline(samples, metadata, environment.drop(columns=['pH']))

        assert results is None
