#!/usr/bin/env python3
"""
Tests for FCS loading and sample-name parsing.

fcsparser is mocked so that no instrument files are needed.
"""

import os

import pytest
import numpy as np
import pandas as pd
from unittest.mock import patch

from fcs_loader import (load_environment_table, load_fcs_file, load_multiple_files,
                        parse_sample_name)


def fake_events(n=20):
    np.random.seed(42)
    return pd.DataFrame({
        'FL1-H': np.random.randint(0, 2**20, n),
        'FL3-H': np.random.randint(0, 2**20, n),
        'FSC-H': np.random.randint(0, 2**20, n),
        'SSC-H': np.random.randint(0, 2**20, n),
        'Time': np.arange(n),
    })


class TestSampleNames:

    def test_parse_valid_name(self):
        key = parse_sample_name('Inlet_SYBR_T03_2.fcs')
        assert key == {'location': 'Inlet', 'stain': 'SYBR', 'timepoint': 'T03', 'replicate': '2'}

    def test_parse_full_path(self):
        key = parse_sample_name(os.path.join('data', 'fcs', 'Lake_PI_T01_1.fcs'))
        assert key['location'] == 'Lake'

    def test_non_matching_name(self):
        assert parse_sample_name('calibration_beads.fcs') is None

    def test_custom_pattern(self):
        key = parse_sample_name('Lake-T1.fcs', pattern=r'^(?P<location>\w+)-(?P<timepoint>\w+)$')
        assert key == {'location': 'Lake', 'timepoint': 'T1'}


class TestLoadFCS:
    """Test loading of single files and whole directories."""

    @pytest.fixture
    def fcs_dir(self, tmp_path):
        for name in ['Inlet_SG_T1_1.fcs', 'Outlet_SG_T1_1.fcs', 'Lake_SG_T1_broken.fcs',
                     'beads.fcs', 'notes.txt']:
            (tmp_path / name).write_bytes(b'')
        return tmp_path

    @staticmethod
    def fake_parse(path, **kwargs):
        if 'broken' in str(path):
            raise ValueError("Not an FCS file")
        return {'$TOT': '20'}, fake_events()

    def test_load_single_file_channels(self):
        with patch('fcs_loader.fcsparser.parse', side_effect=self.fake_parse):
            data = load_fcs_file('Inlet_SG_T1_1.fcs', channels=['FL1-H', 'FL3-H'])

        assert list(data.columns) == ['FL1-H', 'FL3-H']
        assert len(data) == 20
        assert data['FL1-H'].dtype == np.float64

    def test_load_single_file_all_channels(self):
        with patch('fcs_loader.fcsparser.parse', side_effect=self.fake_parse):
            data = load_fcs_file('Inlet_SG_T1_1.fcs')

        assert 'Time' in data.columns

    def test_missing_channel_raises(self):
        with patch('fcs_loader.fcsparser.parse', side_effect=self.fake_parse):
            with pytest.raises(ValueError, match="missing channels"):
                load_fcs_file('Inlet_SG_T1_1.fcs', channels=['FL1-H', 'FL4-H'])

    def test_load_directory(self, fcs_dir):
        with patch('fcs_loader.fcsparser.parse', side_effect=self.fake_parse):
            samples, metadata = load_multiple_files(str(fcs_dir), channels=['FL1-H', 'FL3-H'])

        # Broken and non-matching files are skipped
        assert sorted(samples) == ['Inlet_SG_T1_1', 'Outlet_SG_T1_1']
        assert list(metadata.index) == ['Inlet_SG_T1_1', 'Outlet_SG_T1_1']
        assert metadata.loc['Outlet_SG_T1_1', 'location'] == 'Outlet'
        assert metadata.loc['Inlet_SG_T1_1', 'source_file'] == 'Inlet_SG_T1_1.fcs'
        assert list(metadata.columns) == ['location', 'stain', 'timepoint', 'replicate', 'source_file']

    def test_empty_directory(self, tmp_path):
        samples, metadata = load_multiple_files(str(tmp_path))

        assert samples == {}
        assert len(metadata) == 0


class TestEnvironmentTable:

    def test_csv_table(self, tmp_path):
        path = tmp_path / 'chemistry.csv'
        pd.DataFrame({'Site': ['Inlet'], 'pH': [7.4]}).to_csv(path, index=False)

        table = load_environment_table(str(path), sheet_name='Chemistry')

        assert list(table.columns) == ['Site', 'pH']
        assert table.loc[0, 'pH'] == pytest.approx(7.4)

    def test_excel_table(self, tmp_path):
        path = tmp_path / 'chemistry.xlsx'
        with pd.ExcelWriter(path) as writer:
            pd.DataFrame({'Site': ['Lake'], 'pH': [8.1]}).to_excel(writer, sheet_name='Chemistry', index=False)
            pd.DataFrame({'other': [1]}).to_excel(writer, sheet_name='Notes', index=False)

        table = load_environment_table(str(path), sheet_name='Chemistry')

        assert table.loc[0, 'Site'] == 'Lake'
