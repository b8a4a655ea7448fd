#!/usr/bin/env python3
"""
Phenotypic Fingerprinting Pipeline for Flow Cytometry and Water Quality Data

This pipeline processes:
1. A directory of FCS files, one per (location, stain, timepoint, replicate)
2. A spreadsheet of environmental (chemical) measurements

and runs, in order:
- environmental preprocessing and standardized PCA
- arcsinh transform, polygonal gating and rescaling of the FCS events
- kernel density fingerprints and Hill-number phenotypic diversity
- Bray-Curtis PCoA of the fingerprints
- joining of fingerprint samples with their environmental covariates
- ordination plots and CSV result tables
"""

import os
import traceback

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

import config
from diversity import hill_numbers
from environment import join_with_environment, preprocess_environment
from fc_preprocessing import (apply_polygon_gate, arcsinh_transform, gate_statistics,
                              rescale_by_channel_max)
from fcs_loader import load_environment_table, load_multiple_files
from fingerprinting import fingerprint_samples
from ordination import bray_curtis_matrix, run_pca, run_pcoa
from visualization import plot_gate, plot_ordination, plot_pca_biplot, save_figure


class PhenotypicFingerprintPipeline:
    """
    End-to-end analysis from raw FCS files and environmental measurements
    to ordinations of phenotypic fingerprints.
    """

    def __init__(self, fcs_dir=config.FCS_DIR, env_file=config.ENV_FILE, out_dir=config.OUT_DIR,
                 channels=None, gate_channels=config.GATE_CHANNELS, gate_polygon=None,
                 cofactor=config.ARCSINH_COFACTOR, normalization_channel=config.NORMALIZATION_CHANNEL,
                 n_bins=config.N_BINS, bandwidth=config.BANDWIDTH, normalize=None,
                 sample_pattern=config.SAMPLE_NAME_PATTERN, env_sheet_name=config.ENV_SHEET_NAME,
                 env_column_map=None, env_key_columns=None, env_corrections=None,
                 pcoa_correction=None):
        # Inputs and outputs
        self.fcs_dir = fcs_dir
        self.env_file = env_file
        self.out_dir = out_dir

        # Flow cytometry configuration
        self.channels = list(channels or config.FC_CHANNELS)
        self.gate_channels = tuple(gate_channels)
        self.gate_polygon = gate_polygon if gate_polygon is not None else config.GATE_POLYGON
        self.cofactor = cofactor
        self.normalization_channel = normalization_channel
        self.n_bins = n_bins
        self.bandwidth = bandwidth
        self.normalize = normalize
        self.sample_pattern = sample_pattern
        self.pcoa_correction = pcoa_correction

        # Environmental configuration
        self.env_sheet_name = env_sheet_name
        self.env_column_map = dict(env_column_map or config.ENV_COLUMN_MAP)
        self.env_key_columns = list(env_key_columns or config.ENV_KEY_COLUMNS)
        self.env_corrections = list(env_corrections if env_corrections is not None else config.ENV_CORRECTIONS)

        # Data storage
        self.raw_samples = None
        self.metadata = None
        self.env_raw = None
        self.env_keys = None
        self.env_values = None
        self.transformed_samples = None
        self.gated_samples = None
        self.normalized_samples = None
        self.normalization_max = None

        # Results
        self.gate_stats = None
        self.fingerprints = None
        self.diversity = None
        self.env_pca = None
        self.distance = None
        self.fc_pcoa = None
        self.joined = None
        self.figure_paths = []

    def _require(self, attribute, step):
        if getattr(self, attribute) is None:
            raise ValueError(f"{attribute} is not available; run {step}() first")

    def load_data(self, samples=None, metadata=None, environment=None):
        """
        Load FCS samples and the environmental table.

        Pre-loaded tables can be passed instead of reading from disk.
        """
        print("=" * 60)
        print("PHENOTYPIC FINGERPRINTING PIPELINE")
        print("=" * 60)
        print("1. LOADING DATA")

        if samples is None:
            print(f"Loading FCS files from: {self.fcs_dir}")
            samples, metadata = load_multiple_files(self.fcs_dir, channels=self.channels,
                                                    pattern=self.sample_pattern)
        elif metadata is None:
            raise ValueError("Sample metadata must accompany pre-loaded samples")

        if not samples:
            raise ValueError(f"No FCS samples loaded from {self.fcs_dir}")

        if environment is None:
            print(f"Loading environmental data from: {self.env_file}")
            environment = load_environment_table(self.env_file, self.env_sheet_name)

        self.raw_samples = dict(samples)
        self.metadata = metadata.loc[list(self.raw_samples)].copy()
        self.env_raw = environment.copy()

        n_events = sum(len(data) for data in self.raw_samples.values())
        print(f"Samples loaded: {len(self.raw_samples)} ({n_events} events)")
        print(f"Environmental records loaded: {len(self.env_raw)}")

    def preprocess_environment(self):
        """Rename, correct, clean and key the environmental measurements."""
        print("\n2. ENVIRONMENTAL PREPROCESSING")
        self._require('env_raw', 'load_data')

        self.env_keys, self.env_values = preprocess_environment(
            self.env_raw, self.env_column_map, self.env_key_columns, self.env_corrections)

        print(f"Environmental records kept: {len(self.env_values)}/{len(self.env_raw)} "
              f"with {self.env_values.shape[1]} variables")

    def preprocess_flow(self):
        """Transform, gate and rescale the FCS events."""
        print("\n3. FLOW CYTOMETRY PREPROCESSING")
        self._require('raw_samples', 'load_data')

        self.transformed_samples = {
            name: arcsinh_transform(data, self.channels, self.cofactor)
            for name, data in self.raw_samples.items()
        }
        self.gated_samples = {
            name: apply_polygon_gate(data, self.gate_polygon, self.gate_channels)
            for name, data in self.transformed_samples.items()
        }
        self.gate_stats = gate_statistics(self.raw_samples, self.gated_samples)

        empty = self.gate_stats.index[self.gate_stats['events_gated'] == 0].tolist()
        if empty:
            print(f"Dropping {len(empty)} samples without gated events: {empty}")
        kept = {name: data for name, data in self.gated_samples.items() if name not in empty}
        if not kept:
            raise ValueError("No sample has events inside the gate")

        self.normalized_samples, self.normalization_max = rescale_by_channel_max(
            kept, self.normalization_channel)

        print(f"Mean fraction of events in gate: {self.gate_stats['fraction_gated'].mean():.1%}")
        print(f"Rescaled by max {self.normalization_channel} = {self.normalization_max:.4f}")

    def compute_fingerprints(self):
        """Estimate the density fingerprint of every gated sample."""
        print("\n4. FINGERPRINTING")
        self._require('normalized_samples', 'preprocess_flow')

        self.fingerprints = fingerprint_samples(self.normalized_samples, self.channels,
                                                n_bins=self.n_bins, bandwidth=self.bandwidth,
                                                normalize=self.normalize)
        print(f"Fingerprints: {self.fingerprints.shape[0]} samples x {self.fingerprints.shape[1]} cells")

    def compute_diversity(self):
        """Hill-number phenotypic diversity of each fingerprint."""
        print("\n5. PHENOTYPIC DIVERSITY")
        self._require('fingerprints', 'compute_fingerprints')

        self.diversity = hill_numbers(self.fingerprints)
        print(self.diversity.describe().loc[['mean', 'std', 'min', 'max']].round(2))

    def run_environmental_pca(self):
        """PCA of the standardized environmental variables."""
        print("\n6. ENVIRONMENTAL PCA")
        self._require('env_values', 'preprocess_environment')

        self.env_pca = run_pca(self.env_values, standardized=True)
        for axis, ratio in zip(self.env_pca['coordinates'].columns, self.env_pca['explained_variance_ratio']):
            print(f"  {axis}: {ratio:.1%}")
        print(f"Axes retained (Kaiser-Guttman): {self.env_pca['retained']}")

    def run_fingerprint_pcoa(self):
        """Bray-Curtis PCoA of the fingerprints."""
        print("\n7. FINGERPRINT PCoA (BRAY-CURTIS)")
        self._require('fingerprints', 'compute_fingerprints')

        self.distance = bray_curtis_matrix(self.fingerprints)
        self.fc_pcoa = run_pcoa(self.distance, correction=self.pcoa_correction)
        ratios = self.fc_pcoa['explained_variance_ratio'][:2]
        print(f"First axes explain: {', '.join(f'{r:.1%}' for r in ratios)}")

    def join_samples(self):
        """Join fingerprint samples, their ordination and diversity with the environment."""
        print("\n8. JOINING SAMPLES WITH ENVIRONMENT")
        self._require('fc_pcoa', 'run_fingerprint_pcoa')
        self._require('env_values', 'preprocess_environment')

        samples = self.metadata.loc[self.fingerprints.index]
        samples = samples.join(self.fc_pcoa['coordinates'].iloc[:, :2])
        if self.diversity is not None:
            samples = samples.join(self.diversity)

        environment = pd.concat([self.env_keys, self.env_values], axis=1)
        self.joined = join_with_environment(samples, environment, self.env_key_columns)

        print(f"Samples with environmental data: {len(self.joined)}/{len(samples)}")

    def generate_visualizations(self):
        """Draw the gate, environmental PCA and fingerprint PCoA figures."""
        print("\n9. GENERATING VISUALIZATIONS")
        sns.set_palette("husl")
        figure_dir = os.path.join(self.out_dir, 'figures')
        self.figure_paths = []

        if self.transformed_samples:
            name = next(iter(self.transformed_samples))
            fig, ax = plt.subplots(figsize=(7, 6))
            plot_gate(self.transformed_samples[name], self.gate_polygon, self.gate_channels,
                      gated=self.gated_samples.get(name), ax=ax, title=f'Polygonal Gate - {name}')
            self.figure_paths.append(save_figure(fig, os.path.join(figure_dir, 'gate.png')))

        if self.env_pca is not None and self.env_pca['coordinates'].shape[1] >= 2:
            fig, axes = plt.subplots(1, 2, figsize=(15, 6))
            plot_ordination(self.env_pca, self.env_keys, hue=self.env_key_columns[0],
                            ax=axes[0], title='Environmental PCA')
            plot_pca_biplot(self.env_pca, ax=axes[1], title='Environmental PCA loadings')
            plt.tight_layout()
            self.figure_paths.append(save_figure(fig, os.path.join(figure_dir, 'environment_pca.png')))

        if self.fc_pcoa is not None and self.fc_pcoa['coordinates'].shape[1] >= 2:
            fig, ax = plt.subplots(figsize=(8, 6))
            plot_ordination(self.fc_pcoa, self.metadata, hue='location', style='timepoint',
                            ax=ax, title='Phenotypic fingerprint PCoA (Bray-Curtis)')
            self.figure_paths.append(save_figure(fig, os.path.join(figure_dir, 'fingerprint_pcoa.png')))

        for path in self.figure_paths:
            print(f"✓ Saved {path}")

    def save_results(self):
        """Write result tables as CSV files."""
        print("\n10. SAVING RESULTS")
        table_dir = os.path.join(self.out_dir, 'tables')
        os.makedirs(table_dir, exist_ok=True)

        tables = {
            'sample_metadata.csv': self.metadata,
            'gate_statistics.csv': self.gate_stats,
            'phenotypic_diversity.csv': self.diversity,
            'joined_samples.csv': self.joined,
        }
        if self.env_pca is not None:
            tables['environment_pca_scores.csv'] = self.env_pca['coordinates']
            tables['environment_pca_loadings.csv'] = self.env_pca['loadings']
            tables['environment_pca_variance.csv'] = self._variance_table(self.env_pca)
        if self.fc_pcoa is not None:
            tables['fingerprint_pcoa_coordinates.csv'] = self.fc_pcoa['coordinates']
            tables['fingerprint_pcoa_variance.csv'] = self._variance_table(self.fc_pcoa)

        saved = []
        for filename, table in tables.items():
            if table is None:
                continue
            path = os.path.join(table_dir, filename)
            table.to_csv(path)
            saved.append(path)
            print(f"✓ Saved {filename}")
        return saved

    @staticmethod
    def _variance_table(result):
        return pd.DataFrame({
            'eigenvalue': result['eigenvalues'],
            'explained_variance_ratio': result['explained_variance_ratio'],
        }, index=result['coordinates'].columns)

    def run_complete_pipeline(self, samples=None, metadata=None, environment=None):
        """Run every stage; returns the main results or None on failure."""
        try:
            self.load_data(samples, metadata, environment)
            self.preprocess_environment()
            self.preprocess_flow()
            self.compute_fingerprints()
            self.compute_diversity()
            self.run_environmental_pca()
            self.run_fingerprint_pcoa()
            self.join_samples()
            self.generate_visualizations()
            self.save_results()

            print("\n" + "=" * 60)
            print("PIPELINE COMPLETED SUCCESSFULLY!")
            print("=" * 60)

            return {
                'fingerprints': self.fingerprints,
                'diversity': self.diversity,
                'environment_pca': self.env_pca,
                'fingerprint_pcoa': self.fc_pcoa,
                'joined': self.joined,
            }

        except Exception as e:
            print(f"\nERROR in pipeline: {e}")
            traceback.print_exc()
            return None


def main():
    """Main execution function."""
    pipeline = PhenotypicFingerprintPipeline()
    results = pipeline.run_complete_pipeline()

    if results:
        print("\nAnalysis completed successfully!")
        print(f"Figures and tables written to {pipeline.out_dir}")
    else:
        print("\nAnalysis failed. Please check the error messages above.")


if __name__ == "__main__":
    main()
