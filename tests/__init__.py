"""
Test suite for the Phenotypic Fingerprinting Pipeline

This package contains tests for flow cytometry preprocessing, fingerprinting,
ordination, environmental joins and the end-to-end pipeline.
"""
