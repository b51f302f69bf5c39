"""Percentile baselines, storage and regression detection."""
