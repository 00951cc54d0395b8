"""Incremental append pipeline.

This package scans an append-only source, tracks committed progress in
a checkpoint, and appends new batches to a versioned table exactly once.
"""
