"""Storage and versioning layer.

This package persists partitioned table versions and the table catalog.
It powers table reads, re-extraction, and compaction for the SDK.
"""
