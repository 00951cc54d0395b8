"""Read-side analytics over committed tables.

This package aggregates rows per day and renders summary charts.
"""
