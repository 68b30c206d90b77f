"""Reporting utilities for rbmkit."""

from .artifacts import write_manifest
from .metrics import CsvSink, JsonlSink
from .plots import PlotAdapter, plot_filters
from .summary import write_summary

__all__ = ["CsvSink", "JsonlSink", "PlotAdapter", "plot_filters", "write_manifest", "write_summary"]
