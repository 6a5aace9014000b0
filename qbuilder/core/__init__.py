"""Shared paths, configuration, errors, persistence and the PDF cache."""
