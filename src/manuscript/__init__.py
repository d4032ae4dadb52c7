"""Manuscript: project format, snapshot and import engine for long-form writing."""

__version__ = "0.1.0"
