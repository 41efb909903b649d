"""JSON -> typed table store importer."""

__version__ = "0.1.0"
