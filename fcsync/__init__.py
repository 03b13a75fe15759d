"""fcsync - ingest sequencer run directories into a flow cell tracking service."""

__version__ = "0.1.0"
