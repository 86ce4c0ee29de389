"""Batching Kinesis shipper for pre-serialized log records."""

__version__ = "0.1.0"
