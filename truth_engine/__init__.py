"""Truth Engine: real-time claim verification orchestration."""

__version__ = "0.1.0"
