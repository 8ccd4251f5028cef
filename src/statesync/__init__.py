"""StateSync - Encrypted multi-device state synchronization."""

__version__ = "0.3.0"
