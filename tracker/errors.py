"""Tracker exception hierarchy."""


class TrackerError(Exception):
    """Base exception for all tracker failures."""


class ConfigError(TrackerError):
    """Raised for missing or invalid runtime configuration."""


class FetchError(TrackerError):
    """Raised when the upstream indexer cannot be queried (network, timeout, GraphQL error)."""


class MalformedEventError(TrackerError):
    """Raised when an upstream event lacks a field or carries an unparseable value."""


class StoreError(TrackerError):
    """Raised when a database read or write fails."""


class RecordExistsError(StoreError):
    """Raised when inserting a record whose identity key is already taken."""


class RecordNotFoundError(StoreError):
    """Raised when updating or deleting a record that does not exist."""


class CheckpointError(StoreError):
    """Raised when a stream checkpoint cannot be read or written."""


class ChainReadError(TrackerError):
    """Raised when mint-time NFT parameters cannot be read from chain."""
