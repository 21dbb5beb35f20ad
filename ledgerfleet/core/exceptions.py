"""Custom exception hierarchy for ledgerfleet.

All ledgerfleet-specific exceptions inherit from LedgerFleetError,
enabling callers to catch every operator failure with a single except
clause. NotFoundError and AlreadyExistsError are the two benign outcomes
the reconciler absorbs; everything else ends the current pass.
"""

from __future__ import annotations


class LedgerFleetError(Exception):
    """Base exception for all ledgerfleet errors."""


class ConfigurationError(LedgerFleetError):
    """Raised for invalid configuration or cluster intent values."""


# =============================================================================
# Resource Store
# =============================================================================


class StoreError(LedgerFleetError):
    """Base for errors returned by the resource store."""

    def __init__(self, kind: str, name: str, reason: str = "") -> None:
        self.kind = kind
        self.name = name
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"{kind} {name!r}{detail}")


class NotFoundError(StoreError):
    """The object does not exist (yet, or any more)."""


class AlreadyExistsError(StoreError):
    """An object with the same identity already exists."""


class CollaboratorUnavailableError(StoreError):
    """The resource store failed for any other reason."""


# =============================================================================
# Genesis
# =============================================================================


class GenesisError(LedgerFleetError):
    """Base for wallet and genesis ledger failures."""


class PermissionDeniedError(GenesisError):
    """The wallet directory could not be created for lack of permission."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Permission denied creating wallet directory {path!r}")


class StorageUnavailableError(GenesisError):
    """The wallet directory could not be created."""

    def __init__(self, path: str, reason: str = "unknown") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Wallet directory {path!r} unavailable: {reason}")


class StorageFailureError(GenesisError):
    """Reading or persisting a wallet file failed."""

    def __init__(self, path: str, reason: str = "unknown") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to persist wallet {path!r}: {reason}")


class CryptoFailureError(GenesisError):
    """Keypair generation or key decoding failed."""


# =============================================================================
# Managed Workload
# =============================================================================


class MalformedPodError(LedgerFleetError):
    """A managed pod carries neither an index label nor a well-formed name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Pod {name!r} has no valid index label or name suffix")
