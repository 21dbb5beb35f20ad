"""Wallet persistence and genesis ledger construction.

Rich wallets live in ``<wallet_dir>/wallet<i>.txt`` as the hex encoding of
a 64-byte Ed25519 private key (seed followed by public key). Index 0 is the
bootstrap node's own wallet, shipped inside the node image, so generation
covers indices ``1 .. rich_wallets - 1``.

Generation is idempotent: a wallet file that exists with the right length
is reused verbatim, so re-running genesis never changes the identities that
were already funded. New files are published with a hard link from a
temporary file, which makes the first writer win when two passes race on
the same index.

Example:
    generator = GenesisGenerator("config")
    document = generator.generate(rich_wallets=4)
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from pydantic import BaseModel, Field, RootModel

from ledgerfleet.constants import (
    PRIVATE_KEY_SIZE,
    PUBLIC_KEY_SIZE,
    RICH_WALLET_BALANCE,
    WALLET_FILE_LENGTH,
    wallet_filename,
)
from ledgerfleet.core.exceptions import (
    CryptoFailureError,
    PermissionDeniedError,
    StorageFailureError,
    StorageUnavailableError,
)
from ledgerfleet.observability.logger import logger

log = logger.bind(component="genesis")

type KeyGenerator = Callable[[], bytes]
"""Returns a fresh 64-byte private key (seed followed by public key)."""


def ed25519_keypair() -> bytes:
    key = Ed25519PrivateKey.generate()
    seed = key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    public = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return seed + public


def public_key_hex(private_key: bytes) -> str:
    return private_key[PRIVATE_KEY_SIZE - PUBLIC_KEY_SIZE:].hex()


# =============================================================================
# Ledger Document
# =============================================================================


class BalanceRecord(BaseModel):
    balance: int


class GenesisLedger(RootModel[dict[str, BalanceRecord]]):
    """Public key (hex) to initial balance, in wallet index order."""

    root: dict[str, BalanceRecord] = Field(default_factory=dict)

    def credit(self, public_key: str, balance: int = RICH_WALLET_BALANCE) -> None:
        self.root[public_key] = BalanceRecord(balance=balance)

    def to_document(self) -> str:
        return self.model_dump_json()

    def __len__(self) -> int:
        return len(self.root)


# =============================================================================
# Generator
# =============================================================================


class GenesisGenerator:
    """Creates, reuses and reads rich wallets under one directory."""

    def __init__(self, wallet_dir: str | Path, keygen: KeyGenerator = ed25519_keypair) -> None:
        self._dir = Path(wallet_dir)
        self._keygen = keygen

    @property
    def wallet_dir(self) -> Path:
        return self._dir

    def wallet_path(self, index: int) -> Path:
        return self._dir / wallet_filename(index)

    def generate(self, rich_wallets: int) -> str:
        """Build the genesis ledger document for ``rich_wallets`` wallets.

        Raises:
            PermissionDeniedError: The wallet directory cannot be created.
            StorageUnavailableError: Any other directory creation failure.
            StorageFailureError: A wallet file cannot be read or written.
            CryptoFailureError: Key generation failed or a stored key is corrupt.
        """
        self._ensure_dir()
        ledger = GenesisLedger()

        for index in range(1, rich_wallets):
            private_key = self._load(index)
            if private_key is None:
                private_key = self._create(index)
            ledger.credit(public_key_hex(private_key))

        return ledger.to_document()

    def read_wallet(self, index: int) -> str | None:
        """Hex-encoded private key for ``index``, or None if none is stored."""
        private_key = self._load(index)
        return private_key.hex() if private_key is not None else None

    def _ensure_dir(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise PermissionDeniedError(str(self._dir)) from e
        except OSError as e:
            raise StorageUnavailableError(str(self._dir), e.strerror or str(e)) from e

    def _load(self, index: int) -> bytes | None:
        path = self.wallet_path(index)
        try:
            buf = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailureError(str(path), e.strerror or str(e)) from e

        if len(buf) != WALLET_FILE_LENGTH:
            log.warning(
                "Wallet {path} has {n} bytes, expected {expected}; regenerating",
                path=path, n=len(buf), expected=WALLET_FILE_LENGTH,
            )
            return None

        try:
            return bytes.fromhex(buf.decode("ascii"))
        except (UnicodeDecodeError, ValueError) as e:
            raise CryptoFailureError(f"Wallet {path} is not a hex-encoded private key") from e

    def _create(self, index: int) -> bytes:
        try:
            private_key = self._keygen()
        except Exception as e:
            raise CryptoFailureError(f"Keypair generation failed for wallet {index}: {e}") from e
        if len(private_key) != PRIVATE_KEY_SIZE:
            raise CryptoFailureError(
                f"Key generator returned {len(private_key)} bytes, expected {PRIVATE_KEY_SIZE}"
            )

        path = self.wallet_path(index)
        if not self._publish(index, private_key.hex().encode("ascii")):
            existing = self._load(index)
            if existing is not None:
                log.debug("Wallet {path} was written concurrently; reusing it", path=path)
                return existing
            raise StorageFailureError(str(path), "concurrently written file is invalid")

        log.info("Generated wallet {path}", path=path)
        return private_key

    def _publish(self, index: int, content: bytes) -> bool:
        """Write ``content`` as wallet ``index`` unless a valid one is already there.

        Returns False when another writer published the wallet first.
        """
        path = self.wallet_path(index)
        tmp = ""
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp, path)
            except FileExistsError:
                if self._load(index) is not None:
                    return False
                os.replace(tmp, path)
                tmp = ""
            return True
        except OSError as e:
            raise StorageFailureError(str(path), e.strerror or str(e)) from e
        finally:
            if tmp:
                try:
                    os.unlink(tmp)
                except FileNotFoundError:
                    pass
