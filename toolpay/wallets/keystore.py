"""Persistent key material for worker wallets."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount

logger = logging.getLogger(__name__)

KEYSTORE_VERSION = 1


class WorkerKeystore:
    """Loads or generates the worker keys, persisted in one JSON file.

    With a password each key is stored as an eth-account encrypted
    keystore; without one keys are stored as plain hex and a warning is
    logged. The file is written with owner-only permissions.
    """

    def __init__(
        self,
        path: str | Path,
        password: str | None = None,
        kdf: str | None = None,
        iterations: int | None = None,
    ):
        """Initialize keystore.

        Args:
            path: JSON file holding the worker keys.
            password: Optional encryption password.
            kdf: Optional eth-account KDF ("scrypt" or "pbkdf2").
            iterations: Optional KDF work factor.
        """
        self.path = Path(path)
        self._password = password
        self._kdf = kdf
        self._iterations = iterations

    def load_or_create(self, count: int) -> list[LocalAccount]:
        """Return exactly `count` accounts, generating and persisting missing ones.

        Existing keys are always kept, in file order.

        Raises:
            ValueError: If the file cannot be decrypted or is malformed.
        """
        accounts = self._load()
        if len(accounts) < count:
            for _ in range(count - len(accounts)):
                accounts.append(Account.create())
            self._save(accounts)
            logger.info(f"Keystore {self.path} now holds {len(accounts)} worker keys")
        return accounts[:count]

    def _load(self) -> list[LocalAccount]:
        if not self.path.exists():
            return []

        data = json.loads(self.path.read_text(encoding="utf-8"))
        if data.get("version") != KEYSTORE_VERSION:
            raise ValueError(f"Unsupported keystore version in {self.path}: {data.get('version')}")

        accounts = []
        for entry in data.get("wallets", []):
            accounts.append(Account.from_key(self._decode(entry)))
        return accounts

    def _decode(self, entry: dict[str, Any]) -> bytes | str:
        if "crypto" in entry:
            if self._password is None:
                raise ValueError(f"Keystore {self.path} is encrypted but no password was given")
            try:
                return Account.decrypt(entry, self._password)
            except ValueError as exc:
                raise ValueError(f"Failed to decrypt keystore: {exc}") from exc
        if "privateKey" in entry:
            return entry["privateKey"]
        raise ValueError(f"Malformed keystore entry in {self.path}")

    def _encode(self, account: LocalAccount) -> dict[str, Any]:
        if self._password is None:
            return {"address": account.address, "privateKey": account.key.hex()}
        return Account.encrypt(
            account.key, self._password, kdf=self._kdf, iterations=self._iterations
        )

    def _save(self, accounts: list[LocalAccount]) -> None:
        if self._password is None:
            logger.warning(f"Storing worker keys unencrypted at {self.path}")

        data = {
            "version": KEYSTORE_VERSION,
            "wallets": [self._encode(account) for account in accounts],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
