from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("agentgate.wallet")

DEFAULT_NETWORK_ID = "base-sepolia"


@dataclass(frozen=True)
class WalletConfig:
    """Credentials and opaque wallet state handed to each new agent."""

    api_key_name: Optional[str]
    api_key_private_key: Optional[str]
    wallet_data: Optional[str]
    network_id: str = DEFAULT_NETWORK_ID

    def export(self) -> Dict[str, Any]:
        """Wallet state to persist after construction; secrets stay out of it."""
        payload: Dict[str, Any] = {}
        if self.wallet_data:
            try:
                parsed = json.loads(self.wallet_data)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                payload.update(parsed)
            else:
                payload["walletData"] = self.wallet_data
        payload["networkId"] = self.network_id
        return payload


class FileWalletStore:
    """Reads and writes the exported wallet blob at ``WALLET_DATA_FILE``.

    The blob is never interpreted, only passed through.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = Path(path or os.getenv("WALLET_DATA_FILE", "wallet_data.txt"))

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Error reading existing wallet file %s: %s", self.path, exc)
            return None
        return data or None

    def save(self, exported: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(exported), encoding="utf-8")

    def build_config(self) -> WalletConfig:
        private_key = os.getenv("CDP_API_KEY_PRIVATE_KEY")
        if private_key:
            private_key = private_key.replace("\\n", "\n")
        return WalletConfig(
            api_key_name=os.getenv("CDP_API_KEY_NAME"),
            api_key_private_key=private_key,
            wallet_data=self.load(),
            network_id=os.getenv("NETWORK_ID") or DEFAULT_NETWORK_ID,
        )
