from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds

from updown.config import Config

log = logging.getLogger(__name__)

CREDS_TTL_S = 3600  # re-derive L2 credentials hourly


class ClientFactory:
    """Builds authenticated CLOB clients, re-deriving API creds at most hourly.

    ``cfg.clob_host`` may point at the authenticated regional proxy; the
    client does not care which.
    """

    def __init__(self, cfg: Config, clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self._clock = clock
        self._creds: ApiCreds | None = None
        self._creds_at = 0.0
        self._lock = threading.Lock()

    def _new_client(self, creds: ApiCreds | None = None) -> ClobClient:
        return ClobClient(
            self.cfg.clob_host,
            key=self.cfg.private_key,
            chain_id=self.cfg.chain_id,
            creds=creds,
            signature_type=self.cfg.signature_type,
            funder=self.cfg.funder_address or None,
        )

    def get(self) -> ClobClient | None:
        """Return a ready client, or None if no wallet is configured or auth fails."""
        if not self.cfg.private_key:
            log.warning("No wallet configured, set POLYMARKET_PRIVATE_KEY")
            return None
        with self._lock:
            try:
                if self._creds is None or self._clock() - self._creds_at > CREDS_TTL_S:
                    self._creds = self._new_client().create_or_derive_api_creds()
                    self._creds_at = self._clock()
                    log.info("CLOB API credentials derived from wallet")
                return self._new_client(self._creds)
            except Exception:
                log.exception("Failed to create CLOB client")
                self._creds = None
                return None
