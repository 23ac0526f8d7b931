"""Interfaces to the systems around the oracle.

- Market query API (read) and store API (write)
- Settlement ledger (local or relayed to an external signer)
"""

from __future__ import annotations

__all__: list[str] = []
