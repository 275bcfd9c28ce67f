"""
OpenDID API Routes Package
Provides claims ledger, ENS gateway, claim issuance and history endpoints.
"""

from opendid.routes import registry, ens, history, claims

__all__ = ["registry", "ens", "history", "claims"]
