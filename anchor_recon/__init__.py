"""
Anchor Recon: reconciliation backend for on-chain anchors and off-chain claims.

Decides which claim (if any) represents the same transfer as each on-chain anchor,
scores that decision, lets an operator override it, and keeps an append-only audit
trail. Wallet risk scoring and balance-drift detection run over the same ledger.
"""

__version__ = "0.1.0"
