"""
Structured logging for Anchor Recon.

JSON logs with timestamp, event_type and per-call context (anchor_id, claim_id, wallet_id, actor).
"""

from anchor_recon.recon_logging.logger import bind_actor, bind_wallet, get_logger

__all__ = ["bind_actor", "bind_wallet", "get_logger"]
