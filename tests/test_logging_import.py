"""
Test that recon_logging can be imported without circular import and logger works.
"""

from __future__ import annotations

import structlog


def test_logging_import():
    """Import get_logger from recon_logging and use the logger."""
    from anchor_recon.recon_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", key="value")


def test_bind_wallet_lowercases_address():
    from anchor_recon.recon_logging import bind_wallet

    log = bind_wallet("0x" + "A" * 40)
    assert structlog.get_context(log)["wallet_id"] == "0x" + "a" * 40
    log.info("test_wallet_message", token="DAI")


def test_bind_actor_scopes_context():
    from anchor_recon.recon_logging import bind_actor, get_logger

    with bind_actor("ops@desk"):
        assert structlog.contextvars.get_contextvars()["actor"] == "ops@desk"
        get_logger("test").info("test_actor_message")
    assert "actor" not in structlog.contextvars.get_contextvars()
