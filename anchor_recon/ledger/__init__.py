"""Transaction ledger: claims, anchors, and anchor sync from an on-chain source."""
