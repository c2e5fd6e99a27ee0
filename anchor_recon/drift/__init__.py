"""Balance-drift detection between the ledger and on-chain balances."""
