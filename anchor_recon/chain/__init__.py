"""EVM JSON-RPC access used by anchor sync and the drift balance source."""
