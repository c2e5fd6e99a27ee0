"""ERC-20 encoding helpers: balanceOf calldata, event topics, unit scaling."""

from __future__ import annotations

import re
from decimal import Decimal

from anchor_recon.core.numeric import canonical

BALANCE_OF_SELECTOR = "0x70a08231"
# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
# keccak256("Approval(address,address,uint256)")
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: str | None) -> bool:
    return bool(value and _ADDRESS_RE.match(value.strip()))


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte indexed topic."""
    return "0x" + address.strip().lower()[2:].rjust(64, "0")


def topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def balance_of_data(owner: str) -> str:
    return BALANCE_OF_SELECTOR + owner.strip().lower()[2:].rjust(64, "0")


def hex_to_int(value: str | None) -> int:
    if not value or value == "0x":
        return 0
    return int(value, 16)


def scale_units(raw: int, decimals: int) -> str:
    """Raw integer token units to a canonical decimal string."""
    return canonical(Decimal(raw).scaleb(-decimals))
