"""Decoding of the firmware version and SKU into capability labels.

Firmware up to major version 2 reports the SKU as a small enumerated code; from
major version 3 onwards it is a bitmask whose bit meanings shifted between
generations. Both tables are data: append rows to support new generations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from rpcagent.core.errors import (
    CapabilityDecodeError,
    InvalidSKUError,
    InvalidVersionError,
    InvalidVersionFormatError,
)

_VERSION_PART_RE = re.compile(r"^[0-9]+$")
_SKU_FORMATS = (
    (re.compile(r"^0[xX]([0-9a-fA-F]+)$"), 16),
    (re.compile(r"^0[bB]([01]+)$"), 2),
    (re.compile(r"^0[oO]?([0-7]+)$"), 8),
    (re.compile(r"^([1-9][0-9]*|0)$"), 10),
)
_SKU_MAX = 2**63 - 1

LEGACY_LAST_MAJOR = 2
LEGACY_SKUS = {
    0: "AMT + ASF + iQST",
    1: "ASF + iQST",
    2: "iQST",
}
LEGACY_UNKNOWN = "Unknown"


@dataclass(frozen=True)
class CapabilityBit:
    first_major: int
    last_major: int | None
    mask: int
    label: str

    def applies_to(self, major: int) -> bool:
        if major < self.first_major:
            return False
        return self.last_major is None or major <= self.last_major


# Labels keep their trailing separators; consumers match on substrings.
CAPABILITY_BITS: tuple[CapabilityBit, ...] = (
    CapabilityBit(3, 4, 0x02, "iQST "),
    CapabilityBit(3, 4, 0x04, "ASF "),
    CapabilityBit(3, 4, 0x08, "AMT"),
    CapabilityBit(5, None, 0x02, "iQST "),
    CapabilityBit(5, None, 0x04, "ASF "),
    CapabilityBit(5, None, 0x08, "AMT Pro "),
    CapabilityBit(5, None, 0x10, "Intel Standard Manageability "),
    CapabilityBit(5, None, 0x20, "TPM "),
    CapabilityBit(5, None, 0x100, "Home IT "),
    CapabilityBit(5, None, 0x400, "WOX "),
    CapabilityBit(5, None, 0x2000, "AT-p "),
    CapabilityBit(5, None, 0x4000, "Corporate "),
    CapabilityBit(5, None, 0x8000, "L3 Mgt Upgrade"),
)


def parse_major_version(version: str) -> int:
    parts = version.strip().split(".")
    if len(parts) <= 1:
        raise InvalidVersionFormatError()
    if not all(_VERSION_PART_RE.match(part) for part in parts):
        raise InvalidVersionError()
    return int(parts[0])


def parse_sku(sku: str) -> int:
    text = sku.strip()
    for pattern, base in _SKU_FORMATS:
        match = pattern.match(text)
        if match:
            value = int(match.group(1), base)
            if value > _SKU_MAX:
                raise InvalidSKUError()
            return value
    raise InvalidSKUError()


def decode_capabilities(version: str, sku: str) -> str:
    """Return the capability labels for a firmware version and SKU.

    Raises a CapabilityDecodeError subclass on malformed input.
    """
    major = parse_major_version(version)
    sku_value = parse_sku(sku)

    if major <= LEGACY_LAST_MAJOR:
        return LEGACY_SKUS.get(sku_value, LEGACY_UNKNOWN)

    return "".join(
        row.label
        for row in CAPABILITY_BITS
        if row.applies_to(major) and sku_value & row.mask
    )


def decode_amt(version: str, sku: str) -> str:
    """Like decode_capabilities, but substitutes the error label for bad input."""
    try:
        return decode_capabilities(version, sku)
    except CapabilityDecodeError as exc:
        return str(exc)
