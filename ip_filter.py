"""
IP address filter
Decides whether a remote address is permitted by a comma-separated filter of
exact addresses, wildcards and CIDR ranges (IPv4 and IPv6)
"""

import re
from dataclasses import dataclass
from enum import Enum
from ipaddress import AddressValueError, IPv6Address


# =============================================================================
# Addresses
# =============================================================================


class AddressFamily(str, Enum):
    ipv4 = "IPv4"
    ipv6 = "IPv6"

    @property
    def bits(self) -> int:
        """Bit width of the address space"""
        return 32 if self is AddressFamily.ipv4 else 128


class AddressParseError(ValueError):
    """Raised when a string is neither a dotted IPv4 nor a colon-hex IPv6 address."""


@dataclass(frozen=True)
class Address:
    """A parsed address: family tag plus 4 or 16 big-endian bytes"""

    family: AddressFamily
    packed: bytes

    def bit(self, index: int) -> int:
        """Return bit `index` of the address, 0 being the most significant bit."""
        return (self.packed[index // 8] >> (7 - index % 8)) & 1


IPV4_PATTERN = re.compile(r"(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})", re.ASCII)

# Hex digits and colons only: no embedded IPv4 suffix, no zone id
IPV6_PATTERN = re.compile(r"[0-9a-f:]{2,39}", re.ASCII | re.IGNORECASE)


def parse_address(text: str) -> Address:
    """Parse a textual IPv4 or IPv6 address.

    IPv4 must be four dot-separated decimal groups of 1-3 digits with values
    0-255. IPv6 is standard colon-hex notation with at most one "::"; hex
    digits are case-insensitive and every spelling of the same value yields
    the same bytes. No name resolution is ever attempted.

    Raises AddressParseError for anything else.
    """
    if not isinstance(text, str) or not text:
        raise AddressParseError("empty address")

    match = IPV4_PATTERN.fullmatch(text)
    if match:
        octets = [int(group) for group in match.groups()]
        if any(octet > 255 for octet in octets):
            raise AddressParseError(f"octet out of range in {text!r}")
        return Address(AddressFamily.ipv4, bytes(octets))

    if IPV6_PATTERN.fullmatch(text):
        try:
            packed = IPv6Address(text).packed
        except AddressValueError as e:
            raise AddressParseError(str(e)) from e
        return Address(AddressFamily.ipv6, packed)

    raise AddressParseError(f"unrecognized address format: {text!r}")


# =============================================================================
# Filter matching
# =============================================================================

WILDCARD = "*"

# Leading zeros are allowed; more than three significant digits is always out of range
PREFIX_PATTERN = re.compile(r"0*(\d{1,3})", re.ASCII)


def matches(remote_addr: str | None, filter_spec: str | None) -> bool:
    """Check if remote_addr is permitted by filter_spec.

    filter_spec is a comma-separated list of entries, each one of:
    - "*" (any address)
    - an exact address (e.g. "192.168.1.100", "fc00::1")
    - a CIDR range (e.g. "10.0.0.0/8", "2001:db8::/32")

    Missing or empty input never matches. Malformed entries and addresses are
    treated as non-matches; this function never raises.
    """
    if not remote_addr or not filter_spec:
        return False

    for entry in filter_spec.split(","):
        entry = entry.strip()
        if entry and matches_entry(remote_addr, entry):
            return True

    return False


def matches_entry(remote_addr: str, entry: str) -> bool:
    """Match a single trimmed filter entry"""
    if entry == WILDCARD:
        return True
    if "/" in entry:
        return matches_range(remote_addr, entry)
    return matches_address(remote_addr, entry)


def _parse_pair(remote_addr: str, other: str) -> tuple[Address, Address] | None:
    """Parse both addresses, or return None if either is invalid or the families differ."""
    try:
        remote = parse_address(remote_addr)
        base = parse_address(other)
    except AddressParseError:
        return None

    if remote.family != base.family:
        return None
    return remote, base


def matches_address(remote_addr: str, address: str) -> bool:
    """Exact match of two addresses of the same family"""
    pair = _parse_pair(remote_addr, address)
    if pair is None:
        return False

    remote, base = pair
    return remote.packed == base.packed


def matches_range(remote_addr: str, cidr: str) -> bool:
    """Check if remote_addr lies within a CIDR range such as "172.16.0.0/12".

    Only the leading prefix bits of the base are compared, so a base that is
    not aligned to the prefix ("127.1.2.3/8") behaves like its network address.
    """
    base_text, _, prefix_text = cidr.rpartition("/")
    prefix_match = PREFIX_PATTERN.fullmatch(prefix_text)
    if not prefix_match:
        return False

    pair = _parse_pair(remote_addr, base_text)
    if pair is None:
        return False

    remote, base = pair
    prefix_length = int(prefix_match.group(1))
    if prefix_length > remote.family.bits:
        return False

    if remote.packed == base.packed:
        return True

    for index in range(prefix_length):
        if remote.bit(index) != base.bit(index):
            return False

    return True
