"""Parse operator-typed register references (40001, 4x:12, coil:0x10) into RegisterAddress."""

import re

from .codec import convert_address
from .errors import InvalidAddressError
from .types import RegisterAddress, RegisterSpace

# Optional space qualifier + ':' + decimal or 0x-hex number
_REF_PATTERN = re.compile(
    r"^(?:(?P<space>[a-z_0-9]+):)?(?P<number>0x[0-9a-f]+|\d+)$",
    re.IGNORECASE,
)

_SPACE_ALIASES: dict[str, RegisterSpace] = {
    "c": RegisterSpace.COIL,
    "coil": RegisterSpace.COIL,
    "di": RegisterSpace.DISCRETE_INPUT,
    "ir": RegisterSpace.INPUT_REGISTER,
    "hr": RegisterSpace.HOLDING_REGISTER,
}

# Five- and six-digit reference numbers whose leading digit selects the space
_BARE_RANGES: tuple[tuple[int, int, RegisterSpace], ...] = (
    (10001, 19999, RegisterSpace.DISCRETE_INPUT),
    (30001, 39999, RegisterSpace.INPUT_REGISTER),
    (40001, 49999, RegisterSpace.HOLDING_REGISTER),
    (100001, 165536, RegisterSpace.DISCRETE_INPUT),
    (300001, 365536, RegisterSpace.INPUT_REGISTER),
    (400001, 465536, RegisterSpace.HOLDING_REGISTER),
)


def _parse_space(raw: str, ref: str) -> RegisterSpace:
    key = raw.lower()
    if key in _SPACE_ALIASES:
        return _SPACE_ALIASES[key]
    try:
        return RegisterSpace.parse(key)
    except ValueError:
        raise InvalidAddressError(ref, f"Unknown register space {raw!r} in {ref!r}") from None


def parse_register_ref(
    raw: str,
    default_space: RegisterSpace = RegisterSpace.HOLDING_REGISTER,
) -> RegisterAddress:
    """
    Resolve a register reference to a zero-based protocol address.

    - ``space:number`` (space: coil/c/0x, di/1x, ir/3x, hr/4x or full name):
      a decimal number goes through the space's range-bucketed conversion, so
      ``4x:40001`` and ``4x:0`` are both holding register 0.
    - Hex numbers (``0x10``) are always zero-based protocol offsets.
    - A bare 5-digit (1xxxx/3xxxx/4xxxx) or 6-digit reference number picks
      its space from the leading digit.
    - Any other bare number is a zero-based offset in ``default_space``.

    Raises InvalidAddressError for malformed references.
    """
    s = raw.strip()
    if not s:
        raise InvalidAddressError(raw, "Register reference cannot be empty")
    m = _REF_PATTERN.match(s)
    if not m:
        raise InvalidAddressError(raw, f"Malformed register reference: {raw!r}")

    number_str = m.group("number")
    is_hex = number_str.lower().startswith("0x")
    number = int(number_str, 16) if is_hex else int(number_str)

    if m.group("space") is not None:
        space = _parse_space(m.group("space"), raw)
        offset = number if is_hex else convert_address(number, space)
    elif is_hex:
        space, offset = default_space, number
    else:
        for low, high, bare_space in _BARE_RANGES:
            if low <= number <= high:
                space, offset = bare_space, number - low
                break
        else:
            space, offset = default_space, number

    if not 0 <= offset <= 0xFFFF:
        raise InvalidAddressError(raw, f"Register offset out of range 0..65535: {offset}")
    return RegisterAddress(space, offset)
