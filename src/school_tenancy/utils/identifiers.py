"""
Sequential identifier codec.

Identifiers have the form `{TENANT}-{ROLECODE}-{NNNN}`, e.g. `P-A-0004`: uppercase school code,
one-letter role code and a zero-padded sequence. The width is fixed (4 by default); sequences
that do not fit raise `SequenceExhaustedError` instead of silently widening the field.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Union

from school_tenancy.exceptions import InvalidArgumentError, SequenceExhaustedError
from school_tenancy.models.tenant_models import ROLE_BY_CODE, Role, canonical_tenant_key

DEFAULT_SEQUENCE_WIDTH = 4

_IDENTIFIER_RE = re.compile(r"^([A-Za-z0-9]+)-([A-Za-z])-(\d+)$")


@dataclass(frozen=True)
class ParsedIdentifier:
    tenant: str
    role: Role
    sequence: int


def max_sequence(width: int = DEFAULT_SEQUENCE_WIDTH) -> int:
    return 10**width - 1


def identifier_prefix(tenant_key: str, role: Union[Role, str]) -> str:
    """`{TENANT}-{ROLECODE}-` for a tenant and role, e.g. `P-A-`."""
    role = Role.parse(role)
    return f"{canonical_tenant_key(tenant_key)}-{role.code}-"


def identifier_pattern(tenant_key: str, role: Union[Role, str], width: int = DEFAULT_SEQUENCE_WIDTH) -> Pattern:
    """Compiled, case-insensitive `^{prefix}(\\d{width})$` matcher."""
    prefix = identifier_prefix(tenant_key, role)
    return re.compile(rf"^{re.escape(prefix)}(\d{{{width}}})$", re.IGNORECASE)


def format_identifier(
    tenant_key: str, role: Union[Role, str], sequence: int, width: int = DEFAULT_SEQUENCE_WIDTH
) -> str:
    """
    Build an identifier from its parts.

    Raises:
        InvalidArgumentError: If `sequence` is below 1.
        SequenceExhaustedError: If `sequence` needs more than `width` digits.
    """
    if sequence < 1:
        raise InvalidArgumentError(f"Sequence must be positive, got {sequence}", {"sequence": sequence})
    prefix = identifier_prefix(tenant_key, role)
    if sequence > max_sequence(width):
        raise SequenceExhaustedError(
            f"Sequence space for {prefix}* is exhausted ({sequence} needs more than {width} digits)",
            {"prefix": prefix, "sequence": sequence, "width": width},
        )
    return f"{prefix}{sequence:0{width}d}"


def parse_identifier(value: str) -> ParsedIdentifier:
    """
    Split an identifier into tenant, role and sequence.

    Raises:
        InvalidArgumentError: If the value is not a well-formed identifier.
    """
    match = _IDENTIFIER_RE.match(value.strip()) if isinstance(value, str) else None
    role: Optional[Role] = ROLE_BY_CODE.get(match.group(2).upper()) if match else None
    if not match or role is None:
        raise InvalidArgumentError(f"Not a sequential identifier: {value!r}", {"identifier": repr(value)})
    return ParsedIdentifier(tenant=match.group(1).upper(), role=role, sequence=int(match.group(3)))


def extract_sequence(value: str, pattern: Pattern) -> Optional[int]:
    """Numeric suffix of `value` when it matches `pattern`, else `None`."""
    if not isinstance(value, str):
        return None
    match = pattern.match(value)
    return int(match.group(1)) if match else None
