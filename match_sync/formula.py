"""Filter formula builders for the record store list endpoint.

The store filters with a formula string (``filterByFormula``). These helpers
compose the handful of predicates the sync layer needs and take care of
quoting values.
"""

from typing import Iterable, Optional


def quote(value) -> str:
    """Quote a value as a formula string literal."""
    text = str(value).replace('\\', '\\\\').replace('"', '\\"')
    return f'"{text}"'


def field_ref(name: str) -> str:
    return '{' + name + '}'


def field_equals(name: str, value) -> str:
    """{Field} = "value" (numbers are left unquoted)."""
    if isinstance(value, bool):
        return f"{field_ref(name)} = {'TRUE()' if value else 'FALSE()'}"
    if isinstance(value, (int, float)):
        return f"{field_ref(name)} = {value}"
    return f"{field_ref(name)} = {quote(value)}"


def field_at_least(name: str, value: float) -> str:
    return f"{field_ref(name)} >= {value}"


def and_(*clauses: Optional[str]) -> Optional[str]:
    parts = [c for c in clauses if c]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return f"AND({', '.join(parts)})"


def or_(*clauses: Optional[str]) -> Optional[str]:
    parts = [c for c in clauses if c]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return f"OR({', '.join(parts)})"


def linked_contains(name: str, record_id: str) -> str:
    """Linked-record field includes the given record id."""
    return f"FIND({quote(record_id)}, ARRAYJOIN({field_ref(name)}))"


def linked_contains_any(name: str, record_ids: Iterable[str]) -> Optional[str]:
    return or_(*(linked_contains(name, rid) for rid in record_ids))


def record_id_in(record_ids: Iterable[str]) -> Optional[str]:
    """OR of RECORD_ID() equality over the given ids."""
    return or_(*(f"RECORD_ID() = {quote(rid)}" for rid in record_ids))


def search(name: str, text: str) -> str:
    """Case-insensitive substring match on a text field."""
    return f"SEARCH(LOWER({quote(text)}), LOWER({field_ref(name)} & \"\"))"
