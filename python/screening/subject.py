"""
Screening subject parsing and search term extraction.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from screening.errors import ValidationError
from screening.models import SearchTerm

# Recognized attributes in emission order. Each maps to the input keys
# accepted for it.
RECOGNIZED_FIELDS = (
    ("first_name", ("first_name", "firstName")),
    ("last_name", ("last_name", "lastName")),
    ("full_name", ("full_name", "fullName")),
    ("passport_number", ("passport_number", "passportNumber")),
)

FIELD_NAMES = tuple(name for name, _ in RECOGNIZED_FIELDS)

_ALIASES = {alias: name for name, aliases in RECOGNIZED_FIELDS for alias in aliases}


@dataclass
class ScreeningSubject:
    """Attributes of the person or organization being screened.

    Recognized attributes are optional typed fields. Anything else is kept
    verbatim in `extra` for the audit record and ignored for matching.
    """
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    passport_number: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ScreeningSubject':
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError(
                f"Subject must be an object of attributes, got {type(data).__name__}",
                field="subject",
                code="INVALID_SUBJECT",
                suggestion="Send attributes such as firstName, lastName, fullName, passportNumber"
            )

        recognized: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key)
            if name is None:
                extra[key] = value
                continue
            if value is not None and not isinstance(value, str):
                raise ValidationError(
                    f"Attribute '{key}' must be a string",
                    field=key,
                    code="INVALID_ATTRIBUTE_TYPE",
                    suggestion="Send identifying attributes as text"
                )
            recognized[name] = value
        return cls(extra=extra, **recognized)

    def to_dict(self) -> Dict[str, Any]:
        """Screening data as recorded on the result."""
        data: Dict[str, Any] = {}
        for name, _ in RECOGNIZED_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        data.update(self.extra)
        return data

    def is_empty(self) -> bool:
        return not self.to_dict()


def validate_field_names(fields: Iterable[str]) -> List[str]:
    """Check a configured field selection against the recognized attributes.

    Raises:
        ValueError: If a name is not a recognized attribute
    """
    names = list(fields)
    unknown = [name for name in names if name not in FIELD_NAMES]
    if unknown:
        raise ValueError(
            f"Unknown screening field(s): {', '.join(map(str, unknown))}. "
            f"Valid: {', '.join(FIELD_NAMES)}"
        )
    return names


def extract_search_terms(subject: ScreeningSubject,
                         fields: Optional[Iterable[str]] = None) -> List[SearchTerm]:
    """
    Extract searchable terms from a subject.

    Emits one term per recognized attribute that is present and non-blank,
    always in the fixed order first_name, last_name, full_name,
    passport_number, regardless of how the subject was supplied.

    Args:
        subject: Parsed screening subject
        fields: Attributes to screen on; all recognized attributes when None.
            The selection narrows the set but never changes the order.

    Raises:
        ValueError: If fields names an unknown attribute
    """
    selected = set(FIELD_NAMES if fields is None else validate_field_names(fields))
    terms = []
    for name in FIELD_NAMES:
        if name not in selected:
            continue
        value = getattr(subject, name)
        if value and value.strip():
            terms.append(SearchTerm(field=name, value=value))
    return terms
