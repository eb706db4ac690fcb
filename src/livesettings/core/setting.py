"""In-memory representation of a single setting record."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from livesettings.core import coerce

MAX_KEY_LENGTH = 255
MAX_VALUE_LENGTH = 4096

TRACKED_FIELDS = ("key", "raw_value", "value_type", "description", "deleted")


class ValueType(str, Enum):
    """Types a setting value can be coerced to."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    ARRAY = "array"
    SECRET = "secret"

    @classmethod
    def parse(cls, value: Any) -> Union["ValueType", str, None]:
        """Return the matching member, or the raw string so validation can reject it."""
        if isinstance(value, cls):
            return value
        if coerce.blank(value):
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return str(value)


def infer_value_type(value: Any) -> ValueType:
    """Guess the value type for a new setting from a Python value."""
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, int):
        return ValueType.INTEGER
    if isinstance(value, float):
        return ValueType.FLOAT
    if isinstance(value, (datetime, date)):
        return ValueType.DATETIME
    if isinstance(value, (list, tuple)):
        return ValueType.ARRAY
    return ValueType.STRING


def serialize_value(value: Any) -> Optional[str]:
    """Convert a Python value to the canonical stored string (or None)."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return coerce.join_array(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return coerce.iso8601(coerce.time(value))
    if isinstance(value, str):
        return None if coerce.blank(value) else value
    return str(value)


class Setting:
    """One key's metadata plus validation and change tracking.

    A Setting is what storage adapters hand to the cache and accept back for
    persistence. ``raw_value`` always holds the stored string form; ``value``
    is the coerced view. A deleted setting has no value regardless of what
    ``raw_value`` contains.
    """

    def __init__(
        self,
        key: Optional[str] = None,
        raw_value: Optional[str] = None,
        value_type: Any = ValueType.STRING,
        description: Optional[str] = None,
        deleted: bool = False,
        created_at: Any = None,
        updated_at: Any = None,
        namespace: Optional[str] = None,
    ) -> None:
        self._key: Optional[str] = None
        self._raw_value: Optional[str] = None
        self._value_type: Union[ValueType, str, None] = ValueType.STRING
        self._description: Optional[str] = None
        self._deleted = False
        self.created_at: Optional[datetime] = coerce.time(created_at)
        self.updated_at: Optional[datetime] = coerce.time(updated_at)
        self.namespace = namespace
        self.changed_by: Optional[str] = None
        self.errors: Dict[str, List[str]] = {}
        self.persisted = False
        self._original: Dict[str, Any] = {}

        self.key = key
        self.value_type = value_type
        self.raw_value = raw_value
        self.description = description
        self.deleted = deleted

    @classmethod
    def from_record(cls, **attributes: Any) -> "Setting":
        """Build a setting that mirrors a stored record (no pending changes)."""
        setting = cls(**attributes)
        setting.mark_persisted()
        return setting

    @classmethod
    def from_dict(cls, data: Dict[str, Any], namespace: Optional[str] = None) -> "Setting":
        """Inverse of :meth:`to_dict`; the result is marked persisted."""
        return cls.from_record(
            key=data.get("key"),
            raw_value=data.get("value"),
            value_type=data.get("value_type") or ValueType.STRING,
            description=data.get("description"),
            deleted=bool(data.get("deleted", False)),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            namespace=namespace,
        )

    # Attributes

    @property
    def key(self) -> Optional[str]:
        return self._key

    @key.setter
    def key(self, value: Any) -> None:
        self._key = None if coerce.blank(value) else str(value)

    @property
    def raw_value(self) -> Optional[str]:
        return self._raw_value

    @raw_value.setter
    def raw_value(self, value: Any) -> None:
        self._raw_value = serialize_value(value)

    @property
    def value_type(self) -> Union[ValueType, str, None]:
        return self._value_type

    @value_type.setter
    def value_type(self, value: Any) -> None:
        self._value_type = ValueType.parse(value)

    @property
    def description(self) -> Optional[str]:
        return self._description

    @description.setter
    def description(self, value: Any) -> None:
        self._description = None if coerce.blank(value) else str(value)

    @property
    def deleted(self) -> bool:
        return self._deleted

    @deleted.setter
    def deleted(self, value: Any) -> None:
        self._deleted = bool(coerce.boolean(value))

    @property
    def secret(self) -> bool:
        return self._value_type is ValueType.SECRET

    @property
    def original_key(self) -> Optional[str]:
        """Key the record was stored under before an unsaved rename."""
        return self._original.get("key", self._key) if self.persisted else None

    @property
    def value(self) -> Any:
        """The coerced value; None when deleted, blank or unparseable."""
        if self._deleted or self._raw_value is None:
            return None
        try:
            return self._coerce(self._raw_value)
        except ValueError:
            return None

    @value.setter
    def value(self, value: Any) -> None:
        self.raw_value = value

    def _coerce(self, raw: str) -> Any:
        value_type = self._value_type
        if value_type is ValueType.INTEGER:
            return coerce.integer(raw)
        if value_type is ValueType.FLOAT:
            return coerce.floating(raw)
        if value_type is ValueType.BOOLEAN:
            return coerce.boolean(raw)
        if value_type is ValueType.DATETIME:
            return coerce.time(raw)
        if value_type is ValueType.ARRAY:
            return coerce.array(raw)
        return raw

    # Validation

    def validate(self) -> Dict[str, List[str]]:
        """Check the record and return field errors (also stored on ``errors``)."""
        errors: Dict[str, List[str]] = {}

        def add(field: str, message: str) -> None:
            errors.setdefault(field, []).append(message)

        if self._key is None:
            add("key", "can't be blank")
        elif len(self._key) > MAX_KEY_LENGTH:
            add("key", f"is too long (maximum is {MAX_KEY_LENGTH} characters)")

        if not isinstance(self._value_type, ValueType):
            add("value_type", "is not included in the list")

        raw = self._raw_value
        if raw is not None:
            if len(raw) > MAX_VALUE_LENGTH:
                add("value", f"is too long (maximum is {MAX_VALUE_LENGTH} characters)")
            try:
                self._coerce(raw)
            except ValueError:
                if self._value_type is ValueType.INTEGER:
                    add("value", "must be an integer")
                elif self._value_type is ValueType.FLOAT:
                    add("value", "must be a number")
                else:
                    add("value", "is invalid")

        self.errors = errors
        return errors

    def is_valid(self) -> bool:
        return not self.validate()

    def normalize(self) -> None:
        """Rewrite datetime raw values into ISO-8601 UTC before they are stored."""
        if self._value_type is ValueType.DATETIME and self._raw_value is not None:
            try:
                self._raw_value = coerce.iso8601(coerce.time(self._raw_value))
            except ValueError:
                pass

    # Change tracking

    def _current(self) -> Dict[str, Any]:
        return {
            "key": self._key,
            "raw_value": self._raw_value,
            "value_type": self._value_type,
            "description": self._description,
            "deleted": self._deleted,
        }

    def changed_fields(self) -> List[str]:
        if not self.persisted:
            return [name for name, val in self._current().items() if val not in (None, False)]
        current = self._current()
        return [name for name in TRACKED_FIELDS if current[name] != self._original.get(name)]

    def changed(self) -> bool:
        return bool(self.changed_fields())

    def history_needed(self) -> bool:
        """True when the pending change should produce a history entry."""
        if not self.persisted:
            return True
        changes = self.changed_fields()
        return any(name in changes for name in ("raw_value", "value_type", "deleted", "key"))

    def became_secret(self) -> bool:
        return self.secret and self.persisted and self._original.get("value_type") is not ValueType.SECRET

    def history_value(self) -> Optional[str]:
        if self._deleted or self.secret:
            return None
        return self._raw_value

    def mark_persisted(self) -> None:
        self.persisted = True
        self._original = self._current()

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        value_type = self._value_type.value if isinstance(self._value_type, ValueType) else self._value_type
        return {
            "key": self._key,
            "value": self._raw_value,
            "value_type": value_type,
            "description": self._description,
            "deleted": self._deleted,
            "created_at": coerce.iso8601(self.created_at) if self.created_at else None,
            "updated_at": coerce.iso8601(self.updated_at) if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"Setting(key={self._key!r}, raw_value={self._raw_value!r}, "
            f"value_type={self.to_dict()['value_type']!r}, deleted={self._deleted!r})"
        )
