# =============================================================================
# ministry_core/data/models.py
# Typed records for every synchronized collection
# =============================================================================
"""
Record types shared by the Remote Store Client and the Local Mirror.

Rows arrive from the backend as loose JSON. ``Record.from_row`` validates and
coerces them once, at the client boundary, so the rest of the code works with
typed dataclasses. Columns the record type does not declare are kept in
``extra`` and written back unchanged.
"""

from __future__ import annotations
import dataclasses
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from ministry_core.errors import ConfigurationError, RecordValidationError

RecordId = Union[str, int]

_TRUE_STRINGS = {"true", "t", "1", "yes"}
_FALSE_STRINGS = {"false", "f", "0", "no"}


# =============================================================================
# ROLES & PROFILE
# =============================================================================

class Role(Enum):
    """Roles carried by a profile."""
    SMR = "smr"
    ADMIN_PASTOR = "admin_pastor"
    UNIT_PASTOR = "unit_pastor"
    UNIT_HEAD = "unit_head"
    EVANGELIST = "evangelist"
    EVANGELISM_OVERSIGHT = "evangelism_oversight"


# Cross-unit read/aggregate visibility
EXECUTIVE_ROLES = frozenset({Role.SMR, Role.ADMIN_PASTOR})


def is_executive(role: Optional[Role]) -> bool:
    return role in EXECUTIVE_ROLES


@dataclass
class Profile:
    """The authenticated identity and the unit it belongs to."""
    id: str
    role: Role
    full_name: str = ""
    unit_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def is_executive(self) -> bool:
        return is_executive(self.role)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Profile:
        if not isinstance(row, dict):
            raise RecordValidationError("Profile row is not an object", collection="profiles")
        if not row.get("id"):
            raise RecordValidationError("Profile row has no id", collection="profiles", field="id")
        try:
            role = Role(row.get("role"))
        except ValueError:
            raise RecordValidationError(
                f"Unknown role: {row.get('role')!r}",
                collection="profiles",
                field="role",
            )
        unit_id = row.get("unit_id")
        return cls(
            id=str(row["id"]),
            role=role,
            full_name=row.get("full_name") or "",
            unit_id=str(unit_id) if unit_id is not None else None,
            email=row.get("email"),
            phone=row.get("phone"),
            avatar_url=row.get("avatar_url"),
        )


# =============================================================================
# COERCION
# =============================================================================

def _coerce(value: Any, annotation: Any, collection: str, name: str) -> Any:
    """Coerce one backend value to the declared field type."""
    if value is None:
        return None

    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin is Union:
        members = [a for a in args if a is not type(None)]
        if len(members) == 1:
            return _coerce(value, members[0], collection, name)
        # RecordId: keep ints, keep strings
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            return value
        return str(value)

    if origin in (list, List):
        if isinstance(value, (list, tuple)):
            inner = args[0] if args else Any
            return [_coerce(v, inner, collection, name) for v in value]
        raise RecordValidationError(
            f"{collection}.{name} expected a list, got {type(value).__name__}",
            collection=collection,
            field=name,
        )

    if annotation is Any:
        return value

    try:
        if annotation is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)):
                return bool(value)
            lowered = str(value).strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise ValueError(value)
        if annotation is int:
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError(value)
                return int(value)
            return int(value)
        if annotation is float:
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
        if annotation is str:
            if isinstance(value, (dict, list)):
                raise ValueError(value)
            return str(value)
    except (TypeError, ValueError):
        raise RecordValidationError(
            f"{collection}.{name} cannot be read as {annotation.__name__}: {value!r}",
            collection=collection,
            field=name,
        )

    return value


# =============================================================================
# RECORD BASE
# =============================================================================

@dataclass
class Record:
    """
    Base of every synchronized entity.

    ``synced`` is local metadata: it never gates what is shown, it only tells
    a reconciliation pass that the row already reflects a remote write.
    """
    id: Optional[RecordId] = None
    unit_id: Optional[str] = None
    synced: bool = False
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    COLLECTION: ClassVar[str] = ""
    REQUIRED: ClassVar[Tuple[str, ...]] = ()
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {}
    INTEGER_IDS: ClassVar[bool] = False
    LOCAL_ONLY: ClassVar[Tuple[str, ...]] = ("synced", "extra")

    @classmethod
    def _field_types(cls) -> Dict[str, Any]:
        hints = typing.get_type_hints(cls)
        return {f.name: hints[f.name] for f in dataclasses.fields(cls) if f.name != "extra"}

    @classmethod
    def from_row(cls: Type[R], row: Dict[str, Any]) -> R:
        """Validate and coerce a backend row."""
        name = cls.COLLECTION or cls.__name__
        if not isinstance(row, dict):
            raise RecordValidationError(
                f"{name} row is not an object: {type(row).__name__}",
                collection=name,
            )

        types = cls._field_types()
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = dict(row.get("extra") or {})

        for key, value in row.items():
            if key == "extra":
                continue
            if key in types:
                values[key] = _coerce(value, types[key], name, key)
            else:
                extra[key] = value

        for required in cls.REQUIRED:
            if values.get(required) in (None, ""):
                raise RecordValidationError(
                    f"{name} row is missing required field '{required}'",
                    collection=name,
                    field=required,
                )

        for key, allowed in cls.CHOICES.items():
            if values.get(key) is not None and values[key] not in allowed:
                raise RecordValidationError(
                    f"{name}.{key} must be one of {allowed}, got {values[key]!r}",
                    collection=name,
                    field=key,
                )

        record_id = values.get("id")
        if cls.INTEGER_IDS and isinstance(record_id, str) and record_id.isdigit():
            values["id"] = int(record_id)

        if values.get("synced") is None:
            values.pop("synced", None)

        return cls(extra=extra, **values)

    def to_row(self) -> Dict[str, Any]:
        """Payload for the backend: local-only metadata stripped, unset values dropped."""
        row = dict(self.extra)
        for f in dataclasses.fields(self):
            if f.name in self.LOCAL_ONLY:
                continue
            value = getattr(self, f.name)
            if value is not None:
                row[f.name] = value
        return row

    def to_local(self) -> Dict[str, Any]:
        """Full snapshot stored by the Local Mirror."""
        row = self.to_row()
        row["synced"] = self.synced
        return row

    @property
    def key(self) -> Optional[str]:
        return None if self.id is None else str(self.id)


R = typing.TypeVar("R", bound=Record)


# =============================================================================
# UNIT-OWNED RECORDS
# =============================================================================

@dataclass
class Member(Record):
    full_name: Optional[str] = None
    category: Optional[str] = None
    subunit_id: Optional[int] = None
    role_in_unit: Optional[str] = None
    image_url: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Optional[str] = None
    dob: Optional[str] = None
    marital_status: Optional[str] = None
    occupation: Optional[str] = None
    employment_status: Optional[List[str]] = None
    joined_workforce: Optional[str] = None
    completed_ces: Optional[bool] = None

    COLLECTION: ClassVar[str] = "members"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("id", "unit_id", "full_name")


@dataclass
class AttendanceLog(Record):
    member_id: Optional[str] = None
    event_id: Optional[str] = None
    event_date: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None

    COLLECTION: ClassVar[str] = "attendance_logs"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "member_id", "event_id", "event_date", "status")
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {"status": ("present", "absent")}
    INTEGER_IDS: ClassVar[bool] = True


@dataclass
class InventoryItem(Record):
    item_name: Optional[str] = None
    condition: Optional[str] = None
    quantity: Optional[int] = None
    date_purchased: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    image_url: Optional[str] = None

    COLLECTION: ClassVar[str] = "inventory"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "item_name")
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {
        "condition": ("new", "good", "fair", "faulty", "scrapped"),
    }
    INTEGER_IDS: ClassVar[bool] = True


@dataclass
class FinanceItem(Record):
    type: Optional[str] = None
    title: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None

    COLLECTION: ClassVar[str] = "finances"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "type", "amount")
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {"type": ("income", "expense")}
    INTEGER_IDS: ClassVar[bool] = True


@dataclass
class BudgetRequest(Record):
    title: Optional[str] = None
    amount: Optional[float] = None
    description: Optional[str] = None
    request_date: Optional[str] = None
    status: Optional[str] = None
    admin_comment: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: Optional[str] = None

    COLLECTION: ClassVar[str] = "requests"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "amount", "status")
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {
        "status": ("pending", "approved", "rejected", "paid"),
    }
    INTEGER_IDS: ClassVar[bool] = True


@dataclass
class PerformanceReview(Record):
    member_id: Optional[str] = None
    rating_punctuality: Optional[int] = None
    rating_availability: Optional[int] = None
    rating_skill: Optional[int] = None
    rating_teamwork: Optional[int] = None
    rating_spiritual: Optional[int] = None
    comment: Optional[str] = None
    review_date: Optional[str] = None

    COLLECTION: ClassVar[str] = "performance"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "member_id")
    INTEGER_IDS: ClassVar[bool] = True


@dataclass
class SoulsRecord(Record):
    member_id: Optional[str] = None
    total_count: Optional[int] = None
    converts_names: Optional[str] = None
    record_date: Optional[str] = None

    COLLECTION: ClassVar[str] = "souls"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "member_id", "total_count")
    INTEGER_IDS: ClassVar[bool] = True


@dataclass
class UnitProfile(Record):
    name: Optional[str] = None
    pastor_name: Optional[str] = None
    unit_head_id: Optional[str] = None
    description: Optional[str] = None

    COLLECTION: ClassVar[str] = "units"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("id", "name")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> UnitProfile:
        record = super().from_row(row)
        # A unit profile is owned by the unit it describes
        if record.unit_id is None and record.id is not None:
            record.unit_id = str(record.id)
        return record


@dataclass
class Subunit(Record):
    name: Optional[str] = None

    COLLECTION: ClassVar[str] = "subunits"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("unit_id", "name")
    INTEGER_IDS: ClassVar[bool] = True


# =============================================================================
# BROADCAST / NOTIFICATION RECORDS (backend only, never mirrored)
# =============================================================================

@dataclass
class Announcement(Record):
    title: Optional[str] = None
    content: Optional[str] = None
    author_id: Optional[str] = None
    created_at: Optional[str] = None

    COLLECTION: ClassVar[str] = "announcements"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("id",)


@dataclass
class AnnouncementRead(Record):
    announcement_id: Optional[RecordId] = None
    user_id: Optional[str] = None
    read_at: Optional[str] = None

    COLLECTION: ClassVar[str] = "announcement_reads"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("announcement_id", "user_id")


@dataclass
class Notification(Record):
    user_id: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    link: Optional[str] = None
    is_read: Optional[bool] = None
    created_at: Optional[str] = None

    COLLECTION: ClassVar[str] = "notifications"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("id", "user_id")


# =============================================================================
# COLLECTION REGISTRY
# =============================================================================

@dataclass(frozen=True)
class CollectionSpec:
    """How a collection is named remotely and stored locally."""
    name: str
    remote_table: str
    record_type: Type[Record]
    mirrored: bool = True
    auto_increment: bool = False
    unit_scoped: bool = True
    unit_field: str = "unit_id"


COLLECTIONS: Dict[str, CollectionSpec] = {
    spec.name: spec
    for spec in (
        CollectionSpec("members", "members", Member),
        CollectionSpec("attendance_logs", "attendance", AttendanceLog, auto_increment=True),
        CollectionSpec("inventory", "inventory", InventoryItem, auto_increment=True),
        CollectionSpec("finances", "finances", FinanceItem, auto_increment=True),
        CollectionSpec("requests", "financial_requests", BudgetRequest, auto_increment=True),
        CollectionSpec("performance", "performance_reviews", PerformanceReview, auto_increment=True),
        CollectionSpec("souls", "soul_reports", SoulsRecord, auto_increment=True),
        CollectionSpec("units", "units", UnitProfile, unit_field="id"),
        CollectionSpec("subunits", "subunits", Subunit, auto_increment=True),
        CollectionSpec("announcements", "announcements", Announcement,
                       mirrored=False, unit_scoped=False),
        CollectionSpec("announcement_reads", "announcement_reads", AnnouncementRead,
                       mirrored=False, unit_scoped=False),
        CollectionSpec("notifications", "notifications", Notification,
                       mirrored=False, unit_scoped=False),
    )
}

MIRRORED_COLLECTIONS: Tuple[str, ...] = tuple(
    name for name, spec in COLLECTIONS.items() if spec.mirrored
)


def get_collection(name: str) -> CollectionSpec:
    """Look up a collection by its local name."""
    try:
        return COLLECTIONS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown collection: {name}",
            config_key="collection",
            details={"known": sorted(COLLECTIONS)},
        )
