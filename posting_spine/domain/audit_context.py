"""
6W1H audit context (``posting_spine.domain.audit_context``).

Responsibility
--------------
Immutable value objects describing who / what / when / where / why / which /
how for every economic event, plus the normalization that turns the
simplified caller-supplied fields into one canonical structure.

Callers may supply ``where``, ``why`` and ``how`` either as plain strings or
as structured objects (dataclass instance or mapping).  Each is normalized by
a ``functools.singledispatch`` function registered per input type, so the
canonical context never depends on ad hoc type checks at call sites.

Architecture position
---------------------
**Domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* Every component of a built AuditContext is present and frozen.
* ``which`` always carries the real tenant and document identifiers.
* ``to_dict()`` / ``from_dict()`` round-trip without loss.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from functools import singledispatch
from typing import Any, Union

DEFAULT_REASON = "Business operation"
DEFAULT_VALIDATION = "system"
DEFAULT_ROLE = "system"


@dataclass(frozen=True)
class Who:
    user_id: str
    user_name: str | None = None
    role: str = DEFAULT_ROLE


@dataclass(frozen=True)
class What:
    action: str
    description: str
    document_type: str | None = None


@dataclass(frozen=True)
class When:
    timestamp: str
    timezone: str = "UTC"
    fiscal_period: str | None = None


@dataclass(frozen=True)
class Where:
    system: str
    ip_address: str | None = None
    geolocation: str | None = None


@dataclass(frozen=True)
class Why:
    reason: str = DEFAULT_REASON
    approval_ref: str | None = None
    policy_ref: str | None = None


@dataclass(frozen=True)
class Which:
    tenant_id: str
    document_id: str
    related_entities: tuple[str, ...] = ()


@dataclass(frozen=True)
class How:
    method: str
    validation: str = DEFAULT_VALIDATION
    data_source: str | None = None


WhereInput = Union[str, Where, Mapping[str, Any], None]
WhyInput = Union[str, Why, Mapping[str, Any], None]
HowInput = Union[str, How, Mapping[str, Any], None]


def _compact(component: Any) -> dict[str, Any]:
    data = asdict(component)
    return {
        k: list(v) if isinstance(v, tuple) else v
        for k, v in data.items()
        if v is not None and v != ()
    }


@dataclass(frozen=True)
class AuditContext:
    """Full 6W1H context attached to an economic event at creation.

    Contract: frozen; serialized to JSON on the event row and never edited.
    """

    who: Who
    what: What
    when: When
    where: Where
    why: Why
    which: Which
    how: How

    def to_dict(self) -> dict[str, Any]:
        return {
            "who": _compact(self.who),
            "what": _compact(self.what),
            "when": _compact(self.when),
            "where": _compact(self.where),
            "why": _compact(self.why),
            "which": _compact(self.which),
            "how": _compact(self.how),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditContext":
        which = dict(data["which"])
        which["related_entities"] = tuple(which.get("related_entities", ()))
        return cls(
            who=Who(**data["who"]),
            what=What(**data["what"]),
            when=When(**data["when"]),
            where=Where(**data["where"]),
            why=Why(**data["why"]),
            which=Which(**which),
            how=How(**data["how"]),
        )


@dataclass(frozen=True)
class AuditInput:
    """Simplified audit fields a collaborator supplies with a posting request."""

    user_name: str | None = None
    role: str = DEFAULT_ROLE
    where: WhereInput = None
    why: WhyInput = None
    how: HowInput = None
    fiscal_period: str | None = None
    related_entities: tuple[str, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


@singledispatch
def normalize_where(value: Any, default_system: str) -> Where:
    raise TypeError(f"Unsupported 'where' audit value: {type(value).__name__}")


@normalize_where.register
def _(value: str, default_system: str) -> Where:
    return Where(system=value)


@normalize_where.register
def _(value: Where, default_system: str) -> Where:
    return value


@normalize_where.register(Mapping)
def _(value: Mapping, default_system: str) -> Where:
    return Where(**{"system": default_system, **value})


@normalize_where.register(type(None))
def _(value: None, default_system: str) -> Where:
    return Where(system=default_system)


@singledispatch
def normalize_why(value: Any) -> Why:
    raise TypeError(f"Unsupported 'why' audit value: {type(value).__name__}")


@normalize_why.register
def _(value: str) -> Why:
    return Why(reason=value)


@normalize_why.register
def _(value: Why) -> Why:
    return value


@normalize_why.register(Mapping)
def _(value: Mapping) -> Why:
    return Why(**value)


@normalize_why.register(type(None))
def _(value: None) -> Why:
    return Why()


@singledispatch
def normalize_how(value: Any, default_method: str) -> How:
    raise TypeError(f"Unsupported 'how' audit value: {type(value).__name__}")


@normalize_how.register
def _(value: str, default_method: str) -> How:
    return How(method=value)


@normalize_how.register
def _(value: How, default_method: str) -> How:
    return value


@normalize_how.register(Mapping)
def _(value: Mapping, default_method: str) -> How:
    return How(**{"method": default_method, **value})


@normalize_how.register(type(None))
def _(value: None, default_method: str) -> How:
    return How(method=default_method)


def build_audit_context(
    *,
    user_id: str,
    tenant_id: str,
    document_id: str,
    action: str,
    description: str,
    timestamp: datetime,
    document_type: str | None = None,
    audit: AuditInput | None = None,
    default_where: str = "posting-service",
    default_how: str = "Document POST action",
) -> AuditContext:
    """Assemble the canonical 6W1H context for one economic event."""
    audit = audit or AuditInput()
    return AuditContext(
        who=Who(user_id=str(user_id), user_name=audit.user_name, role=audit.role),
        what=What(action=action, description=description, document_type=document_type),
        when=When(
            timestamp=timestamp.isoformat(),
            timezone=timestamp.tzname() or "UTC",
            fiscal_period=audit.fiscal_period,
        ),
        where=normalize_where(audit.where, default_where),
        why=normalize_why(audit.why),
        which=Which(
            tenant_id=str(tenant_id),
            document_id=str(document_id),
            related_entities=tuple(str(e) for e in audit.related_entities),
        ),
        how=normalize_how(audit.how, default_how),
    )
