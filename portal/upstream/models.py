"""Wire models for the Pangolin access-control API."""

from dataclasses import dataclass, fields
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class _Unset:
    """Marker for a field absent from the wire payload."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class Resource:
    """A protected resource as listed by the upstream. Never mutated here."""

    resource_id: Optional[int]
    name: Optional[str]
    enabled: Optional[bool]
    full_domain: Optional[str]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Resource":
        return cls(
            resource_id=payload.get("resourceId"),
            name=payload.get("name"),
            enabled=payload.get("enabled"),
            full_domain=payload.get("fullDomain"),
        )


@dataclass
class AccessRule:
    """A resource rule with partial-update semantics.

    A field left as ``UNSET`` is omitted from the wire form; a field set to
    ``None`` is sent as an explicit JSON null.
    """

    rule_id: Any = UNSET
    resource_id: Any = UNSET
    enabled: Any = UNSET
    priority: Any = UNSET
    action: Any = UNSET
    match: Any = UNSET
    value: Any = UNSET

    WIRE_NAMES = {
        "rule_id": "ruleId",
        "resource_id": "resourceId",
        "enabled": "enabled",
        "priority": "priority",
        "action": "action",
        "match": "match",
        "value": "value",
    }

    def to_payload(self) -> dict[str, Any]:
        payload = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is UNSET:
                continue
            payload[self.WIRE_NAMES[item.name]] = value
        return payload

    @classmethod
    def from_payload(cls, payload: Optional[dict[str, Any]]) -> "AccessRule":
        payload = payload or {}
        values = {
            attribute: payload[wire_name]
            for attribute, wire_name in cls.WIRE_NAMES.items()
            if wire_name in payload
        }
        return cls(**values)


@dataclass(frozen=True)
class ResourceEnvelope(Generic[T]):
    """The success/error wrapper around every upstream payload.

    When ``error`` is set, ``data`` must not be used.
    """

    data: Optional[T]
    success: bool
    error: bool
    message: str
    status: int

    @classmethod
    def parse(
        cls, payload: Any, data_parser: Callable[[Any], T]
    ) -> "ResourceEnvelope[T]":
        """Build an envelope from decoded JSON, parsing ``data`` unless flagged as an error."""
        if not isinstance(payload, dict):
            raise ValueError("envelope is not a JSON object")
        error = bool(payload.get("error", False))
        raw_data = payload.get("data")
        return cls(
            data=None if error else data_parser(raw_data),
            success=bool(payload.get("success", False)),
            error=error,
            message=str(payload.get("message") or ""),
            status=int(payload.get("status") or 0),
        )


def parse_resource_list(data: Any) -> list[Resource]:
    """Extract ``data.resources`` from a list-resources envelope."""
    if not data:
        return []
    return [Resource.from_payload(item) for item in data.get("resources") or []]
