"""Principal kinds and the resolved principal handed to route handlers."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class PrincipalKind(str, Enum):
    USER = "user"
    MENTOR = "mentor"
    SCHOOL = "school"

    @classmethod
    def parse(cls, value: Any) -> "PrincipalKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise ValueError(f"Unknown principal kind: {value!r}") from exc


@dataclass(frozen=True)
class OwnerRef:
    """Tagged reference to the principal that owns a resource."""

    kind: PrincipalKind
    id: str


@dataclass(frozen=True)
class Principal:
    """An authenticated actor: the kind tag from the token plus the loaded record."""

    kind: PrincipalKind
    record: Any

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def ref(self) -> OwnerRef:
        return OwnerRef(kind=self.kind, id=self.id)
