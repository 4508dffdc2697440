"""
Payment subjects: what a payment attempt settles.

An attempt belongs to exactly one order or exactly one reservation.
The DB keeps two nullable FKs guarded by a CHECK constraint; in Python
the relation is the tagged union `Subject = OrderRef | ReservationRef`.

The correlation helpers pack (attempt id, object type, object id) into
the opaque field each gateway echoes back on its return path.
"""
import base64
import json
from dataclasses import dataclass
from typing import Union

from domain.enums import ObjectType


@dataclass(frozen=True)
class OrderRef:
    order_id: int

    @property
    def object_type(self) -> ObjectType:
        return ObjectType.ORDER

    @property
    def object_id(self) -> int:
        return self.order_id


@dataclass(frozen=True)
class ReservationRef:
    reservation_id: int

    @property
    def object_type(self) -> ObjectType:
        return ObjectType.RESERVATION

    @property
    def object_id(self) -> int:
        return self.reservation_id


Subject = Union[OrderRef, ReservationRef]


def subject_from(object_type: str, object_id: int) -> Subject:
    if ObjectType(object_type) is ObjectType.ORDER:
        return OrderRef(int(object_id))
    return ReservationRef(int(object_id))


@dataclass(frozen=True)
class Correlation:
    """Recovered from a gateway callback: which attempt, which domain object."""
    attempt_id: int
    subject: Subject


def encode_correlation(attempt_id: int, subject: Subject) -> str:
    payload = {
        "attemptId": attempt_id,
        "objectType": subject.object_type.value,
        "objectId": subject.object_id,
    }
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode()).decode()


def decode_correlation(token: str) -> Correlation:
    """Inverse of encode_correlation. Raises ValueError on a malformed token."""
    try:
        data = json.loads(base64.b64decode(token).decode("utf-8"))
        return Correlation(
            attempt_id=int(data["attemptId"]),
            subject=subject_from(data["objectType"], data["objectId"]),
        )
    except (KeyError, TypeError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValueError(f"Malformed correlation token: {e}") from e
