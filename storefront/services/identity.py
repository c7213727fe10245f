"""The acting party behind a cart: a signed-in user or an anonymous session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Authenticated:
    user_id: int

    is_guest = False

    def columns(self) -> dict:
        return {"user_id": self.user_id, "session_id": None}

    def matches(self, row) -> bool:
        return row.user_id is not None and int(row.user_id) == int(self.user_id)

    def filter(self, model):
        return model.user_id == self.user_id

    def __str__(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class Guest:
    session_id: str

    is_guest = True

    def columns(self) -> dict:
        return {"user_id": None, "session_id": self.session_id}

    def matches(self, row) -> bool:
        return row.user_id is None and row.session_id == self.session_id

    def filter(self, model):
        return (model.session_id == self.session_id) & (model.user_id.is_(None))

    def __str__(self) -> str:
        return f"session:{self.session_id}"


Identity = Union[Authenticated, Guest]


def identity_of(row) -> Identity:
    """Rebuild the identity stored on a cart, order or ledger row."""
    if row.user_id is not None:
        return Authenticated(user_id=int(row.user_id))
    return Guest(session_id=row.session_id)
