from __future__ import annotations

from ..model import Address
from ..model.address import REQUIRED_ADDRESS_FIELDS
from .identity import Identity
from .results import ErrorCode, Ok, Result, fail

_OPTIONAL_FIELDS = ("line2",)


class AddressBook:
    def __init__(self, session):
        self.session = session

    def resolve(self, identity: Identity, payload, kind="shipping") -> Result:
        """Reuse an owned address when ``payload`` is ``{"id": n}``, otherwise create one.

        Only flushes; checkout owns the transaction.
        """
        if not isinstance(payload, dict) or not payload:
            return fail(ErrorCode.INVALID_ADDRESS, f"{kind} address is required", kind=kind)

        if payload.get("id") is not None:
            address = self.session.get(Address, payload["id"])
            if address is None or not identity.matches(address):
                return fail(ErrorCode.ADDRESS_NOT_FOUND, "Address not found", kind=kind, address_id=payload["id"])
            return Ok(address)

        values = {k: str(payload.get(k) or "").strip() for k in REQUIRED_ADDRESS_FIELDS + _OPTIONAL_FIELDS}
        missing = [k for k in REQUIRED_ADDRESS_FIELDS if not values[k]]
        if missing:
            return fail(ErrorCode.INVALID_ADDRESS, f"{kind} address is missing fields: {', '.join(missing)}",
                        kind=kind, missing=missing)

        address = Address(kind=kind, **values, **identity.columns())
        address.line2 = values["line2"] or None
        self.session.add(address)
        self.session.flush()
        return Ok(address)
