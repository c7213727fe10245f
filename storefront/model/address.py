from sqlalchemy.sql import func

from ..extensions import db

REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "line1", "city", "state", "postal_code", "country")


class Address(db.Model):
    __tablename__ = "address"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)
    kind = db.Column(db.String(16), nullable=False, default="shipping")  # "billing" | "shipping"

    full_name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    line1 = db.Column(db.String(255), nullable=False)
    line2 = db.Column(db.String(255))
    city = db.Column(db.String(128), nullable=False)
    state = db.Column(db.String(128), nullable=False)
    postal_code = db.Column(db.String(16), nullable=False)
    country = db.Column(db.String(64), nullable=False, default="IN")

    created_at = db.Column(db.DateTime, server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "full_name": self.full_name,
            "phone": self.phone,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }
