from datetime import datetime

import pytz

from consultbook import db


class AvailabilitySlot(db.Model):
    __tablename__ = "availability_slot"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_slot_start_before_end"),
        db.CheckConstraint("max_bookings >= 1", name="ck_slot_capacity_positive"),
        db.Index("ix_slot_owner_date", "owner_id", "date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    timezone = db.Column(db.String(64), default="UTC", nullable=False)
    max_bookings = db.Column(db.Integer, default=1, nullable=False)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = db.relationship("User")
    bookings = db.relationship("Booking", back_populates="slot", order_by="Booking.id")

    def start_at(self) -> datetime:
        """Slot start as an aware datetime in the slot's own timezone."""
        tz = pytz.timezone(self.timezone or "UTC")
        return tz.localize(datetime.combine(self.date, self.start_time))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "timezone": self.timezone,
            "max_bookings": self.max_bookings,
            "is_available": self.is_available,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
