from datetime import datetime

from consultbook import db


class BookingStatus:
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

    ALL = (SCHEDULED, COMPLETED, CANCELLED, RESCHEDULED)


class Booking(db.Model):
    __tablename__ = "booking"
    __table_args__ = (
        # One live booking per counterpart per slot, enforced by the store.
        db.Index(
            "uq_booking_scheduled_counterpart",
            "slot_id",
            "counterpart_id",
            unique=True,
            sqlite_where=db.text("status = 'scheduled'"),
            postgresql_where=db.text("status = 'scheduled'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("availability_slot.id"), nullable=True, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    counterpart_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    meeting_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    status = db.Column(db.String(20), default=BookingStatus.SCHEDULED, nullable=False, index=True)
    meeting_type = db.Column(db.String(40), default="google_meet", nullable=False)
    title = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    meeting_link = db.Column(db.String(512), nullable=True)
    external_event_id = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    slot = db.relationship("AvailabilitySlot", back_populates="bookings")
    owner = db.relationship("User", foreign_keys=[owner_id])
    counterpart = db.relationship("User", foreign_keys=[counterpart_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "owner_id": self.owner_id,
            "counterpart_id": self.counterpart_id,
            "meeting_date": self.meeting_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "status": self.status,
            "meeting_type": self.meeting_type,
            "title": self.title,
            "description": self.description,
            "meeting_link": self.meeting_link,
            "external_event_id": self.external_event_id,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
