from datetime import datetime

from consultbook import db
from consultbook.clock import to_naive_utc


class IntegrationToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(50), nullable=False, unique=True)  # 'google'
    token_json = db.Column(db.Text, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)  # naive UTC
    connected_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= to_naive_utc(now)
