from models.db import db
from utils.clock import utcnow


class RateLimit(db.Model):
    __tablename__ = "rate_limits"

    id = db.Column(db.Integer, primary_key=True)
    # e.g. otp_cooldown:<email>, otp_request:<ip>
    key = db.Column(db.String(320), unique=True, nullable=False, index=True)

    count = db.Column(db.Integer, default=0, nullable=False)
    reset_at = db.Column(db.DateTime, nullable=False, index=True)

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
