import uuid
from models.db import db
from utils.clock import utcnow


class EmailOTP(db.Model):
    __tablename__ = "email_otps"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # one active code per address; a new request replaces the row
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    code_hash = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    attempts = db.Column(db.Integer, default=0, nullable=False)
    is_used = db.Column(db.Boolean, default=False, nullable=False)
