from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash

from app import db
from flask_login import UserMixin

ADMIN_USER_ID = 'admin'
DEFAULT_PATHWAY_LABEL = 'Pathway'


class AdminUser(UserMixin):
    """The single admin identity, granted after PIN verification"""
    id = ADMIN_USER_ID

    @classmethod
    def get(cls, user_id):
        if user_id == ADMIN_USER_ID:
            return cls()
        return None

    def __repr__(self):
        return f'<AdminUser {self.id}>'


# School-wide settings, a single row
class AdminSettings(db.Model):
    __tablename__ = 'admin_settings'
    id = db.Column(db.Integer, primary_key=True)
    pin_hash = db.Column(db.String(256))  # No PIN set means any PIN is accepted
    school_name = db.Column(db.String(120), default='')
    logo_url = db.Column(db.String(500), default='')
    theme = db.Column(db.String(40), default='blue')
    dark_mode = db.Column(db.Boolean, default=False)
    pathway_label = db.Column(db.String(40), default=DEFAULT_PATHWAY_LABEL)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def set_pin(self, pin):
        """Set PIN hash, an empty PIN removes the check"""
        self.pin_hash = generate_password_hash(pin) if pin else None

    def check_pin(self, pin):
        """Check if provided PIN matches hash"""
        if not self.pin_hash:
            return True
        return check_password_hash(self.pin_hash, pin or '')

    @property
    def has_pin(self):
        return bool(self.pin_hash)

    def to_dict(self):
        """Settings safe to send to clients (never the PIN)"""
        return {
            'school_name': self.school_name or '',
            'logo_url': self.logo_url or '',
            'theme': self.theme or 'blue',
            'dark_mode': bool(self.dark_mode),
            'pathway_label': self.pathway_label or DEFAULT_PATHWAY_LABEL,
            'has_pin': self.has_pin
        }

    def __repr__(self):
        return f'<AdminSettings {self.school_name!r}>'
