"""
Database-backed admin settings for the arrival board.
"""

from app import db
from models import AdminSettings, DEFAULT_PATHWAY_LABEL
import logging

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ['school_name', 'logo_url', 'theme', 'dark_mode', 'pathway_label']


def get_settings():
    """Get the settings row, creating it with defaults on first use"""
    settings = AdminSettings.query.first()
    if settings is None:
        settings = AdminSettings(pathway_label=DEFAULT_PATHWAY_LABEL)
        db.session.add(settings)
        db.session.commit()
        logger.info("Created default admin settings")
    return settings


def update_settings(updates):
    """Apply the given fields; fields not present are left alone.

    A ``pin`` key sets a new PIN, an empty value removes it.
    """
    settings = get_settings()
    for key in UPDATABLE_FIELDS:
        if key in updates:
            setattr(settings, key, updates[key])
    if 'pin' in updates:
        settings.set_pin(updates['pin'])
    db.session.commit()
    logger.info(f"Updated admin settings: {', '.join(sorted(updates))}")
    return settings


def verify_pin(pin):
    return get_settings().check_pin(pin)


def get_pathway_label():
    return get_settings().pathway_label or DEFAULT_PATHWAY_LABEL
