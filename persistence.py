"""
File persistence for the vehicle store.
The whole vehicle collection is saved as one JSON document which is
atomically replaced on every save, so concurrent saves simply overwrite
each other (last write wins).
"""
import contextlib
import json
import logging
import os
import tempfile
from datetime import datetime

import vehicle_store

logger = logging.getLogger(__name__)

# Key names used by older data files
LEGACY_KEYS = {
    'arrivalTime': 'arrival_time',
    'lastModified': 'last_modified',
}


def _format_datetime(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_datetime(value, default=None):
    """Parse an ISO timestamp into a naive local datetime"""
    if isinstance(value, datetime):
        return value
    if not value:
        return default
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return default
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _normalize_status(value, allowed):
    status = str(value or vehicle_store.STATUS_NOT_ARRIVED).strip().lower().replace('-', '_').replace(' ', '_')
    if status not in allowed:
        return vehicle_store.STATUS_NOT_ARRIVED
    return status


def vehicle_to_json(vehicle):
    """Convert a vehicle into a JSON-serializable dictionary"""
    data = dict(vehicle)
    data['arrival_time'] = _format_datetime(vehicle.get('arrival_time'))
    data['last_modified'] = _format_datetime(vehicle.get('last_modified'))
    data['students'] = [dict(student) for student in vehicle.get('students', [])]
    return data


def vehicle_from_json(data, now=None):
    """Build a vehicle from its saved form.

    Accepts the camelCase keys and hyphenated statuses of older data files.
    Vehicles without a last modified time get ``now``.
    """
    if now is None:
        now = datetime.now()
    data = dict(data)
    for legacy_key, key in LEGACY_KEYS.items():
        if legacy_key in data and key not in data:
            data[key] = data.pop(legacy_key)

    vehicle_type = str(data.get('type', '')).strip().lower()
    if vehicle_type not in vehicle_store.VEHICLE_TYPES:
        raise ValueError(f"Unknown vehicle type: {data.get('type')!r}")

    vehicle = {
        'id': int(data['id']),
        'type': vehicle_type,
        'number': str(data.get('number') or data.get('description') or ''),
        'status': _normalize_status(data.get('status'), vehicle_store.VEHICLE_STATUSES),
        'arrival_time': _parse_datetime(data.get('arrival_time')),
        'last_modified': _parse_datetime(data.get('last_modified'), now),
        'students': []
    }
    for student_data in data.get('students') or []:
        student = {
            'name': str(student_data.get('name', '')),
            'pathway': str(student_data.get('pathway', ''))
        }
        if vehicle_type != vehicle_store.VEHICLE_TYPE_BUS:
            student['status'] = _normalize_status(student_data.get('status'), vehicle_store.STUDENT_STATUSES)
        vehicle['students'].append(student)
    return vehicle


def save_vehicles_to_file(vehicles, path):
    """Save the vehicle collection to ``path``.

    Errors are logged and reported through the return value, never raised.
    """
    try:
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        payload = [vehicle_to_json(vehicle) for vehicle in vehicles]

        fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.vehicles-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
            os.replace(temp_path, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(temp_path)
            raise
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Error saving vehicles data to {path}: {e}")
        return False

    logger.debug(f"Vehicles data saved to {path}: {len(payload)} vehicles")
    return True


def _set_aside(path):
    """Move an unreadable data file out of the way so the next save cannot
    overwrite it."""
    corrupt_path = f"{path}.corrupt"
    try:
        os.replace(path, corrupt_path)
    except OSError as e:
        logger.error(f"Could not move unreadable data file {path} aside: {e}")
        return None
    logger.warning(f"Unreadable data file moved to {corrupt_path}")
    return corrupt_path


def load_vehicles_from_file(path, now=None):
    """Load the vehicle collection from ``path``.

    Records that cannot be read are skipped and logged. Returns None when the
    file is missing or the document itself cannot be read, so the caller can
    fall back to default data; an unreadable file is renamed to
    ``<path>.corrupt`` first.
    """
    if not os.path.exists(path):
        logger.info(f"No saved data file found at {path}, using default data")
        return None

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError('expected a list of vehicles')
    except (OSError, ValueError) as e:
        logger.error(f"Error loading vehicles data from {path}: {e}")
        _set_aside(path)
        return None

    vehicles = []
    for position, item in enumerate(data):
        try:
            vehicles.append(vehicle_from_json(item, now))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Skipping unreadable vehicle record {position} in {path}: {e}")

    logger.info(f"Vehicles data loaded from {path}: {len(vehicles)} of {len(data)} vehicles")
    return vehicles
