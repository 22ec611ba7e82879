"""
In-memory vehicle store for the arrival board.
Owns the list of vehicles (buses, taxis, parent drop-offs and ad-hoc entries)
together with the students travelling in them, and applies every status change.
"""
import copy
import logging
import threading
from datetime import datetime

from errors import (
    VehicleStoreError,
    NotFoundError,
    ValidationError,
    ConflictError,
    InvalidOperationError,
)

logger = logging.getLogger(__name__)

# Vehicle types
VEHICLE_TYPE_BUS = "bus"
VEHICLE_TYPE_TAXI = "taxi"
VEHICLE_TYPE_PARENT = "parent"  # Parent drop-off
VEHICLE_TYPE_ADHOC = "adhoc"    # Unplanned drop-off, number holds a free text description

VEHICLE_TYPES = [VEHICLE_TYPE_BUS, VEHICLE_TYPE_TAXI, VEHICLE_TYPE_PARENT, VEHICLE_TYPE_ADHOC]
# Ad-hoc vehicles are only created through add_adhoc_vehicle
EDITABLE_VEHICLE_TYPES = [VEHICLE_TYPE_BUS, VEHICLE_TYPE_TAXI, VEHICLE_TYPE_PARENT]

# Status constants
STATUS_NOT_ARRIVED = "not_arrived"  # Red
STATUS_ARRIVED = "arrived"          # Green
STATUS_PARTIAL = "partial"          # Orange, some but not all students arrived
STATUS_ABSENT = "absent"            # Grey

VEHICLE_STATUSES = [STATUS_NOT_ARRIVED, STATUS_ARRIVED, STATUS_PARTIAL, STATUS_ABSENT]
STUDENT_STATUSES = [STATUS_NOT_ARRIVED, STATUS_ARRIVED, STATUS_ABSENT]

# Not Arrived -> Arrived -> Absent -> Not Arrived
STATUS_CYCLE = {
    STATUS_NOT_ARRIVED: STATUS_ARRIVED,
    STATUS_ARRIVED: STATUS_ABSENT,
    STATUS_ABSENT: STATUS_NOT_ARRIVED,
}


def next_status(status):
    """Next status in the arrival cycle. Unknown statuses go back to Not Arrived."""
    return STATUS_CYCLE.get(status, STATUS_NOT_ARRIVED)


def get_status_text(status):
    """Get the text for a vehicle or student status"""
    status_texts = {
        STATUS_NOT_ARRIVED: 'Not Arrived',
        STATUS_ARRIVED: 'Arrived',
        STATUS_PARTIAL: 'Partially Arrived',
        STATUS_ABSENT: 'Absent'
    }
    return status_texts.get(status, 'Unknown')


def get_vehicle_type_text(vehicle_type):
    """Get the text for a vehicle type"""
    type_texts = {
        VEHICLE_TYPE_BUS: 'Bus',
        VEHICLE_TYPE_TAXI: 'Taxi',
        VEHICLE_TYPE_PARENT: 'Parent',
        VEHICLE_TYPE_ADHOC: 'Ad-hoc'
    }
    return type_texts.get(vehicle_type, 'Vehicle')


def describe_vehicle(vehicle):
    """Human readable label, e.g. 'Bus 50' or the ad-hoc description"""
    if vehicle['type'] == VEHICLE_TYPE_ADHOC:
        return vehicle['number']
    return f"{get_vehicle_type_text(vehicle['type'])} {vehicle['number']}"


def is_aggregated(vehicle):
    """Non-bus vehicles take their status from their students"""
    return vehicle['type'] != VEHICLE_TYPE_BUS


def aggregate_status(students):
    """Derive a vehicle status from the statuses of its students.

    Only arrived students count: with none arrived the vehicle is Not Arrived,
    with all arrived it is Arrived, anything in between is Partial. Absent
    students are not counted as arrived, so a vehicle whose students are all
    absent is still reported as Not Arrived rather than Absent.
    """
    arrived_count = sum(1 for student in students if student.get('status') == STATUS_ARRIVED)
    if arrived_count == 0:
        return STATUS_NOT_ARRIVED
    if arrived_count == len(students):
        return STATUS_ARRIVED
    return STATUS_PARTIAL


def apply_aggregation(vehicle, now):
    """Recompute a non-bus vehicle's status and arrival time from its students.

    The arrival time is stamped on the first arrival and kept until no student
    is arrived any more.
    """
    status = aggregate_status(vehicle['students'])
    vehicle['status'] = status
    if status == STATUS_NOT_ARRIVED:
        vehicle['arrival_time'] = None
    elif vehicle.get('arrival_time') is None:
        vehicle['arrival_time'] = now
    return status


def _clean_text(value, field_name):
    """Strip a required text field, raising ValidationError when it is empty"""
    text = '' if value is None else str(value).strip()
    if not text:
        raise ValidationError(f'{field_name} is required')
    return text


def _validate_vehicle_type(vehicle_type):
    if vehicle_type is None or not str(vehicle_type).strip():
        raise ValidationError('Type and number are required')
    vehicle_type = str(vehicle_type).strip().lower()
    if vehicle_type not in EDITABLE_VEHICLE_TYPES:
        raise ValidationError('Type must be bus, taxi, or parent')
    return vehicle_type


def _as_index(value):
    """Integer form of an id or index: ints and digit strings only"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _build_student(name, pathway, vehicle_type):
    student = {
        'name': _clean_text(name, 'Name'),
        'pathway': _clean_text(pathway, 'Pathway'),
    }
    # Bus students are not tracked individually
    if vehicle_type != VEHICLE_TYPE_BUS:
        student['status'] = STATUS_NOT_ARRIVED
    return student


class VehicleStore:
    """Owns the vehicle collection; every read and write goes through it.

    Operations are serialised with a lock because requests and the reset
    timers run on different threads. Each operation validates first and only
    then mutates, so a failed call leaves the collection untouched. After a
    successful mutation ``on_change`` is called (outside the lock) so the
    caller can persist the new state.
    """

    def __init__(self, clock=None, on_change=None):
        self._vehicles = []
        self._lock = threading.RLock()
        self._clock = clock or datetime.now
        self.on_change = on_change

    def _notify_change(self):
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception:
            # Durability is best effort, the in-memory state is already committed
            logger.exception("Change listener failed")

    def _find(self, vehicle_id):
        index = _as_index(vehicle_id)
        for vehicle in self._vehicles:
            if index is not None and vehicle['id'] == index:
                return vehicle
        raise NotFoundError(f'Vehicle {vehicle_id} not found')

    @staticmethod
    def _find_student(vehicle, student_index):
        student_index = _as_index(student_index)
        if student_index is None or student_index < 0 or student_index >= len(vehicle['students']):
            raise NotFoundError('Student not found')
        return student_index

    def _check_duplicate(self, vehicle_type, number, exclude_id=None):
        for vehicle in self._vehicles:
            if vehicle['id'] == exclude_id:
                continue
            if vehicle['type'] == vehicle_type and vehicle['number'] == number:
                raise ConflictError(f'A {vehicle_type} with number {number} already exists')

    def _next_id(self):
        return max((vehicle['id'] for vehicle in self._vehicles), default=0) + 1

    # Queries

    def list_vehicles(self, vehicle_type=None, arrived_only=False, recent_first=False):
        """List vehicles, optionally filtered by type (a type or list of types)
        and to arrived vehicles only."""
        if isinstance(vehicle_type, str):
            vehicle_type = [vehicle_type]
        with self._lock:
            vehicles = [
                vehicle for vehicle in self._vehicles
                if (not vehicle_type or vehicle['type'] in vehicle_type)
                and (not arrived_only or vehicle['status'] == STATUS_ARRIVED)
            ]
            vehicles = copy.deepcopy(vehicles)
        if recent_first:
            vehicles.sort(key=lambda v: v['last_modified'] or datetime.min, reverse=True)
        return vehicles

    def get_vehicle(self, vehicle_id):
        with self._lock:
            return copy.deepcopy(self._find(vehicle_id))

    def snapshot(self):
        """Deep copy of the whole collection, used for persistence"""
        with self._lock:
            return copy.deepcopy(self._vehicles)

    def replace_all(self, vehicles):
        """Replace the whole collection. Only used at startup, before any request."""
        now = self._clock()
        restored = []
        seen_ids = set()
        for vehicle in copy.deepcopy(vehicles):
            if vehicle['id'] in seen_ids:
                logger.warning(f"Skipping vehicle with duplicate id {vehicle['id']}")
                continue
            seen_ids.add(vehicle['id'])
            if is_aggregated(vehicle):
                apply_aggregation(vehicle, now)
            else:
                if vehicle['status'] == STATUS_PARTIAL:
                    vehicle['status'] = STATUS_NOT_ARRIVED
                if vehicle['status'] != STATUS_ARRIVED:
                    vehicle['arrival_time'] = None
                elif vehicle.get('arrival_time') is None:
                    vehicle['arrival_time'] = now
            restored.append(vehicle)
        with self._lock:
            self._vehicles = restored
        logger.info(f"Vehicle store loaded with {len(restored)} vehicles")

    def stats(self):
        """Summary counts for vehicles and students"""
        with self._lock:
            vehicle_counts = {status: 0 for status in VEHICLE_STATUSES}
            total_students = arrived_students = absent_students = 0
            for vehicle in self._vehicles:
                vehicle_counts[vehicle['status']] = vehicle_counts.get(vehicle['status'], 0) + 1
                if vehicle['type'] == VEHICLE_TYPE_BUS:
                    # Bus students share their bus's status
                    total_students += len(vehicle['students'])
                    if vehicle['status'] == STATUS_ARRIVED:
                        arrived_students += len(vehicle['students'])
                    elif vehicle['status'] == STATUS_ABSENT:
                        absent_students += len(vehicle['students'])
                    continue
                for student in vehicle['students']:
                    total_students += 1
                    if student.get('status') == STATUS_ARRIVED:
                        arrived_students += 1
                    elif student.get('status') == STATUS_ABSENT:
                        absent_students += 1
            return {
                'vehicles': {
                    'total': len(self._vehicles),
                    'arrived': vehicle_counts[STATUS_ARRIVED],
                    'partial': vehicle_counts[STATUS_PARTIAL],
                    'not_arrived': vehicle_counts[STATUS_NOT_ARRIVED],
                    'absent': vehicle_counts[STATUS_ABSENT]
                },
                'students': {
                    'total': total_students,
                    'arrived': arrived_students,
                    'absent': absent_students,
                    'not_arrived': total_students - arrived_students - absent_students
                }
            }

    # Status changes

    def _toggle_vehicle(self, vehicle_id):
        vehicle = self._find(vehicle_id)
        now = self._clock()
        if vehicle['type'] == VEHICLE_TYPE_BUS:
            new_status = next_status(vehicle['status'])
            vehicle['status'] = new_status
            vehicle['arrival_time'] = now if new_status == STATUS_ARRIVED else None
            message = f"{describe_vehicle(vehicle)} marked as {get_status_text(new_status)}"
        else:
            apply_aggregation(vehicle, now)
            message = f"{describe_vehicle(vehicle)} status updated"
        vehicle['last_modified'] = now
        logger.info(f"{describe_vehicle(vehicle)} status changed to: {vehicle['status']}")
        return copy.deepcopy(vehicle), message

    def toggle_vehicle_status(self, vehicle_id):
        """Advance a bus through Not Arrived -> Arrived -> Absent, or recompute
        the status of any other vehicle from its students.

        Returns the updated vehicle and a confirmation message.
        """
        with self._lock:
            result = self._toggle_vehicle(vehicle_id)
        self._notify_change()
        return result

    def toggle_student_status(self, vehicle_id, student_index):
        """Advance one student through Not Arrived -> Arrived -> Absent and
        recompute the owning vehicle's status.

        Returns the updated student, the updated vehicle and a message.
        """
        with self._lock:
            vehicle = self._find(vehicle_id)
            if vehicle['type'] == VEHICLE_TYPE_BUS:
                raise InvalidOperationError('Cannot toggle individual students for buses')
            student_index = self._find_student(vehicle, student_index)
            now = self._clock()

            student = vehicle['students'][student_index]
            student['status'] = next_status(student.get('status'))
            apply_aggregation(vehicle, now)
            vehicle['last_modified'] = now

            logger.info(f"{student['name']} in {describe_vehicle(vehicle)} status changed to: {student['status']}")
            message = f"{student['name']} marked as {get_status_text(student['status'])}"
            result = copy.deepcopy(student), copy.deepcopy(vehicle), message
        self._notify_change()
        return result

    def batch_toggle(self, vehicle_ids):
        """Toggle several vehicles. Each toggle stands on its own: unknown ids
        are counted as failures and never undo the toggles that worked."""
        if not isinstance(vehicle_ids, (list, tuple)) or not vehicle_ids:
            raise ValidationError('vehicle_ids must be a non-empty list')

        result = {'success_count': 0, 'failure_count': 0, 'vehicles': [], 'errors': []}
        with self._lock:
            for vehicle_id in vehicle_ids:
                try:
                    vehicle, _message = self._toggle_vehicle(vehicle_id)
                except VehicleStoreError as e:
                    result['failure_count'] += 1
                    result['errors'].append({'vehicle_id': vehicle_id, 'error': e.message})
                    continue
                result['success_count'] += 1
                result['vehicles'].append(vehicle)

        logger.info(f"Batch toggle: {result['success_count']} updated, {result['failure_count']} failed")
        if result['success_count']:
            self._notify_change()
        return result

    # Vehicle management

    def add_vehicle(self, vehicle_type, number, students=None):
        """Create a bus, taxi or parent drop-off vehicle"""
        vehicle_type = _validate_vehicle_type(vehicle_type)
        number = _clean_text(number, 'Number')
        if students is None:
            students = []
        if not isinstance(students, (list, tuple)):
            raise ValidationError('Students must be a list')
        new_students = []
        for student in students:
            if not isinstance(student, dict):
                raise ValidationError('Each student needs a name and pathway')
            new_students.append(_build_student(student.get('name'), student.get('pathway'), vehicle_type))

        with self._lock:
            self._check_duplicate(vehicle_type, number)
            vehicle = {
                'id': self._next_id(),
                'type': vehicle_type,
                'number': number,
                'status': STATUS_NOT_ARRIVED,
                'arrival_time': None,
                'last_modified': self._clock(),
                'students': new_students
            }
            self._vehicles.append(vehicle)
            logger.info(f"New vehicle added: {vehicle_type} {number} with {len(new_students)} students")
            result = copy.deepcopy(vehicle)
        self._notify_change()
        return result

    def add_adhoc_vehicle(self, description):
        """Create an ad-hoc entry for an unplanned drop-off"""
        description = _clean_text(description, 'Description')
        with self._lock:
            vehicle = {
                'id': self._next_id(),
                'type': VEHICLE_TYPE_ADHOC,
                'number': description,
                'status': STATUS_NOT_ARRIVED,
                'arrival_time': None,
                'last_modified': self._clock(),
                'students': []
            }
            self._vehicles.append(vehicle)
            logger.info(f"Ad-hoc vehicle added: {description}")
            result = copy.deepcopy(vehicle)
        self._notify_change()
        return result

    def update_vehicle(self, vehicle_id, vehicle_type, number):
        """Change a vehicle's type and number"""
        with self._lock:
            vehicle = self._find(vehicle_id)
            vehicle_type = _validate_vehicle_type(vehicle_type)
            number = _clean_text(number, 'Number')
            self._check_duplicate(vehicle_type, number, exclude_id=vehicle['id'])

            now = self._clock()
            old_label = describe_vehicle(vehicle)
            old_type = vehicle['type']
            vehicle['type'] = vehicle_type
            vehicle['number'] = number

            if vehicle_type == VEHICLE_TYPE_BUS and old_type != VEHICLE_TYPE_BUS:
                # Buses keep a single status; drop the per-student ones
                for student in vehicle['students']:
                    student.pop('status', None)
                if vehicle['status'] == STATUS_PARTIAL:
                    vehicle['status'] = STATUS_NOT_ARRIVED
                if vehicle['status'] != STATUS_ARRIVED:
                    vehicle['arrival_time'] = None
            elif vehicle_type != VEHICLE_TYPE_BUS:
                if old_type == VEHICLE_TYPE_BUS:
                    for student in vehicle['students']:
                        student['status'] = STATUS_NOT_ARRIVED
                apply_aggregation(vehicle, now)

            vehicle['last_modified'] = now
            logger.info(f"Vehicle updated: {old_label} -> {describe_vehicle(vehicle)}")
            result = copy.deepcopy(vehicle)
        self._notify_change()
        return result

    def delete_vehicle(self, vehicle_id):
        """Delete a vehicle and every student in it"""
        with self._lock:
            vehicle = self._find(vehicle_id)
            self._vehicles.remove(vehicle)
            logger.info(f"Vehicle deleted: {describe_vehicle(vehicle)}")
        self._notify_change()
        return vehicle

    # Student management

    def add_student(self, vehicle_id, name, pathway):
        """Add a student to a vehicle. Returns the student and the vehicle."""
        with self._lock:
            vehicle = self._find(vehicle_id)
            student = _build_student(name, pathway, vehicle['type'])
            now = self._clock()
            vehicle['students'].append(student)
            if is_aggregated(vehicle):
                apply_aggregation(vehicle, now)
            vehicle['last_modified'] = now
            logger.info(f"Student added: {student['name']} to {describe_vehicle(vehicle)}")
            result = copy.deepcopy(student), copy.deepcopy(vehicle)
        self._notify_change()
        return result

    def update_student(self, vehicle_id, student_index, name, pathway):
        """Change a student's name and pathway; the status is kept"""
        with self._lock:
            vehicle = self._find(vehicle_id)
            student_index = self._find_student(vehicle, student_index)
            name = _clean_text(name, 'Name')
            pathway = _clean_text(pathway, 'Pathway')

            student = vehicle['students'][student_index]
            old_name, old_pathway = student['name'], student['pathway']
            student['name'] = name
            student['pathway'] = pathway
            vehicle['last_modified'] = self._clock()
            logger.info(f"Student updated: {old_name} ({old_pathway}) -> {name} ({pathway})")
            result = copy.deepcopy(student), copy.deepcopy(vehicle)
        self._notify_change()
        return result

    def delete_student(self, vehicle_id, student_index):
        """Remove a student from a vehicle. Returns the removed student and the vehicle."""
        with self._lock:
            vehicle = self._find(vehicle_id)
            student_index = self._find_student(vehicle, student_index)
            now = self._clock()
            student = vehicle['students'].pop(student_index)
            if is_aggregated(vehicle):
                apply_aggregation(vehicle, now)
            vehicle['last_modified'] = now
            logger.info(f"Student removed: {student['name']} from {describe_vehicle(vehicle)}")
            result = student, copy.deepcopy(vehicle)
        self._notify_change()
        return result

    # Resets

    def reset_all(self):
        """End of day reset: every vehicle and student back to Not Arrived.

        Returns the number of vehicles whose status changed.
        """
        reset_count = 0
        with self._lock:
            now = self._clock()
            for vehicle in self._vehicles:
                changed = vehicle['status'] != STATUS_NOT_ARRIVED or vehicle.get('arrival_time') is not None
                if vehicle['status'] != STATUS_NOT_ARRIVED:
                    reset_count += 1
                vehicle['status'] = STATUS_NOT_ARRIVED
                vehicle['arrival_time'] = None
                if is_aggregated(vehicle):
                    for student in vehicle['students']:
                        if student.get('status') != STATUS_NOT_ARRIVED:
                            student['status'] = STATUS_NOT_ARRIVED
                            changed = True
                if changed:
                    vehicle['last_modified'] = now
        logger.info(f"End of day reset: {reset_count} vehicles reset to not arrived")
        self._notify_change()
        return reset_count

    def reset_afternoon(self):
        """Afternoon dismissal reset: arrived vehicles and students go back to
        Not Arrived, absent ones stay absent.

        Returns the number of vehicles whose status changed.
        """
        reset_count = 0
        with self._lock:
            now = self._clock()
            for vehicle in self._vehicles:
                previous_status = vehicle['status']
                changed = False
                if vehicle['status'] == STATUS_ARRIVED:
                    vehicle['status'] = STATUS_NOT_ARRIVED
                    vehicle['arrival_time'] = None
                    changed = True
                if is_aggregated(vehicle):
                    for student in vehicle['students']:
                        if student.get('status') == STATUS_ARRIVED:
                            student['status'] = STATUS_NOT_ARRIVED
                            changed = True
                    apply_aggregation(vehicle, now)
                if vehicle['status'] != previous_status:
                    reset_count += 1
                    changed = True
                if changed:
                    vehicle['last_modified'] = now
        logger.info(f"Afternoon dismissal reset: {reset_count} vehicles reset, absent entries kept")
        self._notify_change()
        return reset_count
