from flask import request, jsonify, Response
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf
from datetime import datetime
import logging

from app import app, store
from errors import VehicleStoreError, ValidationError
from forms import PinForm, SettingsForm
from models import AdminUser
from persistence import vehicle_to_json
import settings_store
import vehicle_csv
import vehicle_store

logger = logging.getLogger(__name__)

# Vehicles grouped with taxis on the display, students tracked one by one
TAXI_GROUP_TYPES = [vehicle_store.VEHICLE_TYPE_TAXI, vehicle_store.VEHICLE_TYPE_PARENT,
                    vehicle_store.VEHICLE_TYPE_ADHOC]


def get_json_payload():
    """Request body as a dictionary, raising ValidationError otherwise"""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


def serialize_vehicles(vehicles):
    return [vehicle_to_json(vehicle) for vehicle in vehicles]


@app.errorhandler(VehicleStoreError)
def handle_vehicle_store_error(error):
    logger.info(f"{request.method} {request.path} rejected: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(404)
def handle_not_found(error):
    return jsonify({'success': False, 'error': 'Not found', 'kind': 'not_found'}), 404


@app.errorhandler(405)
def handle_method_not_allowed(error):
    return jsonify({'success': False, 'error': 'Method not allowed'}), 405


# Health and statistics
@app.route('/health')
def health():
    """Health check with a short vehicle summary"""
    stats = store.stats()
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now().isoformat(),
        'total_vehicles': stats['vehicles']['total'],
        'arrived_vehicles': stats['vehicles']['arrived']
    })


@app.route('/api/stats')
def get_stats():
    """Summary statistics for vehicles and students"""
    return jsonify(store.stats())


@app.route('/api/csrf-token')
def get_csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


# Vehicle queries
@app.route('/api/vehicles')
def list_vehicles():
    """Get all vehicles, optionally filtered by type and arrived status"""
    vehicle_type = request.args.get('type')
    if vehicle_type and vehicle_type.lower() not in vehicle_store.VEHICLE_TYPES:
        raise ValidationError(f'Unknown vehicle type: {vehicle_type}')
    arrived_only = request.args.get('arrived', '').lower() in ('1', 'true', 'yes')
    recent_first = request.args.get('sort') == 'recent'

    vehicles = store.list_vehicles(
        vehicle_type=vehicle_type.lower() if vehicle_type else None,
        arrived_only=arrived_only,
        recent_first=recent_first
    )
    return jsonify(serialize_vehicles(vehicles))


@app.route('/api/vehicles/buses')
def list_buses():
    """Get only buses"""
    return jsonify(serialize_vehicles(store.list_vehicles(vehicle_type=vehicle_store.VEHICLE_TYPE_BUS)))


@app.route('/api/vehicles/taxis')
def list_taxis():
    """Get taxis, parent drop-offs and ad-hoc entries"""
    return jsonify(serialize_vehicles(store.list_vehicles(vehicle_type=TAXI_GROUP_TYPES)))


@app.route('/api/vehicles/arrived')
def list_arrived_vehicles():
    """Get arrived vehicles (for display screens)"""
    return jsonify(serialize_vehicles(store.list_vehicles(arrived_only=True)))


@app.route('/api/vehicles/<int:vehicle_id>')
def get_vehicle(vehicle_id):
    return jsonify(vehicle_to_json(store.get_vehicle(vehicle_id)))


# Status changes
@app.route('/api/vehicles/<int:vehicle_id>/toggle', methods=['POST'])
@login_required
def toggle_vehicle_status(vehicle_id):
    """Cycle a bus: Not Arrived -> Arrived -> Absent -> Not Arrived"""
    vehicle, message = store.toggle_vehicle_status(vehicle_id)
    return jsonify({
        'success': True,
        'message': message,
        'vehicle': vehicle_to_json(vehicle)
    })


@app.route('/api/vehicles/<int:vehicle_id>/students/<int:student_index>/toggle', methods=['POST'])
@login_required
def toggle_student_status(vehicle_id, student_index):
    """Cycle a student within a taxi, parent drop-off or ad-hoc vehicle"""
    student, vehicle, message = store.toggle_student_status(vehicle_id, student_index)
    return jsonify({
        'success': True,
        'message': message,
        'student': student,
        'vehicle': vehicle_to_json(vehicle)
    })


@app.route('/api/vehicles/batch-toggle', methods=['POST'])
@login_required
def batch_toggle_vehicles():
    """Toggle several vehicles at once"""
    payload = get_json_payload()
    result = store.batch_toggle(payload.get('vehicle_ids', payload.get('vehicleIds')))
    return jsonify({
        'success': result['failure_count'] == 0,
        'message': f"Updated {result['success_count']} vehicles, {result['failure_count']} failed",
        'success_count': result['success_count'],
        'failure_count': result['failure_count'],
        'vehicles': serialize_vehicles(result['vehicles']),
        'errors': result['errors']
    })


# Vehicle management
@app.route('/api/vehicles', methods=['POST'])
@login_required
def add_vehicle():
    """Add a bus, taxi or parent drop-off"""
    payload = get_json_payload()
    vehicle = store.add_vehicle(payload.get('type'), payload.get('number'), payload.get('students'))
    return jsonify({
        'success': True,
        'message': f"{vehicle_store.describe_vehicle(vehicle)} has been added successfully",
        'vehicle': vehicle_to_json(vehicle)
    }), 201


@app.route('/api/vehicles/adhoc', methods=['POST'])
@login_required
def add_adhoc_vehicle():
    """Add an ad-hoc entry for an unplanned drop-off"""
    payload = get_json_payload()
    vehicle = store.add_adhoc_vehicle(payload.get('description'))
    return jsonify({
        'success': True,
        'message': f"Ad-hoc entry '{vehicle['number']}' has been added",
        'vehicle': vehicle_to_json(vehicle)
    }), 201


@app.route('/api/vehicles/<int:vehicle_id>', methods=['PUT'])
@login_required
def update_vehicle(vehicle_id):
    payload = get_json_payload()
    vehicle = store.update_vehicle(vehicle_id, payload.get('type'), payload.get('number'))
    return jsonify({
        'success': True,
        'message': f"Vehicle updated to {vehicle_store.describe_vehicle(vehicle)} successfully",
        'vehicle': vehicle_to_json(vehicle)
    })


@app.route('/api/vehicles/<int:vehicle_id>', methods=['DELETE'])
@login_required
def delete_vehicle(vehicle_id):
    vehicle = store.delete_vehicle(vehicle_id)
    return jsonify({
        'success': True,
        'message': f"{vehicle_store.describe_vehicle(vehicle)} has been removed successfully",
        'vehicle': vehicle_to_json(vehicle)
    })


# Student management
@app.route('/api/vehicles/<int:vehicle_id>/students', methods=['POST'])
@login_required
def add_student(vehicle_id):
    payload = get_json_payload()
    student, vehicle = store.add_student(vehicle_id, payload.get('name'), payload.get('pathway'))
    return jsonify({
        'success': True,
        'message': f"{student['name']} has been added to {vehicle_store.describe_vehicle(vehicle)}",
        'student': student,
        'vehicle': vehicle_to_json(vehicle)
    }), 201


@app.route('/api/vehicles/<int:vehicle_id>/students/<int:student_index>', methods=['PUT'])
@login_required
def update_student(vehicle_id, student_index):
    payload = get_json_payload()
    student, vehicle = store.update_student(vehicle_id, student_index, payload.get('name'), payload.get('pathway'))
    return jsonify({
        'success': True,
        'message': f"Student updated to {student['name']} ({student['pathway']}) successfully",
        'student': student,
        'vehicle': vehicle_to_json(vehicle)
    })


@app.route('/api/vehicles/<int:vehicle_id>/students/<int:student_index>', methods=['DELETE'])
@login_required
def delete_student(vehicle_id, student_index):
    student, vehicle = store.delete_student(vehicle_id, student_index)
    return jsonify({
        'success': True,
        'message': f"{student['name']} has been removed from {vehicle_store.describe_vehicle(vehicle)}",
        'student': student,
        'vehicle': vehicle_to_json(vehicle)
    })


# CSV template and import
@app.route('/api/csv-template')
def download_vehicles_csv_template():
    """Download CSV template for vehicle import"""
    csv_content = vehicle_csv.create_vehicles_csv_template(settings_store.get_pathway_label())
    return Response(
        csv_content,
        mimetype='text/csv',
        headers={'Content-Disposition': 'attachment; filename=vehicle_import_template.csv'}
    )


@app.route('/api/vehicles/import', methods=['POST'])
@login_required
def import_vehicles():
    """Import vehicles and students from a CSV upload"""
    upload = request.files.get('file')
    if upload is not None:
        try:
            content = upload.read().decode('utf-8-sig')
        except UnicodeDecodeError:
            raise ValidationError('CSV must be UTF-8 encoded')
    else:
        content = request.get_data(as_text=True)
    if not content or not content.strip():
        raise ValidationError('No CSV data provided')

    imported, errors = vehicle_csv.import_vehicles_from_csv(store, content, settings_store.get_pathway_label())
    return jsonify({
        'success': not errors,
        'message': f"Imported {len(imported)} vehicles" + (f", {len(errors)} errors" if errors else ''),
        'imported_count': len(imported),
        'vehicles': serialize_vehicles(imported),
        'errors': errors
    })


# Resets
@app.route('/api/reset', methods=['POST'])
@app.route('/api/reset/day', methods=['POST'])
@login_required
def reset_day():
    """Reset every vehicle and student to Not Arrived (new day)"""
    reset_count = store.reset_all()
    return jsonify({
        'success': True,
        'reset_count': reset_count,
        'message': 'End of day reset completed - all students reset to not arrived'
    })


@app.route('/api/reset/afternoon', methods=['POST'])
@login_required
def reset_afternoon():
    """Reset arrived vehicles and students for afternoon dismissal, keep absent ones"""
    reset_count = store.reset_afternoon()
    return jsonify({
        'success': True,
        'reset_count': reset_count,
        'message': 'Afternoon dismissal reset completed - arrived students reset to not arrived'
    })


# PIN authentication
@app.route('/api/verify-pin', methods=['POST'])
def verify_pin():
    form = PinForm()
    if not form.validate_on_submit():
        return jsonify({'success': False, 'error': 'PIN is required', 'errors': form.errors}), 400

    if not settings_store.verify_pin(form.pin.data):
        logger.warning("Invalid PIN attempt")
        return jsonify({'success': False, 'error': 'Invalid PIN'}), 401

    login_user(AdminUser())
    logger.info("Admin PIN verified")
    return jsonify({'success': True, 'message': 'PIN verified successfully'})


@app.route('/api/admin-status')
def admin_status():
    return jsonify({'authenticated': current_user.is_authenticated})


@app.route('/api/admin-logout', methods=['POST'])
def admin_logout():
    logout_user()
    return jsonify({'success': True, 'message': 'Logged out successfully'})


# Admin settings
@app.route('/api/admin-settings', methods=['GET'])
def get_admin_settings():
    """Settings without the PIN"""
    return jsonify(settings_store.get_settings().to_dict())


@app.route('/api/admin-settings', methods=['POST'])
@login_required
def update_admin_settings():
    form = SettingsForm()
    if not form.validate_on_submit():
        return jsonify({'success': False, 'error': 'Invalid settings', 'errors': form.errors}), 400

    payload = request.get_json(silent=True) or request.form
    updates = {
        name: getattr(form, name).data
        for name in ['pin'] + settings_store.UPDATABLE_FIELDS
        if name in payload
    }
    settings = settings_store.update_settings(updates)
    return jsonify({
        'success': True,
        'message': 'Settings updated successfully',
        'settings': settings.to_dict()
    })
