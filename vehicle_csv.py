"""
CSV template and bulk import of vehicles with their students.
"""
import csv
import io
import logging

from errors import VehicleStoreError, ValidationError

logger = logging.getLogger(__name__)


def csv_columns(pathway_label):
    return ['VehicleType', 'VehicleNumber', 'StudentName', pathway_label]


def create_vehicles_csv_template(pathway_label='Pathway'):
    """Create a CSV template for vehicle import"""
    csv_data = [
        csv_columns(pathway_label),
        ['bus', '50', 'John Smith', 'Explorers'],
        ['bus', '50', 'Jane Doe', 'Futures'],
        ['taxi', '1', 'Bob Johnson', 'Preparations']
    ]

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerows(csv_data)
    return output.getvalue()


def import_vehicles_from_csv(store, content, pathway_label='Pathway'):
    """Import vehicles from CSV text.

    Rows are grouped by vehicle type and number and one vehicle is added per
    group. A vehicle that cannot be added is reported in the error list and
    does not stop the rest of the import.

    Returns (imported vehicles, error messages).
    """
    reader = csv.DictReader(io.StringIO(content))
    fieldnames = [name.strip() for name in (reader.fieldnames or [])]
    missing = [column for column in csv_columns(pathway_label) if column not in fieldnames]
    if missing:
        raise ValidationError(f"CSV is missing columns: {', '.join(missing)}")
    reader.fieldnames = fieldnames

    errors = []
    groups = {}
    for line_number, row in enumerate(reader, start=2):
        vehicle_type = (row.get('VehicleType') or '').strip().lower()
        number = (row.get('VehicleNumber') or '').strip()
        if not vehicle_type or not number:
            errors.append(f"Line {line_number}: vehicle type and number are required")
            continue

        students = groups.setdefault((vehicle_type, number), [])
        name = (row.get('StudentName') or '').strip()
        if name:
            students.append({'name': name, 'pathway': row.get(pathway_label)})

    imported = []
    for (vehicle_type, number), students in groups.items():
        try:
            imported.append(store.add_vehicle(vehicle_type, number, students))
        except VehicleStoreError as e:
            errors.append(f"{vehicle_type} {number}: {e.message}")

    logger.info(f"CSV import: {len(imported)} vehicles imported, {len(errors)} errors")
    return imported, errors
