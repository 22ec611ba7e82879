"""
Sample vehicles used the first time the board starts in development.
"""
import logging

logger = logging.getLogger(__name__)

SAMPLE_VEHICLES = [
    ('bus', '50', [('Charlotte Lee', 'Explorers'), ('Lucas Brown', 'Horizons')]),
    ('bus', '51', [('Ethan Martinez', 'Horizons'), ('Amelia Rodriguez', 'Futures')]),
    ('bus', '52', [('Noah Wilson', 'Explorers'), ('William Anderson', 'Horizons')]),
    ('bus', '54', []),
    ('bus', '55', []),
    ('bus', '56', []),
    ('bus', '57', []),
    ('bus', '58', []),
    ('bus', '59', []),
    ('taxi', '1', [('Emma Thompson', 'Futures'), ('Harper Taylor', 'Preparations')]),
    ('taxi', '2', [('Sophia Davis', 'Futures')]),
    ('taxi', '3', [('Isabella Miller', 'Preparations')]),
    ('parent', 'Drop-off', [('Olivia Johnson', 'Preparations'), ('Mason Garcia', 'Explorers')]),
]


def initialize_sample_data(store):
    """Fill an empty store with the sample vehicles"""
    if store.list_vehicles():
        logger.info("Skipping sample data initialization - existing data found")
        return

    for vehicle_type, number, students in SAMPLE_VEHICLES:
        store.add_vehicle(vehicle_type, number, [
            {'name': name, 'pathway': pathway} for name, pathway in students
        ])
    logger.info(f"Sample data initialized: {len(SAMPLE_VEHICLES)} vehicles")
