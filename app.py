from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix
import atexit
import os
import threading
import logging

import persistence
import sample_data
from scheduler import JobScheduler, DailyJob, IntervalJob, parse_time_of_day
from vehicle_store import VehicleStore


def env_flag(name, default):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


# Configure logging - use INFO level for production
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

# Initialize Flask app
app = Flask(__name__)
app.secret_key = os.environ.get('SESSION_SECRET', 'dev-secret')
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1) # needed for url_for to generate with https

# Database configuration (admin settings only, vehicles live in the JSON data file)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('SQLALCHEMY_DATABASE_URI', 'sqlite:///arrival_board.db')
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
if not app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        'pool_pre_ping': True,
        "pool_recycle": 300,
    }

# Vehicle data file and scheduled jobs
app.config['DATA_PERSISTENCE_FILE'] = os.environ.get(
    'DATA_PERSISTENCE_FILE',
    os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data', 'vehicles-data.json')
)
app.config['AUTOSAVE_INTERVAL_SECONDS'] = int(os.environ.get('AUTOSAVE_INTERVAL_SECONDS', '300'))
app.config['AFTERNOON_RESET_TIME'] = os.environ.get('AFTERNOON_RESET_TIME', '12:00')
app.config['END_OF_DAY_RESET_TIME'] = os.environ.get('END_OF_DAY_RESET_TIME', '18:00')
app.config['SCHEDULER_ENABLED'] = env_flag('SCHEDULER_ENABLED', 'true')
app.config['DEPLOYMENT_ENV'] = os.environ.get('DEPLOYMENT_ENV', 'development')
app.config['WTF_CSRF_ENABLED'] = env_flag('WTF_CSRF_ENABLED', 'true')

db = SQLAlchemy(app, model_class=Base)

# Display screens poll the API, make sure nothing is served from cache
@app.after_request
def add_cache_headers(response):
    if request.endpoint and (response.content_type or '').startswith(('text/html', 'application/json')):
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
    return response

# Flask-Login setup, the admin signs in with the school PIN
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from datetime import timedelta

# Configure session duration
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=24)

login_manager = LoginManager()
login_manager.init_app(app)
login_manager.session_protection = 'strong'

# CSRF Protection
csrf = CSRFProtect(app)

@login_manager.user_loader
def load_user(user_id):
    from models import AdminUser
    return AdminUser.get(user_id)

@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'success': False, 'error': 'PIN verification required', 'kind': 'unauthorized'}), 401

# Vehicle store and its persistence
store = VehicleStore()
_save_lock = threading.Lock()

def save_vehicles():
    """Write the current vehicle collection to the data file"""
    with _save_lock:
        return persistence.save_vehicles_to_file(store.snapshot(), app.config['DATA_PERSISTENCE_FILE'])

scheduler = JobScheduler()

def shutdown():
    """Stop the scheduled jobs and save once more before exiting"""
    scheduler.shutdown()
    save_vehicles()
    logger.info("Data saved, shutting down")

# Create tables and load saved vehicles
# Need to put this in module-level to make it work with Gunicorn.
with app.app_context():
    import models  # noqa: F401

    db.create_all()
    logging.info("Database tables created")

# The load path runs once, before any request or timer is active
saved_vehicles = persistence.load_vehicles_from_file(app.config['DATA_PERSISTENCE_FILE'])
if saved_vehicles is not None:
    store.replace_all(saved_vehicles)
elif app.config['DEPLOYMENT_ENV'] == 'development':
    sample_data.initialize_sample_data(store)
    save_vehicles()
else:
    logger.info("Production mode: starting with an empty vehicle list")
store.on_change = save_vehicles

if app.config['SCHEDULER_ENABLED']:
    scheduler.add_job(DailyJob('afternoon reset', parse_time_of_day(app.config['AFTERNOON_RESET_TIME']),
                               store.reset_afternoon))
    scheduler.add_job(DailyJob('end of day reset', parse_time_of_day(app.config['END_OF_DAY_RESET_TIME']),
                               store.reset_all))
    scheduler.add_job(IntervalJob('autosave', app.config['AUTOSAVE_INTERVAL_SECONDS'], save_vehicles))
    scheduler.start()

atexit.register(shutdown)
