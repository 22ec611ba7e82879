import os
import signal
import sys

from app import app
import routes  # Import routes to register them with Flask


def handle_sigterm(signum, frame):
    # Exit normally so the atexit hook saves the vehicle data
    sys.exit(0)


if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    # Use debug=False for production safety; the reloader would start the reset timers twice
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.environ.get('PORT', '5000'))
    app.run(host="0.0.0.0", port=port, debug=debug_mode, use_reloader=False)
