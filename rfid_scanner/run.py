#!/usr/bin/env python3
"""
Run the RFID scanner service with its live Socket.IO channel
"""

import os
import sys
import argparse

from .app import create_app
from .config import get_config

def main():
    config = get_config()
    parser = argparse.ArgumentParser(description='RFID scanner service')
    parser.add_argument('--host', default=config.HOST, help='Host address (default: %(default)s)')
    parser.add_argument('--port', type=int, default=config.PORT, help='Port number (default: %(default)s)')
    parser.add_argument('--debug', action='store_true', default=config.DEBUG, help='Enable debug mode')
    parser.add_argument('--config', choices=['development', 'production', 'testing'],
                       default='development', help='Configuration environment')

    args = parser.parse_args()

    # Set environment variables
    os.environ['FLASK_ENV'] = args.config

    app, socketio, service = create_app(args.config)

    print("RFID scanner service")
    print("=" * 40)
    print(f"Host: {args.host}")
    print(f"Port: {args.port}")
    print(f"Device: {service.connection.settings.profile.name}")
    print(f"Environment: {args.config}")
    print("=" * 40)
    print("Press Ctrl+C to stop the server")

    try:
        socketio.run(app, debug=args.debug, host=args.host, port=args.port,
                     use_reloader=False, allow_unsafe_werkzeug=True)
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
    finally:
        service.stop()

if __name__ == '__main__':
    main()
