from flask import Flask, jsonify, request
from flask_socketio import SocketIO
import logging
from typing import Optional

from .config import get_config
from .service import ReaderService
from .sinks import SocketIOSink

logger = logging.getLogger(__name__)

def configure_logging(config) -> None:
    """Application logging plus a dedicated trace log for raw readings"""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format=config.LOG_FORMAT
    )

    readings_logger = logging.getLogger('rfid_scanner.readings')
    readings_logger.setLevel(logging.DEBUG)
    if config.READINGS_LOG_PATH and not readings_logger.handlers:
        handler = logging.FileHandler(config.READINGS_LOG_PATH)
        handler.setFormatter(logging.Formatter('%(asctime)s | %(name)s | %(levelname)s | %(message)s'))
        readings_logger.addHandler(handler)
        # Prevent duplicate logs
        readings_logger.propagate = False

def create_app(config_name: Optional[str] = None, service: Optional[ReaderService] = None,
               lookup=None, start_reader: bool = True):
    """
    Build the Flask app, its Socket.IO server and the reader service

    Args:
        config_name: development / production / testing (default: FLASK_ENV)
        service: Prebuilt service (tests); built from the config when omitted
        lookup: Tag id -> record callable used to resolve confirmed scans
        start_reader: Start the serial connection immediately

    Returns:
        (app, socketio, service)
    """
    config = get_config(config_name)
    configure_logging(config)

    app = Flask(__name__)
    app.config.from_object(config)
    socketio = SocketIO(app, cors_allowed_origins=config.SOCKETIO_CORS_ALLOWED_ORIGINS,
                        async_mode=config.SOCKETIO_ASYNC_MODE)

    if service is None:
        service = ReaderService.from_config(config, sink=SocketIOSink(socketio), lookup=lookup)
    app.extensions['rfid_scanner'] = service

    @app.route('/api/connection_status', methods=['GET'])
    def api_connection_status():
        """Current connection lifecycle snapshot"""
        return jsonify(service.status())

    @app.route('/api/send', methods=['POST'])
    def api_send():
        """Forward a payload to the device (best effort)"""
        data = request.get_json(silent=True) or {}
        payload = data.get('payload')
        if not isinstance(payload, str) or not payload:
            return jsonify({'success': False, 'error': 'payload must be a non-empty string'}), 400
        if service.send(payload):
            return jsonify({'success': True, 'message': 'Sent'})
        return jsonify({'success': False, 'error': 'Reader not connected, reconnect in progress'}), 503

    @socketio.on('connect')
    def handle_connect():
        logger.info(f"WebSocket client connected: {request.sid}")

    @socketio.on('disconnect')
    def handle_disconnect():
        logger.info(f"WebSocket client disconnected: {request.sid}")

    if start_reader:
        service.start()

    return app, socketio, service
