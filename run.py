#!/usr/bin/env python3
"""
Passgate - WebAuthn relying party ceremony service
Startup script for development
"""

import os
import sys

from app import create_app
from config import Config


def setup_environment():
    """Set up environment variables for development"""
    if not os.environ.get('SECRET_KEY'):
        os.environ['SECRET_KEY'] = 'dev-secret-key-change-in-production'

    if not os.environ.get('CORS_ORIGINS'):
        port = os.environ.get('PORT', '5001')
        os.environ['CORS_ORIGINS'] = f'http://localhost:{port},http://127.0.0.1:{port}'


def main():
    """Main function to start the Passgate server"""
    setup_environment()

    host = os.environ.get('HOST', 'localhost')
    port = int(os.environ.get('PORT', 5001))
    debug = os.environ.get('FLASK_ENV') == 'development'

    config = Config()
    app = create_app(config)
    rp = app.extensions['passgate']['rp']

    print("Starting Passgate - WebAuthn relying party")
    print("=" * 60)
    print(f"Host: {host}")
    print(f"Port: {port}")
    print(f"Debug Mode: {debug}")
    print(f"WebAuthn RP ID: {rp.id}")
    print(f"WebAuthn Origin: {rp.origin}")
    print(f"Ceremony timeout: {rp.timeout_ms} ms")
    print("\nAPI Endpoints:")
    print("  POST /generate-registration-options")
    print("  POST /verify-registration")
    print("  POST /generate-authentication-options")
    print("  POST /verify-authentication")
    print("=" * 60)

    try:
        app.run(host=host, port=port, debug=debug, use_reloader=debug)
    except KeyboardInterrupt:
        print("\nShutting down Passgate...")
        sys.exit(0)


if __name__ == '__main__':
    main()
