import ipaddress
from functools import wraps
from urllib.parse import urlsplit

from flask import current_app, jsonify, request

from errors import InvalidInputError


class SecurityHeaders:
    """Security headers middleware for Flask"""

    @staticmethod
    def add_security_headers(response):
        """Add security headers to all responses"""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Cache-Control'] = 'no-store'

        # The API only serves JSON
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

        return response


class AntiPhishing:
    """Anti-phishing protection utilities"""

    @staticmethod
    def validate_origin(origin, allowed_origins):
        """Validate an origin against allowed origins"""
        if not origin:
            return False

        if '*' in allowed_origins:
            return True

        # Check for exact match
        if origin in allowed_origins:
            return True

        # Check for subdomain match
        for allowed in allowed_origins:
            if allowed.startswith('*.'):
                domain = allowed[2:]
                if origin.endswith('.' + domain) or origin == domain:
                    return True

        return False

    @staticmethod
    def validate_rp_id(rp_id, origin):
        """Validate that RP ID matches the origin domain"""
        if not origin or not rp_id:
            return False

        # Remove protocol from origin
        if origin.startswith('https://'):
            origin_domain = origin[8:]
        elif origin.startswith('http://'):
            origin_domain = origin[7:]
        else:
            origin_domain = origin

        # Remove port if present
        if ':' in origin_domain:
            origin_domain = origin_domain.split(':')[0]

        return rp_id == origin_domain or origin_domain.endswith('.' + rp_id)


LOCAL_HOSTNAMES = ('localhost',)


def is_local_host(host):
    """True for loopback, private network and localhost names, compared on the parsed hostname"""
    hostname = urlsplit(f'//{host}').hostname
    if not hostname:
        return False
    if hostname in LOCAL_HOSTNAMES or hostname.endswith('.localhost'):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


def require_webauthn_security():
    """Decorator to refuse ceremony traffic over plain HTTP outside development hosts"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # X-Forwarded-Proto is honoured only through ProxyFix with trusted proxies
            if not request.is_secure and not is_local_host(request.host):
                e = InvalidInputError('HTTPS required for WebAuthn')
                current_app.logger.warning(f"Plain HTTP ceremony request to {request.host}{request.path}")
                return jsonify(e.to_dict()), e.status_code

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def init_security(app):
    """Initialize security features for the Flask app"""

    @app.after_request
    def after_request(response):
        return SecurityHeaders.add_security_headers(response)

    @app.before_request
    def before_request():
        if request.method == 'POST' and not request.is_json:
            app.logger.warning(f"Non-JSON request to {request.path}: {request.content_type}")

    return app
