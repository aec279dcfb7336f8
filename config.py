import os
from dataclasses import dataclass


@dataclass(frozen=True)
class RelyingPartyIdentity:
    """Read-only relying party settings shared by the ceremony components"""
    name: str
    id: str
    origin: str
    timeout_ms: int = 60000
    require_client_data: bool = False


class Config:
    def __init__(self):
        # Get host and port from environment
        self.HOST = os.environ.get('HOST', 'localhost')
        self.PORT = os.environ.get('PORT', '5001')

        # Calculate CORS origins
        origins = [o.strip() for o in os.environ.get('CORS_ORIGINS', '').split(',') if o.strip()]

        # Always include the relying party origin
        current_origin = self.WEBAUTHN_RP_ORIGIN
        if current_origin not in origins:
            origins.append(current_origin)

        self.CORS_ORIGINS = origins

    # Flask configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Database configuration
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///passgate.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ceremony configuration
    WEBAUTHN_TIMEOUT_MS = int(os.environ.get('WEBAUTHN_TIMEOUT_MS', '60000'))
    WEBAUTHN_REQUIRE_CLIENT_DATA = os.environ.get('WEBAUTHN_REQUIRE_CLIENT_DATA', 'false').lower() == 'true'

    # Security headers
    FORCE_HTTPS = os.environ.get('FORCE_HTTPS', 'false').lower() == 'true'

    # Number of reverse proxies whose X-Forwarded-* headers are trusted
    TRUSTED_PROXIES = int(os.environ.get('TRUSTED_PROXIES', '0'))

    @property
    def WEBAUTHN_RP_NAME(self):
        return os.environ.get('WEBAUTHN_RP_NAME') or 'Passgate'

    @property
    def WEBAUTHN_RP_ORIGIN(self):
        explicit = os.environ.get('WEBAUTHN_RP_ORIGIN')
        if explicit:
            return explicit.rstrip('/')
        # Build origin from HOST and PORT environment variables
        protocol = 'https' if self.FORCE_HTTPS else 'http'
        return f"{protocol}://{self.HOST}:{self.PORT}"

    @property
    def WEBAUTHN_RP_ID(self):
        return os.environ.get('WEBAUTHN_RP_ID') or rp_id_from_origin(self.WEBAUTHN_RP_ORIGIN)

    def relying_party(self):
        """Freeze the WebAuthn settings into the identity passed to each component"""
        return RelyingPartyIdentity(
            name=self.WEBAUTHN_RP_NAME,
            id=self.WEBAUTHN_RP_ID,
            origin=self.WEBAUTHN_RP_ORIGIN,
            timeout_ms=self.WEBAUTHN_TIMEOUT_MS,
            require_client_data=self.WEBAUTHN_REQUIRE_CLIENT_DATA,
        )


def rp_id_from_origin(origin):
    """Get the WebAuthn Relying Party ID, removing protocol and port if present"""
    if origin.startswith('https://'):
        origin = origin[8:]
    elif origin.startswith('http://'):
        origin = origin[7:]

    # Remove path and port if present
    origin = origin.split('/')[0]
    if ':' in origin:
        origin = origin.split(':')[0]

    return origin
