from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timedelta, timezone
import uuid
import secrets

db = SQLAlchemy()

# WebAuthn user handles are opaque and at most 64 bytes
USER_HANDLE_LENGTH = 32


def utcnow():
    """Naive UTC timestamp, as stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(255), unique=True, nullable=False)  # Caller's user identifier
    user_handle = db.Column(db.LargeBinary(64), unique=True, nullable=False)  # WebAuthn user.id
    user_name = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    last_login = db.Column(db.DateTime)

    # Relationship to credentials
    credentials = db.relationship('Credential', back_populates='user', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<User {self.user_name}>'

    @classmethod
    def create_user(cls, user_id, user_name, display_name):
        """Create a new user with a random WebAuthn user handle"""
        return cls(
            user_id=user_id,
            user_handle=secrets.token_bytes(USER_HANDLE_LENGTH),
            user_name=user_name,
            display_name=display_name,
        )


class Credential(db.Model):
    __tablename__ = 'credentials'

    id = db.Column(db.String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(255), db.ForeignKey('users.id'), nullable=False)
    credential_id = db.Column(db.String(1024), nullable=False, unique=True)  # As reported by the browser
    public_key = db.Column(db.LargeBinary, nullable=False)  # SubjectPublicKeyInfo DER
    public_key_alg = db.Column(db.Integer, nullable=False)  # COSE algorithm identifier
    sign_count = db.Column(db.BigInteger, nullable=False, default=0)
    transports = db.Column(db.JSON)  # Authenticator transports
    created_at = db.Column(db.DateTime, default=utcnow)
    last_used = db.Column(db.DateTime)

    # Relationship to user
    user = db.relationship('User', back_populates='credentials')

    def __repr__(self):
        return f'<Credential {self.credential_id[:8]}...>'


class Challenge(db.Model):
    """A pending ceremony: one issued challenge awaiting verification"""
    __tablename__ = 'challenges'

    REGISTRATION = 'registration'
    AUTHENTICATION = 'authentication'

    id = db.Column(db.String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    challenge = db.Column(db.LargeBinary, nullable=False, unique=True, index=True)
    challenge_type = db.Column(db.String(50), nullable=False)  # 'registration' or 'authentication'
    user_id = db.Column(db.String(255), db.ForeignKey('users.id'), nullable=True)  # Registration subject
    allowed_credentials = db.Column(db.JSON, nullable=False, default=list)  # Authentication allow-list
    created_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    user = db.relationship('User')

    def __repr__(self):
        return f'<Challenge {self.challenge_type} expires {self.expires_at}>'

    @classmethod
    def create_challenge(cls, challenge_bytes, challenge_type, user=None, allowed_credentials=(),
                         expires_in_ms=60000):
        """Create a new challenge with expiration"""
        now = utcnow()
        return cls(
            challenge=challenge_bytes,
            challenge_type=challenge_type,
            user=user,
            allowed_credentials=list(allowed_credentials),
            created_at=now,
            expires_at=now + timedelta(milliseconds=expires_in_ms),
        )

    def is_expired(self):
        """Check if challenge has expired"""
        return utcnow() > self.expires_at
