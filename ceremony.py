"""
Challenge generation and the pending ceremony store.

A pending ceremony lives in the ``challenges`` table from the moment options
are issued until it is consumed by a successful verification or expires.
"""
import secrets

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import CeremonyNotFoundError, InternalError
from models import db, Challenge, utcnow

CHALLENGE_LENGTH = 32


def new_challenge() -> bytes:
    """Return 32 bytes from the operating system CSPRNG"""
    try:
        return secrets.token_bytes(CHALLENGE_LENGTH)
    except (OSError, NotImplementedError) as e:
        current_app.logger.error(f"Random source unavailable: {e}")
        raise InternalError() from e


class CeremonyStore:
    """Binds issued challenges to the context that requested them"""

    def __init__(self, timeout_ms=60000):
        self.timeout_ms = timeout_ms

    def begin(self, kind, challenge, user=None, allowed_credentials=()):
        """Persist a new pending ceremony and commit it"""
        pending = Challenge.create_challenge(
            challenge,
            kind,
            user=user,
            allowed_credentials=allowed_credentials,
            expires_in_ms=self.timeout_ms,
        )
        try:
            self.purge_expired()
            db.session.add(pending)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Could not store {kind} ceremony: {e}")
            raise InternalError() from e
        return pending

    def find(self, challenge):
        """Return the live pending ceremony for ``challenge``, or None"""
        try:
            return Challenge.query.filter(
                Challenge.challenge == challenge,
                Challenge.expires_at > utcnow(),
            ).first()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Ceremony lookup failed: {e}")
            raise InternalError() from e

    def consume(self, pending):
        """Delete ``pending`` in the current transaction.

        The DELETE is conditional on the row still existing, so of two
        verifiers racing on the same challenge only one sees a deleted row.
        The caller commits.
        """
        deleted = Challenge.query.filter(
            Challenge.id == pending.id,
            Challenge.expires_at > utcnow(),
        ).delete(synchronize_session=False)
        if deleted != 1:
            raise CeremonyNotFoundError()

    def purge_expired(self):
        """Delete every expired ceremony; returns the number removed"""
        return Challenge.query.filter(
            Challenge.expires_at <= utcnow()
        ).delete(synchronize_session=False)
