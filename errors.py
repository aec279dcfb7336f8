"""
Ceremony failure taxonomy.

Every CeremonyError is a rejected ceremony, answered with HTTP 400 and a
``{"success": false, "error": ..., "code": ...}`` body. InternalError is a
server fault and is answered with HTTP 500 without internal detail.
"""


class CeremonyError(Exception):
    """Base class for a rejected registration or authentication ceremony"""
    status_code = 400
    code = 'ceremony_rejected'
    # Integrity violations that may indicate an attack are logged as warnings
    suspicious = False

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__

    def to_dict(self):
        return {'success': False, 'error': self.message, 'code': self.code}


class InvalidInputError(CeremonyError):
    """Missing or malformed request fields"""
    code = 'invalid_input'


class CeremonyNotFoundError(CeremonyError):
    """Challenge is unknown, expired or already consumed"""
    code = 'ceremony_not_found'


class CeremonyKindMismatchError(CeremonyError):
    """Challenge was issued for a different ceremony type"""
    code = 'ceremony_kind_mismatch'


class ChallengeMismatchError(CeremonyError):
    """Client data does not carry the issued challenge"""
    code = 'challenge_mismatch'
    suspicious = True


class OriginMismatchError(CeremonyError):
    """Client data origin does not match the relying party"""
    code = 'origin_mismatch'
    suspicious = True


class MalformedCredentialError(CeremonyError):
    """Credential response is missing required data"""
    code = 'malformed_credential'


class DuplicateCredentialError(CeremonyError):
    """Credential ID is already registered"""
    code = 'duplicate_credential'


class UnknownCredentialError(CeremonyError):
    """Credential ID is not registered"""
    code = 'unknown_credential'


class CredentialNotAllowedError(CeremonyError):
    """Credential is not allowed for this ceremony"""
    code = 'credential_not_allowed'


class SignatureVerificationError(CeremonyError):
    """Assertion signature could not be verified"""
    code = 'signature_verification_failed'


class ReplayOrCloneSuspectedError(CeremonyError):
    """Signature counter did not increase"""
    code = 'replay_or_clone_suspected'
    suspicious = True


class InternalError(Exception):
    """Unexpected server fault"""
    status_code = 500
    public_message = 'Internal server error'

    def to_dict(self):
        return {'success': False, 'error': self.public_message}
