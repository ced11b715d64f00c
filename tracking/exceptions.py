"""
Tracking domain errors.

Each error carries the HTTP status and the stable machine code used by the
REST exception handler and by the WebSocket consumers' error frames.
"""


class TrackingError(Exception):
    status_code = 400
    code = 'tracking_error'
    default_message = "Opération de suivi refusée."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self):
        return {
            'success': False,
            'error': self.code,
            'message': self.message,
        }


class NotAuthorized(TrackingError):
    """Caller lacks the role or ownership for the attempted write or room join."""
    status_code = 403
    code = 'not_authorized'
    default_message = "Vous n'êtes pas autorisé à effectuer cette action."


class InvalidTransition(TrackingError):
    status_code = 409
    code = 'invalid_transition'
    default_message = "Transition de statut non autorisée."

    def __init__(self, message=None, current=None, target=None):
        self.current = current
        self.target = target
        if message is None and current is not None and target is not None:
            message = f"Transition impossible: {current} -> {target}"
        super().__init__(message)


class ConcurrentUpdate(InvalidTransition):
    """The order changed between read and write; the caller's view is stale."""
    code = 'stale_state'
    default_message = "La commande a été modifiée entre-temps, rechargez son état."


class InvalidToken(TrackingError):
    """Wrong token or unknown order. Both cases share one message."""
    status_code = 404
    code = 'invalid_token'
    default_message = "Lien de suivi invalide ou expiré."

    def __init__(self):
        super().__init__(self.default_message)


class NotFound(TrackingError):
    status_code = 404
    code = 'not_found'
    default_message = "Commande introuvable."


class LocationUnavailable(TrackingError):
    """The device cannot produce a real position. Absorbed by the agent."""
    status_code = 503
    code = 'location_unavailable'
    default_message = "Position indisponible."
