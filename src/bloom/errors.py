"""Domain exception taxonomy.

Each error carries the HTTP status and machine-readable ``error_code`` the
global handler puts in the response envelope. ``extra`` fields are merged
into the envelope alongside ``error``/``errorCode``.
"""

from __future__ import annotations

from typing import Any


class EconomyError(Exception):
    """Base class for errors surfaced to clients."""

    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        data: Any = None,  # noqa: ANN401
        **extra: Any,  # noqa: ANN401
    ) -> None:
        self.message = message or self.default_message
        if error_code is not None:
            self.error_code = error_code
        self.data = data
        self.extra = extra
        super().__init__(self.message)


class ValidationError(EconomyError):
    error_code = "invalid_request"
    default_message = "Invalid request"


class Unauthorized(EconomyError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication required"


class NotFound(EconomyError):
    status_code = 404
    error_code = "not_found"
    default_message = "Not found"


class AlreadyClaimed(EconomyError):
    error_code = "already_claimed_today"
    default_message = "Daily bonus already claimed today"


class RewardAlreadyClaimed(EconomyError):
    error_code = "reward_already_claimed"
    default_message = "Reward already claimed for this score"


class CooldownActive(EconomyError):
    """Raised while a time window blocks the action; carries ``remainingMs``."""

    error_code = "cooldown_active"
    default_message = "Cooldown is still active"

    def __init__(self, remaining_ms: int, message: str | None = None, **extra: Any) -> None:  # noqa: ANN401
        super().__init__(message, remainingMs=max(0, int(remaining_ms)), **extra)
        self.remaining_ms = max(0, int(remaining_ms))


class NoLivesRemaining(EconomyError):
    error_code = "no_lives_remaining"
    default_message = "No lives remaining"


class DuplicateSubmission(EconomyError):
    error_code = "duplicate_session"
    default_message = "Score already submitted for this session"


class ScoreRejected(EconomyError):
    """Anti-cheat rejection; ``flags`` lists every failed check."""

    error_code = "score_validation_failed"
    default_message = "Score validation failed"

    def __init__(self, reason: str, flags: list[str]) -> None:
        super().__init__(reason, flags=list(flags))
        self.flags = list(flags)


class PaymentError(EconomyError):
    error_code = "payment_failed"
    default_message = "Payment could not be verified"


class ClaimNotFound(NotFound):
    error_code = "claim_not_found"
    default_message = "Claim not found"


class ClaimAlreadySettled(EconomyError):
    status_code = 409
    error_code = "claim_already_settled"
    default_message = "Claim is already settled"


class ClaimNotRetryable(EconomyError):
    status_code = 409
    error_code = "claim_not_retryable"
    default_message = "Claim cannot be retried"


class RateLimited(EconomyError):
    status_code = 429
    error_code = "rate_limited"
    default_message = "Too many requests. Try again later."


class GatewayUnavailable(EconomyError):
    """Token distribution could not be performed.

    Services fold this into a ``pending`` claim or a ``rewardError``; it only
    reaches the client directly from explicit retries.
    """

    status_code = 503
    error_code = "gateway_unavailable"
    default_message = "Token distribution is unavailable"


class InternalError(EconomyError):
    status_code = 500
    error_code = "internal_error"
    default_message = "Internal server error"
