from __future__ import annotations

from typing import Any, Dict, List

from contract_hub.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_unknown"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    """Field-level failure. Every violated field is reported at once under ``fields``."""

    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400

    def __init__(self, fields: Dict[str, List[str]] | None = None, **kwargs: Any) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        self.fields = {name: list(messages) for name, messages in (fields or {}).items()}
        if self.fields:
            payload["fields"] = self.fields
        super().__init__(payload=payload, **kwargs)


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404


class ForbiddenError(UserActionError):
    default_code = "forbidden"
    default_message_key = "forbidden"
    default_http_status = 403


class AuthRequiredError(UserActionError):
    default_code = "auth_required"
    default_message_key = "auth_required"
    default_http_status = 401


class InvalidTransitionError(UserActionError):
    default_code = "invalid_transition"
    default_message_key = "invalid_transition"
    default_http_status = 409


class StageAlreadyRecordedError(InvalidTransitionError):
    default_message_key = "stage_already_recorded"


class InvalidStateError(UserActionError):
    default_code = "invalid_state"
    default_message_key = "invalid_state"
    default_http_status = 409


class DuplicateOfferError(UserActionError):
    default_code = "duplicate_offer"
    default_message_key = "duplicate_offer"
    default_http_status = 409


class DuplicateRequestError(UserActionError):
    default_code = "duplicate_request"
    default_message_key = "duplicate_request"
    default_http_status = 409


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
