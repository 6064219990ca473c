"""Typed rejections raised by the workflow services.

Each carries a stable ``code`` and enough structured ``detail`` for a
caller to render an actionable message without a follow-up query.
Services raise before writing anything, so a caught rejection means no
state was changed.
"""

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied


class WorkflowError(Exception):
    code = "WORKFLOW_ERROR"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message=None, **detail):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def as_dict(self):
        return {"error": self.message, "code": self.code, **self.detail}


class InvalidTransition(WorkflowError):
    code = "INVALID_TRANSITION"
    default_message = "That status change is not allowed."

    def __init__(self, current, requested, allowed=(), message=None):
        if message is None:
            message = (
                f"Cannot transition from '{current}' to '{requested}'. "
                f"Allowed transitions: {', '.join(allowed) or 'none'}."
            )
        super().__init__(
            message,
            current_status=current,
            requested_status=requested,
            allowed=list(allowed),
        )


class Forbidden(WorkflowError, PermissionDenied):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "You do not have permission to do that."


class PreconditionFailed(WorkflowError):
    code = "PRECONDITION_FAILED"
    status_code = 409
    default_message = "The job is not in a state that allows this."


class LinkExpired(PreconditionFailed):
    code = "LINK_EXPIRED"
    status_code = 410
    default_message = "This link has expired."


class NotClockedIn(WorkflowError):
    code = "NOT_CLOCKED_IN"
    default_message = "Not clocked in"


class PendingOutcomes(WorkflowError):
    code = "PENDING_OUTCOMES"

    def __init__(self, items):
        items = list(items)
        super().__init__(
            f"{len(items)} repair item(s) still need an outcome "
            f"(authorise, defer, decline or delete) before closing.",
            pending_items=items,
            count=len(items),
        )


class IncompleteWork(WorkflowError):
    code = "INCOMPLETE_WORK"

    def __init__(self, items):
        items = list(items)
        super().__init__(
            f"{len(items)} authorised repair item(s) have not been "
            f"marked as work complete.",
            incomplete_items=items,
            count=len(items),
        )


class NotFound(WorkflowError, ObjectDoesNotExist):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."
