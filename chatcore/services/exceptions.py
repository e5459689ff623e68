import logging

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for service layer errors."""

    def __init__(self, message="An internal service error occurred.", status_code=500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ConversationNotFoundError(ServiceError):
    def __init__(self, message="Conversation not found."):
        super().__init__(message, status_code=404)


class MessageNotFoundError(ServiceError):
    def __init__(self, message="Message not found."):
        super().__init__(message, status_code=404)


class UserNotFoundError(ServiceError):
    def __init__(self, message="User not found."):
        super().__init__(message, status_code=404)


class NotAuthorizedError(ServiceError):
    def __init__(self, message="User not authorized for this action."):
        super().__init__(message, status_code=403)


class BusinessRuleError(ServiceError):
    """For violations of specific business rules (e.g., chatting with yourself)."""

    def __init__(self, message="Action violates business rules."):
        super().__init__(message, status_code=400)


class ConflictError(ServiceError):
    """For conflicts like a duplicate participant row."""

    def __init__(self, message="Operation conflicts with existing state."):
        super().__init__(message, status_code=409)


class AttachmentTooLargeError(ServiceError):
    def __init__(self, message="Attachment exceeds the maximum allowed size."):
        super().__init__(message, status_code=413)


class AttachmentUploadError(ServiceError):
    """The bytes never reached object storage; no message row was written."""

    def __init__(self, message="Failed to upload file."):
        super().__init__(message, status_code=502)


class DatabaseError(ServiceError):
    """For general database errors during service operations."""

    def __init__(self, message="A database error occurred."):
        super().__init__(message, status_code=500)


class AttachmentRecordError(DatabaseError):
    """The upload succeeded but recording it as a message failed."""

    def __init__(self, message="File was uploaded but could not be attached to the conversation."):
        super().__init__(message)
