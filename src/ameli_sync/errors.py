from __future__ import annotations


class AmeliSyncError(RuntimeError):
    """Base class for failures that abort a run. `code` is the stable identifier surfaced to callers."""

    code = "UNKNOWN_ERROR"


class LoginFailedError(AmeliSyncError):
    """
    Raised when the portal rejected the credentials, or when the post-login page is not one we recognize.
    """

    code = "LOGIN_FAILED"


class UserActionNeededError(AmeliSyncError):
    """
    Raised when the portal redirects to its general terms of use: the user must accept them manually
    on assure.ameli.fr before automated access works again.
    """

    code = "USER_ACTION_NEEDED"


class MarkupMismatchError(AmeliSyncError):
    """
    Raised when an element the parser depends on is missing or malformed. Usually means the portal markup changed.
    """

    code = "MARKUP_MISMATCH"
