from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

from ..errors import LoginFailedError, UserActionNeededError
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)

MAX_IDENTIFIER_LENGTH = 13


class LoginOutcome(enum.Enum):
    SUCCESS = "success"
    LOGIN_FAILED = "LOGIN_FAILED"
    USER_ACTION_NEEDED = "USER_ACTION_NEEDED"
    UNEXPECTED_PAGE = "unexpected_page"


@dataclass(frozen=True)
class LoginCheck:
    outcome: LoginOutcome
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is LoginOutcome.SUCCESS

    @property
    def code(self) -> Optional[str]:
        # An unrecognized page is reported to callers as a failed login.
        if self.outcome is LoginOutcome.UNEXPECTED_PAGE:
            return LoginOutcome.LOGIN_FAILED.value
        if self.outcome is LoginOutcome.SUCCESS:
            return None
        return self.outcome.value


def normalize_identifier(identifier: str) -> str:
    """
    The social security number field only accepts 13 characters; anything after is the 2-digit key,
    which the portal does not want. Drop it without validating it.
    """
    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        logger.debug("Truncated the login identifier to %d characters.", MAX_IDENTIFIER_LENGTH)
        return identifier[:MAX_IDENTIFIER_LENGTH]
    return identifier


def classify_login_page(doc: BeautifulSoup, selectors: Optional[PortalSelectors] = None) -> LoginCheck:
    """
    Decide what the page returned by the login POST means.

    Order matters: the terms-of-use redirect page has no logout link either, so it must be
    recognized before falling back to "unexpected page".
    """
    sel = selectors or PortalSelectors()

    errors = doc.select_one(sel.login_errors)
    if errors is not None:
        text = " ".join(errors.get_text(" ").split())
        if text:
            return LoginCheck(LoginOutcome.LOGIN_FAILED, detail=text)

    for meta in doc.select(sel.meta_refresh):
        content = meta.get("content") or ""
        if sel.terms_page_marker in content:
            return LoginCheck(LoginOutcome.USER_ACTION_NEEDED, detail=content)

    logout_links = doc.select(sel.logout_link)
    if len(logout_links) != 1:
        return LoginCheck(
            LoginOutcome.UNEXPECTED_PAGE,
            detail=f"expected exactly 1 logout link, found {len(logout_links)}",
        )

    return LoginCheck(LoginOutcome.SUCCESS)


def raise_for_login_outcome(check: LoginCheck) -> None:
    if check.outcome is LoginOutcome.SUCCESS:
        return
    if check.outcome is LoginOutcome.USER_ACTION_NEEDED:
        logger.debug("Terms of use redirect: %s", check.detail)
        raise UserActionNeededError(
            "The portal requires you to accept its general terms of use. Log in on assure.ameli.fr once, "
            "accept them, then run again."
        )
    if check.outcome is LoginOutcome.LOGIN_FAILED:
        logger.debug("Login errors found on screen: %s", check.detail)
        raise LoginFailedError(f"Login rejected by the portal: {check.detail}")

    logger.debug("Something unexpected went wrong after the login (%s)", check.detail)
    raise LoginFailedError(f"Unrecognized page after login ({check.detail}).")
