from __future__ import annotations

import pytest
from bs4 import BeautifulSoup

from ameli_sync.errors import LoginFailedError, UserActionNeededError
from ameli_sync.portal.login import (
    LoginOutcome,
    classify_login_page,
    normalize_identifier,
    raise_for_login_outcome,
)

from portal_pages import LOGGED_IN_PAGE, LOGIN_ERROR_PAGE, TERMS_REDIRECT_PAGE


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def test_normalize_identifier_drops_the_key() -> None:
    assert normalize_identifier("185057800608436") == "1850578006084"
    assert normalize_identifier("1850578006084") == "1850578006084"
    assert normalize_identifier("12345") == "12345"


def test_classify_logged_in_page() -> None:
    check = classify_login_page(_soup(LOGGED_IN_PAGE))
    assert check.ok
    assert check.outcome is LoginOutcome.SUCCESS
    assert check.code is None
    raise_for_login_outcome(check)


def test_classify_error_region_wins_over_everything() -> None:
    html = LOGIN_ERROR_PAGE.replace(
        "<body>",
        '<head><meta http-equiv="refresh" content="0;url=/x?_pageLabel=as_conditions_generales_page"></head><body>',
    )
    check = classify_login_page(_soup(html))
    assert check.outcome is LoginOutcome.LOGIN_FAILED
    assert "ne correspondent pas" in (check.detail or "")
    with pytest.raises(LoginFailedError):
        raise_for_login_outcome(check)


def test_classify_empty_error_region_is_ignored() -> None:
    html = LOGGED_IN_PAGE.replace("<body>", '<body><div id="r_errors">  </div>')
    assert classify_login_page(_soup(html)).ok


def test_classify_terms_redirect_needs_user_action() -> None:
    check = classify_login_page(_soup(TERMS_REDIRECT_PAGE))
    assert check.outcome is LoginOutcome.USER_ACTION_NEEDED
    assert check.code == "USER_ACTION_NEEDED"
    with pytest.raises(UserActionNeededError):
        raise_for_login_outcome(check)


def test_classify_other_meta_refresh_is_not_terms() -> None:
    html = '<html><head><meta http-equiv="refresh" content="0;url=/PortailAS/autre_page"></head><body></body></html>'
    check = classify_login_page(_soup(html))
    assert check.outcome is LoginOutcome.UNEXPECTED_PAGE
    assert check.code == "LOGIN_FAILED"


@pytest.mark.parametrize("count", [0, 2])
def test_classify_logout_link_must_be_unique(count: int) -> None:
    links = '<a title="Déconnexion du compte ameli">x</a>' * count
    check = classify_login_page(_soup(f"<html><body>{links}</body></html>"))
    assert check.code == "LOGIN_FAILED"
    with pytest.raises(LoginFailedError):
        raise_for_login_outcome(check)
