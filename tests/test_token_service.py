import pytest
from google.auth.exceptions import RefreshError

from errors import ReauthRequired, RefreshFailed
from models import Account
from services import token_service

NOW = 1_700_000_000


def _account(expires_at, refresh_token="refresh-token", access_token="stored-token"):
    return Account(
        userId=1, provider="google", providerAccountId="google-1",
        access_token=access_token, refresh_token=refresh_token, expires_at=expires_at,
    )


@pytest.fixture
def exchange(monkeypatch):
    calls = []
    grant = {"access_token": "fresh-token", "expires_at": NOW + 3599, "refresh_token": "refresh-token"}

    def fake_exchange(refresh_token):
        calls.append(refresh_token)
        return dict(grant)

    monkeypatch.setattr(token_service, "exchange_refresh_token", fake_exchange)
    return calls, grant


def test_token_state_treats_missing_expiry_as_expired():
    assert token_service.token_state(_account(None), NOW) == (True, True)
    assert token_service.token_state(_account(NOW + 100), NOW) == (False, True)
    assert token_service.token_state(_account(NOW + 301), NOW) == (False, False)


@pytest.mark.anyio
async def test_valid_token_is_returned_without_refresh_or_write(fake_session, exchange):
    calls, _ = exchange
    account = _account(NOW + 3600)

    access = await token_service.get_valid_access_token(fake_session, account, now=NOW)

    assert access == token_service.AccessToken("stored-token", NOW + 3600, False)
    assert calls == []
    assert fake_session.added == []
    assert fake_session.commits == 0


@pytest.mark.anyio
async def test_expired_token_without_refresh_token_requires_reauth(fake_session, exchange):
    account = _account(NOW - 10, refresh_token=None)

    with pytest.raises(ReauthRequired):
        await token_service.get_valid_access_token(fake_session, account, now=NOW)
    assert fake_session.commits == 0


@pytest.mark.anyio
async def test_expiring_soon_without_refresh_token_keeps_current_token(fake_session, exchange):
    account = _account(NOW + 120, refresh_token=None)

    access = await token_service.get_valid_access_token(fake_session, account, now=NOW)

    assert access.token == "stored-token"
    assert access.refreshed is False


@pytest.mark.anyio
async def test_token_expiring_soon_is_refreshed_and_persisted(fake_session, exchange):
    calls, grant = exchange
    account = _account(NOW + 120)

    access = await token_service.get_valid_access_token(fake_session, account, now=NOW)

    assert calls == ["refresh-token"]
    assert access == token_service.AccessToken("fresh-token", grant["expires_at"], True)
    assert account.access_token == "fresh-token"
    assert account.expires_at == grant["expires_at"]
    assert fake_session.added == [account]
    assert fake_session.commits == 1


@pytest.mark.anyio
async def test_rotated_refresh_token_replaces_stored_one(fake_session, exchange):
    _, grant = exchange
    grant["refresh_token"] = "rotated-refresh-token"
    account = _account(None)

    await token_service.get_valid_access_token(fake_session, account, now=NOW)

    assert account.refresh_token == "rotated-refresh-token"


@pytest.mark.anyio
async def test_missing_refresh_token_in_grant_keeps_stored_one(fake_session, exchange):
    _, grant = exchange
    grant["refresh_token"] = None
    account = _account(NOW - 1)

    await token_service.get_valid_access_token(fake_session, account, now=NOW)

    assert account.refresh_token == "refresh-token"


@pytest.mark.anyio
async def test_failed_exchange_raises_refresh_failed(fake_session, monkeypatch):
    def failing_exchange(refresh_token):
        raise RefreshError("invalid_grant: Token has been expired or revoked.")

    monkeypatch.setattr(token_service, "exchange_refresh_token", failing_exchange)
    account = _account(NOW - 1)

    with pytest.raises(RefreshFailed) as excinfo:
        await token_service.get_valid_access_token(fake_session, account, now=NOW)

    assert excinfo.value.to_dict()["requiresReauth"] is True
    assert "invalid_grant" in excinfo.value.details
    assert account.access_token == "stored-token"
    assert fake_session.commits == 0


@pytest.mark.anyio
async def test_missing_account_requires_reauth(fake_session):
    with pytest.raises(ReauthRequired):
        await token_service.get_valid_access_token(fake_session, None, now=NOW)

    with pytest.raises(ReauthRequired):
        await token_service.get_valid_access_token(fake_session, _account(NOW + 3600, access_token=None), now=NOW)
