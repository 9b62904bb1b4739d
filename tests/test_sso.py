"""
Unit tests for the SSO federation broker.
"""

from concurrent.futures import ThreadPoolExecutor
from urllib.parse import parse_qs, urlsplit

import pytest

from neoloc.auth.context import RequestContext
from neoloc.auth.exceptions import (
    AccessDenied,
    ModuleNotFound,
    SessionInvalid,
    StorageUnavailable,
    TokenInvalid,
    UserInactive,
)
from neoloc.auth.models import Module
from neoloc.auth.sso import SSO_TOKEN_TTL, build_redirect_url

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, USER_PASSWORD


@pytest.fixture
def buyer(hub, admin, make_user):
    """A viewer whose only module access is read on 'compras' through a role."""
    user = make_user()
    role = hub.rbac.create_role("buyer", "Buyer")
    permission = hub.rbac.get_permission_by_name("compras.read")
    hub.rbac.assign_permission_to_role(role.id, permission.id)
    hub.rbac.assign_role_to_user(user.id, role.id, assigned_by=admin.id)
    return user


@pytest.fixture
def buyer_session(hub, buyer):
    return hub.sessions.login(buyer.email, USER_PASSWORD).token


class TestMint:
    """Test SSO token minting."""

    def test_mint_grant(self, hub, clock, buyer, buyer_session, module, request_context):
        """Test the grant and its redirect URL."""
        grant = hub.sso.mint(buyer_session, module.id, request_context)

        assert grant.expires_at == clock() + SSO_TOKEN_TTL

        url = urlsplit(grant.redirect_url)
        assert f"{url.scheme}://{url.netloc}" == module.url
        query = parse_qs(url.query)
        assert query["token"] == [grant.token]
        assert query["userId"] == [buyer.id]

    def test_mint_records_row(self, hub, buyer, buyer_session, module, request_context):
        """Test minting stores the token row."""
        grant = hub.sso.mint(buyer_session, module.id, request_context)

        row = hub.store.get_sso_token(grant.token)
        assert row.user_id == buyer.id
        assert row.module_id == module.id
        assert row.used_at is None
        assert row.ip_address == "10.0.0.7"
        assert row.user_agent == "pytest"

    def test_claims(self, hub, buyer, buyer_session, module):
        """Test the SSO token claims."""
        grant = hub.sso.mint(buyer_session, module.id)

        payload = hub.sso.jwt.verify_sso_token(grant.token)
        assert payload.user_id == buyer.id
        assert payload.module_id == module.id
        assert payload.email == buyer.email
        assert payload.full_name == buyer.full_name
        assert payload.role == buyer.role

    def test_module_without_access(self, hub, buyer_session):
        """Test minting for a module the user cannot open."""
        bi = hub.modules.get_module_by_name("bi")

        with pytest.raises(AccessDenied):
            hub.sso.mint(buyer_session, bi.id)

    def test_direct_grant_allows_mint(self, hub, make_user):
        """Test a direct module grant allows minting."""
        user = make_user(module_access=["bi"])
        session = hub.sessions.login(user.email, USER_PASSWORD).token
        bi = hub.modules.get_module_by_name("bi")

        assert hub.sso.mint(session, bi.id).token

    def test_unknown_module(self, hub, buyer_session):
        """Test minting for an unknown module."""
        with pytest.raises(ModuleNotFound):
            hub.sso.mint(buyer_session, "no-such-module")

    def test_inactive_module(self, hub):
        """Test minting for an inactive module."""
        legacy = hub.modules.register("legacy", "http://localhost:3999", is_active=False)
        session = hub.sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD).token

        with pytest.raises(ModuleNotFound):
            hub.sso.mint(session, legacy.id)

    def test_requires_valid_session(self, hub, buyer_session, module):
        """Test minting needs a live session."""
        hub.sessions.logout(buyer_session)

        with pytest.raises(SessionInvalid):
            hub.sso.mint(buyer_session, module.id)


class TestRedeem:
    """Test single-use redemption."""

    def test_round_trip(self, hub, buyer, buyer_session, module):
        """Test a minted token yields the user projection once."""
        grant = hub.sso.mint(buyer_session, module.id)

        user_data = hub.sso.redeem(grant.token, module.id)

        assert user_data.id == buyer.id
        assert user_data.email == buyer.email
        assert user_data.full_name == buyer.full_name
        assert user_data.role == "viewer"
        assert user_data.module_access == ["compras"]
        assert set(user_data.to_dict()) == {"id", "email", "fullName", "role", "moduleAccess"}

    def test_second_redemption_rejected(self, hub, buyer_session, module):
        """Test a token is single use."""
        grant = hub.sso.mint(buyer_session, module.id)
        hub.sso.redeem(grant.token, module.id)

        with pytest.raises(TokenInvalid):
            hub.sso.redeem(grant.token, module.id)

    def test_redemption_recorded(self, hub, clock, buyer_session, module):
        """Test redemption records time and origin."""
        grant = hub.sso.mint(buyer_session, module.id)

        hub.sso.redeem(grant.token, module.id, RequestContext("10.0.0.9", "module-backend"))

        row = hub.store.get_sso_token(grant.token)
        assert row.used_at == clock()
        assert row.used_ip_address == "10.0.0.9"
        assert row.used_user_agent == "module-backend"

    def test_concurrent_redemption_single_winner(self, hub, buyer_session, module):
        """Test racing redemptions of one token produce exactly one success."""
        grant = hub.sso.mint(buyer_session, module.id)

        def attempt(_):
            try:
                return hub.sso.redeem(grant.token, module.id)
            except TokenInvalid:
                return None

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(attempt, range(16)))

        assert sum(1 for r in results if r is not None) == 1

    def test_expired_token(self, hub, clock, buyer_session, module):
        """Test an expired token is refused."""
        grant = hub.sso.mint(buyer_session, module.id)

        clock.advance(minutes=5, seconds=1)

        with pytest.raises(TokenInvalid):
            hub.sso.redeem(grant.token, module.id)

    def test_valid_just_before_expiry(self, hub, clock, buyer_session, module):
        """Test a token is valid just before expiry."""
        grant = hub.sso.mint(buyer_session, module.id)

        clock.advance(minutes=4, seconds=59)

        assert hub.sso.redeem(grant.token, module.id).module_access == ["compras"]

    def test_claim_failure_is_not_success(self, hub, buyer_session, module, monkeypatch):
        """Test a redemption whose use cannot be recorded fails and leaves the token unspent."""
        grant = hub.sso.mint(buyer_session, module.id)

        def unavailable(*args, **kwargs):
            raise StorageUnavailable("Storage lock timed out")

        with monkeypatch.context() as patch:
            patch.setattr(hub.sso.store, "claim_sso_token", unavailable)
            with pytest.raises(StorageUnavailable):
                hub.sso.redeem(grant.token, module.id)

        assert hub.store.get_sso_token(grant.token).used_at is None
        assert hub.sso.redeem(grant.token, module.id).module_access == ["compras"]

    def test_used_and_expired(self, hub, clock, buyer_session, module):
        """Test a used token stays refused after expiry."""
        grant = hub.sso.mint(buyer_session, module.id)
        hub.sso.redeem(grant.token, module.id)

        clock.advance(minutes=6)

        with pytest.raises(TokenInvalid):
            hub.sso.redeem(grant.token, module.id)

    def test_wrong_module(self, hub, buyer_session, module):
        """Test a token is only redeemable by the module it was minted for."""
        grant = hub.sso.mint(buyer_session, module.id)
        estoque = hub.modules.get_module_by_name("estoque")

        with pytest.raises(TokenInvalid):
            hub.sso.redeem(grant.token, estoque.id)

        assert hub.sso.redeem(grant.token, module.id).email

    def test_deactivated_user(self, hub, buyer, buyer_session, module):
        """Test deactivation between mint and redeem, and that the token is spent."""
        grant = hub.sso.mint(buyer_session, module.id)
        hub.users.deactivate_user(buyer.id)

        with pytest.raises(UserInactive):
            hub.sso.redeem(grant.token, module.id)

        hub.users.activate_user(buyer.id)
        with pytest.raises(TokenInvalid):
            hub.sso.redeem(grant.token, module.id)

    def test_deleted_user(self, hub, buyer, buyer_session, module):
        """Test a deleted user's token is gone."""
        grant = hub.sso.mint(buyer_session, module.id)
        hub.users.delete_user(buyer.id)

        with pytest.raises(TokenInvalid):
            hub.sso.redeem(grant.token, module.id)

    def test_session_token_rejected(self, hub, buyer_session, module):
        """Test a session token cannot be redeemed."""
        with pytest.raises(TokenInvalid):
            hub.sso.redeem(buyer_session, module.id)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, hub, module, token):
        """Test malformed SSO tokens."""
        with pytest.raises(TokenInvalid):
            hub.sso.redeem(token, module.id)

    def test_forged_token_without_row(self, hub, buyer, clock, module):
        """Test a correctly signed token is rejected if the hub never stored it."""
        token = hub.sso.jwt.create_sso_token(
            user_id=buyer.id,
            module_id=module.id,
            email=buyer.email,
            full_name=buyer.full_name,
            role=buyer.role,
            issued_at=clock(),
            expires_at=clock() + SSO_TOKEN_TTL,
        )

        with pytest.raises(TokenInvalid):
            hub.sso.redeem(token, module.id)

    def test_redeem_after_logout(self, hub, buyer_session, module):
        """Test a minted token stands on its own once the session ends."""
        grant = hub.sso.mint(buyer_session, module.id)
        hub.sessions.logout(buyer_session)

        assert hub.sso.redeem(grant.token, module.id).module_access == ["compras"]


class TestSweep:
    def test_sweep_removes_expired_regardless_of_use(self, hub, clock, buyer_session, module):
        """Test the SSO sweep removes used and unused expired tokens."""
        used = hub.sso.mint(buyer_session, module.id)
        unused = hub.sso.mint(buyer_session, module.id)
        hub.sso.redeem(used.token, module.id)

        clock.advance(minutes=2)
        fresh = hub.sso.mint(buyer_session, module.id)
        clock.advance(minutes=3, seconds=1)

        assert hub.sso.sweep_expired() == 2

        assert hub.store.get_sso_token(used.token) is None
        assert hub.store.get_sso_token(unused.token) is None
        assert hub.store.get_sso_token(fresh.token) is not None


class TestRedirectUrl:
    def test_appends_query(self):
        """Test the redirect URL query."""
        module = Module(id="m1", name="compras", display_name="Compras", url="http://localhost:3002")

        url = build_redirect_url(module, "tok", "u1")

        assert url == "http://localhost:3002?token=tok&userId=u1"

    def test_keeps_existing_query(self):
        """Test an existing module URL query is kept."""
        module = Module(
            id="m1",
            name="compras",
            display_name="Compras",
            url="https://compras.example.com/sso?lang=pt",
        )

        url = build_redirect_url(module, "tok", "u1")

        assert parse_qs(urlsplit(url).query) == {"lang": ["pt"], "token": ["tok"], "userId": ["u1"]}
