"""
Tests for email domain and provider-enabled policy.
"""

import pytest

from openid_bridge.auth.policy import PolicyEnforcer, is_allowed_email_domain
from openid_bridge.models import DenyReason, IdentityClaims

from conftest import make_provider


def identity(email: str) -> IdentityClaims:
    return IdentityClaims(provider_id="idp1", username="u1", email=email)


@pytest.fixture
def enforcer() -> PolicyEnforcer:
    return PolicyEnforcer()


class TestDomainValidation:

    def test_allowed_domain_passes(self):
        provider = make_provider(allowed_email_domains="ok.org")
        assert is_allowed_email_domain("a@ok.org", provider)

    def test_case_insensitive(self):
        provider = make_provider(allowed_email_domains="example.com")
        assert is_allowed_email_domain("USER@Example.COM", provider)

    def test_subdomain_is_not_a_match(self):
        provider = make_provider(allowed_email_domains="ok.org")
        assert not is_allowed_email_domain("a@mail.ok.org", provider)

    def test_domain_after_first_at(self):
        provider = make_provider(allowed_email_domains="b@ok.org")
        assert is_allowed_email_domain("a@b@ok.org", provider)

    @pytest.mark.parametrize("email", ["", "no-at-sign", "trailing@"])
    def test_no_domain_fails(self, email):
        provider = make_provider(allowed_email_domains="ok.org")
        assert not is_allowed_email_domain(email, provider)


class TestPolicyEnforcer:

    def test_allowed(self, enforcer):
        provider = make_provider(allowed_email_domains="ok.org", should_filter_email_domains=True)

        decision = enforcer.check_policy(identity("a@ok.org"), provider)

        assert decision.allowed
        assert decision.reason is None

    def test_domain_denied(self, enforcer):
        provider = make_provider(allowed_email_domains="ok.org", should_filter_email_domains=True)

        decision = enforcer.check_policy(identity("a@bad.org"), provider)

        assert not decision.allowed
        assert decision.reason == DenyReason.DOMAIN_NOT_ALLOWED

    def test_filtering_off_ignores_allow_list(self, enforcer):
        provider = make_provider(allowed_email_domains="ok.org", should_filter_email_domains=False)

        assert enforcer.check_policy(identity("a@bad.org"), provider).allowed

    def test_filtering_on_with_empty_allow_list_denies(self, enforcer):
        provider = make_provider(should_filter_email_domains=True)

        decision = enforcer.check_policy(identity("a@ok.org"), provider)

        assert decision.reason == DenyReason.DOMAIN_NOT_ALLOWED

    def test_disabled_provider_denied(self, enforcer):
        provider = make_provider(enabled=False)

        decision = enforcer.check_policy(identity("a@ok.org"), provider)

        assert decision.reason == DenyReason.PROVIDER_DISABLED

    def test_domain_checked_before_enabled(self, enforcer):
        provider = make_provider(
            enabled=False,
            allowed_email_domains="ok.org",
            should_filter_email_domains=True,
        )

        decision = enforcer.check_policy(identity("a@bad.org"), provider)

        assert decision.reason == DenyReason.DOMAIN_NOT_ALLOWED
