"""
Provider registry backed by a properties file.

The file lists the enabled providers and carries one ``openid.<id>.<key>``
entry per provider setting::

    enabled=google,aaf
    openid.google.clientId=...
    openid.google.userInfoUri=https://openidconnect.googleapis.com/v1/userinfo
    openid.google.allowedEmailDomains=example.com,example.org
    openid.google.shouldFilterEmailDomains=true

Values are kept as strings; ``get_config`` turns them into a typed
``ProviderConfig`` for a single authentication attempt.
"""

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .models import ClaimMapping, ProviderConfig

logger = logging.getLogger(__name__)

PROPERTY_PREFIX = "openid"
ENABLED_KEY = "enabled"


def parse_bool(value: Optional[str]) -> bool:
    """``true`` in any case is True, everything else (including None) is False."""
    return value is not None and value.strip().lower() == "true"


def _split_property(line: str) -> Tuple[str, str]:
    separators = [i for i in (line.find("="), line.find(":")) if i >= 0]
    if not separators:
        return line, ""
    index = min(separators)
    return line[:index].strip(), line[index + 1:].strip()


def parse_properties(text: str) -> Dict[str, str]:
    """
    Parse ``key=value`` / ``key: value`` lines.

    Blank lines and lines starting with ``#`` or ``!`` are ignored. A trailing
    backslash continues the value on the next line.
    """
    properties: Dict[str, str] = {}
    pending = ""

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not pending and (not line or line[0] in "#!"):
            continue

        if line.endswith("\\"):
            pending += line[:-1]
            continue

        key, value = _split_property(pending + line)
        properties[key] = value
        pending = ""

    if pending:
        key, value = _split_property(pending)
        properties[key] = value

    return properties


class ProviderRegistry:
    """Per-provider string properties plus the enabled-provider list."""

    def __init__(self, properties: Mapping[str, str], default_redirect_uri: Optional[str] = None):
        self._properties = dict(properties)
        self._default_redirect_uri = default_redirect_uri

    @classmethod
    def from_file(cls, path: Union[str, Path], default_redirect_uri: Optional[str] = None) -> "ProviderRegistry":
        path = Path(path)
        if not path.is_file():
            logger.warning(
                "Provider properties file not found, no providers configured",
                extra={"path": str(path)},
            )
            return cls({}, default_redirect_uri)

        properties = parse_properties(path.read_text(encoding="utf-8"))
        registry = cls(properties, default_redirect_uri)
        logger.info(
            "Loaded provider properties",
            extra={"path": str(path), "enabled_providers": registry.provider_ids()},
        )
        return registry

    def get_property(self, provider_id: str, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._properties.get(f"{PROPERTY_PREFIX}.{provider_id}.{key}", default)

    def provider_ids(self) -> List[str]:
        """Enabled provider ids in the order they are listed."""
        raw = self._properties.get(ENABLED_KEY, "")
        return [p.strip() for p in raw.split(",") if p.strip()]

    def is_enabled(self, provider_id: str) -> bool:
        return provider_id in self.provider_ids()

    def is_known(self, provider_id: str) -> bool:
        prefix = f"{PROPERTY_PREFIX}.{provider_id}."
        return any(key.startswith(prefix) for key in self._properties)

    def get_config(self, provider_id: str) -> ProviderConfig:
        """Snapshot of one provider's settings. Unknown providers come back disabled."""
        def prop(key: str, default: Optional[str] = None) -> Optional[str]:
            return self.get_property(provider_id, key, default)

        scopes = tuple(
            s.strip() for s in (prop("scopes") or "openid,profile,email").replace(" ", ",").split(",")
            if s.strip()
        )

        return ProviderConfig(
            provider_id=provider_id,
            name=prop("name") or provider_id,
            enabled=self.is_enabled(provider_id),
            user_info_uri=prop("userInfoUri"),
            allowed_email_domains=prop("allowedEmailDomains") or "",
            should_filter_email_domains=parse_bool(prop("shouldFilterEmailDomains")),
            user_auto_enabled=parse_bool(prop("userAutoEnabled")),
            user_auto_verified=parse_bool(prop("userAutoVerified")),
            force_user_create=parse_bool(prop("forceUserCreate")),
            claims=ClaimMapping(
                username_pattern=prop("usernamePattern") or "[sub]",
                email_property=prop("emailProperty") or "email",
                given_name_property=prop("givenNameProperty") or "given_name",
                family_name_property=prop("familyNameProperty") or "family_name",
            ),
            client_id=prop("clientId"),
            client_secret=prop("clientSecret"),
            access_token_uri=prop("accessTokenUri"),
            user_authorization_uri=prop("userAuthUri"),
            redirect_uri=prop("preEstablishedRedirUri") or self._default_redirect_uri,
            scopes=scopes,
            jwks_uri=prop("jwksUri"),
            issuer=prop("issuer"),
        )
