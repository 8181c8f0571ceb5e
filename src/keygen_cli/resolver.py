"""
Effective configuration for one command invocation.

resolve() merges stored profile < environment < flag overrides and never
touches the network. authenticate() is the only step that may refresh an
expired token and write it back to the store.
"""

from __future__ import annotations

import dataclasses
import datetime
import os
import typing as t

from .api import KeygenClient
from .config import FALLBACK_PROFILE, Profile, ProfileStore
from .errors import DecodeError, KeygenError, Misconfigured, RefreshFailed
from .jsonapi import as_datetime
from .transport import Transport

# field -> (primary, alias); the primary wins when both are set
ENV_VARS: dict[str, tuple[str, ...]] = {
    "account_id": ("KEYGEN_ACCOUNT_ID", "KEYGEN_ACCOUNT"),
    "base_url": ("KEYGEN_BASE_URL", "KEYGEN_API_URL"),
    "token": ("KEYGEN_TOKEN", "KEYGEN_API_TOKEN"),
    "email": ("KEYGEN_EMAIL", "KEYGEN_ACCOUNT_EMAIL"),
    "password": ("KEYGEN_PASSWORD", "KEYGEN_ACCOUNT_PASSWORD"),
    "public_key": ("KEYGEN_PUBLIC_KEY",),
}


@dataclasses.dataclass
class EffectiveConfig(Profile):
    profile_name: str = FALLBACK_PROFILE

    def profile(self) -> Profile:
        """The persistable part, without the profile name."""
        values = dataclasses.asdict(self)
        values.pop("profile_name")
        return Profile(**values)

    def validate(self) -> None:
        required = (
            ("account_id", "account ID"),
            ("base_url", "base URL"),
            ("token", "token"),
        )
        for field, label in required:
            if not getattr(self, field):
                raise Misconfigured(label, self.profile_name, ENV_VARS[field][0])

    def token_expires_at(self) -> datetime.datetime | None:
        return as_datetime(self.token_expiry)

    def is_token_expired(self, now: datetime.datetime | None = None) -> bool:
        """True only when an expiry is set and lies strictly in the past."""
        exp = self.token_expires_at()
        if exp is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return now > exp

    def can_refresh(self) -> bool:
        return bool(self.email and self.password)


def _env_value(environ: t.Mapping[str, str], names: t.Sequence[str]) -> str:
    for name in names:
        v = (environ.get(name) or "").strip()
        if v:
            return v
    return ""


def resolve(
    store: ProfileStore,
    profile_name: str = "",
    overrides: t.Mapping[str, str | None] | None = None,
    environ: t.Mapping[str, str] | None = None,
) -> EffectiveConfig:
    name = profile_name or store.default_name() or FALLBACK_PROFILE
    stored = store.find(name) or Profile()
    cfg = EffectiveConfig(**dataclasses.asdict(stored), profile_name=name)

    env = os.environ if environ is None else environ
    for field, names in ENV_VARS.items():
        v = _env_value(env, names)
        if v:
            setattr(cfg, field, v)

    for field, v in (overrides or {}).items():
        if field not in ENV_VARS:
            raise ValueError(f"unknown config field: {field}")
        if v:
            setattr(cfg, field, v)
    return cfg


def build_client(cfg: EffectiveConfig, transport_factory: t.Callable[..., Transport] = Transport) -> KeygenClient:
    return KeygenClient(
        transport_factory(cfg.base_url, cfg.account_id, cfg.token, public_key=cfg.public_key)
    )


def authenticate(
    cfg: EffectiveConfig,
    store: ProfileStore,
    *,
    now: datetime.datetime | None = None,
    transport_factory: t.Callable[..., Transport] = Transport,
) -> KeygenClient:
    """
    Validate cfg and return a client for it.

    An expired token is exchanged once for a fresh one when email and password
    are both available; the new token is written back to the named profile.
    Without credentials the stale token is sent and the service rejects it.
    """
    cfg.validate()
    client = build_client(cfg, transport_factory)
    if not (cfg.is_token_expired(now) and cfg.can_refresh()):
        return client

    try:
        token = client.create_token(cfg.email, cfg.password)
    except KeygenError as exc:
        raise RefreshFailed(cfg.profile_name, exc) from exc
    if not token.token:
        raise RefreshFailed(cfg.profile_name, DecodeError("token response did not include a token"))

    cfg.token = token.token
    cfg.token_expiry = token.expiry
    stored = store.find(cfg.profile_name) or Profile(account_id=cfg.account_id, base_url=cfg.base_url)
    stored.token = cfg.token
    stored.token_expiry = cfg.token_expiry
    store.save(cfg.profile_name, stored)

    client.transport.token = cfg.token
    return client
