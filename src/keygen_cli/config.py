"""
Profile storage.

Profiles live in a single TOML file, ``~/.keygen-cli/profiles.toml``:

    default_profile = "prod"

    [profiles.prod]
    account_id = "..."
    base_url = "https://api.keygen.sh"
    token = "..."

A flat ``config.toml`` from older releases (one profile, same keys, no
``[profiles]`` table) is adopted as profile "default" on first load and left
in place.
"""

from __future__ import annotations

import dataclasses
import os
import pathlib
import tempfile
import typing as t

try:
    import tomllib  # py311+
except ImportError:  # pragma: no cover - Python 3.10
    import tomli as tomllib  # type: ignore

import tomli_w
from dotenv import load_dotenv

from .errors import ConfigError, Conflict, NotFound

DEFAULT_BASE_URL = "https://api.keygen.sh"
FALLBACK_PROFILE = "default"
PROFILES_FILENAME = "profiles.toml"
LEGACY_FILENAME = "config.toml"
HOME_ENV = "KEYGEN_CLI_HOME"


def config_dir() -> pathlib.Path:
    override = os.getenv(HOME_ENV)
    if override:
        return pathlib.Path(override)
    return pathlib.Path.home() / ".keygen-cli"


@dataclasses.dataclass
class Profile:
    account_id: str = ""
    base_url: str = ""
    token: str = ""
    email: str = ""
    password: str = ""
    token_expiry: str = ""
    public_key: str = ""

    @classmethod
    def from_mapping(cls, data: t.Mapping[str, t.Any]) -> "Profile":
        values = {}
        for f in dataclasses.fields(cls):
            v = data.get(f.name)
            values[f.name] = v if isinstance(v, str) else ""
        return cls(**values)

    def to_mapping(self) -> dict[str, str]:
        # TOML has no null; empty fields are simply left out
        return {k: v for k, v in dataclasses.asdict(self).items() if v}


def _read_toml(path: pathlib.Path) -> dict[str, t.Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc


def _write_atomic(path: pathlib.Path, text: str) -> None:
    """Replace path in one step so readers never see a half-written file."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(path.parent, 0o700)
        except OSError:
            pass  # not ours to tighten (e.g. a shared KEYGEN_CLI_HOME)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.chmod(tmp, 0o600)
            os.replace(tmp, path)
        except BaseException:
            pathlib.Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise ConfigError(f"failed to write {path}: {exc}") from exc


class ProfileStore:
    """
    Named profiles plus the default-profile pointer.

    Loaded on first access; every mutation rewrites the whole file. There is
    no cross-process locking: concurrent writers race and the last one wins.
    """

    def __init__(self, directory: pathlib.Path | str | None = None):
        self.directory = pathlib.Path(directory) if directory else config_dir()
        self.path = self.directory / PROFILES_FILENAME
        self.legacy_path = self.directory / LEGACY_FILENAME
        self._profiles: dict[str, Profile] | None = None
        self._default = FALLBACK_PROFILE

    # --- loading ---

    def _load(self) -> dict[str, Profile]:
        if self._profiles is not None:
            return self._profiles

        profiles: dict[str, Profile] = {}
        if self.path.exists():
            data = _read_toml(self.path)
            stored = data.get("profiles")
            for name, raw in (stored if isinstance(stored, dict) else {}).items():
                if isinstance(raw, dict):
                    profiles[name] = Profile.from_mapping(raw)
            default = data.get("default_profile")
            self._default = default if isinstance(default, str) and default else FALLBACK_PROFILE
            self._profiles = profiles
            return profiles

        self._profiles = profiles
        self._default = FALLBACK_PROFILE
        if self.legacy_path.exists():
            legacy = Profile.from_mapping(_read_toml(self.legacy_path))
            if legacy.account_id or legacy.token:
                profiles[FALLBACK_PROFILE] = legacy
                self._flush()
        return profiles

    def _flush(self) -> None:
        doc = {
            "default_profile": self._default,
            "profiles": {name: p.to_mapping() for name, p in sorted(self._load().items())},
        }
        _write_atomic(self.path, tomli_w.dumps(doc))

    # --- queries ---

    def list(self) -> tuple[list[str], str]:
        profiles = self._load()
        return sorted(profiles), self._default

    def default_name(self) -> str:
        self._load()
        return self._default or FALLBACK_PROFILE

    def exists(self, name: str) -> bool:
        return name in self._load()

    def find(self, name: str) -> Profile | None:
        p = self._load().get(name)
        return dataclasses.replace(p) if p is not None else None

    def get(self, name: str) -> Profile:
        p = self.find(name)
        if p is None:
            raise NotFound(f"profile {name!r} not found")
        return p

    # --- mutations ---

    def save(self, name: str, profile: Profile) -> None:
        """Insert or overwrite a profile."""
        self._load()[name] = dataclasses.replace(profile)
        self._flush()

    def delete(self, name: str) -> None:
        profiles = self._load()
        if name not in profiles:
            raise NotFound(f"profile {name!r} not found")
        del profiles[name]
        if self._default == name:
            self._default = FALLBACK_PROFILE
        self._flush()

    def rename(self, old: str, new: str) -> None:
        profiles = self._load()
        if old not in profiles:
            raise NotFound(f"profile {old!r} not found")
        if new in profiles:
            raise Conflict(f"profile {new!r} already exists")
        profiles[new] = profiles.pop(old)
        if self._default == old:
            self._default = new
        self._flush()

    def set_default(self, name: str) -> None:
        if name not in self._load():
            raise NotFound(f"profile {name!r} not found")
        self._default = name
        self._flush()


def load_env_files(explicit: str | None = None, *, directory: pathlib.Path | None = None) -> pathlib.Path | None:
    """
    Load a .env file into os.environ without overriding variables already set.

    Order: explicit path > ./.env > <config dir>/.env. Returns the file used.
    """
    if explicit:
        path = pathlib.Path(explicit)
        if not path.is_file():
            raise ConfigError(f"env file not found: {path}")
        load_dotenv(path, override=False)
        return path
    for candidate in (pathlib.Path.cwd() / ".env", (directory or config_dir()) / ".env"):
        if candidate.is_file():
            load_dotenv(candidate, override=False)
            return candidate
    return None
