"""
Subscription Profile Manager — Named profiles for repeat validation runs.

Profiles are stored in:
    ~/.custom_role_validator/profiles.json

A profile pins the tenant, subscription, administrator credential and the
custom role under test, so a re-run is just `--profile <name>`. Values given
on the command line still win over the profile.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("custom_role_validator.profiles")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CONFIG_DIR = Path.home() / ".custom_role_validator"
_PROFILES_FILE = _CONFIG_DIR / "profiles.json"

AUTH_MODES = ("certificate", "secret", "delegated")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class SubscriptionProfile:
    """One named validation target."""
    name: str                          # Unique short name (e.g. "netops-prod")
    tenant_id: str                     # Entra tenant ID
    subscription_id: str = ""          # Empty: resolve the single enabled subscription
    client_id: str = ""                # Administrator app registration client ID
    cert_path: str = "./base64.txt"    # Base64-encoded PFX for certificate mode
    role_name: str = ""                # Custom role under test
    region: str = ""
    prefix: str = ""
    auth_mode: str = "certificate"
    notes: str = ""

    def __post_init__(self):
        if self.auth_mode not in AUTH_MODES:
            raise ValueError(
                f"Profile '{self.name}': auth_mode must be one of {', '.join(AUTH_MODES)}"
            )

    def resolve_cert_path(self) -> str:
        """Certificate path with ~ expanded and relative paths anchored at the cwd."""
        p = Path(self.cert_path).expanduser()
        return str(p if p.is_absolute() else Path.cwd() / p)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("name")
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "SubscriptionProfile":
        known = {f.name for f in fields(cls)} - {"name"}
        return cls(name=name, **{k: v for k, v in data.items() if k in known})


@dataclass
class ProfileStore:
    """The on-disk collection of subscription profiles."""
    profiles: dict[str, SubscriptionProfile] = field(default_factory=dict)
    default_profile: str = ""

    # --- Persistence ---

    @classmethod
    def load(cls) -> "ProfileStore":
        """Read profiles.json; an absent or unreadable file yields an empty store."""
        store = cls()
        if not _PROFILES_FILE.exists():
            return store
        try:
            data = json.loads(_PROFILES_FILE.read_text(encoding="utf-8"))
            for name, pdata in data.get("profiles", {}).items():
                store.profiles[name] = SubscriptionProfile.from_dict(name, pdata)
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable profile store {_PROFILES_FILE}: {e}")
            print(f"  ⚠  Failed to parse profiles.json: {e}")
            return cls()
        store.default_profile = data.get("default_profile", "")
        return store

    def save(self) -> None:
        _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        data = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        _PROFILES_FILE.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    # --- CRUD ---

    def add(self, profile: SubscriptionProfile, set_default: bool = False) -> None:
        """Add or overwrite; the first profile ever added becomes the default."""
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        if self.profiles.pop(name, None) is None:
            return False
        if self.default_profile == name:
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[SubscriptionProfile]:
        """Case-insensitive lookup."""
        wanted = name.lower()
        return next((p for pname, p in self.profiles.items() if pname.lower() == wanted), None)

    def get_default(self) -> Optional[SubscriptionProfile]:
        if self.default_profile in self.profiles:
            return self.profiles[self.default_profile]
        return next(iter(self.profiles.values()), None)

    def set_default(self, name: str) -> bool:
        if name not in self.profiles:
            return False
        self.default_profile = name
        self.save()
        return True

    def list_profiles(self) -> list[SubscriptionProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)


def resolve_profile(profile_name: Optional[str] = None) -> Optional[SubscriptionProfile]:
    """
    The named profile, or the default one when no name is given.
    None when nothing matches or no profiles are configured.
    """
    store = ProfileStore.load()
    if profile_name:
        return store.get(profile_name)
    return store.get_default()
