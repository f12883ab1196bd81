"""Signing identity selection.

Debug builds use the SDK's well-known debug keystore. Release builds must
receive all four credential fields as properties; a release build never
falls back to the debug identity.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

DEBUG_KEYSTORE = Path.home() / ".android" / "debug.keystore"
DEBUG_KEY_ALIAS = "androiddebugkey"
DEBUG_PASSWORD = "android"

# (property name, description) for every release credential
RELEASE_FIELDS = [
    ("signing.store_file", "keystore file"),
    ("signing.store_password", "keystore password"),
    ("signing.key_alias", "key alias"),
    ("signing.key_password", "key password"),
]


class SigningError(Exception):
    """Raised when a signing identity cannot be built.

    Attributes:
        problems: Every problem found
        missing: Property names that were absent or empty
    """

    def __init__(self, problems: List[str], missing: Optional[List[str]] = None):
        self.problems = list(problems)
        self.missing = list(missing or [])
        lines = "\n".join(f"  - {problem}" for problem in self.problems)
        super().__init__(f"Signing configuration invalid ({len(self.problems)} problem(s)):\n{lines}")


@dataclass(frozen=True)
class SigningIdentity:
    """A keystore entry used to sign the APK. Secrets are kept out of repr."""

    variant: str
    store_file: Path
    key_alias: str
    store_password: str = field(repr=False)
    key_password: str = field(repr=False)

    @property
    def is_debug(self) -> bool:
        return self.variant == "debug"

    @property
    def secrets(self) -> List[str]:
        return [self.store_password, self.key_password]


class SigningResolver:
    """
    Selects and validates the signing identity for a variant.

    Example usage:
        identity = SigningResolver().resolve("release", sources.properties())
    """

    def __init__(self, debug_keystore: Optional[Path] = None):
        self.debug_keystore = debug_keystore or DEBUG_KEYSTORE

    def resolve(self, variant_type: str, properties: Mapping[str, str]) -> SigningIdentity:
        """
        Resolve the signing identity.

        Args:
            variant_type: 'debug' or 'release'
            properties: Per-invocation properties (name -> value)

        Returns:
            SigningIdentity

        Raises:
            SigningError: Naming every absent field, or an unreadable keystore
        """
        if variant_type == "debug":
            return SigningIdentity(
                variant="debug",
                store_file=self.debug_keystore,
                key_alias=DEBUG_KEY_ALIAS,
                store_password=DEBUG_PASSWORD,
                key_password=DEBUG_PASSWORD,
            )

        if variant_type != "release":
            raise SigningError([f"No signing identity for variant '{variant_type}'"])

        problems: List[str] = []
        missing: List[str] = []
        values = {}
        for name, description in RELEASE_FIELDS:
            value = (properties.get(name) or "").strip()
            if not value:
                missing.append(name)
                problems.append(f"Missing release {description} (pass -P {name}=...)")
            values[name] = value

        store_file = None
        if values["signing.store_file"]:
            store_file = Path(values["signing.store_file"]).expanduser()
            if not store_file.is_file():
                problems.append(f"Release keystore not found: {store_file}")

        if problems:
            raise SigningError(problems, missing)

        return SigningIdentity(
            variant="release",
            store_file=store_file,  # type: ignore[arg-type]
            key_alias=values["signing.key_alias"],
            store_password=values["signing.store_password"],
            key_password=values["signing.key_password"],
        )
