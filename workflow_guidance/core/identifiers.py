"""
Typed identifiers for engine-minted records.

Identifiers the engine hands out carry their kind and a format version, e.g.
``exec-v1-3f2b...`` (32 hex chars), so validity is checked structurally by
``TypedId.parse``. Free-text identifiers coming from older callers go through
``legacy_stale_reason`` instead, which keeps the old substring/length checks.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from .enums import IdKind
from .exceptions import StaleIdentifierError


CURRENT_ID_VERSION = 1
SUPPORTED_ID_VERSIONS = frozenset({1})

_TYPED_ID_PATTERN = re.compile(r'^(?P<kind>[a-z]+)-v(?P<version>\d+)-(?P<token>[0-9a-f]{32})$')

# Keywords that betray a descriptive id copied out of conversation history
DEFAULT_STALE_KEYWORDS = ("product", "manager", "architect", "developer", "review")

LEGACY_MIN_LENGTH = {
    "execution_id": 20,
    "role_id": 20,
    "step_id": 10,
}

_TIMESTAMP_PATTERN = re.compile(r'\d{10}')
_ALNUM_PATTERN = re.compile(r'^[a-zA-Z0-9]+$')
_STEP_PATTERN = re.compile(r'^[a-zA-Z0-9\-_]+$')


@dataclass(frozen=True)
class TypedId:
    """Structurally versioned identifier"""
    kind: IdKind
    token: str
    version: int = CURRENT_ID_VERSION

    def __str__(self) -> str:
        return f"{self.kind.value}-v{self.version}-{self.token}"

    @classmethod
    def new(cls, kind: IdKind) -> 'TypedId':
        """Mint a fresh identifier of the given kind"""
        return cls(kind=kind, token=uuid.uuid4().hex)

    @classmethod
    def parse(cls, text: str, kind: Optional[IdKind] = None) -> 'TypedId':
        """
        Parse a textual identifier.

        Args:
            text: Identifier text
            kind: Expected kind (any kind accepted when None)

        Raises:
            StaleIdentifierError: If the text is not a supported typed id
        """
        if not isinstance(text, str):
            raise StaleIdentifierError(
                "Identifier must be a string",
                context={"value": repr(text)}
            )
        match = _TYPED_ID_PATTERN.match(text.strip())
        if not match:
            raise StaleIdentifierError(
                f"Malformed identifier: {text!r}",
                context={"expected": kind.value if kind else "typed"}
            )
        try:
            parsed_kind = IdKind(match.group("kind"))
        except ValueError:
            raise StaleIdentifierError(f"Unknown identifier kind in {text!r}")
        version = int(match.group("version"))
        if version not in SUPPORTED_ID_VERSIONS:
            raise StaleIdentifierError(
                f"Unsupported identifier version {version} in {text!r}",
                context={"supported": sorted(SUPPORTED_ID_VERSIONS)}
            )
        if kind is not None and parsed_kind != kind:
            raise StaleIdentifierError(
                f"Identifier {text!r} is a {parsed_kind.value} id, expected {kind.value}"
            )
        return cls(kind=parsed_kind, token=match.group("token"), version=version)

    @classmethod
    def is_valid(cls, text: object, kind: Optional[IdKind] = None) -> bool:
        try:
            cls.parse(text, kind)  # type: ignore[arg-type]
        except StaleIdentifierError:
            return False
        return True


def new_id(kind: IdKind) -> str:
    """Mint a new identifier and return its text form"""
    return str(TypedId.new(kind))


def legacy_stale_reason(id_name: str, value: str,
                        keywords: Iterable[str] = DEFAULT_STALE_KEYWORDS) -> Optional[str]:
    """
    Heuristic check for free-text identifiers from older callers.

    Returns a human-readable reason when the value looks stale, None otherwise.
    Only used for identifiers that are not structurally typed.
    """
    trimmed = value.strip()
    lowered = trimmed.lower()

    if id_name == "execution_id":
        if "_" in trimmed and any(k in lowered for k in keywords):
            return f"{id_name} embeds a role name: {value}"
        if _TIMESTAMP_PATTERN.search(trimmed):
            return f"{id_name} embeds a timestamp: {value}"

    min_length = LEGACY_MIN_LENGTH.get(id_name)
    if min_length is None:
        return None
    if len(trimmed) < min_length:
        return f"{id_name} is shorter than {min_length} characters: {value}"

    pattern = _STEP_PATTERN if id_name == "step_id" else _ALNUM_PATTERN
    if not pattern.match(trimmed):
        return f"{id_name} contains unexpected characters: {value}"
    return None
