# branch_resolver.py

import hashlib
import logging
import re
from typing import Optional

from errors import InvalidEvent
from models.branch_spec import BranchSpec
from models.publish_event import PublishEvent

logger = logging.getLogger(__name__)

# semver.org 2.0.0 grammar. Groups: major, minor, patch, pre-release, build.
SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)
CANONICAL_SLUG = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
UNSAFE_CHARACTERS = re.compile(r"[^a-z0-9]+")

MAX_BRANCH_NAME_LENGTH = 200
DIGEST_LENGTH = 8


def normalize_version(raw: Optional[str]) -> str:
    """
    Return `raw` as a semver string, tolerating a leading "v" (tags are often written v1.2.0).

    Raises InvalidEvent if it is not a semantic version.
    """
    if not raw:
        raise InvalidEvent("Event has no version")
    version = raw[1:] if raw[:1] in ("v", "V") else raw
    if not SEMVER_PATTERN.match(version):
        raise InvalidEvent(f"Version '{raw}' is not a valid semantic version")
    return version


def slugify(value: str) -> str:
    return UNSAFE_CHARACTERS.sub("-", value.lower()).strip("-")


def branch_name_for(package_name: str, version: str, prefix: str = "") -> str:
    """
    Deterministic branch name for a (package, version) pair.

    The plain form is "<package>-<major>-<minor>-<patch>". Whenever slugging would lose
    information (non-canonical package name, pre-release or build metadata, truncation)
    an "-h<digest>" suffix is added so distinct pairs can never share a name. A plain
    name always ends in a numeric segment, so the two forms cannot collide either.
    """
    slug = f"{slugify(package_name)}-{slugify(version)}"
    match = SEMVER_PATTERN.match(version)
    lossy = (
        not CANONICAL_SLUG.match(package_name)
        or match is None
        or match.group(4) is not None
        or match.group(5) is not None
    )
    limit = MAX_BRANCH_NAME_LENGTH - len(prefix)
    if lossy or len(slug) > limit:
        digest = hashlib.sha1(f"{package_name}@{version}".encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
        suffix = f"-h{digest}"
        slug = slug[:limit - len(suffix)].rstrip("-") + suffix
    return f"{prefix}{slug}"


class BranchResolver:
    """Turns a PublishEvent into the BranchSpec that must exist on the remote."""

    def __init__(self, prefix: str = "", base_ref: Optional[str] = None):
        self.prefix = prefix
        self.base_ref = base_ref

    def resolve(self, event: PublishEvent) -> BranchSpec:
        package_name = event.package_name
        if not package_name:
            raise InvalidEvent("Event has no packageName")
        if not slugify(package_name):
            raise InvalidEvent(f"packageName '{package_name}' has no characters usable in a branch name")

        version = normalize_version(event.version)
        name = branch_name_for(package_name, version, self.prefix)
        logger.debug(f"Resolved {package_name}@{version} to branch '{name}'")
        return BranchSpec(name=name, package_name=package_name, version=version, base_ref=self.base_ref)
