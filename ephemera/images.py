"""Image identifier rewriting for pull-through registry mirrors.

When a mirror is configured (``DOCKER_PROXY``), every image is pulled
through it: a well-known public registry prefix is stripped and the mirror
is prepended as a path.
"""

import re
from urllib.parse import urlsplit

from loguru import logger

from ephemera.exceptions import ConfigurationError


WELL_KNOWN_REGISTRIES: tuple[str, ...] = (
    "docker.io/",
    "ghcr.io/",
)

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")


def validate_mirror(mirror: str) -> str:
    """Check that a mirror target is a usable URL or registry path.

    Args:
        mirror: Mirror target, e.g. ``my-registry.com`` or ``https://mirror.local/cache``.

    Returns:
        The mirror without trailing slashes.

    Raises:
        ConfigurationError: If the mirror is malformed.
    """
    if any(ch.isspace() for ch in mirror):
        raise ConfigurationError(f"Malformed registry mirror {mirror!r}: contains whitespace")

    if "://" in mirror:
        scheme = mirror.split("://", 1)[0]
        if not _SCHEME_RE.match(scheme):
            raise ConfigurationError(f"Malformed registry mirror {mirror!r}: invalid scheme")
        try:
            parts = urlsplit(mirror)
        except ValueError as e:
            raise ConfigurationError(f"Malformed registry mirror {mirror!r}: {e}") from e
        if not parts.netloc:
            raise ConfigurationError(f"Malformed registry mirror {mirror!r}: missing host")

    base = mirror.rstrip("/")
    if not base:
        raise ConfigurationError(f"Malformed registry mirror {mirror!r}: empty path")
    return base


def strip_registry(image: str) -> str:
    """Strip at most one well-known registry prefix from an image.

    Only exact prefixes including the path separator match, so
    ``docker.io.example.com/app`` is left untouched.
    """
    for prefix in WELL_KNOWN_REGISTRIES:
        if image.startswith(prefix):
            return image[len(prefix):]
    return image


def rewrite_image(image: str, mirror: str | None) -> str:
    """Map a nominal image identifier to the identifier actually pulled.

    Args:
        image: Nominal image, e.g. ``docker.io/library/postgres:15``.
        mirror: Registry mirror; None or empty disables rewriting.

    Returns:
        The effective image. Images already under the mirror are returned as-is.

    Raises:
        ConfigurationError: If the mirror is malformed.
    """
    if not mirror:
        return image

    base = validate_mirror(mirror)
    if image.startswith(base + "/"):
        return image

    rewritten = f"{base}/{strip_registry(image)}"
    logger.debug("Rewrote image through mirror", image=image, target=rewritten)
    return rewritten
