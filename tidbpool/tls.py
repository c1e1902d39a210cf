"""TLS trust material for encrypted database sessions."""
from __future__ import annotations

import logging
import ssl
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)


def build_ssl_context(ca_path: str | Path) -> ssl.SSLContext:
    """Return a client context that only trusts the CA bundle at ``ca_path``.

    Server certificates are verified and the hostname is checked.
    """

    path = Path(ca_path).expanduser()
    if not path.is_file():
        raise ConfigError(f"CA bundle {path} does not exist", stage="tls")

    try:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=str(path))
    except (ssl.SSLError, OSError) as exc:
        raise ConfigError(f"CA bundle {path} could not be loaded: {exc}", stage="tls") from exc

    logger.info("Applying TLS configuration with CA: %s", path)
    return context
