"""Resolution of the catalog used by the CLI."""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from bucketkeeper.table.base import Catalog

if TYPE_CHECKING:
    from bucketkeeper.config import BucketkeeperConfig

logger = logging.getLogger(__name__)


def load_catalog(spec: str | None, config: BucketkeeperConfig) -> Catalog:
    """Load a catalog from a ``package.module:factory`` path.

    The factory is called with the configuration and must return a Catalog.
    A module attribute that already is a Catalog instance is returned as-is.

    Args:
        spec: Import path of the catalog factory.
        config: Active configuration, passed to the factory.

    Raises:
        ValueError: If the path is missing, malformed, or does not yield a Catalog.
    """
    if not spec or ":" not in spec:
        msg = f"catalog must be given as 'package.module:factory', got '{spec}'"
        raise ValueError(msg)

    module_name, _, attr = spec.partition(":")
    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attr)
    except AttributeError:
        msg = f"Module {module_name} has no attribute '{attr}'"
        raise ValueError(msg) from None

    catalog = target if isinstance(target, Catalog) else target(config)
    if not isinstance(catalog, Catalog):
        msg = f"{spec} returned {type(catalog).__name__}, expected a Catalog"
        raise ValueError(msg)

    logger.info("Loaded catalog %s from %s", type(catalog).__name__, spec)
    return catalog
