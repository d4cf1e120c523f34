"""
Plugin registry: the set of scraping plugins known to this process.
"""

from __future__ import annotations

import importlib
import logging
import threading
from typing import Dict, Iterable, List, Optional, Type

import pydantic

from .base import BaseScraper
from .errors import PluginUnavailable, ValidationError
from .logging_utils import log_event
from .models import ScraperConfig
from .plugins import DEFAULT_PLUGINS

logger = logging.getLogger(__name__)


class ScraperRegistry:
    """
    Registry of plugin instances keyed by plugin id.

    initialize() loads the built-in plugin classes once; a plugin whose
    construction or config validation fails is logged and skipped so one
    broken plugin never takes the others down.
    """

    def __init__(self, plugin_classes: Optional[Iterable[Type[BaseScraper]]] = None) -> None:
        self._plugin_classes = list(DEFAULT_PLUGINS if plugin_classes is None else plugin_classes)
        self._plugins: Dict[str, BaseScraper] = {}
        self._lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._initialized = False

    def initialize(self) -> None:
        # Concurrent callers wait until loading finishes.
        with self._init_lock:
            if self._initialized:
                return
            for plugin_class in self._plugin_classes:
                try:
                    self.register(plugin_class())
                except Exception as exc:  # noqa: BLE001
                    log_event(
                        logger,
                        logging.ERROR,
                        "plugin_load_failed",
                        plugin_class=plugin_class.__name__,
                        error=str(exc),
                    )
            self._initialized = True

        log_event(logger, logging.INFO, "registry_initialized", plugins=sorted(self._plugins))

    def register(self, plugin: BaseScraper) -> None:
        """Add a plugin instance. Raises ValidationError on an invalid config."""
        if not isinstance(plugin, BaseScraper):
            raise ValidationError(f"{type(plugin).__name__} must inherit from BaseScraper")
        try:
            config = ScraperConfig.model_validate(plugin.config.model_dump())
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid plugin config for {type(plugin).__name__}", {"errors": exc.errors()}) from exc

        with self._lock:
            if config.id in self._plugins:
                log_event(
                    logger,
                    logging.WARNING,
                    "plugin_overwritten",
                    plugin_id=config.id,
                    previous=type(self._plugins[config.id]).__name__,
                    replacement=type(plugin).__name__,
                )
            self._plugins[config.id] = plugin

    def register_path(self, path: str) -> None:
        """Register a plugin class given as 'module.path:ClassName'."""
        if ":" not in path:
            raise ValidationError(f"Invalid plugin path '{path}'. Use 'module.path:ClassName'.")

        module_path, class_name = path.split(":", 1)
        module = importlib.import_module(module_path)
        loaded = getattr(module, class_name, None)
        if loaded is None:
            raise ValidationError(f"Unable to resolve plugin class '{path}'.")
        if not isinstance(loaded, type) or not issubclass(loaded, BaseScraper):
            raise ValidationError(f"Class '{path}' must inherit from BaseScraper.")
        self.register(loaded())

    def get_best_scraper(self, url: str) -> Optional[BaseScraper]:
        """Highest-priority plugin whose can_handle() accepts the URL, or None."""
        candidates: List[BaseScraper] = []
        for plugin in self.get_all_scrapers():
            try:
                if plugin.can_handle(url):
                    candidates.append(plugin)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.WARNING,
                    "plugin_can_handle_failed",
                    plugin_id=plugin.id,
                    url=url,
                    error=str(exc),
                )
        if not candidates:
            return None
        candidates.sort(key=lambda p: p.priority, reverse=True)
        return candidates[0]

    def get_scraper_by_id(self, plugin_id: str) -> Optional[BaseScraper]:
        with self._lock:
            return self._plugins.get(plugin_id)

    def require(self, plugin_id: str) -> BaseScraper:
        plugin = self.get_scraper_by_id(plugin_id)
        if plugin is None:
            raise PluginUnavailable(f"Scraper not found: {plugin_id}", {"scraper_id": plugin_id})
        return plugin

    def get_all_scrapers(self) -> List[BaseScraper]:
        with self._lock:
            return list(self._plugins.values())

    def summary(self) -> List[Dict[str, object]]:
        """Describe every registered plugin, highest priority first."""
        plugins = sorted(self.get_all_scrapers(), key=lambda p: p.priority, reverse=True)
        return [
            {
                "id": p.id,
                "name": p.name,
                "strategy": p.strategy,
                "priority": p.priority,
                "speed": p.config.speed,
                "requires_browser": p.config.requires_browser,
                "ready": p.get_status().ready,
            }
            for p in plugins
        ]

    def clear(self) -> None:
        with self._lock:
            self._plugins.clear()
            self._initialized = False
