"""
Tile streaming host interface and an in-memory implementation.

The engine only needs a host that raises an "update-after" event and calls
plugin hooks when tile models appear or go away. ``TileSet`` provides that
contract for scripts and tests without any actual streaming.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Protocol

import numpy as np

from altitude_detection.contracts import TileId

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class TilesHost(Protocol):
    def add_event_listener(self, name: str, callback: Listener) -> None: ...

    def remove_event_listener(self, name: str, callback: Listener) -> None: ...


class TilesPlugin(Protocol):
    name: str
    priority: int

    def init(self, tiles: TilesHost) -> None: ...

    def process_tile_model(
        self, mesh, tile_id: TileId, transform: Optional[np.ndarray] = None,
    ) -> Any: ...

    def dispose_tile(self, tile_id: TileId) -> Any: ...

    def dispose(self) -> None: ...


class TileSet:
    """Minimal host: loaded tile meshes, ordered plugins and events."""

    def __init__(self):
        self.plugins: List[TilesPlugin] = []
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._models: Dict[TileId, Any] = {}
        self._transforms: Dict[TileId, Optional[np.ndarray]] = {}

    # events

    def add_event_listener(self, name: str, callback: Listener) -> None:
        if callback not in self._listeners[name]:
            self._listeners[name].append(callback)

    def remove_event_listener(self, name: str, callback: Listener) -> None:
        if callback in self._listeners[name]:
            self._listeners[name].remove(callback)

    def dispatch_event(self, name: str, **payload) -> None:
        for callback in list(self._listeners[name]):
            callback(payload)

    # plugins

    def register_plugin(self, plugin: TilesPlugin) -> None:
        if plugin in self.plugins:
            raise ValueError(f"Plugin {plugin.name!r} is already registered")
        self.plugins.append(plugin)
        self.plugins.sort(key=lambda p: p.priority)
        plugin.init(self)
        for tile_id, mesh in self._models.items():
            plugin.process_tile_model(mesh, tile_id, self._transforms[tile_id])

    def unregister_plugin(self, plugin: TilesPlugin) -> bool:
        if plugin not in self.plugins:
            return False
        self.plugins.remove(plugin)
        plugin.dispose()
        return True

    # tiles

    def load_tile(
        self,
        tile_id: TileId,
        mesh,
        transform: Optional[np.ndarray] = None,
    ) -> None:
        """Make *mesh* available as *tile_id*, replacing a previous model."""
        if tile_id in self._models:
            self.unload_tile(tile_id)
        self._models[tile_id] = mesh
        self._transforms[tile_id] = transform
        for plugin in self.plugins:
            plugin.process_tile_model(mesh, tile_id, transform)
        self.dispatch_event("load-model", tile_id=tile_id)

    def unload_tile(self, tile_id: TileId) -> bool:
        if tile_id not in self._models:
            return False
        for plugin in self.plugins:
            plugin.dispose_tile(tile_id)
        del self._models[tile_id]
        del self._transforms[tile_id]
        self.dispatch_event("dispose-model", tile_id=tile_id)
        return True

    @property
    def loaded_tile_ids(self) -> List[TileId]:
        return list(self._models)

    def for_each_loaded_model(self, callback: Callable[[Any, TileId], Any]) -> None:
        for tile_id, mesh in list(self._models.items()):
            callback(mesh, tile_id)

    def update(self) -> None:
        """One host update cycle; streaming is external so only events fire."""
        self.dispatch_event("update-before")
        self.dispatch_event("update-after")
        logger.debug("Update cycle with %d loaded tiles", len(self._models))

    def dispose(self) -> None:
        for plugin in list(self.plugins):
            self.unregister_plugin(plugin)
        self._models.clear()
        self._transforms.clear()
