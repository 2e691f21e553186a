from typing import Dict, List, Optional

from ..mappers.base import DataSourceMapper
from .errors import UnknownMapperError


class MapperRegistry:
    """Name -> DataSourceMapper lookup.

    An instance is built once by the caller and injected into the
    orchestrator; there is no process-wide registry to mutate.
    """

    def __init__(self, mappers: Optional[Dict[str, DataSourceMapper]] = None):
        self._registry: Dict[str, DataSourceMapper] = dict(mappers or {})

    def register(self, name: str, mapper: DataSourceMapper) -> None:
        self._registry[name] = mapper

    def names(self) -> List[str]:
        return sorted(self._registry)

    def __contains__(self, name: str) -> bool:
        return name in self._registry

    def get(self, name: str) -> DataSourceMapper:
        mapper = self._registry.get(name)
        if mapper is None:
            raise UnknownMapperError(name, self.names())
        return mapper


def default_registry() -> MapperRegistry:
    # Imported locally to keep mapper modules free to import from core
    from ..mappers.osm import OSMMapper
    from ..mappers.vancouver import VancouverMapper

    return MapperRegistry({
        "osm": OSMMapper(),
        "vancouver": VancouverMapper(),
    })
