"""Pushes filtered event sets and response styles to a map renderer."""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from history.models import INVITED, Event
from sync.api_client import format_timestamp

logger = logging.getLogger(__name__)

EVENTS_SOURCE = 'events'
UNCLUSTERED_LAYER = 'events-unclustered'
RESPONSE_STATE_KEY = 'userResponse'


class MapRenderer(Protocol):
    """Capabilities the rendering side must expose."""

    def is_ready(self) -> bool: ...

    def has_source(self, source_id: str) -> bool: ...

    def has_layer(self, layer_id: str) -> bool: ...

    def set_data(self, source_id: str, data: Dict[str, Any]) -> None: ...

    def set_feature_state(self, source_id: str, feature_id: str, state: Dict[str, Any]) -> None: ...

    def remove_feature_state(self, source_id: str, feature_id: str, key: str) -> None: ...

    def set_filter(self, layer_id: str, expression: List[Any]) -> None: ...


RendererGetter = Callable[[], Optional[MapRenderer]]


def build_feature_collection(
    events: Iterable[Event],
    responses: Optional[Dict[str, Optional[str]]] = None
) -> Dict[str, Any]:
    """
    Build a GeoJSON FeatureCollection with one point per event.

    Args:
        events: Events to include
        responses: event_id -> current response, used for the initial pin style

    Returns:
        FeatureCollection dictionary; feature ids are event ids
    """
    responses = responses or {}
    features = []
    for event in events:
        stats = event.stats or {}
        venue = event.venue
        features.append({
            'type': 'Feature',
            'id': event.id,
            'properties': {
                'id': event.id,
                'score': (stats.get('going') or 0) + (stats.get('interested') or 0),
                'isPublic': bool(event.is_public),
                'userResponse': responses.get(event.id) or '',
                'tags': list(event.tags or []),
                'organizerId': event.organizer_id or '',
                'startsAt': format_timestamp(event.starts_at) or '',
                'endsAt': format_timestamp(event.ends_at) or '',
                'title': event.title or '',
            },
            'geometry': {
                'type': 'Point',
                'coordinates': [venue.lng if venue else 0, venue.lat if venue else 0],
            },
        })
    return {'type': 'FeatureCollection', 'features': features}


def filter_expression(event_ids: Iterable[str]) -> List[Any]:
    """Renderer expression keeping only features whose id is in event_ids."""
    return ['in', ['get', 'id'], ['literal', list(event_ids)]]


class MapPublisher:
    """
    Publishes derived views to the renderer returned by a getter.

    Calls made before the renderer or its source exist are no-ops. Response
    styles set meanwhile are kept and replayed by flush_pending_styles().
    """

    def __init__(
        self,
        get_renderer: RendererGetter,
        source_id: str = EVENTS_SOURCE,
        layer_id: str = UNCLUSTERED_LAYER
    ):
        """
        Initialize the publisher.

        Args:
            get_renderer: Returns the renderer, or None while it does not exist
            source_id: GeoJSON source holding the event features
            layer_id: Layer the id filter applies to
        """
        self.get_renderer = get_renderer
        self.source_id = source_id
        self.layer_id = layer_id
        self._pending_styles: Dict[str, Optional[str]] = {}

    @property
    def pending_styles(self) -> Dict[str, Optional[str]]:
        return dict(self._pending_styles)

    def _ready_renderer(self) -> Optional[MapRenderer]:
        renderer = self.get_renderer()
        if renderer is None or not renderer.is_ready():
            return None
        if not renderer.has_source(self.source_id):
            return None
        return renderer

    def publish_filter(self, event_ids: Iterable[str]) -> bool:
        """
        Show only the features whose id is in event_ids.

        Returns:
            True if the renderer received the filter
        """
        renderer = self._ready_renderer()
        if renderer is None or not renderer.has_layer(self.layer_id):
            logger.debug(f"Renderer not ready, skipping filter on {self.layer_id}")
            return False
        ids = list(event_ids)
        renderer.set_filter(self.layer_id, filter_expression(ids))
        logger.debug(f"Published filter with {len(ids)} ids")
        return True

    def replace_all(
        self,
        events: Iterable[Event],
        responses: Optional[Dict[str, Optional[str]]] = None
    ) -> bool:
        """
        Replace the whole dataset so derived structures such as clusters are rebuilt.

        Returns:
            True if the renderer received the data
        """
        renderer = self._ready_renderer()
        if renderer is None:
            logger.debug("Renderer not ready, skipping dataset replace")
            return False
        collection = build_feature_collection(events, responses)
        renderer.set_data(self.source_id, collection)
        logger.info(f"Replaced map data with {len(collection['features'])} features")
        return True

    def set_user_response(self, event_id: str, response: Optional[str]) -> bool:
        """
        Patch the response style of one feature.

        No response or 'invited' removes the style property.

        Returns:
            True if the patch was applied, False if it was queued
        """
        renderer = self._ready_renderer()
        if renderer is None:
            self._pending_styles[event_id] = response
            return False

        try:
            if not response or response == INVITED:
                renderer.remove_feature_state(self.source_id, event_id, RESPONSE_STATE_KEY)
            else:
                renderer.set_feature_state(self.source_id, event_id, {RESPONSE_STATE_KEY: response})
        except KeyError:
            logger.warning(f"No feature {event_id} in source {self.source_id}, style not applied")
            return False

        self._pending_styles.pop(event_id, None)
        return True

    def flush_pending_styles(self) -> int:
        """
        Replay style patches queued while the renderer was not ready.

        Returns:
            Number of patches applied
        """
        if self._ready_renderer() is None:
            return 0
        applied = 0
        for event_id, response in list(self._pending_styles.items()):
            if self.set_user_response(event_id, response):
                applied += 1
            else:
                self._pending_styles.pop(event_id, None)
        return applied
