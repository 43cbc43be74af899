"""AWS Lambda handler serving derived event views for a user."""
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import requests

from filtering.calendar import group_events_by_periods
from filtering.pipeline import (
    apply_filters,
    build_filter_context,
    calendar_view,
    candidate_events,
    facet_counts,
    organizer_view,
    visible_event_ids,
)
from history.models import CalendarPeriod, Facets
from publisher.map_publisher import UNCLUSTERED_LAYER, build_feature_collection, filter_expression
from storage.filter_state_store import FilterStateStore, filter_state_from_dict, filter_state_to_dict
from sync.api_client import ApiError, ResponseStoreClient, format_timestamp, parse_timestamp
from sync.data_manager import DataManager
from sync.sync_engine import CatalogUnavailableError


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _parse_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    """Accept either a direct invocation payload or an API Gateway proxy event."""
    body = event.get('body') if isinstance(event, dict) else None
    if isinstance(body, str):
        return json.loads(body) if body.strip() else {}
    if isinstance(body, dict):
        return body
    return event if isinstance(event, dict) else {}


def _periods_to_list(periods: List[CalendarPeriod]) -> List[Dict[str, Any]]:
    return [
        {
            'key': p.key,
            'label': p.label,
            'startDate': format_timestamp(p.start_date),
            'endDate': format_timestamp(p.end_date),
            'eventIds': [e.id for e in p.events],
        }
        for p in periods
    ]


def _facets_to_dict(facets: Facets) -> Dict[str, Any]:
    return {
        name: [{'value': o.value, 'label': o.label, 'count': o.count} for o in options]
        for name, options in (
            ('periods', facets.periods),
            ('responses', facets.responses),
            ('organizers', facets.organizers),
            ('tags', facets.tags),
        )
    }


def _load_catalog(data_manager: DataManager):
    """
    Fetch events and response history.

    Raises:
        CatalogUnavailableError: If either fetch fails
    """
    try:
        return data_manager.get_events(), data_manager.get_responses()
    except (requests.RequestException, ApiError) as e:
        raise CatalogUnavailableError(str(e)) from e


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler returning the filtered views of the event catalog.

    Args:
        event: Payload with userId, timezone, now, filters and visibility,
            directly or as a JSON 'body'
        context: Lambda context object

    Returns:
        Response dict with statusCode and the derived views
    """
    api_base_url = os.environ.get('API_BASE_URL', '')
    filters_table_name = os.environ.get('FILTERS_TABLE_NAME', 'event-filter-state')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    default_timezone = os.environ.get('DEFAULT_TIMEZONE', 'UTC')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'api_base_url': api_base_url,
            'filters_table_name': filters_table_name,
            'timeout_seconds': timeout_seconds
        }
    )

    try:
        if not api_base_url:
            raise ValueError("API_BASE_URL is not configured")

        payload = _parse_payload(event)
        user_id = payload.get('userId') or None
        tz = payload.get('timezone') or default_timezone
        now = parse_timestamp(payload.get('now')) or datetime.now(timezone.utc)
        visibility = payload.get('visibility', 'all')

        store = FilterStateStore(table_name=filters_table_name)
        if 'filters' in payload:
            state = filter_state_from_dict(payload['filters'])
            if user_id:
                store.save(user_id, state)
        elif user_id:
            state = store.load(user_id)
        else:
            state = filter_state_from_dict(None)

        data_manager = DataManager(ResponseStoreClient(api_base_url, timeout=timeout_seconds))

        try:
            logger.info("Fetching catalog and response history")
            events, entries = _load_catalog(data_manager)
        except CatalogUnavailableError as e:
            logger.error(
                f"Catalog unavailable: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            duration = time.time() - start_time
            return {
                'statusCode': 503,
                'body': json.dumps({
                    'message': 'Event catalog unavailable',
                    'isLoading': False,
                    'hasError': True,
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'duration_seconds': round(duration, 2)
                })
            }

        filter_context = build_filter_context(events, entries, user_id, now, tz, visibility)
        pool = candidate_events(events, state, filter_context)
        visible_ids = visible_event_ids(pool, state, filter_context)
        visible = apply_filters(pool, state, filter_context)
        periods, _ = group_events_by_periods(visible, now, filter_context.tz)
        facets = facet_counts(pool, state, filter_context)

        duration = time.time() - start_time
        logger.info(
            "Lambda execution completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'events_total': len(events),
                'events_visible': len(visible_ids)
            }
        )

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Views computed successfully',
                'isLoading': False,
                'hasError': False,
                'filters': filter_state_to_dict(state),
                'visibleEventIds': visible_ids,
                'periods': _periods_to_list(periods),
                'facets': _facets_to_dict(facets),
                'calendar': _periods_to_list(
                    calendar_view(events, entries, user_id, now, filter_context.tz)
                ),
                'organized': _periods_to_list(
                    organizer_view(events, user_id, now, filter_context.tz)
                ),
                'map': {
                    'data': build_feature_collection(pool, filter_context.responses),
                    'layer': UNCLUSTERED_LAYER,
                    'filter': filter_expression(visible_ids),
                },
                'statistics': {
                    'events_fetched': len(events),
                    'response_entries_fetched': len(entries),
                    'candidate_events': len(pool),
                    'visible_events': len(visible_ids),
                    'duration_seconds': round(duration, 2)
                }
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'View computation failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
