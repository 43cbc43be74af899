"""DynamoDB key/value store for per-user filter state."""
import json
import logging
import time
from dataclasses import fields
from typing import Any, Dict

import boto3
from botocore.exceptions import ClientError

from history.models import FilterState
from sync.api_client import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# Stored key -> FilterState attribute
_FIELD_NAMES = {
    'searchQuery': 'search_query',
    'temporalBucket': 'temporal_bucket',
    'tags': 'tags',
    'organizerId': 'organizer_id',
    'responseValue': 'response_value',
    'showHidden': 'show_hidden',
    'hideRejected': 'hide_rejected',
    'includePast': 'include_past',
    'dateFrom': 'date_from',
    'dateTo': 'date_to',
}

_BOOL_FIELDS = {'show_hidden', 'hide_rejected', 'include_past'}
_OPTIONAL_STR_FIELDS = {'organizer_id', 'response_value'}
_DATE_FIELDS = {'date_from', 'date_to'}


def filter_state_from_dict(data: Any) -> FilterState:
    """
    Build a FilterState from stored or submitted values.

    Unknown keys are ignored; values of the wrong type keep their default.

    Args:
        data: Dictionary with camelCase keys

    Returns:
        FilterState, the defaults when data is not a dictionary
    """
    state = FilterState()
    if not isinstance(data, dict):
        if data is not None:
            logger.warning(f"Ignoring filter state of type {type(data).__name__}")
        return state

    for key, attr in _FIELD_NAMES.items():
        if key not in data:
            continue
        value = data[key]

        if attr in _BOOL_FIELDS:
            valid = isinstance(value, bool)
        elif attr in _OPTIONAL_STR_FIELDS:
            valid = value is None or isinstance(value, str)
        elif attr in _DATE_FIELDS:
            parsed = parse_timestamp(value)
            valid = value is None or parsed is not None
            value = parsed
        elif attr == 'tags':
            valid = isinstance(value, list) and all(isinstance(t, str) for t in value)
        else:
            valid = isinstance(value, str)

        if valid:
            setattr(state, attr, value)
        else:
            logger.warning(f"Ignoring invalid filter value for {key}: {value!r}")

    if not state.tags:
        state.tags = ['all']
    return state


def filter_state_to_dict(state: FilterState) -> Dict[str, Any]:
    """Serialize a FilterState with camelCase keys and ISO dates."""
    attrs = {f.name for f in fields(state)}
    data = {}
    for key, attr in _FIELD_NAMES.items():
        if attr not in attrs:
            continue
        value = getattr(state, attr)
        if attr in _DATE_FIELDS:
            value = format_timestamp(value)
        elif attr == 'tags':
            value = list(value)
        data[key] = value
    return data


class FilterStateStore:
    """Best-effort persistence of filter state, keyed by user id."""

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized FilterStateStore for table: {table_name}")

    def load(self, user_id: str) -> FilterState:
        """
        Load the filter state of a user.

        A missing item, corrupt data or a DynamoDB error yields the defaults.

        Args:
            user_id: User identifier

        Returns:
            FilterState
        """
        try:
            response = self.table.get_item(Key={'user_id': user_id})
        except ClientError as e:
            logger.warning(f"Could not read filter state for {user_id}, using defaults: {e}")
            return FilterState()

        item = response.get('Item')
        if not item:
            return FilterState()
        return self._item_to_filter_state(item)

    def save(self, user_id: str, state: FilterState) -> bool:
        """
        Save the filter state of a user.

        Args:
            user_id: User identifier
            state: FilterState to store

        Returns:
            True if the item was written
        """
        try:
            self.table.put_item(Item=self._filter_state_to_item(user_id, state))
            return True
        except ClientError as e:
            logger.error(f"Error saving filter state for {user_id}: {e}")
            return False

    def delete(self, user_id: str) -> bool:
        try:
            self.table.delete_item(Key={'user_id': user_id})
            return True
        except ClientError as e:
            logger.error(f"Error deleting filter state for {user_id}: {e}")
            return False

    def _item_to_filter_state(self, item: dict) -> FilterState:
        """
        Convert DynamoDB item to FilterState.

        Args:
            item: DynamoDB item dictionary

        Returns:
            FilterState, the defaults if the stored JSON is corrupt
        """
        try:
            data = json.loads(item['filter_state'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupt filter state for {item.get('user_id')}, using defaults: {e}")
            return FilterState()
        return filter_state_from_dict(data)

    def _filter_state_to_item(self, user_id: str, state: FilterState) -> dict:
        return {
            'user_id': user_id,
            'filter_state': json.dumps(filter_state_to_dict(state)),
            'last_updated': int(time.time())
        }
