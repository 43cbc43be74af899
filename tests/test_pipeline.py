"""Unit tests for the filter pipeline."""
from datetime import datetime, timezone

import pytest

from filtering.pipeline import (
    apply_filters,
    build_filter_context,
    calendar_view,
    candidate_events,
    criterion_id_sets,
    facet_counts,
    group_and_count_events_by_response,
    intersect_event_ids,
    organizer_view,
    visible_event_ids,
)
from history.models import GOING, INVITED, NOT_INTERESTED, SEEN, FilterState


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def catalog(make_event):
    """Events around Wednesday 2024-01-17 14:00 UTC."""
    return [
        make_event('e1', starts_at=utc(2024, 1, 17, 18), tags=['Music', 'Outdoor'],
                   organizer_id='org1', is_public=True, is_online=True, title='Jazz in the park'),
        make_event('e2', starts_at=utc(2024, 1, 18, 18), tags=['music'],
                   organizer_id='org2', is_public=True),
        make_event('e3', starts_at=utc(2024, 1, 16, 18), tags=['music'], organizer_id='org3'),
        make_event('e4', starts_at=utc(2024, 1, 17, 19), organizer_id='org3', is_online=False),
        make_event('e5', starts_at=utc(2024, 1, 19, 18), tags=['art'],
                   organizer_id='org1', is_public=False),
        make_event('e6', starts_at=utc(2024, 1, 22, 18), tags=['music'], organizer_id='org2'),
        make_event('e7', starts_at=utc(2024, 1, 18, 12), organizer_id='org3'),
    ]


@pytest.fixture
def log(now, make_entry):
    """History of user u1: going to e2, rejected e6, invited to e7, saw e5."""
    return [
        make_entry('r1', GOING, now, event_id='e2', initial_response='new'),
        make_entry('r2', NOT_INTERESTED, now, event_id='e6', initial_response='new'),
        make_entry('r3', INVITED, now, event_id='e7', initial_response=None),
        make_entry('r4', SEEN, now, event_id='e5', initial_response='new'),
        make_entry('r5', GOING, now, event_id='e1', user_id='u2'),
    ]


@pytest.fixture
def context(catalog, log, now):
    """Filter context for user u1 in UTC."""
    return build_filter_context(catalog, log, 'u1', now, 'UTC')


def ids(events):
    return [e.id for e in events]


class TestVisibleEventIds:
    """Test cases for visible_event_ids."""

    def test_default_state_hides_past_rejected_and_offline(self, catalog, context):
        """Test the default exclusions."""
        assert visible_event_ids(catalog, FilterState(), context) == ['e1', 'e2', 'e5', 'e7']

    def test_show_hidden_includes_offline(self, catalog, context):
        """Test that show_hidden brings back unpublished events."""
        state = FilterState(show_hidden=True)

        assert 'e4' in visible_event_ids(catalog, state, context)

    def test_include_past(self, catalog, context):
        """Test that include_past keeps finished events."""
        state = FilterState(include_past=True)

        assert visible_event_ids(catalog, state, context) == ['e1', 'e2', 'e3', 'e5', 'e7']

    def test_past_bucket_lifts_past_exclusion(self, catalog, context):
        """Test that selecting the past bucket shows past events only."""
        state = FilterState(temporal_bucket='past')

        assert visible_event_ids(catalog, state, context) == ['e3']

    def test_rejected_visible_when_selected(self, catalog, context):
        """Test that filtering on not_interested shows rejected events."""
        state = FilterState(response_value=NOT_INTERESTED)

        assert visible_event_ids(catalog, state, context) == ['e6']

    def test_new_bucket_includes_invited(self, catalog, context):
        """Test the union of response-less and invited-only events."""
        state = FilterState(response_value='new')

        assert visible_event_ids(catalog, state, context) == ['e1', 'e7']

    def test_tags_and_query(self, catalog, context):
        """Test composition of tag and text criteria."""
        assert visible_event_ids(catalog, FilterState(tags=['music']), context) == ['e1', 'e2']
        assert visible_event_ids(
            catalog, FilterState(tags=['music'], search_query='jazz'), context
        ) == ['e1']

    def test_visibility_mode(self, catalog, log, now):
        """Test that public mode drops private events."""
        context = build_filter_context(catalog, log, 'u1', now, 'UTC', visibility=True)

        assert 'e5' not in visible_event_ids(catalog, FilterState(), context)

    def test_criterion_matching_nothing_empties_result(self, catalog, context):
        """Test that an empty id set is not ignored."""
        state = FilterState(search_query='no such event')
        sets = criterion_id_sets(catalog, state, context)

        assert sets['query'] == set()
        assert sets['tags'] is None
        assert visible_event_ids(catalog, state, context) == []

    @pytest.mark.parametrize('state', [
        FilterState(),
        FilterState(tags=['music']),
        FilterState(response_value='new'),
        FilterState(temporal_bucket='tomorrow'),
        FilterState(include_past=True, organizer_id='org3'),
        FilterState(show_hidden=True, hide_rejected=False),
        FilterState(date_from=utc(2024, 1, 18), date_to=utc(2024, 1, 20)),
        FilterState(response_value='unresponded', search_query='event'),
    ])
    def test_apply_filters_agrees_with_id_intersection(self, catalog, context, state):
        """Test that the single-pass filter and the set intersection agree."""
        assert ids(apply_filters(catalog, state, context)) == visible_event_ids(catalog, state, context)


class TestIntersectEventIds:
    """Test cases for intersect_event_ids."""

    def test_inactive_criteria_are_ignored(self):
        """Test None handling."""
        assert intersect_event_ids(None, None) is None
        assert intersect_event_ids(None, {'a', 'b'}) == {'a', 'b'}

    def test_intersection(self):
        """Test a plain intersection."""
        assert intersect_event_ids({'a', 'b', 'c'}, {'b', 'c'}, {'c', 'd'}) == {'c'}

    def test_empty_set_wins(self):
        """Test that an empty set empties the result."""
        assert intersect_event_ids({'a'}, set(), None) == set()


class TestFacetCounts:
    """Test cases for facet_counts."""

    def test_default_facets(self, catalog, context):
        """Test counts for every facet with no criterion selected."""
        facets = facet_counts(catalog, FilterState(), context)

        periods = {o.value: o.count for o in facets.periods}
        assert periods == {'past': 1, 'today': 1, 'tomorrow': 2, 'thisWeek': 1}
        assert [o.value for o in facets.periods] == ['past', 'today', 'tomorrow', 'thisWeek']

        responses = {o.value: o.count for o in facets.responses}
        assert responses == {'new': 2, GOING: 1, NOT_INTERESTED: 1, 'unresponded': 1}

        assert [(o.value, o.count) for o in facets.organizers] == [
            ('org1', 2), ('org2', 1), ('org3', 1)
        ]
        assert [(o.value, o.count) for o in facets.tags] == [
            ('music', 2), ('art', 1), ('outdoor', 1)
        ]

    def test_invited_only_counts_as_unanswered(self, catalog, context):
        """Test that e7 is counted under 'new' and not under any answer."""
        state = FilterState(temporal_bucket='tomorrow')

        facets = facet_counts(catalog, state, context)

        responses = {o.value: o.count for o in facets.responses}
        assert responses == {'new': 1, GOING: 1}

    def test_single_select_facet_ignores_own_criterion(self, catalog, context):
        """Test that period counts do not depend on the selected period."""
        state = FilterState(temporal_bucket='today', tags=['art'])

        facets = facet_counts(catalog, state, context)

        assert [(o.value, o.count) for o in facets.periods] == [('thisWeek', 1)]
        assert facets.tags == []


class TestViews:
    """Test cases for grouping helpers and user views."""

    def test_group_and_count_by_response(self, catalog, context):
        """Test response grouping in a single pass."""
        groups, counts = group_and_count_events_by_response(
            candidate_events(catalog, FilterState(), context), context.responses
        )

        assert ids(groups[GOING]) == ['e2']
        assert ids(groups[INVITED]) == ['e7']
        assert ids(groups['null']) == ['e1', 'e3']
        assert counts[NOT_INTERESTED] == 1
        assert sum(counts.values()) == 6

    def test_calendar_view(self, catalog, log, now):
        """Test that the calendar holds events the user is attending."""
        periods = calendar_view(catalog, log, 'u1', now, 'UTC')

        assert [(p.key, ids(p.events)) for p in periods] == [('tomorrow', ['e2'])]

    def test_organizer_view(self, catalog, now):
        """Test events organized by a user grouped by period."""
        periods = organizer_view(catalog, 'org1', now, 'UTC')

        assert [(p.key, ids(p.events)) for p in periods] == [
            ('today', ['e1']), ('thisWeek', ['e5'])
        ]
        assert organizer_view(catalog, None, now) == []
