from datetime import timedelta

from agentmem.models.core import MemoryEvent
from tests.conftest import INDEX_PREFIX

EVENT_INDEX = f'{INDEX_PREFIX}_event'


def make_event(instance_id='inst-1', content='hello there', sender_id='u1', summary=None):
    return MemoryEvent(instance_id=instance_id,
                       event_type='CONVERSATION',
                       content=content,
                       sender_id=sender_id,
                       summary=summary)


class TestAppend:

    def test_assigns_identity_and_expiry(self, episodic, clock):
        event = make_event()
        event_id = episodic.append(event, 'STANDARD')

        assert event_id == event.id
        assert event.created_at == clock()
        assert event.expires_at == clock() + timedelta(days=30)

    def test_pro_events_have_no_expiry_field(self, episodic, raw_opensearch):
        event_id = episodic.append(make_event(), 'PRO')

        assert 'expires_at' not in raw_opensearch.indexes[EVENT_INDEX][event_id]

    def test_embeds_summary_in_preference_to_content(self, episodic, embed, raw_opensearch):
        event_id = episodic.append(make_event(content='long raw content', summary='short summary'), 'STANDARD')

        assert embed.calls[-1] == 'short summary'
        assert raw_opensearch.indexes[EVENT_INDEX][event_id]['embedding'] == embed.vector('short summary')

    def test_embedding_failure_keeps_the_event(self, episodic, embed, raw_opensearch):
        embed.fail = True
        event_id = episodic.append(make_event(), 'STANDARD')

        stored = raw_opensearch.indexes[EVENT_INDEX][event_id]
        assert stored['content'] == 'hello there'
        assert 'embedding' not in stored


class TestReads:

    def test_list_recent_is_newest_first(self, episodic, clock):
        first = episodic.append(make_event(content='first'), 'STANDARD')
        clock.advance(minutes=1)
        second = episodic.append(make_event(content='second'), 'STANDARD')

        assert [event.id for event in episodic.list_recent('inst-1')] == [second, first]

    def test_list_recent_excludes_expired_events(self, episodic, clock):
        episodic.append(make_event(content='old'), 'STANDARD')
        clock.advance(days=31)
        fresh = episodic.append(make_event(content='fresh'), 'STANDARD')

        assert [event.id for event in episodic.list_recent('inst-1')] == [fresh]

    def test_list_recent_since(self, episodic, clock):
        episodic.append(make_event(content='before'), 'STANDARD')
        clock.advance(hours=2)
        cutoff = clock()
        after = episodic.append(make_event(content='after'), 'STANDARD')

        assert [event.id for event in episodic.list_recent('inst-1', since=cutoff)] == [after]

    def test_reads_are_scoped_to_the_instance(self, episodic):
        episodic.append(make_event(instance_id='inst-1'), 'STANDARD')
        episodic.append(make_event(instance_id='inst-2'), 'STANDARD')

        assert len(episodic.list_recent('inst-1')) == 1
        assert episodic.count('inst-2') == 1

    def test_count_since(self, episodic, clock):
        episodic.append(make_event(), 'STANDARD')
        clock.advance(days=1)
        since = clock()
        episodic.append(make_event(), 'STANDARD')
        episodic.append(make_event(), 'STANDARD')

        assert episodic.count('inst-1') == 3
        assert episodic.count('inst-1', since=since) == 2


class TestConsolidationSupport:

    def test_unconsolidated_respects_dwell_and_order(self, episodic, clock):
        oldest = episodic.append(make_event(content='a'), 'STANDARD')
        clock.advance(days=1)
        older = episodic.append(make_event(content='b'), 'STANDARD')
        clock.advance(days=6, hours=12)
        episodic.append(make_event(content='recent'), 'STANDARD')
        clock.advance(days=1)

        events = episodic.list_unconsolidated('inst-1', older_than_days=7)

        assert [event.id for event in events] == [oldest, older]

    def test_marked_events_are_no_longer_unconsolidated(self, episodic, clock):
        ids = [episodic.append(make_event(content=str(i)), 'STANDARD') for i in range(3)]
        clock.advance(days=8)

        assert episodic.mark_consolidated(ids[:2]) == 2

        remaining = episodic.list_unconsolidated('inst-1', older_than_days=7)
        assert [event.id for event in remaining] == [ids[2]]
        assert all(event.consolidated_at is None for event in remaining)

    def test_mark_consolidated_with_no_ids_makes_no_request(self, episodic, raw_opensearch):
        assert episodic.mark_consolidated([]) == 0
        assert 'update_by_query' not in raw_opensearch.calls

    def test_purge_is_idempotent(self, episodic, clock):
        episodic.append(make_event(), 'STANDARD')
        episodic.append(make_event(), 'PRO')
        clock.advance(days=31)

        assert episodic.purge_expired() == 1
        assert episodic.purge_expired() == 0
        assert episodic.count('inst-1') == 1

    def test_purge_keeps_events_appended_during_the_sweep(self, episodic, clock):
        episodic.append(make_event(), 'STANDARD')

        assert episodic.purge_expired() == 0
        assert episodic.count('inst-1') == 1


class TestSearch:

    def test_vector_search_ranks_by_similarity(self, episodic, embed):
        episodic.append(make_event(content='the quarterly budget review meeting'), 'STANDARD')
        episodic.append(make_event(content='lunch order for friday'), 'STANDARD')

        results = episodic.search_by_vector('inst-1', embed.vector('budget review'), limit=10)

        assert results[0].content == 'the quarterly budget review meeting'
        assert results[0].similarity > results[-1].similarity

    def test_text_search_matches_keywords(self, episodic):
        episodic.append(make_event(content='shipping the release on monday'), 'STANDARD')
        episodic.append(make_event(content='unrelated chatter'), 'STANDARD')

        results = episodic.search_by_text('inst-1', 'release monday')

        assert [event.content for event in results] == ['shipping the release on monday']

    def test_search_excludes_expired(self, episodic, embed, clock):
        episodic.append(make_event(content='budget review'), 'STANDARD')
        clock.advance(days=31)

        assert episodic.search_by_vector('inst-1', embed.vector('budget review')) == []
        assert episodic.search_by_text('inst-1', 'budget') == []

    def test_unconsolidated_skips_sender_less_events(self, episodic, clock):
        episodic.append(make_event(sender_id=None), 'STANDARD')
        with_sender = episodic.append(make_event(), 'STANDARD')
        clock.advance(days=8)

        assert [event.id for event in episodic.list_unconsolidated('inst-1', older_than_days=7)] == [with_sender]

    def test_unconsolidated_pages_past_equal_timestamps(self, episodic, clock):
        ids = {episodic.append(make_event(content=str(i)), 'STANDARD') for i in range(5)}
        clock.advance(days=8)

        first = episodic.list_unconsolidated('inst-1', older_than_days=7, size=2)
        second = episodic.list_unconsolidated('inst-1', older_than_days=7, after=first[-1], size=2)
        third = episodic.list_unconsolidated('inst-1', older_than_days=7, after=second[-1], size=2)

        pages = [event.id for event in first + second + third]
        assert len(pages) == 5
        assert set(pages) == ids
        assert pages == sorted(pages)
