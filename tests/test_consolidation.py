import pytest

from agentmem.models.core import ConsolidatedProfile, MemoryEvent
from agentmem.services.consolidation import UNKNOWN_SENDER, ConsolidationEngine


@pytest.fixture
def engine(episodic, entities, extraction, configs, settings):
    return ConsolidationEngine(episodic, entities, extraction, configs, settings)


def append_events(episodic, clock, sender_id, count, instance_id='inst-1', tier='STANDARD'):
    ids = []
    for i in range(count):
        ids.append(
            episodic.append(
                MemoryEvent(instance_id=instance_id,
                            event_type='CONVERSATION',
                            content=f'{sender_id} message {i}',
                            sender_id=sender_id), tier))
        clock.advance(minutes=1)
    return ids


def consolidated_flags(episodic, ids):
    events = {event.id: event for event in episodic.list_recent('inst-1', limit=100)}
    return [events[event_id].consolidated_at is not None for event_id in ids]


class TestGroupBySender:

    def test_sender_less_events_share_a_bucket(self):
        events = [
            MemoryEvent(instance_id='i', event_type='CONVERSATION', content='a', sender_id='u1'),
            MemoryEvent(instance_id='i', event_type='CONVERSATION', content='b'),
            MemoryEvent(instance_id='i', event_type='CONVERSATION', content='c', sender_id='u1'),
        ]

        buckets = ConsolidationEngine.group_by_sender(events)

        assert [e.content for e in buckets['u1']] == ['a', 'c']
        assert [e.content for e in buckets[UNKNOWN_SENDER]] == ['b']


class TestConsolidationRun:

    def test_small_bucket_waits_for_more_evidence(self, engine, episodic, extraction, clock):
        ids = append_events(episodic, clock, 'u1', 2)
        clock.advance(days=8)

        result = engine.run('inst-1')

        assert result.consolidated == 0
        assert consolidated_flags(episodic, ids) == [False, False]
        assert extraction.profile_calls == []

    def test_bucket_is_marked_even_without_a_profile(self, engine, episodic, extraction, entities, clock):
        ids = append_events(episodic, clock, 'u1', 3)
        clock.advance(days=8)
        extraction.profiles['u1'] = ConsolidatedProfile(name=None, type='PERSON')

        result = engine.run('inst-1')

        assert result.consolidated == 3
        assert result.entities_updated == 0
        assert consolidated_flags(episodic, ids) == [True, True, True]
        assert entities.count('inst-1') == 0

    def test_profile_becomes_an_entity_with_sender_alias(self, engine, episodic, extraction, entities, clock):
        append_events(episodic, clock, 'u1', 3)
        clock.advance(days=8)
        extraction.profiles['u1'] = ConsolidatedProfile(name='Dana Smith',
                                                        type='PERSON',
                                                        aliases=['Dana', 'u1'],
                                                        summary='Runner',
                                                        importance=0.7)

        result = engine.run('inst-1')

        assert result.entities_updated == 1
        entity = entities.find_by_name('inst-1', 'Dana Smith')
        assert entity.aliases == ['u1', 'Dana']
        assert entity.summary == 'Runner'
        assert entity.importance == 0.7

    def test_events_without_sender_are_never_profiled(self, engine, episodic, extraction, clock):
        ids = append_events(episodic, clock, None, 4)
        clock.advance(days=8)

        result = engine.run('inst-1')

        assert result.consolidated == 0
        assert extraction.profile_calls == []
        assert consolidated_flags(episodic, ids) == [False] * 4

    def test_recent_events_are_left_alone(self, engine, episodic, extraction, clock):
        append_events(episodic, clock, 'u1', 3)
        clock.advance(days=2)

        assert engine.run('inst-1').consolidated == 0

    def test_profile_input_is_capped_to_most_recent(self, engine, episodic, extraction, clock, settings):
        settings.max_profile_events = 2
        append_events(episodic, clock, 'u1', 4)
        clock.advance(days=8)

        engine.run('inst-1')

        sender_id, events = extraction.profile_calls[0]
        assert sender_id == 'u1'
        assert [event.content for event in events] == ['u1 message 2', 'u1 message 3']

    def test_run_purges_expired_events_everywhere(self, engine, episodic, clock):
        append_events(episodic, clock, 'u1', 2, instance_id='inst-2')
        clock.advance(days=31)

        result = engine.run('inst-1')

        assert result.expired == 2
        assert episodic.count('inst-2') == 0

    def test_consolidated_events_are_not_processed_twice(self, engine, episodic, extraction, clock):
        append_events(episodic, clock, 'u1', 3)
        clock.advance(days=8)
        engine.run('inst-1')

        assert engine.run('inst-1').consolidated == 0
        assert len(extraction.profile_calls) == 1

    def test_run_stamps_last_consolidated(self, engine, configs, clock):
        engine.run('inst-1')

        assert configs.get('inst-1').last_consolidated_at == clock()

    def test_skipped_buckets_do_not_block_the_backlog(self, engine, episodic, extraction, clock, settings):
        settings.unconsolidated_batch_size = 4
        append_events(episodic, clock, None, 6, tier='PRO')
        for sender_id in ('u2', 'u3', 'u4'):
            append_events(episodic, clock, sender_id, 2, tier='PRO')
        ids = append_events(episodic, clock, 'u1', 3, tier='PRO')
        clock.advance(days=8)
        extraction.profiles['u1'] = ConsolidatedProfile(name='Uma', type='PERSON')

        results = [engine.run('inst-1').consolidated for _ in range(2)]

        assert results == [3, 0]
        assert consolidated_flags(episodic, ids) == [True, True, True]
        assert [sender_id for sender_id, _ in extraction.profile_calls] == ['u1']
