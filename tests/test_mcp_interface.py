import pytest
from fastmcp.exceptions import ToolError

from agentmem import mcp_interface


def call(tool, **kwargs):
    """Invoke a registered tool's underlying function."""
    return getattr(tool, 'fn', tool)(**kwargs)


@pytest.fixture
def api_key(service):
    mcp_interface.set_memory_service(service)
    return service.get_config('inst-1').api_key


class TestMCPTools:

    def test_wrong_key_is_rejected(self, api_key):
        with pytest.raises(ToolError):
            call(mcp_interface.search_memory, instance_id='inst-1', api_key='wrong', query='anything')

    def test_event_and_search(self, api_key):
        event_id = call(mcp_interface.create_memory_event,
                        instance_id='inst-1',
                        api_key=api_key,
                        event_type='CONVERSATION',
                        content='asked about trail running shoes')

        results = call(mcp_interface.search_memory, instance_id='inst-1', api_key=api_key, query='trail running')

        assert results['events'][0]['id'] == event_id
        assert 'embedding' not in results['events'][0]
        assert isinstance(results['events'][0]['created_at'], str)

    def test_decision_and_outcome(self, api_key):
        decision_id = call(mcp_interface.record_decision,
                           instance_id='inst-1',
                           api_key=api_key,
                           decision='Suggest the trail shoes',
                           reasoning=['runs off-road'])

        assert call(mcp_interface.record_decision_outcome,
                    instance_id='inst-1',
                    api_key=api_key,
                    decision_id=decision_id,
                    outcome='bought them')

        listed = call(mcp_interface.list_decisions, instance_id='inst-1', api_key=api_key)
        assert listed[0]['outcome'] == 'bought them'

    def test_validation_errors_surface_as_tool_errors(self, api_key):
        with pytest.raises(ToolError):
            call(mcp_interface.record_decision, instance_id='inst-1', api_key=api_key, decision='', reasoning=[])

    def test_entities_and_relationships(self, api_key):
        alice = call(mcp_interface.upsert_entity,
                     instance_id='inst-1',
                     api_key=api_key,
                     entity_type='PERSON',
                     name='Alice')
        acme = call(mcp_interface.upsert_entity,
                    instance_id='inst-1',
                    api_key=api_key,
                    entity_type='ORGANIZATION',
                    name='Acme')
        call(mcp_interface.add_entity_relationship,
             instance_id='inst-1',
             api_key=api_key,
             entity_a_id=alice['id'],
             entity_b_id=acme['id'],
             relationship_type='works_at')

        entity = call(mcp_interface.get_entity, instance_id='inst-1', api_key=api_key, entity_id=acme['id'])

        assert entity['relationships'][0]['relationship_type'] == 'inverse:works_at'
        assert len(call(mcp_interface.list_entities, instance_id='inst-1', api_key=api_key)) == 2

    def test_digest_and_stats(self, api_key):
        assert call(mcp_interface.get_memory_digest, instance_id='inst-1', api_key=api_key) == ''

        call(mcp_interface.upsert_entity, instance_id='inst-1', api_key=api_key, entity_type='PERSON', name='Alice')

        digest = call(mcp_interface.get_memory_digest, instance_id='inst-1', api_key=api_key)
        stats = call(mcp_interface.get_memory_stats, instance_id='inst-1', api_key=api_key)
        assert digest.startswith('[AGENT MEMORY]')
        assert stats['total_entities'] == 1
        assert stats['limits']['max_entities'] == 100
