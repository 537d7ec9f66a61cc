import pytest

from agentmem.models.core import MemoryEvent
from agentmem.utils.opensearch_client import similarity_from_score, term


def append(episodic, instance_id, content):
    return episodic.append(
        MemoryEvent(instance_id=instance_id, event_type='CONVERSATION', content=content, sender_id='u1'), 'PRO')


class TestVectorSearch:

    def test_other_instances_cannot_crowd_out_results(self, episodic, embed):
        for i in range(15):
            append(episodic, 'inst-b', 'quarterly budget review')
        own = append(episodic, 'inst-a', 'budget review notes from the offsite')

        results = episodic.search_by_vector('inst-a', embed.vector('quarterly budget review'), limit=10)

        assert [event.id for event in results] == [own]

    def test_instance_filter_is_inside_the_knn_clause(self, episodic, embed, raw_opensearch, monkeypatch):
        append(episodic, 'inst-a', 'budget review')
        bodies = []
        real_search = raw_opensearch.search

        def recording_search(index, body):
            bodies.append(body)
            return real_search(index=index, body=body)

        monkeypatch.setattr(raw_opensearch, 'search', recording_search)
        episodic.search_by_vector('inst-a', embed.vector('budget'), limit=5)

        knn = bodies[0]['query']['knn']['embedding']
        assert knn['k'] == 5
        assert term('instance_id', 'inst-a') in knn['filter']['bool']['filter']

    def test_similarity_round_trips_the_lucene_score(self):
        assert similarity_from_score(1.0) == pytest.approx(1.0)
        assert similarity_from_score(0.5) == pytest.approx(0.0)
        assert similarity_from_score(None) == -1.0
