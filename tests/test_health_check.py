from unittest.mock import patch

from agentmem.utils import health_check

CLIENTS = ('BedrockLLM', 'BedrockEmbed', 'NeptuneClient', 'OpenSearchClient', 'InstanceClient')


def patch_clients():
    return [patch.object(health_check, name) for name in CLIENTS]


class TestHealthCheck:

    def test_all_healthy(self):
        patches = patch_clients()
        mocks = [p.start() for p in patches]
        try:
            for mock in mocks[:4]:
                mock.return_value.health_check.return_value = True
            mocks[4].return_value.list_instances.return_value = []

            status = health_check.get_health_status()

            assert set(status) == {'bedrock_llm', 'bedrock_embed', 'neptune', 'opensearch', 'host_app'}
            assert health_check.check_health()
        finally:
            for p in patches:
                p.stop()

    def test_exceptions_mark_a_component_unhealthy(self):
        patches = patch_clients()
        mocks = [p.start() for p in patches]
        try:
            for mock in mocks[:4]:
                mock.return_value.health_check.return_value = True
            mocks[2].side_effect = RuntimeError('no route to host')
            mocks[4].return_value.list_instances.side_effect = health_check.InstanceClientError('down')

            status = health_check.get_health_status()

            assert status['neptune'] == {'healthy': False, 'service': 'Amazon Neptune', 'error': 'no route to host'}
            assert status['host_app']['healthy'] is False
            assert status['opensearch']['healthy'] is True
            assert not health_check.check_health()
        finally:
            for p in patches:
                p.stop()

    def test_system_info(self):
        with patch.object(health_check, 'get_health_status', return_value={}):
            info = health_check.get_system_info()

        assert info['service_name'] == 'agentmem'
        assert 'default_tier' in info['configuration']
