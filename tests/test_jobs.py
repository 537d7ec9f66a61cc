from unittest.mock import MagicMock, patch

import pytest

from agentmem import jobs
from agentmem.models.core import BatchReport, ConsolidationResult
from agentmem.utils.instance_client import InstanceClientError
from agentmem.utils.neptune_client import NeptuneError
from agentmem.utils.opensearch_client import OpenSearchError


class TestJobsCli:

    def test_parser_requires_a_known_job(self):
        with pytest.raises(SystemExit):
            jobs.build_parser().parse_args(['vacuum'])

    def test_single_instance(self):
        service = MagicMock()
        service.run_consolidation.return_value = ConsolidationResult(consolidated=3, entities_updated=1)

        output = jobs.run_job(service, 'consolidate', 'inst-1')

        assert output == {'instance_id': 'inst-1', 'consolidated': 3, 'entities_updated': 1, 'expired': 0}
        service.run_consolidation.assert_called_once_with('inst-1')

    def test_all_instances(self):
        service = MagicMock()
        service.run_mining_for_all.return_value = BatchReport(job='mining', succeeded=2)

        output = jobs.run_job(service, 'mine')

        assert output['job'] == 'mining'
        assert output['succeeded'] == 2

    def test_main_exit_code_reflects_failures(self, capsys):
        service = MagicMock()
        service.run_consolidation_for_all.return_value = BatchReport(job='consolidation', failed=1)

        with patch.object(jobs, 'MemoryManagementService', return_value=service):
            assert jobs.main(['consolidate']) == 1

        assert '"failed": 1' in capsys.readouterr().out
        service.shutdown.assert_called_once()

    def test_main_handles_unreachable_host(self):
        service = MagicMock()
        service.run_mining_for_all.side_effect = InstanceClientError('down')

        with patch.object(jobs, 'MemoryManagementService', return_value=service):
            assert jobs.main(['mine']) == 1
        service.shutdown.assert_called_once()

    @pytest.mark.parametrize('error', [OpenSearchError('cluster unavailable'), NeptuneError('connection refused')])
    def test_main_handles_storage_errors_for_one_instance(self, error, capsys):
        service = MagicMock()
        service.run_consolidation.side_effect = error

        with patch.object(jobs, 'MemoryManagementService', return_value=service):
            assert jobs.main(['consolidate', '--instance', 'inst-1']) == 1

        assert capsys.readouterr().out == ''
        service.shutdown.assert_called_once()
