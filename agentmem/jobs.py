"""
Command line entry point for the scheduled memory jobs.

    agentmem-jobs consolidate              # every eligible instance
    agentmem-jobs mine --instance inst-1   # one instance
"""

import argparse
import json
import sys
from dataclasses import asdict
from typing import List, Optional

from .services.memory_management import MemoryManagementService
from .utils.instance_client import InstanceClientError
from .utils.logging_config import get_logger
from .utils.neptune_client import NeptuneError
from .utils.opensearch_client import OpenSearchError

logger = get_logger(__name__)

JOBS = ('consolidate', 'mine')


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog='agentmem-jobs', description='Run agent memory maintenance jobs')
    ap.add_argument('job', choices=JOBS, help='Job to run')
    ap.add_argument('--instance', help='Run for a single instance instead of every eligible one')
    return ap


def run_job(service: MemoryManagementService, job: str, instance_id: Optional[str] = None) -> dict:
    """Run a job and return its result as a plain dict."""
    if instance_id:
        result = service.run_consolidation(instance_id) if job == 'consolidate' else service.run_mining(instance_id)
        return {'instance_id': instance_id, **asdict(result)}

    report = service.run_consolidation_for_all() if job == 'consolidate' else service.run_mining_for_all()
    return asdict(report)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    service = MemoryManagementService()
    try:
        output = run_job(service, args.job, args.instance)
    except InstanceClientError as e:
        logger.error(f'Could not reach the host app: {e}')
        return 1
    except (OpenSearchError, NeptuneError) as e:
        logger.error(f'{args.job} failed: {e}')
        return 1
    finally:
        service.shutdown()

    print(json.dumps(output, indent=2, default=str))
    return 1 if output.get('failed') else 0


if __name__ == '__main__':
    sys.exit(main())
