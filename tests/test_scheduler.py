import threading

from agentmem.models.core import InstanceInfo
from agentmem.services.scheduler import BatchJobRunner


def running(*instance_ids):
    return [InstanceInfo(instance_id=instance_id, status='RUNNING', memory_enabled=True) for instance_id in instance_ids]


class FakeMonotonic:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestBatchJobRunner:

    def test_only_eligible_instances_run(self, settings):
        instances = running('a') + [
            InstanceInfo(instance_id='stopped', status='STOPPED', memory_enabled=True),
            InstanceInfo(instance_id='disabled', status='RUNNING', memory_enabled=False),
        ]
        seen = []

        report = BatchJobRunner(settings).run('test', instances, lambda instance_id: seen.append(instance_id))

        assert seen == ['a']
        assert report.succeeded == 1

    def test_one_failure_does_not_stop_the_others(self, settings):

        def job(instance_id):
            if instance_id == 'b':
                raise RuntimeError('boom')
            return instance_id.upper()

        report = BatchJobRunner(settings).run('test', running('a', 'b', 'c'), job)

        assert report.succeeded == 2
        assert report.failed == 1
        assert report.results == {'a': 'A', 'c': 'C'}
        assert report.errors == {'b': 'boom'}

    def test_instances_after_the_time_cap_are_skipped(self, settings):
        settings.batch_time_limit_seconds = 10
        clock = FakeMonotonic()
        seen = []

        def slow_job(instance_id):
            seen.append(instance_id)
            clock.now += 6

        report = BatchJobRunner(settings, monotonic=clock).run('test', running('a', 'b', 'c', 'd'), slow_job)

        assert seen == ['a', 'b']
        assert report.succeeded == 2
        assert report.skipped == 2

    def test_parallel_workers(self, settings):
        settings.batch_workers = 4
        lock = threading.Lock()
        seen = set()

        def job(instance_id):
            with lock:
                seen.add(instance_id)
            return 'ok'

        report = BatchJobRunner(settings).run('test', running(*[f'i{n}' for n in range(10)]), job)

        assert report.succeeded == 10
        assert seen == {f'i{n}' for n in range(10)}

    def test_passes_over_one_instance_are_serialized(self, settings):
        runner = BatchJobRunner(settings)
        inside = threading.Event()
        release = threading.Event()
        order = []

        def first(instance_id):
            inside.set()
            release.wait(5)
            order.append('first')

        def second(instance_id):
            order.append('second')

        worker = threading.Thread(target=runner.run_one, args=('a', first))
        worker.start()
        inside.wait(5)

        blocked = threading.Thread(target=runner.run_one, args=('a', second))
        blocked.start()
        blocked.join(0.2)
        assert blocked.is_alive()

        release.set()
        worker.join(5)
        blocked.join(5)
        assert order == ['first', 'second']

    def test_different_instances_do_not_share_a_lock(self, settings):
        runner = BatchJobRunner(settings)

        assert runner.lock_for('a') is runner.lock_for('a')
        assert runner.lock_for('a') is not runner.lock_for('b')
