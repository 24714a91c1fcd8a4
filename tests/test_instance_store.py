"""
Tests for instance persistence and concurrent writers

Covers optimistic versioning in the store, the engine's retry on a lost
save race, and per-instance serialization of threads in one process.
"""

import pytest
import threading

from entity_workflows import transitions
from entity_workflows.instance_store import WorkflowInstanceStore, INSTANCES_TABLE
from entity_workflows.models import WorkflowStatus, Priority
from entity_workflows.exceptions import ConcurrencyConflict, InstanceNotFound, StepMismatch


class TestVersionedSave:
    """Optimistic concurrency control in the store"""

    def test_save_bumps_version(self, engine, store, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        instance = store.get(instance_id)
        assert instance.version == 1

        instance.metadata['note'] = "checked"
        store.save(instance)

        assert instance.version == 2
        assert store.get(instance_id).version == 2
        assert store.get(instance_id).metadata['note'] == "checked"

    def test_stale_save_rejected(self, engine, store, storage, formation_template):
        """A second writer holding an old copy loses"""
        instance_id = engine.instantiate(formation_template.id)
        other_process = WorkflowInstanceStore(storage)

        mine = store.get(instance_id)
        theirs = other_process.get(instance_id)

        theirs.metadata['owner'] = "them"
        other_process.save(theirs)

        mine.metadata['owner'] = "me"
        with pytest.raises(ConcurrencyConflict) as exc_info:
            store.save(mine)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.current_version == 2
        assert store.get(instance_id).metadata['owner'] == "them"

    def test_new_instance_must_start_at_version_zero(self, engine, store, formation_template):
        instance = store.get(engine.instantiate(formation_template.id))
        instance.id = "fresh-id"

        with pytest.raises(ConcurrencyConflict):
            store.save(instance)

        assert not store.exists("fresh-id")

    def test_get_unknown(self, store):
        assert store.find("missing") is None
        with pytest.raises(InstanceNotFound):
            store.get("missing")

    def test_list_newest_first(self, engine, store, clock, formation_template):
        first = engine.instantiate(formation_template.id)
        clock.advance(hours=1)
        second = engine.instantiate(formation_template.id, priority="high")

        assert [i.id for i in store.list()] == [second, first]
        assert [i.id for i in store.list(priority=Priority.HIGH)] == [second]
        assert store.count() == 2

    def test_records_live_in_instances_table(self, engine, storage, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        assert storage.load(INSTANCES_TABLE, instance_id)['version'] == 1


class TestEngineRetry:
    """The engine re-reads and re-applies after losing a save race"""

    def _race_once(self, monkeypatch, store, storage, rival_change):
        """Make the next save lose against a writer in another process"""
        other_process = WorkflowInstanceStore(storage)
        real_save = store.save
        raced = []

        def racing_save(instance):
            if not raced:
                raced.append(instance.id)
                rival = other_process.get(instance.id)
                rival = rival_change(rival)
                other_process.save(rival)
            return real_save(instance)

        monkeypatch.setattr(store, "save", racing_save)
        return raced

    def test_retry_applies_intent_to_fresh_state(self, monkeypatch, engine, store, storage,
                                                 recorder, formation_template):
        instance_id = engine.instantiate(formation_template.id)

        def rival_change(rival):
            rival.metadata['touched_by'] = "other-process"
            return rival

        raced = self._race_once(monkeypatch, store, storage, rival_change)

        instance = engine.escalate(instance_id, reason="late")

        assert raced == [instance_id]
        assert instance.priority == Priority.HIGH
        assert instance.metadata['touched_by'] == "other-process"
        assert len(instance.metadata['escalations']) == 1
        assert store.get(instance_id).version == 3

    def test_retry_surfaces_step_mismatch(self, monkeypatch, engine, store, storage,
                                          recorder, clock, formation_template):
        """If the rival already completed the step, the retry is rejected"""
        instance_id = engine.instantiate(formation_template.id)

        def rival_change(rival):
            completed = transitions.complete_step(rival, "s1", "completed", clock.now())
            return completed.instance

        self._race_once(monkeypatch, store, storage, rival_change)

        with pytest.raises(StepMismatch):
            engine.complete_step(instance_id, "s1", "completed")

        instance = store.get(instance_id)
        assert instance.current_step == 2
        # Our losing attempt published nothing
        assert recorder.events == []

    def test_gives_up_after_max_retries(self, monkeypatch, engine, store, recorder, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        attempts = []

        def always_conflicting(instance):
            attempts.append(instance.version)
            raise ConcurrencyConflict(instance.id, instance.version, instance.version + 1)

        monkeypatch.setattr(store, "save", always_conflicting)

        with pytest.raises(ConcurrencyConflict):
            engine.cancel(instance_id)

        assert len(attempts) == engine.max_save_retries + 1
        assert recorder.events == []

        monkeypatch.undo()
        assert store.get(instance_id).status == WorkflowStatus.PENDING


class TestThreadedWriters:
    """Threads in one process are serialized per instance"""

    def test_only_one_thread_completes_a_step(self, engine, recorder, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        barrier = threading.Barrier(8)
        successes = []
        mismatches = []
        unexpected = []

        def worker(worker_id):
            barrier.wait()
            try:
                engine.complete_step(instance_id, "s1", "completed", actor=f"agent_{worker_id}")
                successes.append(worker_id)
            except StepMismatch:
                mismatches.append(worker_id)
            except Exception as e:
                unexpected.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert unexpected == []
        assert len(successes) == 1
        assert len(mismatches) == 7

        instance = engine.get_instance(instance_id)
        assert instance.current_step == 2
        assert instance.version == 2
        assert recorder.transitions(instance_id) == [("pending", "in_progress")]

    def test_concurrent_annotations_all_land(self, engine, formation_template):
        """No update is lost when many threads write different keys"""
        instance_id = engine.instantiate(formation_template.id)

        def worker(n):
            engine.annotate(instance_id, f"key_{n}", n)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        instance = engine.get_instance(instance_id)
        assert {f"key_{n}" for n in range(10)} <= set(instance.metadata)
        assert instance.version == 11

    def test_lock_excludes_other_threads(self, store):
        """A second thread waits while the instance lock is held"""
        entered = threading.Event()

        def contender():
            with store.lock("inst-1"):
                entered.set()

        with store.lock("inst-1"):
            # Re-entering from the holding thread must not deadlock
            with store.lock("inst-1"):
                thread = threading.Thread(target=contender)
                thread.start()
                assert not entered.wait(0.1)

        thread.join(timeout=5)
        assert entered.is_set()
        assert store.active_locks == 0

    def test_locks_released_after_use(self, engine, store, formation_template):
        """Neither finished nor unknown instances keep a lock around"""
        instance_id = engine.instantiate(formation_template.id)
        engine.annotate(instance_id, "checked", True)
        engine.cancel(instance_id)

        with pytest.raises(InstanceNotFound):
            engine.cancel("missing")

        assert store.active_locks == 0

    def test_waiting_thread_shares_the_held_lock(self, store):
        entered = threading.Event()

        def contender():
            with store.lock("inst-1"):
                entered.set()

        with store.lock("inst-1"):
            thread = threading.Thread(target=contender)
            thread.start()
            assert not entered.wait(0.1)
            assert store.active_locks == 1

        thread.join(timeout=5)
        assert entered.is_set()
        assert store.active_locks == 0
