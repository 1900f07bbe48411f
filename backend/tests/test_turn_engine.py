"""
Tests for the task/turn engine: prompt limits, context chaining and per-task serialization.
"""
import pytest
import threading
import time
from unittest.mock import MagicMock
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from chateval.errors import ConflictError, NotFoundError, StateError, UpstreamError, ValidationError
from chateval.models import new_conversation_item, new_task_item
from chateval.store import MemoryEntityStore
from chateval.turns import create_task, submit_turn


def turns_of(store, task_id):
    return [c['turn'] for c in store.list_conversations_by_task(task_id)]


def make_generator(*responses):
    return MagicMock(side_effect=list(responses))


class TestCreateTask:
    """Tests for create_task."""

    def test_new_task_starts_at_turn_one(self):
        """A new task is open at turn 1 of 3 and owned by the caller."""
        store = MemoryEntityStore()
        task = create_task(store, owner_user_id='tasker')

        assert task['currentTurn'] == 1
        assert task['maxTurns'] == 3
        assert task['completed'] is False
        assert task['completedAt'] is None
        assert task['userId'] == 'tasker'
        assert store.get_task(task['taskId']) == task

    def test_anonymous_task(self):
        """A task may be created without an owner."""
        task = create_task(MemoryEntityStore())
        assert task['userId'] is None


class TestPromptValidation:
    """Prompt limits are checked before anything is read or written."""

    def test_61_word_prompt_rejected(self):
        """A 61-word prompt fails before the generator runs and changes nothing."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('unused', 1))

        with pytest.raises(ValidationError) as exc:
            submit_turn(store, generate, task['taskId'], ' '.join(['word'] * 61))

        assert 'prompt' in exc.value.details
        assert store.get_task(task['taskId'])['currentTurn'] == 1
        assert turns_of(store, task['taskId']) == []
        generate.assert_not_called()

    def test_60_word_prompt_accepted(self):
        """Exactly 60 words is within the limit."""
        store = MemoryEntityStore()
        task = create_task(store)

        updated, conversation = submit_turn(
            store, make_generator(('ok', 1)), task['taskId'], ' '.join(['word'] * 60)
        )

        assert updated['currentTurn'] == 2
        assert conversation['turn'] == 1

    def test_words_split_on_any_whitespace(self):
        """Newlines, tabs and repeated spaces all separate words."""
        store = MemoryEntityStore()
        task = create_task(store)
        prompt = '\n'.join(['word'] * 30) + '\t' + '  '.join(['word'] * 31)

        with pytest.raises(ValidationError):
            submit_turn(store, make_generator(), task['taskId'], prompt)

    @pytest.mark.parametrize('prompt', ['', '   ', None])
    def test_empty_prompt_rejected(self, prompt):
        """Blank or missing prompts are rejected."""
        store = MemoryEntityStore()
        task = create_task(store)

        with pytest.raises(ValidationError):
            submit_turn(store, make_generator(), task['taskId'], prompt)


class TestContextChaining:
    """The generator sees the previous AI response; the stored prompt stays literal."""

    def test_first_turn_sends_prompt_verbatim(self):
        """Turn 1 has no context to chain."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('R1', 1))

        submit_turn(store, generate, task['taskId'], 'P1')

        generate.assert_called_once_with('P1')

    def test_second_turn_chains_previous_response(self):
        """Turn 2 sends R1, a blank line, then P2, but stores only P2."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('R1', 1), ('R2', 1))

        submit_turn(store, generate, task['taskId'], 'P1')
        _, conversation = submit_turn(store, generate, task['taskId'], 'P2')

        assert generate.call_args_list[1].args[0] == 'R1\n\nP2'
        assert conversation['userPrompt'] == 'P2'
        assert conversation['aiResponse'] == 'R2'

    def test_third_turn_chains_only_the_second_response(self):
        """Only the immediately previous response is chained."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('R1', 1), ('R2', 1), ('R3', 1))

        for prompt in ('P1', 'P2', 'P3'):
            submit_turn(store, generate, task['taskId'], prompt)

        assert generate.call_args_list[2].args[0] == 'R2\n\nP3'

    def test_missing_previous_turn_falls_back_to_prompt(self):
        """Without a previous conversation the prompt is sent alone."""
        store = MemoryEntityStore()
        item = new_task_item()
        item['currentTurn'] = 2
        store.create_task(item)
        generate = make_generator(('R2', 1))

        _, conversation = submit_turn(store, generate, item['taskId'], 'P2')

        generate.assert_called_once_with('P2')
        assert conversation['turn'] == 2


class TestTurnLimits:
    """Tests for exhausted and completed tasks."""

    def test_unknown_task(self):
        """Submitting to an unknown task raises NotFoundError."""
        with pytest.raises(NotFoundError):
            submit_turn(MemoryEntityStore(), make_generator(), 'missing', 'hello')

    def test_fourth_turn_rejected(self):
        """After three turns the task is exhausted."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('R1', 1), ('R2', 1), ('R3', 1))
        for prompt in ('P1', 'P2', 'P3'):
            updated, _ = submit_turn(store, generate, task['taskId'], prompt)

        assert updated['currentTurn'] == 4

        with pytest.raises(StateError):
            submit_turn(store, generate, task['taskId'], 'P4')

        assert turns_of(store, task['taskId']) == [1, 2, 3]
        assert store.get_task(task['taskId'])['currentTurn'] == 4

    def test_completed_task_rejected(self):
        """A completed task accepts no more turns."""
        store = MemoryEntityStore()
        task = create_task(store)
        store.complete_task(task['taskId'], '2026-01-01T00:00:00+00:00', None, 0)

        with pytest.raises(StateError):
            submit_turn(store, make_generator(), task['taskId'], 'P1')

        assert turns_of(store, task['taskId']) == []


class TestGeneratorFailure:
    """A generator failure must not consume the turn."""

    def test_failure_leaves_turn_unconsumed(self):
        """An UpstreamError on turn 2 leaves the task at turn 2 with no new conversation."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('R1', 1), UpstreamError('boom'))
        submit_turn(store, generate, task['taskId'], 'P1')

        with pytest.raises(UpstreamError):
            submit_turn(store, generate, task['taskId'], 'P2')

        assert store.get_task(task['taskId'])['currentTurn'] == 2
        assert turns_of(store, task['taskId']) == [1]

    def test_unexpected_generator_error_becomes_upstream(self):
        """Any exception from the generator is reported as a retryable UpstreamError."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = MagicMock(side_effect=RuntimeError('boom'))

        with pytest.raises(UpstreamError) as exc:
            submit_turn(store, generate, task['taskId'], 'hello')

        assert isinstance(exc.value.__cause__, RuntimeError)
        assert store.get_task(task['taskId'])['currentTurn'] == 1
        assert turns_of(store, task['taskId']) == []
        assert 'turnLease' not in store.get_task(task['taskId'])

    def test_retry_after_failure_succeeds(self):
        """The same turn can be retried and the lease is released after a failure."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(UpstreamError('timeout'), ('R1', 1))

        with pytest.raises(UpstreamError):
            submit_turn(store, generate, task['taskId'], 'P1')
        updated, conversation = submit_turn(store, generate, task['taskId'], 'P1')

        assert updated['currentTurn'] == 2
        assert conversation['turn'] == 1
        assert 'turnLease' not in store.get_task(task['taskId'])


class TestTurnSerialization:
    """Concurrent submissions for one task never both record a turn."""

    def test_live_lease_rejects_second_submission(self):
        """A live lease held by another submission fails fast without generating."""
        store = MemoryEntityStore()
        task = create_task(store)
        now = int(time.time())
        store.acquire_turn_lease(task['taskId'], 'other-submission', now, now + 60)
        generate = make_generator(('R1', 1))

        with pytest.raises(ConflictError):
            submit_turn(store, generate, task['taskId'], 'P1')

        generate.assert_not_called()
        assert store.get_task(task['taskId'])['currentTurn'] == 1

    def test_expired_lease_is_taken_over(self):
        """A lease left behind by a crashed submission expires."""
        store = MemoryEntityStore()
        task = create_task(store)
        now = int(time.time())
        store.acquire_turn_lease(task['taskId'], 'crashed-submission', now - 300, now - 180)

        updated, _ = submit_turn(store, make_generator(('R1', 1)), task['taskId'], 'P1')

        assert updated['currentTurn'] == 2

    def test_overlapping_submissions_record_one_turn(self):
        """A submission arriving mid-generation conflicts; the first one records turn 1."""
        store = MemoryEntityStore()
        task = create_task(store)
        entered = threading.Event()
        release = threading.Event()
        results = {}

        def slow_generator(prompt):
            entered.set()
            release.wait(timeout=5)
            return 'R1', 1

        def first_submission():
            results['first'] = submit_turn(store, slow_generator, task['taskId'], 'P1')

        worker = threading.Thread(target=first_submission)
        worker.start()
        assert entered.wait(timeout=5)

        with pytest.raises(ConflictError):
            submit_turn(store, make_generator(('other', 1)), task['taskId'], 'P1 again')

        release.set()
        worker.join(timeout=5)

        assert results['first'][0]['currentTurn'] == 2
        assert turns_of(store, task['taskId']) == [1]

    def test_other_tasks_progress_while_one_is_generating(self):
        """A slow generator on one task does not block another task."""
        store = MemoryEntityStore()
        busy = create_task(store)
        idle = create_task(store)
        entered = threading.Event()
        release = threading.Event()

        def slow_generator(prompt):
            entered.set()
            release.wait(timeout=5)
            return 'R1', 1

        worker = threading.Thread(target=submit_turn, args=(store, slow_generator, busy['taskId'], 'P1'))
        worker.start()
        assert entered.wait(timeout=5)

        updated, _ = submit_turn(store, make_generator(('R', 1)), idle['taskId'], 'P1')
        assert updated['currentTurn'] == 2

        release.set()
        worker.join(timeout=5)

    def test_record_turn_rejects_stale_turn(self):
        """record_turn refuses a commit for a turn the task is not at."""
        store = MemoryEntityStore()
        task = create_task(store)
        now = int(time.time())
        store.acquire_turn_lease(task['taskId'], 'lease', now, now + 60)
        conversation = new_conversation_item(task['taskId'], 2, 'P', 'R', 1)

        with pytest.raises(ConflictError):
            store.record_turn(conversation, expected_turn=2, lease_id='lease')

        assert turns_of(store, task['taskId']) == []


class TestTurnInvariant:
    """Persisted turns always equal {1..currentTurn-1}."""

    def test_turn_set_matches_current_turn_throughout(self):
        """Every step, failed ones included, keeps turns equal to 1..currentTurn-1."""
        store = MemoryEntityStore()
        task = create_task(store)
        generate = make_generator(('R1', 1), UpstreamError('x'), ('R2', 1), ('R3', 1))
        prompts = ['P1', 'P2', 'P2', 'P3', 'P4']

        for prompt in prompts:
            try:
                submit_turn(store, generate, task['taskId'], prompt)
            except (UpstreamError, StateError):
                pass
            current = store.get_task(task['taskId'])['currentTurn']
            assert turns_of(store, task['taskId']) == list(range(1, current))
