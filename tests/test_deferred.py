from cloud_placement.scheduling.deferred import DeferredQueue


def make_queue(*task_ids):
    queue = DeferredQueue()
    for task_id in task_ids:
        queue.push(task_id)
    return queue


def test_push_ignores_duplicates():
    queue = make_queue(1, 2, 1)
    assert list(queue) == [1, 2]
    assert len(queue) == 2


def test_retry_attempts_head_to_tail():
    queue = make_queue(1, 2, 3)
    attempted = []

    def attempt(task_id):
        attempted.append(task_id)
        return False

    assert queue.retry(attempt) == []
    assert attempted == [1, 2, 3]
    assert list(queue) == [1, 2, 3]


def test_failures_keep_their_relative_order():
    queue = make_queue(1, 2, 3, 4)

    placed = queue.retry(lambda task_id: task_id in (1, 3))

    assert placed == [1, 3]
    assert list(queue) == [2, 4]
    assert 1 not in queue


def test_predicate_skips_entries_without_moving_them():
    queue = make_queue(1, 2, 3)
    attempted = []

    def attempt(task_id):
        attempted.append(task_id)
        return task_id == 3

    placed = queue.retry(attempt, predicate=lambda task_id: task_id != 2)

    assert attempted == [1, 3]
    assert placed == [3]
    assert list(queue) == [1, 2]


def test_entries_deferred_during_retry_queue_behind_survivors():
    queue = make_queue(1, 2)

    def attempt(task_id):
        queue.push(task_id + 10)
        return False

    queue.retry(attempt)
    assert list(queue) == [1, 2, 11, 12]
