# tests/fakes.py
from db import SqlWorkItemStore


class RecordingDispatcher:
    def __init__(self):
        self.intents = []

    def notify(self, intent):
        self.intents.append(intent)

    def for_title(self, title):
        return [i for i in self.intents if i.item_title == title]


class FailingDispatcher:
    def __init__(self):
        self.calls = 0

    def notify(self, intent):
        self.calls += 1
        raise RuntimeError("delivery channel down")


class OrderLoggingStore(SqlWorkItemStore):
    """Keeps every level write so a test can replay the swap step by step."""

    def __init__(self, bind=None):
        super().__init__(bind)
        self.order_writes = []

    def write_subtask_order(self, subtask_id, order, *, expected_version=None):
        self.order_writes.append((subtask_id, order))
        super().write_subtask_order(subtask_id, order, expected_version=expected_version)


class StaleReadStore(SqlWorkItemStore):
    """Returns a snapshot of a subtask taken earlier, as a slow second tab would."""

    def __init__(self, bind=None):
        super().__init__(bind)
        self.stale = {}

    def get_subtask(self, subtask_id):
        if subtask_id in self.stale:
            return self.stale[subtask_id]
        return super().get_subtask(subtask_id)
