"""
Status history kept for observers that attach after a run has started
"""
from collections import deque


class StatusHistory:
    """Fixed-capacity buffer of status events; the oldest entry is evicted first"""

    def __init__(self, max_entries=500):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries = deque(maxlen=max_entries)

    def __len__(self):
        return len(self._entries)

    def append(self, entry):
        """Record an event, dropping the oldest one when full"""
        self._entries.append(entry)

    def as_messages(self):
        """Return retained events in the wire format sent to observers"""
        return [entry.to_message() for entry in self._entries]

    def clear(self):
        self._entries.clear()
