"""
Search progress persisted between runs.

Each (pattern, digit-4 mode) pair keeps its own JSON array of candidates that
were already submitted, so switching the pattern never reuses another job's
history.
"""

import json
import logging
import os
import tempfile

from errors import ProgressFileError

logger = logging.getLogger(__name__)


def config_key(template, exclude_digit_4):
    """Stable identifier for one search job"""
    suffix = "no4" if exclude_digit_4 else "with4"
    return f"{template}_{suffix}"


def remaining(universe, searched):
    """Candidates of the universe that have not been searched yet, each exactly once"""
    return sorted(set(universe) - set(searched))


class SearchProgress:
    """Set of already searched candidates for one search job, saved after every addition"""

    def __init__(self, state_dir, template, exclude_digit_4):
        self.state_dir = state_dir
        self.key = config_key(template, exclude_digit_4)
        self.path = os.path.join(state_dir, f"gv_searched_{self.key}.json")
        self._searched = set()

    @property
    def searched(self):
        return set(self._searched)

    def load(self):
        """Read the record from disk; a missing file means nothing was searched yet"""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.debug(f"No progress file at {self.path}, starting fresh")
            self._searched = set()
            return set()
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            raise ProgressFileError(f"Progress file {self.path} is not valid UTF-8 JSON: {e}") from e

        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            raise ProgressFileError(f"Progress file {self.path} must contain a JSON array of strings")

        self._searched = set(data)
        logger.debug(f"Loaded {len(self._searched)} searched candidates from {self.path}")
        return set(self._searched)

    def save(self, searched):
        """Replace the record with the given set"""
        os.makedirs(self.state_dir or '.', exist_ok=True)
        payload = json.dumps(sorted(searched))

        # Write to a sibling temp file, then swap it in so readers never see a partial record
        fd, tmp_path = tempfile.mkstemp(prefix=f".gv_searched_{self.key}.", suffix=".tmp", dir=self.state_dir or '.')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        self._searched = set(searched)

    def mark_searched(self, candidate):
        """Record one attempted candidate and persist immediately"""
        updated = set(self._searched)
        updated.add(candidate)
        self.save(updated)


class RemainingWork:
    """Candidates still to be searched in this run, with O(1) removal and random picks"""

    def __init__(self, candidates=()):
        self._items = []
        self._positions = {}
        for candidate in candidates:
            self.add(candidate)

    def __len__(self):
        return len(self._items)

    def __contains__(self, candidate):
        return candidate in self._positions

    def __iter__(self):
        return iter(list(self._items))

    def add(self, candidate):
        if candidate in self._positions:
            return
        self._positions[candidate] = len(self._items)
        self._items.append(candidate)

    def discard(self, candidate):
        index = self._positions.pop(candidate, None)
        if index is None:
            return
        last = self._items.pop()
        if index < len(self._items):
            self._items[index] = last
            self._positions[last] = index

    def pick(self, rng):
        """Uniformly random remaining candidate"""
        if not self._items:
            raise IndexError("No remaining candidates")
        return self._items[rng.randrange(len(self._items))]
