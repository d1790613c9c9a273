"""
Resource registry: one record per distinct URL seen during a run.

Implements at-most-once processing. The first caller to register a URL
owns it; every later caller gets the same record back and must leave it alone.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from urllib.parse import SplitResult

from .urls import is_foreign, is_processable_scheme, url_string


class ResourceState(Enum):
    """Processing state of a single resource."""
    WAIT = "Waiting"
    REQUEST = "Requesting"
    REQUEST_WAIT_REPEAT = "Waiting to retry request"
    REQUEST_ERROR = "Request error"
    DOWNLOAD = "Downloading"
    DOWNLOAD_ERROR = "Download error"
    READ = "Reading"
    SAVE = "Saving"
    SAVE_ERROR = "Save error"
    COMPLETE = "Saved"
    SKIP = "Skipped"

    @property
    def label(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_error(self) -> bool:
        return self in ERROR_STATES


ERROR_STATES = frozenset((
    ResourceState.REQUEST_ERROR,
    ResourceState.DOWNLOAD_ERROR,
    ResourceState.SAVE_ERROR,
))

TERMINAL_STATES = ERROR_STATES | {ResourceState.COMPLETE, ResourceState.SKIP}

# Error state for a resource that stops unexpectedly in a given phase
ABANDON_STATES = {
    ResourceState.WAIT: ResourceState.REQUEST_ERROR,
    ResourceState.REQUEST: ResourceState.REQUEST_ERROR,
    ResourceState.REQUEST_WAIT_REPEAT: ResourceState.REQUEST_ERROR,
    ResourceState.DOWNLOAD: ResourceState.DOWNLOAD_ERROR,
}


@dataclass(frozen=True)
class ResourceView:
    """Consistent copy of a resource's fields, taken under its lock."""
    url: str
    state: ResourceState
    mime: str
    size: int
    is_external: bool
    is_interesting: bool
    error: Optional[str]
    read_error: Optional[str]
    repeats: int


@dataclass(eq=False)
class Resource:
    """A resource found on the site."""
    url: str
    parts: SplitResult
    is_external: bool
    is_interesting: bool
    state: ResourceState = ResourceState.WAIT
    mime: str = ''
    size: int = 0
    error: Optional[str] = None
    read_error: Optional[str] = None
    repeats: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set_state(self, state: ResourceState, error: Optional[str] = None):
        with self.lock:
            self._transition(state)
            if error is not None:
                self.error = error

    def fail_attempt(self, error: str, max_retries: Optional[int],
                     retry_state: ResourceState, error_state: ResourceState) -> Tuple[ResourceState, int]:
        """
        Count a failed attempt and choose the next state.

        With max_retries None the attempt is never terminal.
        """
        with self.lock:
            self.repeats += 1
            self.error = error
            if max_retries is not None and self.repeats > max_retries:
                self._transition(error_state)
            else:
                self._transition(retry_state)
            return self.state, self.repeats

    def abandon(self, error: str) -> Optional[ResourceState]:
        """
        Move an unfinished resource to the error state of its current phase.

        Returns the new state, or None if it was already terminal.
        """
        with self.lock:
            if self.state.is_terminal:
                return None
            self.state = ABANDON_STATES.get(self.state, ResourceState.SAVE_ERROR)
            self.error = error
            return self.state

    def set_read_error(self, error: str):
        with self.lock:
            self.read_error = error

    def set_size(self, size: int):
        with self.lock:
            self.size = size

    def set_mime(self, mime: str):
        with self.lock:
            self.mime = mime

    def view(self) -> ResourceView:
        with self.lock:
            return ResourceView(
                url=self.url,
                state=self.state,
                mime=self.mime,
                size=self.size,
                is_external=self.is_external,
                is_interesting=self.is_interesting,
                error=self.error,
                read_error=self.read_error,
                repeats=self.repeats,
            )

    def _transition(self, state: ResourceState):
        # Caller holds self.lock.
        if self.state.is_terminal:
            raise RuntimeError(f"{self.url} is already {self.state.name}, cannot move to {state.name}")
        self.state = state


class ResourceRegistry:
    """Concurrency-safe mapping of URL string to Resource."""

    def __init__(self, seed: SplitResult):
        self.seed = seed
        self._lock = threading.Lock()
        self._by_url = {}
        self._ordered: List[Resource] = []

    def register(self, parts: SplitResult) -> Tuple[Resource, bool]:
        """
        Return (resource, created).

        Exactly one caller per URL string sees created=True.
        """
        key = url_string(parts)
        with self._lock:
            existing = self._by_url.get(key)
            if existing is not None:
                return existing, False

            resource = Resource(
                url=key,
                parts=parts,
                is_external=is_foreign(self.seed.hostname, parts),
                is_interesting=is_processable_scheme(parts),
            )
            self._by_url[key] = resource
            self._ordered.append(resource)
            return resource, True

    def get(self, url: str) -> Optional[Resource]:
        with self._lock:
            return self._by_url.get(url)

    def snapshot(self) -> List[Resource]:
        """Insertion-ordered copy of all resources."""
        with self._lock:
            return list(self._ordered)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ordered)
