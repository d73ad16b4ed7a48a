import re
from dataclasses import dataclass, field
from typing import List, Optional, Union

from vodforce.errors import InvalidInput

MAX_VIDEO_ID = 2 ** 64 - 1
LOGIN_PATTERN = re.compile(r"^[a-z0-9_]{1,25}$")


def normalize_login(login):
    normalized = (login or "").strip().lower()
    if not LOGIN_PATTERN.match(normalized):
        raise InvalidInput(f"Invalid streamer name: {login!r}")
    return normalized


def validate_video_id(video_id):
    try:
        video_id = int(video_id)
    except (TypeError, ValueError):
        raise InvalidInput(f"Invalid video ID: {video_id!r}") from None
    if not 0 <= video_id <= MAX_VIDEO_ID:
        raise InvalidInput(f"Video ID out of range: {video_id}")
    return video_id


def validate_range(start, end, label="timestamp"):
    if start < 0 or end < 0:
        raise InvalidInput(f"Negative {label}: {start}..{end}")
    if start > end:
        raise InvalidInput(f"Inverted {label} range: {start} > {end}")


@dataclass(frozen=True)
class VodTarget:
    login: str
    video_id: int
    start: int
    end: int

    @classmethod
    def exact(cls, login, video_id, timestamp):
        return cls.range(login, video_id, timestamp, timestamp)

    @classmethod
    def range(cls, login, video_id, start, end):
        validate_range(start, end)
        return cls(normalize_login(login), validate_video_id(video_id), int(start), int(end))

    @property
    def is_exact(self):
        return self.start == self.end

    def __len__(self):
        return self.end - self.start + 1

    def __contains__(self, timestamp):
        return self.start <= timestamp <= self.end


@dataclass(frozen=True)
class ClipTarget:
    video_id: int
    start: int
    end: int
    stride: int = 1

    @classmethod
    def create(cls, video_id, start, end, stride=1):
        validate_range(start, end, label="offset")
        if stride < 1:
            raise InvalidInput(f"Clip stride must be at least 1, got {stride}")
        return cls(validate_video_id(video_id), int(start), int(end), int(stride))

    def offsets(self):
        return range(self.start, self.end + 1, self.stride)


@dataclass(frozen=True)
class Candidate:
    value: int
    host: str


# Probe outcomes

@dataclass(frozen=True)
class Hit:
    url: str
    value: int


@dataclass(frozen=True)
class Miss:
    url: str


@dataclass(frozen=True)
class TransientFailure:
    url: str
    reason: str


ProbeOutcome = Union[Hit, Miss, TransientFailure]


@dataclass
class Resolution:
    """Aggregated outcome of every host/format probed for one candidate value."""

    value: int
    hits: List[Hit] = field(default_factory=list)
    degraded: int = 0
    complete: bool = True


# Search results

@dataclass(frozen=True)
class Found:
    url: str
    value: int


@dataclass(frozen=True)
class ExhaustedNoMatch:
    degraded: int = 0


@dataclass(frozen=True)
class Aborted:
    reason: str
    progress: float = 0.0


SearchResult = Union[Found, ExhaustedNoMatch, Aborted]


@dataclass
class ClipScanResult:
    found: List[Found] = field(default_factory=list)
    complete: bool = True
    degraded: int = 0
    reason: Optional[str] = None
    progress: float = 1.0

    def as_set(self):
        return {(entry.url, entry.value) for entry in self.found}


@dataclass(frozen=True)
class ReturnURL:
    url: str
    muted: bool = False
