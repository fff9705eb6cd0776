import pytest

from granulator.util import N_FACE_LANDMARKS, N_HAND_LANDMARKS, Landmark


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, t: float = 100.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def hand_at(z: float, n: int = N_HAND_LANDMARKS):
    return [Landmark(0.5, 0.5, z)] * n


def face_at(z: float, n: int = N_FACE_LANDMARKS):
    return [Landmark(0.4 + (i % 20) / 100, 0.3 + (i // 20) / 60, z) for i in range(n)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hand():
    return hand_at


@pytest.fixture
def face():
    return face_at
