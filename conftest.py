import pytest

from story_engine.models import Choice, ConversationEntry


class RecordingRenderer:
    """Render sink that keeps every callback in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def on_segment_active(self, segment) -> None:
        self.events.append(("segment", segment))

    def on_choices(self, choices: list[Choice]) -> None:
        self.events.append(("choices", choices))

    def on_round_complete(self) -> None:
        self.events.append(("complete", None))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


class FailingHistory:
    """History sink whose every append fails."""

    def __init__(self) -> None:
        self.attempts: list[ConversationEntry] = []

    def append(self, entry: ConversationEntry) -> None:
        self.attempts.append(entry)
        raise OSError("disk full")


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def failing_history() -> FailingHistory:
    return FailingHistory()


@pytest.fixture
def no_sleep():
    """Sleep replacement for LocalTransport so frames arrive immediately."""
    return _no_sleep
