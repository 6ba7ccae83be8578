import pytest

from nearfield.clues import ClueInbox
from nearfield.content import DEMO_SCRIPTS
from nearfield.engine import AdvanceEngine
from nearfield.providers import CannedSceneProvider


@pytest.fixture
def provider() -> CannedSceneProvider:
    """Canned provider loaded with the demo story."""
    return CannedSceneProvider(DEMO_SCRIPTS)


@pytest.fixture
def inbox() -> ClueInbox:
    return ClueInbox()


@pytest.fixture
def engine(provider: CannedSceneProvider, inbox: ClueInbox) -> AdvanceEngine:
    """Engine over the demo story, handing clues to `inbox`."""
    return AdvanceEngine(provider, clue_sink=inbox, provider_timeout=1.0)
