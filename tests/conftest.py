import pytest

from convoforms.schemas.conversational import ConversationalFormConfig
from tests.helpers import make_config


@pytest.fixture
def config() -> ConversationalFormConfig:
    return make_config()
