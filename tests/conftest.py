import os
import tempfile
import pytest
from pathlib import Path

from dotenv import load_dotenv

# load test env first
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ.setdefault('LOG_FILE_PATH', tempfile.mkdtemp(prefix='quizcore-logs-'))
os.environ.setdefault('LOG_LEVEL', 'WARNING')
os.environ.setdefault('STORE_BACKEND', 'memory')
os.environ.setdefault('AI_RECOVERY_INTERVAL_SECONDS', '0')

from tests.fixtures.clock import FakeClock  # noqa: E402
from tests.fixtures.mock_redis import MockRedisClient  # noqa: E402


@pytest.fixture(autouse=True)
def silence_logger(monkeypatch):
    # modules bind LOG at import time, so mute the shared logger itself
    from quizcore.utils import get_logger
    monkeypatch.setattr(get_logger(), 'disabled', True)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    from quizcore.store import MemoryStore
    return MemoryStore(clock=clock)


@pytest.fixture
def mock_redis():
    return MockRedisClient()


@pytest.fixture
def redis_store(mock_redis):
    from quizcore.store import RedisStore
    return RedisStore(mock_redis)


@pytest.fixture
def status_store(memory_store, clock):
    from quizcore.ai_queue import RequestStatusStore
    return RequestStatusStore(memory_store, clock=clock)


@pytest.fixture
def ai_queue(memory_store, clock, status_store):
    from quizcore.ai_queue import AIRequestQueue
    return AIRequestQueue(memory_store, clock=clock, status=status_store)


@pytest.fixture
def response_cache(memory_store):
    from quizcore.cache import ResponseCache
    return ResponseCache(memory_store)


@pytest.fixture
def limiter(memory_store, clock):
    from quizcore.ratelimit import RateLimiter
    return RateLimiter(memory_store, clock=clock)


@pytest.fixture
def sample_payload():
    return {
        'pdf_url': 'https://files.example.com/notes/photosynthesis.pdf',
        'section_id': 's1',
        'question_count': 10,
        'question_types': ['multiple_choice', 'true_false'],
    }
