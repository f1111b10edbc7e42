from uuid import uuid4

import pytest

from linkmeta.main.config import Settings
from linkmeta.worker.metadata_queue import MetadataJob


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with explicit values for unit tests.

    Provides a clean, isolated configuration that doesn't depend on .env file
    or environment variables.
    """
    return Settings(
        # Minimal database settings (not used in unit tests)
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",

        # Redis settings (not used in unit tests)
        redis_host="localhost",
        redis_port=6379,

        # Keep waits short
        metadata_worker_count=2,
        metadata_dequeue_timeout_seconds=0.05,

        # Testing mode
        testing=True,
        dev=True,
    )


@pytest.fixture
def make_job():
    def _make_job(url: str = "https://example.com/article", **kwargs) -> MetadataJob:
        return MetadataJob(
            post_id=kwargs.pop("post_id", uuid4()),
            link_id=kwargs.pop("link_id", uuid4()),
            url=url,
            **kwargs,
        )

    return _make_job
