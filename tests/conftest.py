"""Shared pytest fixtures for the dockerfile builder gateway tests.

pythonpath (app/ and the project root) is set in pyproject.toml.
"""

# pylint: disable=redefined-outer-name

import pytest

from core.config import Settings
from integrations.s3_store import ArtifactStore
from integrations.sqs_client import SQSBroker
from services.build_session import SessionDependencies
from tests.mocks.archives import make_zip
from tests.mocks.fakes import MockPubSub, MockRedis, MockS3Client, MockSQSClient

SESSION_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


@pytest.fixture
def test_settings():
    """Settings isolated from the environment defaults that matter to tests."""
    return Settings(
        COLOR_OUTPUT=False,
        UPLOAD_BUCKET_NAME="test-bucket",
        UPLOAD_DESTINATION_DIRECTORY="userdata",
        BROKER_QUEUE_NAME="rai_docker_build",
        LOG_IDLE_TIMEOUT_SECS=5,
        RELAY_QUEUE_MAXSIZE=16,
    )


@pytest.fixture
def build_context_zip():
    return make_zip({
        "Dockerfile": b"FROM ubuntu:22.04\nRUN echo hello\n",
        "src/": b"",
        "src/app.py": b"print('hi')\n",
    })


class Harness:
    """Mock collaborators wired into SessionDependencies."""

    def __init__(self, session_id=SESSION_ID):
        self.session_id = session_id
        self.s3 = MockS3Client()
        self.sqs = MockSQSClient()
        self.pubsub = MockPubSub()
        self.redis = MockRedis(self.pubsub)
        self.aws_session_ids = []
        self.aws_error = None
        self.redis_requested = 0

    def _aws_session(self, session_id):
        self.aws_session_ids.append(session_id)
        if self.aws_error is not None:
            raise self.aws_error
        return object()

    def _redis(self):
        self.redis_requested += 1
        return self.redis

    def set_payloads(self, payloads):
        self.pubsub.pending = list(payloads)

    def dependencies(self):
        return SessionDependencies(
            aws_session_factory=self._aws_session,
            store_factory=lambda aws, s: ArtifactStore(self.s3, s.UPLOAD_BUCKET_NAME),
            broker_factory=lambda aws, s: SQSBroker(self.sqs, s.BROKER_QUEUE_NAME),
            redis_factory=self._redis,
            id_factory=lambda: self.session_id,
        )


@pytest.fixture
def harness():
    return Harness()
