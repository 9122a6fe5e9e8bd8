"""Unit tests for the S3 artifact store and SQS broker."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from core.errors import PublishError, UploadError
from integrations.s3_store import ArtifactStore, upload_key
from integrations.sqs_client import SQSBroker
from schemas.sqs_models import QueueMessage
from tests.mocks.fakes import MockS3Client, MockSQSClient


def _access_denied(operation):
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, operation)


class TestUploadKey:
    def test_key_convention(self):
        assert upload_key("userdata", "abc") == "userdata/abc.tar.gz"

    def test_slashes_normalised(self):
        assert upload_key("/userdata/", "abc") == "userdata/abc.tar.gz"

    def test_empty_directory(self):
        assert upload_key("", "abc") == "abc.tar.gz"


class TestArtifactStore:
    def test_upload_parameters(self):
        s3 = MockS3Client()
        created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        before = datetime.now(timezone.utc)

        key = ArtifactStore(s3, "bucket").upload(
            b"data",
            "userdata/abc.tar.gz",
            lifetime=timedelta(hours=1),
            metadata={"id": "req-1", "type": "dockerfile-builder", "created_at": created},
            content_type="application/x-gzip",
        )

        assert key == "userdata/abc.tar.gz"
        call = s3.put_calls[0]
        assert call["Bucket"] == "bucket"
        assert call["Key"] == "userdata/abc.tar.gz"
        assert call["Body"] == b"data"
        assert call["ContentType"] == "application/x-gzip"
        assert call["Metadata"] == {
            "id": "req-1",
            "type": "dockerfile-builder",
            "created_at": "2024-05-01T12:00:00+00:00",
        }
        assert before + timedelta(minutes=59) < call["Expires"] <= datetime.now(timezone.utc) + timedelta(hours=1)

    def test_no_lifetime_no_expiry(self):
        s3 = MockS3Client()
        ArtifactStore(s3, "bucket").upload(b"x", "k")
        assert "Expires" not in s3.put_calls[0]

    def test_client_error_wrapped(self):
        store = ArtifactStore(MockS3Client(error=_access_denied("PutObject")), "bucket")
        with pytest.raises(UploadError, match="AccessDenied") as exc_info:
            store.upload(b"x", "k")
        assert isinstance(exc_info.value.__cause__, ClientError)

    def test_close_closes_client(self):
        s3 = MockS3Client()
        ArtifactStore(s3, "bucket").close()
        assert s3.closed


class TestSQSBroker:
    def _message(self):
        return QueueMessage(
            id="sess-1",
            header={"id": "sess-1", "upload_key": "userdata/sess-1.tar.gz"},
            body='{"id": "job-1"}',
        )

    def test_publish_resolves_queue_and_sends_envelope(self):
        sqs = MockSQSClient()

        msg_id = SQSBroker(sqs, "rai_docker_build").publish(self._message())

        assert msg_id == "msg-1"
        sent = sqs.sent[0]
        assert sent["QueueUrl"].endswith("/rai_docker_build")
        envelope = json.loads(sent["MessageBody"])
        assert envelope["id"] == "sess-1"
        assert envelope["header"]["upload_key"] == "userdata/sess-1.tar.gz"
        assert json.loads(envelope["body"]) == {"id": "job-1"}
        attrs = sent["MessageAttributes"]
        assert attrs["id"] == {"DataType": "String", "StringValue": "sess-1"}
        assert attrs["upload_key"]["StringValue"] == "userdata/sess-1.tar.gz"
        assert "MessageGroupId" not in sent

    def test_fifo_queue_gets_group_and_dedup(self):
        sqs = MockSQSClient()
        SQSBroker(sqs, "builds.fifo").publish(self._message())
        sent = sqs.sent[0]
        assert sent["MessageGroupId"] == "sess-1"
        assert len(sent["MessageDeduplicationId"]) == 64

    def test_transport_error_wrapped(self):
        sqs = MockSQSClient(error=EndpointConnectionError(endpoint_url="https://sqs.us-east-1.amazonaws.com"))
        with pytest.raises(PublishError, match="Could not connect to the endpoint URL"):
            SQSBroker(sqs, "q").publish(self._message())

    def test_unknown_queue(self):
        sqs = MockSQSClient(queue_error=_access_denied("GetQueueUrl"))
        with pytest.raises(PublishError, match="unable to resolve queue q"):
            SQSBroker(sqs, "q").publish(self._message())
        assert sqs.sent == []

    def test_context_manager_disconnects(self):
        sqs = MockSQSClient()
        with SQSBroker(sqs, "q") as broker:
            broker.publish(self._message())
        assert sqs.closed
