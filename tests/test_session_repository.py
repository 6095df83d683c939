import threading
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from src.core import config
from src.core.exceptions import ErrorCategory, SessionNotFoundException, ValidationException
from src.models.upload_session import (
    MultipartUploadHandle,
    Platform,
    PublishOptions,
    SessionError,
    SessionStatus
)
from src.repositories.dynamo_session_repository import OWNER_INDEX_NAME, DynamoSessionRepository
from src.repositories.memory_session_repository import InMemorySessionRepository


@pytest.fixture
def setup_test_env(monkeypatch):
    monkeypatch.setenv("UPLOAD_SESSIONS_TABLE_NAME", "UploadSessions-test")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    original = config.settings
    config.settings = config.Settings()
    yield
    config.settings = original


@pytest.fixture
def dynamodb_table(setup_test_env):
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName="UploadSessions-test",
            KeySchema=[{"AttributeName": "session_id", "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": "session_id", "AttributeType": "S"},
                {"AttributeName": "owner_id", "AttributeType": "S"}
            ],
            GlobalSecondaryIndexes=[{
                "IndexName": OWNER_INDEX_NAME,
                "KeySchema": [{"AttributeName": "owner_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"}
            }],
            BillingMode="PAY_PER_REQUEST"
        )
        yield table


@pytest.fixture(params=["memory", "dynamodb"])
def repository(request, setup_test_env):
    if request.param == "memory":
        yield InMemorySessionRepository(ttl_seconds=3600)
    else:
        request.getfixturevalue("dynamodb_table")
        yield DynamoSessionRepository(ttl_seconds=3600)


def mark_first_uploaded(session):
    session.chunks[0].uploaded = True
    session.status = SessionStatus.UPLOADING


class TestSessionRepositoryContract:
    """Both stores honour the same contract."""

    def test_create_and_get(self, repository, session_factory):
        session = session_factory()
        session.publish_options = PublishOptions(title="Launch", tags=["a", "b"])
        repository.create(session)

        result = repository.get_by_id("session-1")

        assert result is not None
        assert result.owner_id == "owner-1"
        assert result.platform == Platform.YOUTUBE
        assert result.status == SessionStatus.INITIALIZED
        assert result.chunks == session.chunks
        assert result.remote_handle == session.remote_handle
        assert result.publish_options.title == "Launch"
        assert result.publish_options.tags == ["a", "b"]
        assert result.created_at == session.created_at

    def test_get_unknown(self, repository):
        assert repository.get_by_id("nonexistent") is None

    def test_update_applies_mutator_and_bumps_version(self, repository, session_factory):
        repository.create(session_factory())

        updated = repository.update("session-1", mark_first_uploaded)
        stored = repository.get_by_id("session-1")

        assert updated.version == 1
        assert stored.version == 1
        assert stored.status == SessionStatus.UPLOADING
        assert stored.chunks[0].uploaded is True
        assert stored.chunks[1].uploaded is False

    def test_update_persists_error_and_handle(self, repository, session_factory):
        repository.create(session_factory(platform=Platform.TIKTOK,
                                          remote_handle=MultipartUploadHandle("https://up.example", "u-1")))

        def fail(session):
            session.status = SessionStatus.FAILED
            session.error = SessionError(ErrorCategory.TRANSIENT_NETWORK, "gave up", exhausted=True)

        repository.update("session-1", fail)
        stored = repository.get_by_id("session-1")

        assert stored.error.category == ErrorCategory.TRANSIENT_NETWORK
        assert stored.error.exhausted is True
        assert stored.remote_handle == MultipartUploadHandle("https://up.example", "u-1")

    def test_update_unknown_session(self, repository):
        with pytest.raises(SessionNotFoundException):
            repository.update("nonexistent", mark_first_uploaded)

    def test_terminal_session_is_frozen(self, repository, session_factory):
        repository.create(session_factory(status=SessionStatus.COMPLETED))

        with pytest.raises(ValidationException):
            repository.update("session-1", mark_first_uploaded)

    def test_mutator_error_aborts_write(self, repository, session_factory):
        repository.create(session_factory())

        def explode(session):
            session.status = SessionStatus.UPLOADING
            raise ValidationException("nope")

        with pytest.raises(ValidationException):
            repository.update("session-1", explode)

        assert repository.get_by_id("session-1").status == SessionStatus.INITIALIZED

    def test_delete(self, repository, session_factory):
        repository.create(session_factory())

        repository.delete("session-1")
        repository.delete("session-1")

        assert repository.get_by_id("session-1") is None

    def test_list_by_owner_sorted_by_creation(self, repository, session_factory):
        now = datetime.now(timezone.utc)
        repository.create(session_factory("s-late", created_at=now))
        repository.create(session_factory("s-early", created_at=now - timedelta(minutes=5)))
        repository.create(session_factory("s-other", owner_id="owner-2"))

        sessions = repository.list_by_owner("owner-1")

        assert [s.session_id for s in sessions] == ["s-early", "s-late"]

    def test_list_active_skips_terminal(self, repository, session_factory):
        repository.create(session_factory("s-active", status=SessionStatus.UPLOADING))
        repository.create(session_factory("s-done", status=SessionStatus.COMPLETED))
        repository.create(session_factory("s-failed", status=SessionStatus.FAILED))

        assert [s.session_id for s in repository.list_active()] == ["s-active"]


class TestSessionExpiry:
    def test_memory_store_hides_expired_records(self, setup_test_env, session_factory):
        repository = InMemorySessionRepository(ttl_seconds=0)
        repository.create(session_factory())

        assert repository.get_by_id("session-1") is None
        assert repository.list_by_owner("owner-1") == []
        with pytest.raises(SessionNotFoundException):
            repository.update("session-1", mark_first_uploaded)

    def test_memory_store_rejects_duplicate_ids(self, setup_test_env, session_factory):
        repository = InMemorySessionRepository(ttl_seconds=3600)
        repository.create(session_factory())

        with pytest.raises(ValueError):
            repository.create(session_factory())

    def test_dynamo_item_carries_ttl(self, dynamodb_table, session_factory):
        repository = DynamoSessionRepository(ttl_seconds=3600)
        before = int(datetime.now(timezone.utc).timestamp())

        repository.create(session_factory())
        item = dynamodb_table.get_item(Key={"session_id": "session-1"})["Item"]

        assert before + 3600 <= int(item["expires_at"]) <= before + 3605
        assert item["status"] == "initialized"
        assert item["remote_handle"]["kind"] == "resumable_upload"

    def test_dynamo_hides_expired_items_before_ttl_deletion(self, dynamodb_table, session_factory):
        repository = DynamoSessionRepository(ttl_seconds=3600)
        repository.create(session_factory())
        dynamodb_table.update_item(
            Key={"session_id": "session-1"},
            UpdateExpression="SET expires_at = :past",
            ExpressionAttributeValues={":past": 1}
        )

        assert repository.get_by_id("session-1") is None
        assert repository.list_by_owner("owner-1") == []
        assert repository.list_active() == []

    def test_dynamo_activity_extends_ttl(self, dynamodb_table, session_factory):
        repository = DynamoSessionRepository(ttl_seconds=3600)
        repository.create(session_factory())
        dynamodb_table.update_item(
            Key={"session_id": "session-1"},
            UpdateExpression="SET expires_at = :soon",
            ExpressionAttributeValues={":soon": int(datetime.now(timezone.utc).timestamp()) + 60}
        )

        repository.update("session-1", mark_first_uploaded)
        item = dynamodb_table.get_item(Key={"session_id": "session-1"})["Item"]

        assert int(item["expires_at"]) > int(datetime.now(timezone.utc).timestamp()) + 3000


class TestConcurrentUpdates:
    def test_memory_store_serializes_read_modify_write(self, setup_test_env, session_factory):
        repository = InMemorySessionRepository(ttl_seconds=3600)
        repository.create(session_factory(total_size=256 * 20, chunk_size=256))

        def mark(index):
            def mutator(session):
                session.chunks[index].uploaded = True
            return mutator

        threads = [threading.Thread(target=repository.update, args=("session-1", mark(i))) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = repository.get_by_id("session-1")
        assert stored.uploaded_chunk_count == 20
        assert stored.version == 20

    def test_dynamo_retries_on_version_conflict(self, dynamodb_table, session_factory):
        repository = DynamoSessionRepository(ttl_seconds=3600)
        repository.create(session_factory())
        interfered = []

        def racing_mutator(session):
            # Another writer bumps the version between our read and our write, once
            if not interfered:
                interfered.append(True)
                dynamodb_table.update_item(
                    Key={"session_id": "session-1"},
                    UpdateExpression="SET #version = #version + :one",
                    ExpressionAttributeNames={"#version": "version"},
                    ExpressionAttributeValues={":one": 1}
                )
            session.chunks[1].uploaded = True

        updated = repository.update("session-1", racing_mutator)

        assert updated.version == 2
        assert repository.get_by_id("session-1").chunks[1].uploaded is True
