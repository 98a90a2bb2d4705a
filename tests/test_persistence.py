"""Unit tests for the persistence layer."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import inspect, text

from deliveryq.domain.models import NotificationRecord, QueueStatus, UnsubscribeToken
from deliveryq.persistence import (
    ConcurrentUpdateError,
    DatabaseConnectionError,
    DataIntegrityError,
    NotificationRepository,
    QueueItemModel,
    QueueRepository,
    UnsubscribeTokenRepository,
    close_database,
    get_engine,
    get_session,
    init_database,
)

from tests.helpers import insert_item, load_item, make_queue_item
from tests.helpers.clock import DEFAULT_START as T0


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_creates_file_and_tables(self, tmp_path):
        """Test successful initialization of a file-backed database."""
        db_file = tmp_path / "queue.db"

        init_database(f"sqlite:///{db_file}")
        try:
            assert db_file.exists()
            tables = set(inspect(get_engine()).get_table_names())
            assert {"email_queue", "email_unsubscribe_tokens", "notifications"} <= tables
        finally:
            close_database()

    def test_init_database_creates_parent_directories(self, tmp_path):
        db_file = tmp_path / "nested" / "dir" / "queue.db"

        init_database(f"sqlite:///{db_file}")
        close_database()

        assert db_file.exists()

    def test_schema_creation_is_idempotent(self, tmp_path):
        """Test initialization can run twice against the same file."""
        db_url = f"sqlite:///{tmp_path / 'queue.db'}"

        init_database(db_url)
        init_database(db_url)
        try:
            with get_session() as session:
                count = session.execute(text("SELECT COUNT(*) FROM email_queue")).scalar()
            assert count == 0
        finally:
            close_database()

    def test_invalid_url_raises_connection_error(self):
        with pytest.raises(DatabaseConnectionError):
            init_database("")

        with pytest.raises(DatabaseConnectionError):
            init_database(None)

        with pytest.raises(DatabaseConnectionError):
            init_database("notadialect://nowhere")

    def test_session_before_init_raises(self):
        close_database()

        with pytest.raises(DatabaseConnectionError, match="not initialized"):
            with get_session():
                pass

        with pytest.raises(DatabaseConnectionError):
            get_engine()

    def test_session_rolls_back_on_error(self, database):
        """Test that an exception inside get_session() discards the writes."""
        item = make_queue_item()

        with pytest.raises(RuntimeError):
            with get_session() as session:
                QueueRepository(session).insert(item)
                raise RuntimeError("abort")

        assert load_item(item.id) is None


class TestQueueRepositoryPrimitives:
    """Tests for insert, update_where and query."""

    def test_insert_and_get_round_trip(self, database):
        item = make_queue_item(
            notification_id="n1",
            batch_key="new_message_user-1",
            status=QueueStatus.BATCHED,
            batch_until=T0 + timedelta(minutes=5),
            payload={"senderName": "Sam", "messagePreview": "On my way"},
        )

        insert_item(item)
        loaded = load_item(item.id)

        assert loaded == item

    def test_get_missing_returns_none(self, database):
        with get_session() as session:
            assert QueueRepository(session).get("missing") is None

    def test_duplicate_id_raises_integrity_error(self, database):
        item = insert_item(make_queue_item())

        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                QueueRepository(session).insert(item)

    def test_update_where_returns_affected_count(self, database):
        first = insert_item(make_queue_item())
        insert_item(make_queue_item())
        insert_item(make_queue_item(status=QueueStatus.SENT))

        with get_session() as session:
            affected = QueueRepository(session).update_where(
                QueueItemModel.status == QueueStatus.PENDING.value,
                QueueItemModel.id == first.id,
                last_error="boom",
            )

        assert affected == 1
        assert load_item(first.id).last_error == "boom"

    def test_update_where_converts_values(self, database):
        item = insert_item(make_queue_item())

        with get_session() as session:
            QueueRepository(session).update_where(
                QueueItemModel.id == item.id,
                status=QueueStatus.EXPIRED,
                expired_at=T0 + timedelta(days=1),
                payload={"title": "changed"},
            )

        loaded = load_item(item.id)
        assert loaded.status == QueueStatus.EXPIRED
        assert loaded.expired_at == T0 + timedelta(days=1)
        assert loaded.payload == {"title": "changed"}

    def test_update_where_requires_fields(self, database):
        with get_session() as session:
            with pytest.raises(ValueError):
                QueueRepository(session).update_where(QueueItemModel.id == "x")

    def test_query_order_and_limit(self, database):
        items = [
            insert_item(make_queue_item(created_at=T0 + timedelta(seconds=offset)))
            for offset in (30, 10, 20)
        ]

        with get_session() as session:
            result = QueueRepository(session).query(
                QueueItemModel.status == QueueStatus.PENDING.value,
                order_by=(QueueItemModel.created_at.asc(),),
                limit=2,
            )

        assert [item.id for item in result] == [items[1].id, items[2].id]


class TestQueueRepositoryTransition:
    """Tests for transition(), the guarded status update."""

    def test_moves_rows_in_source_status(self, database):
        pending = insert_item(make_queue_item())
        batched = insert_item(make_queue_item(status=QueueStatus.BATCHED))

        with get_session() as session:
            affected = QueueRepository(session).transition(
                QueueItemModel.id.in_([pending.id, batched.id]),
                source=[QueueStatus.PENDING],
                target=QueueStatus.PROCESSING,
            )

        assert affected == 1
        assert load_item(pending.id).status == QueueStatus.PROCESSING
        assert load_item(batched.id).status == QueueStatus.BATCHED

    def test_sets_extra_fields(self, database):
        item = insert_item(make_queue_item())

        with get_session() as session:
            QueueRepository(session).transition(
                QueueItemModel.id == item.id,
                source=[QueueStatus.PENDING, QueueStatus.BATCHED],
                target=QueueStatus.EXPIRED,
                expired_at=T0,
            )

        loaded = load_item(item.id)
        assert loaded.status == QueueStatus.EXPIRED
        assert loaded.expired_at == T0

    @pytest.mark.parametrize(
        "source,target",
        [
            (QueueStatus.PENDING, QueueStatus.SENT),
            (QueueStatus.BATCHED, QueueStatus.PROCESSING),
            (QueueStatus.SENT, QueueStatus.PENDING),
            (QueueStatus.EXPIRED, QueueStatus.PENDING),
        ],
    )
    def test_illegal_transition_is_rejected(self, database, source, target):
        """Test a pair outside the transition table raises and writes nothing."""
        item = insert_item(make_queue_item(status=source))

        with pytest.raises(ValueError, match="Illegal queue item transition"):
            with get_session() as session:
                QueueRepository(session).transition(
                    QueueItemModel.id == item.id, source=[source], target=target
                )

        assert load_item(item.id).status == source

    def test_one_illegal_source_rejects_whole_update(self, database):
        item = insert_item(make_queue_item())

        with pytest.raises(ValueError):
            with get_session() as session:
                QueueRepository(session).transition(
                    QueueItemModel.id == item.id,
                    source=[QueueStatus.PENDING, QueueStatus.FAILED],
                    target=QueueStatus.EXPIRED,
                )

        assert load_item(item.id).status == QueueStatus.PENDING


class TestQueueRepositoryHelpers:
    """Tests for the typed helpers used by the processor."""

    def test_claim_succeeds_once(self, database):
        item = insert_item(make_queue_item())

        with get_session() as session:
            assert QueueRepository(session).claim(item.id) is True
        with get_session() as session:
            assert QueueRepository(session).claim(item.id) is False

        assert load_item(item.id).status == QueueStatus.PROCESSING

    def test_claim_ignores_non_pending(self, database):
        item = insert_item(make_queue_item(status=QueueStatus.BATCHED, batch_key="k"))

        with get_session() as session:
            assert QueueRepository(session).claim(item.id) is False

        assert load_item(item.id).status == QueueStatus.BATCHED

    def test_fetch_due_pending_filters_and_orders(self, database):
        later = insert_item(make_queue_item(created_at=T0 + timedelta(seconds=2)))
        earlier = insert_item(make_queue_item(created_at=T0 + timedelta(seconds=1)))
        insert_item(make_queue_item(scheduled_for=T0 + timedelta(hours=1)))
        insert_item(make_queue_item(status=QueueStatus.BATCHED, batch_key="k"))
        insert_item(make_queue_item(status=QueueStatus.FAILED))

        with get_session() as session:
            due = QueueRepository(session).fetch_due_pending(T0 + timedelta(seconds=5), limit=10)

        assert [item.id for item in due] == [earlier.id, later.id]

    def test_fetch_due_pending_includes_exact_schedule_time(self, database):
        item = insert_item(make_queue_item(scheduled_for=T0))

        with get_session() as session:
            due = QueueRepository(session).fetch_due_pending(T0, limit=10)

        assert [i.id for i in due] == [item.id]

    def test_fetch_ready_batches_requires_closed_window(self, database):
        ready = insert_item(
            make_queue_item(
                status=QueueStatus.BATCHED, batch_key="k", batch_until=T0 - timedelta(seconds=1)
            )
        )
        insert_item(make_queue_item(status=QueueStatus.BATCHED, batch_key="k", batch_until=T0))
        insert_item(make_queue_item(batch_until=T0 - timedelta(seconds=1)))

        with get_session() as session:
            result = QueueRepository(session).fetch_ready_batches(T0, limit=10)

        assert [item.id for item in result] == [ready.id]

    def test_expire_stale(self, database):
        old_pending = insert_item(make_queue_item(created_at=T0 - timedelta(hours=25)))
        old_batched = insert_item(
            make_queue_item(
                status=QueueStatus.BATCHED, batch_key="k", created_at=T0 - timedelta(hours=30)
            )
        )
        old_processing = insert_item(
            make_queue_item(status=QueueStatus.PROCESSING, created_at=T0 - timedelta(hours=30))
        )
        fresh = insert_item(make_queue_item(created_at=T0 - timedelta(hours=1)))

        with get_session() as session:
            expired = QueueRepository(session).expire_stale(T0 - timedelta(hours=24), expired_at=T0)

        assert expired == 2
        assert load_item(old_pending.id).status == QueueStatus.EXPIRED
        assert load_item(old_pending.id).expired_at == T0
        assert load_item(old_batched.id).status == QueueStatus.EXPIRED
        assert load_item(old_processing.id).status == QueueStatus.PROCESSING
        assert load_item(fresh.id).status == QueueStatus.PENDING

    def test_mark_delivered_requires_processing(self, database):
        item = insert_item(make_queue_item(status=QueueStatus.PROCESSING))
        pending = insert_item(make_queue_item())

        with get_session() as session:
            repo = QueueRepository(session)
            assert repo.mark_delivered(item.id, "<m1@example.com>", sent_at=T0) is True
            assert repo.mark_delivered(pending.id, "<m2@example.com>", sent_at=T0) is False

        loaded = load_item(item.id)
        assert loaded.status == QueueStatus.SENT
        assert loaded.sent_at == T0
        assert loaded.provider_message_id == "<m1@example.com>"

    def test_record_failure_returns_to_pending(self, database):
        item = insert_item(make_queue_item(status=QueueStatus.PROCESSING, max_attempts=3))

        with get_session() as session:
            status = QueueRepository(session).record_failure(item, "451 try later")

        loaded = load_item(item.id)
        assert status == QueueStatus.PENDING
        assert loaded.status == QueueStatus.PENDING
        assert loaded.attempts == 1
        assert loaded.last_error == "451 try later"

    def test_record_failure_exhausts_attempts(self, database):
        item = insert_item(
            make_queue_item(status=QueueStatus.PROCESSING, attempts=2, max_attempts=3)
        )

        with get_session() as session:
            status = QueueRepository(session).record_failure(item, "550 mailbox unavailable")

        assert status == QueueStatus.FAILED
        assert load_item(item.id).attempts == 3

    def test_record_failure_requires_processing(self, database):
        item = insert_item(make_queue_item())

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            with get_session() as session:
                QueueRepository(session).record_failure(item, "boom")

        assert exc_info.value.affected == 0
        assert load_item(item.id).attempts == 0

    def test_consolidate_group_commits_members_and_digest(self, database):
        members = [
            insert_item(make_queue_item(status=QueueStatus.BATCHED, batch_key="k"))
            for _ in range(3)
        ]
        digest = make_queue_item(subject="You have 3 new messages")

        with get_session() as session:
            digest_id = QueueRepository(session).consolidate_group(
                [m.id for m in members], digest, sent_at=T0
            )

        assert digest_id == digest.id
        assert load_item(digest.id).status == QueueStatus.PENDING
        for member in members:
            loaded = load_item(member.id)
            assert loaded.status == QueueStatus.SENT
            assert loaded.sent_at == T0

    def test_consolidate_group_rolls_back_on_conflict(self, database):
        """Test a member that already left batched aborts the whole group."""
        members = [
            insert_item(make_queue_item(status=QueueStatus.BATCHED, batch_key="k"))
            for _ in range(2)
        ]
        with get_session() as session:
            QueueRepository(session).update_where(
                QueueItemModel.id == members[1].id, status=QueueStatus.EXPIRED
            )
        digest = make_queue_item()

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            with get_session() as session:
                QueueRepository(session).consolidate_group(
                    [m.id for m in members], digest, sent_at=T0
                )

        assert exc_info.value.expected == 2
        assert exc_info.value.affected == 1
        assert load_item(members[0].id).status == QueueStatus.BATCHED
        assert load_item(digest.id) is None

    def test_count_by_status_includes_every_status(self, database):
        insert_item(make_queue_item())
        insert_item(make_queue_item())
        insert_item(make_queue_item(status=QueueStatus.SENT))

        with get_session() as session:
            counts = QueueRepository(session).count_by_status()

        assert counts == {
            "pending": 2,
            "batched": 0,
            "processing": 0,
            "sent": 1,
            "failed": 0,
            "expired": 0,
        }


class TestUnsubscribeTokenRepository:
    """Tests for unsubscribe token storage."""

    def _token(self, event_type=None, used_at=None, created_at=T0):
        return UnsubscribeToken(
            id=uuid.uuid4().hex,
            user_id="user-1",
            token=uuid.uuid4().hex + uuid.uuid4().hex,
            event_type=event_type,
            used_at=used_at,
            created_at=created_at,
        )

    def test_create_and_find_active(self, database):
        token = self._token()

        with get_session() as session:
            UnsubscribeTokenRepository(session).create(token)
        with get_session() as session:
            loaded = UnsubscribeTokenRepository(session).find_active("user-1", None)

        assert loaded == token

    def test_find_active_respects_scope(self, database):
        global_token = self._token()
        scoped_token = self._token(event_type="new_message")

        with get_session() as session:
            repo = UnsubscribeTokenRepository(session)
            repo.create(global_token)
            repo.create(scoped_token)

        with get_session() as session:
            repo = UnsubscribeTokenRepository(session)
            assert repo.find_active("user-1", None).token == global_token.token
            assert repo.find_active("user-1", "new_message").token == scoped_token.token
            assert repo.find_active("user-1", "task_match") is None
            assert repo.find_active("user-2", None) is None

    def test_find_active_skips_used_tokens(self, database):
        used = self._token(used_at=T0)

        with get_session() as session:
            UnsubscribeTokenRepository(session).create(used)
        with get_session() as session:
            assert UnsubscribeTokenRepository(session).find_active("user-1", None) is None

    def test_duplicate_token_value_rejected(self, database):
        token = self._token()

        with get_session() as session:
            UnsubscribeTokenRepository(session).create(token)

        duplicate = token.model_copy(update={"id": uuid.uuid4().hex})
        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                UnsubscribeTokenRepository(session).create(duplicate)


class TestNotificationRepository:
    """Tests for notification records."""

    def _record(self):
        return NotificationRecord(
            id=uuid.uuid4().hex,
            user_id="user-1",
            event_type="payment_received",
            category="payments",
            title="Fix the fence",
            message="You've been paid $80",
            metadata={"amount": "80.00"},
            created_at=T0,
        )

    def test_insert_and_get(self, database):
        record = self._record()

        with get_session() as session:
            NotificationRepository(session).insert(record)
        with get_session() as session:
            loaded = NotificationRepository(session).get(record.id)

        assert loaded == record
        assert loaded.email_sent is False

    def test_mark_email_sent(self, database):
        record = self._record()
        with get_session() as session:
            NotificationRepository(session).insert(record)

        with get_session() as session:
            found = NotificationRepository(session).mark_email_sent(
                record.id, sent_at=T0, message_id="<m1@example.com>"
            )
        with get_session() as session:
            loaded = NotificationRepository(session).get(record.id)

        assert found is True
        assert loaded.email_sent is True
        assert loaded.email_sent_at == T0
        assert loaded.email_message_id == "<m1@example.com>"

    def test_mark_email_sent_missing_record(self, database):
        with get_session() as session:
            assert (
                NotificationRepository(session).mark_email_sent("missing", T0, None) is False
            )
