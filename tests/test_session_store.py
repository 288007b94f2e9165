"""
会话存储测试用例

内存存储和SQLite存储跑同一组用例
"""

import pytest

from database.manager import DatabaseManager
from database.records import SessionStatus, ImageStatus, OutputFormat
from database.store import MemorySessionStore, SqlSessionStore, build_store
from config.manager import ConfigManager


@pytest.fixture(params=["memory", "sqlite"])
def session_store(request):
    if request.param == "memory":
        store = MemorySessionStore()
    else:
        store = SqlSessionStore(DatabaseManager("sqlite:///:memory:"))
    yield store
    store.close()


def new_session(store, **overrides):
    values = dict(thread_url="https://vipergirls.to/threads/12345-x", from_page=1, to_page=2)
    values.update(overrides)
    return store.create_session(**values)


def new_image(store, session_id, name="a.jpg"):
    return store.create_image(session_id, page_number=1, original_url=f"https://imgbox.com/{name}",
                              filename=name, hosting_site="imgbox.com")


class TestSessionStore:

    def test_create_session(self, session_store):
        session = new_session(session_store, output_format=OutputFormat.ARCHIVE, concurrency_limit=5)

        assert session.id is not None
        assert session.status == SessionStatus.PENDING
        assert session.output_format == OutputFormat.ARCHIVE
        assert (session.total_images, session.completed_images, session.failed_images) == (0, 0, 0)
        assert session_store.get_session(session.id).concurrency_limit == 5

    def test_unknown_field_rejected(self, session_store):
        with pytest.raises(ValueError):
            new_session(session_store, colour="red")

    def test_update_session(self, session_store):
        session = new_session(session_store)

        updated = session_store.update_session(session.id, status=SessionStatus.ACTIVE, thread_title="Summer")

        assert updated.status == SessionStatus.ACTIVE
        assert session_store.get_session(session.id).thread_title == "Summer"
        assert session_store.update_session(9999, thread_title="x") is None

    def test_transition_adjusts_counters(self, session_store):
        session = new_session(session_store)
        image = new_image(session_store, session.id)

        session_store.transition_image(image.id, ImageStatus.DOWNLOADING, progress=0)
        failed = session_store.transition_image(image.id, ImageStatus.FAILED, failed=1, error_message="reset")
        assert failed.error_message == "reset"
        assert session_store.get_session(session.id).failed_images == 1

        # 重试：失败数减一和状态变化同时生效
        session_store.transition_image(image.id, ImageStatus.DOWNLOADING, failed=-1, error_message=None)
        record = session_store.get_session(session.id)
        assert (record.completed_images, record.failed_images) == (0, 0)

        done = session_store.transition_image(image.id, ImageStatus.COMPLETED, completed=1, progress=100)
        record = session_store.get_session(session.id)
        assert done.status == ImageStatus.COMPLETED
        assert (record.completed_images, record.failed_images) == (1, 0)
        assert session_store.transition_image(9999, ImageStatus.DOWNLOADING) is None

    @pytest.mark.parametrize("path", [
        [ImageStatus.COMPLETED],
        [ImageStatus.FAILED],
        [ImageStatus.DOWNLOADING, ImageStatus.PENDING],
        [ImageStatus.DOWNLOADING, ImageStatus.COMPLETED, ImageStatus.DOWNLOADING],
    ])
    def test_illegal_transition_rejected(self, session_store, path):
        session = new_session(session_store)
        image = new_image(session_store, session.id)
        *allowed, last = path
        for status in allowed:
            session_store.transition_image(image.id, status)

        with pytest.raises(ValueError):
            session_store.transition_image(image.id, last, completed=1)

        # 被拒绝的迁移不改变图片和计数
        assert session_store.get_image(image.id).status == (allowed[-1] if allowed else ImageStatus.PENDING)
        assert session_store.get_session(session.id).completed_images == 0

    def test_update_image_rejects_status(self, session_store):
        session = new_session(session_store)
        image = new_image(session_store, session.id)

        with pytest.raises(ValueError):
            session_store.update_image(image.id, status=ImageStatus.COMPLETED)
        assert session_store.get_image(image.id).status == ImageStatus.PENDING

    def test_list_sessions_newest_first(self, session_store):
        first = new_session(session_store)
        second = new_session(session_store)

        assert [s.id for s in session_store.list_sessions()] == [second.id, first.id]

    def test_images(self, session_store):
        session = new_session(session_store)
        a = new_image(session_store, session.id, "a.jpg")
        b = new_image(session_store, session.id, "b.jpg")

        session_store.transition_image(b.id, ImageStatus.DOWNLOADING)
        session_store.update_image(b.id, progress=30)

        assert [i.filename for i in session_store.list_images(session.id)] == ["a.jpg", "b.jpg"]
        assert [i.id for i in session_store.list_active_images(session.id)] == [b.id]
        assert session_store.get_image(a.id).status == ImageStatus.PENDING
        assert session_store.get_image(b.id).progress == 30

    def test_image_requires_session(self, session_store):
        with pytest.raises(KeyError):
            new_image(session_store, 9999)

    def test_delete_cascades(self, session_store):
        session = new_session(session_store)
        other = new_session(session_store)
        image = new_image(session_store, session.id)
        kept = new_image(session_store, other.id)

        assert session_store.delete_session(session.id) is True

        assert session_store.get_session(session.id) is None
        assert session_store.get_image(image.id) is None
        assert session_store.get_image(kept.id) is not None
        assert session_store.delete_session(session.id) is False

    def test_returned_records_are_copies(self, session_store):
        session = new_session(session_store)
        session.thread_title = "changed locally"
        assert session_store.get_session(session.id).thread_title is None


class TestBuildStore:

    def test_memory(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "config.yaml"))
        manager.get_settings().database.type = "memory"
        assert isinstance(build_store(manager), MemorySessionStore)

    def test_sqlite(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "config.yaml"))
        settings = manager.get_settings()
        settings.database.type = "sqlite"
        settings.database.path = str(tmp_path / "ripper.db")

        store = build_store(manager)
        try:
            assert isinstance(store, SqlSessionStore)
            assert new_session(store).id == 1
        finally:
            store.close()
