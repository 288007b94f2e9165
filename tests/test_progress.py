"""
进度汇总测试用例
"""

import pytest

from database.records import SessionRecord, ImageRecord, SessionStatus, ImageStatus, OutputFormat
from ripper.core.progress import build_progress


def make_session(**overrides) -> SessionRecord:
    values = dict(id=1, thread_url="https://vipergirls.to/threads/12345-x", from_page=1, to_page=1)
    values.update(overrides)
    return SessionRecord(**values)


class TestBuildProgress:

    def test_pending(self):
        view = build_progress(make_session())
        assert (view.stage, view.overall_progress) == ("pending", 0)

    def test_parsing(self):
        view = build_progress(make_session(status=SessionStatus.ACTIVE))
        assert (view.stage, view.overall_progress) == ("parsing", 10)

    @pytest.mark.parametrize("completed,expected", [(0, 15), (1, 35), (2, 55), (4, 95)])
    def test_downloading(self, completed, expected):
        session = make_session(status=SessionStatus.ACTIVE, total_images=4, completed_images=completed)
        view = build_progress(session)
        assert view.stage == "downloading"
        assert view.overall_progress == expected

    def test_rounding(self):
        session = make_session(status=SessionStatus.ACTIVE, total_images=3, completed_images=1)
        assert build_progress(session).overall_progress == 42

    def test_archiving(self):
        session = make_session(status=SessionStatus.ACTIVE, output_format=OutputFormat.ARCHIVE,
                               total_images=2, completed_images=1, failed_images=1)
        view = build_progress(session, archiving=True)
        assert (view.stage, view.overall_progress) == ("archiving", 95)

    def test_all_settled_without_archiving_is_still_downloading(self):
        # 失败的图片可能还在等待重试
        session = make_session(status=SessionStatus.ACTIVE, output_format=OutputFormat.ARCHIVE,
                               total_images=2, completed_images=1, failed_images=1)
        view = build_progress(session)
        assert view.stage == "downloading"
        assert view.overall_progress == 55

    def test_completed(self):
        session = make_session(status=SessionStatus.COMPLETED, total_images=2, completed_images=1, failed_images=1)
        view = build_progress(session)
        assert (view.stage, view.overall_progress) == ("completed", 100)
        assert view.failed_images == 1

    def test_cancelled_and_failed_keep_download_percent(self):
        cancelled = make_session(status=SessionStatus.CANCELLED, total_images=4, completed_images=2)
        failed = make_session(status=SessionStatus.FAILED, error_message="第1页抓取失败")

        assert build_progress(cancelled).overall_progress == 55
        view = build_progress(failed)
        assert view.stage == "failed"
        assert view.overall_progress == 0
        assert "第1页抓取失败" in view.current_stage

    def test_active_downloads(self):
        session = make_session(status=SessionStatus.ACTIVE, total_images=2)
        image = ImageRecord(id=7, session_id=1, page_number=1, original_url="https://imgbox.com/A",
                            filename="a.jpg", hosting_site=None, status=ImageStatus.DOWNLOADING, progress=40)

        data = build_progress(session, [image]).to_dict()

        assert data["sessionId"] == 1
        assert data["activeDownloads"] == [{"filename": "a.jpg", "hostingSite": "unknown", "progress": 40}]

    def test_repeatable(self):
        session = make_session(status=SessionStatus.ACTIVE, total_images=5, completed_images=3)
        assert build_progress(session) == build_progress(session)
