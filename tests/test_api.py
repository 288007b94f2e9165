"""
HTTP接口测试用例
"""

import time
import zipfile
import io

import aiohttp
import pytest
from fastapi.testclient import TestClient

from api import create_app
from config.manager import ConfigManager

from conftest import FakeHttp, THREAD_URL, page_url, thread_html


def wait_for(client, session_id, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        data = client.get(f"/api/downloads/{session_id}/progress").json()
        if data["stage"] in ("completed", "failed", "cancelled"):
            return data
        time.sleep(0.02)
    raise AssertionError("download did not finish")


class TestApi:

    @pytest.fixture(autouse=True)
    def client(self, tmp_path):
        self.http = FakeHttp()
        self.http.pages[page_url(1)] = thread_html([
            ("https://imagetwist.com/one/one.jpg", "https://img.imagetwist.com/th/one.jpg"),
            ("https://imagetwist.com/two/two.jpg", None),
        ])
        self.http.add_image("https://imagetwist.com/one/one.jpg", "https://i.imagetwist.com/i/one.jpg")
        self.http.add_image("https://imagetwist.com/two/two.jpg", "https://i.imagetwist.com/i/two.jpg")

        config_manager = ConfigManager(str(tmp_path / "missing.yaml"))
        settings = config_manager.get_settings()
        settings.database.type = "memory"
        settings.downloader.download_root = str(tmp_path / "downloads")
        settings.downloader.retry_delay = 0.0

        app = create_app(config_manager, http=self.http, configure_logging=False)
        with TestClient(app) as client:
            self.client = client
            yield client

    def test_parse_url(self):
        response = self.client.post("/api/parse-url", json={"url": THREAD_URL + "?page=2"})
        assert response.status_code == 200
        assert response.json() == {"threadId": "12345", "currentPage": 2}

    def test_parse_invalid_url(self):
        response = self.client.post("/api/parse-url", json={"url": "https://example.com/nope"})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_extract_images(self):
        response = self.client.post("/api/extract-images", json={"threadUrl": THREAD_URL, "pageCount": 2})
        data = response.json()

        assert response.status_code == 200
        assert data["title"] == "Summer Set"
        assert data["totalImages"] == 2
        assert data["scannedPages"] == 1
        assert data["images"][0] == {
            "url": "https://imagetwist.com/one/one.jpg",
            "previewUrl": "https://img.imagetwist.com/th/one.jpg",
            "hostingSite": "imagetwist.com",
            "fileName": "imagetwist_1_001.jpg",
            "isValid": True,
            "pageNumber": 1,
        }
        assert data["pageTexts"][0]["page"] == 1

    def test_download_flow(self):
        response = self.client.post("/api/downloads", json={"threadUrl": THREAD_URL, "fromPage": 1, "toPage": 1})
        assert response.status_code == 200
        session = response.json()
        assert session["status"] == "active"
        assert session["threadUrl"] == THREAD_URL

        progress = wait_for(self.client, session["id"])
        assert progress["overallProgress"] == 100
        assert progress["completedImages"] == 2

        detail = self.client.get(f"/api/downloads/{session['id']}").json()
        assert detail["status"] == "completed"
        assert [image["filename"] for image in detail["images"]] == ["one.jpg", "two.jpg"]

        history = self.client.get("/api/downloads").json()
        assert [item["id"] for item in history] == [session["id"]]

        assert self.client.post(f"/api/downloads/{session['id']}/cancel").json() == {
            "success": True, "cancelled": False,
        }
        assert self.client.get(f"/api/downloads/{session['id']}/archive").status_code == 404

        assert self.client.delete(f"/api/downloads/{session['id']}").status_code == 200
        assert self.client.get(f"/api/downloads/{session['id']}").status_code == 404

    def test_archive_download(self):
        response = self.client.post("/api/downloads", json={"threadUrl": THREAD_URL, "outputFormat": "zip"})
        session_id = response.json()["id"]
        wait_for(self.client, session_id)

        archive = self.client.get(f"/api/downloads/{session_id}/archive")

        assert archive.status_code == 200
        assert archive.headers["content-type"] == "application/zip"
        with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
            assert sorted(zf.namelist()) == ["page_1/one.jpg", "page_1/two.jpg"]

    def test_invalid_download_requests(self):
        bad_url = self.client.post("/api/downloads", json={"threadUrl": "https://example.com/nope"})
        assert bad_url.status_code == 400
        assert self.client.get("/api/downloads").json() == []

        bad_range = self.client.post("/api/downloads", json={"threadUrl": THREAD_URL, "fromPage": 3, "toPage": 1})
        assert bad_range.status_code == 422

    def test_missing_session(self):
        assert self.client.get("/api/downloads/42/progress").status_code == 404
        assert self.client.post("/api/downloads/42/cancel").status_code == 404
        assert self.client.delete("/api/downloads/42").json() == {"error": "会话不存在: 42"}

    def test_placeholder(self):
        response = self.client.get("/api/placeholder/150/100")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert 'width="150"' in response.text
        assert self.client.get("/api/placeholder/0/100").status_code == 422

    def test_download_image(self):
        response = self.client.post("/api/download-image", json={
            "url": "https://imagetwist.com/one/one.jpg",
            "fileName": "first.jpg",
            "hostingSite": "imagetwist.com",
        })

        assert response.status_code == 200
        assert response.content == b"\xff\xd8\xff\xe0fake-jpeg-data"
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["content-disposition"] == 'attachment; filename="first.jpg"'
        assert self.http.referers == ["https://imagetwist.com/one/one.jpg"]
        # 不创建下载会话
        assert self.client.get("/api/downloads").json() == []

    def test_download_image_default_filename(self):
        response = self.client.post("/api/download-image", json={"url": "https://imagetwist.com/two/two.jpg"})
        assert response.headers["content-disposition"] == 'attachment; filename="two.jpg"'

        named = self.client.post("/api/download-image", json={
            "url": "https://imagetwist.com/two/two.jpg", "fileName": "夏天.jpg",
        })
        assert named.headers["content-disposition"] == "attachment; filename*=utf-8''%E5%A4%8F%E5%A4%A9.jpg"

    def test_download_image_errors(self):
        missing = self.client.post("/api/download-image", json={})
        assert missing.status_code == 400
        assert missing.json() == {"error": "图片URL不能为空"}

        unreachable = self.client.post("/api/download-image", json={"url": "https://example.com/a.jpg"})
        assert unreachable.status_code == 502
        assert "图床页面请求失败" in unreachable.json()["error"]

        self.http.files["https://i.imagetwist.com/i/one.jpg"] = aiohttp.ClientConnectionError("reset")
        failed = self.client.post("/api/download-image", json={"url": "https://imagetwist.com/one/one.jpg"})
        assert failed.status_code == 502
        assert failed.json()["error"].startswith("下载失败")
