"""
Tests for bounded completion detectors, run on a virtual clock.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from core.detectors import (
    CutoutCompletionDetector,
    DirectoryDiffDetector,
    NamedFileDetector,
    PollPolicy,
    RenderDetector,
    UploadTranscodeDetector,
    filename_from_link,
    poll_until,
)
from core.error_handler import DownloadNotFound, StageTimeout


class TestPollUntil:

    @pytest.mark.asyncio
    async def test_returns_first_truthy_value(self, clock):
        check = AsyncMock(side_effect=[None, None, "ready"])

        result = await poll_until(check, PollPolicy(1.0, 10.0), "thing", clock=clock)

        assert result == "ready"
        assert clock.now == 2.0

    @pytest.mark.asyncio
    async def test_custom_error_class(self, clock):
        with pytest.raises(DownloadNotFound):
            await poll_until(AsyncMock(return_value=False), PollPolicy(1.0, 3.0), "x",
                             clock=clock, error_cls=DownloadNotFound)


class TestUploadTranscodeDetector:

    @pytest.mark.asyncio
    async def test_overlay_never_clears_times_out_after_16_minutes(self, clock):
        media_item = MagicMock()
        media_item.evaluate = AsyncMock(return_value=False)
        detector = UploadTranscodeDetector(clock=clock)

        with pytest.raises(StageTimeout) as exc_info:
            await detector.wait(media_item)

        assert clock.now == 960.0
        assert "status overlay remained visible" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_overlay_cleared(self, clock):
        media_item = MagicMock()
        media_item.evaluate = AsyncMock(side_effect=[False, False, True])
        messages = []

        await UploadTranscodeDetector(clock=clock).wait(media_item, messages.append)

        assert clock.now == 2.0
        # overlay selector is passed to the in-page check
        assert media_item.evaluate.await_args.args[1] == 'div[class*="status-mask"]'


class TestCutoutCompletionDetector:

    @pytest.mark.asyncio
    async def test_times_out_after_seven_minutes(self, clock, fake_page):
        fake_page.evaluate = AsyncMock(return_value=False)

        with pytest.raises(StageTimeout):
            await CutoutCompletionDetector(clock=clock).wait(fake_page)

        assert clock.now == 420.0
        assert all(s == 5.0 for s in clock.sleeps)

    @pytest.mark.asyncio
    async def test_completes(self, clock, fake_page):
        fake_page.evaluate = AsyncMock(side_effect=[False, True])

        await CutoutCompletionDetector(clock=clock).wait(fake_page)

        assert clock.now == 5.0


class TestRenderDetector:

    @pytest.mark.asyncio
    async def test_returns_link_attributes(self, clock, fake_page):
        link = MagicMock()
        link.evaluate = AsyncMock(return_value={"download": "out.mp4", "href": "", "text": ""})
        fake_page.query_selector = AsyncMock(side_effect=[None, link])

        attrs = await RenderDetector(clock=clock).wait(fake_page)

        assert attrs["download"] == "out.mp4"
        assert clock.now == 15.0

    @pytest.mark.asyncio
    async def test_link_never_appears(self, clock, fake_page):
        with pytest.raises(StageTimeout):
            await RenderDetector(clock=clock).wait(fake_page)
        assert clock.now == 600.0


class TestFilenameFromLink:

    def test_download_attribute_first(self):
        assert filename_from_link({"download": " a.mp4 ", "href": "https://x/b.mp4", "text": "c.mp4"}) == "a.mp4"

    def test_href_last_segment(self):
        assert filename_from_link({"download": "", "href": "https://cdn/x/b.mp4?sig=1", "text": ""}) == "b.mp4"

    def test_href_without_dot_falls_to_text(self):
        assert filename_from_link({"download": "", "href": "https://cdn/x/blob", "text": "c.mp4"}) == "c.mp4"

    def test_nothing_usable(self):
        assert filename_from_link({"download": None, "href": "https://cdn/blob", "text": "Download"}) is None


class TestNamedFileDetector:

    @pytest.mark.asyncio
    async def test_stable_matching_file(self, tmp_path, clock):
        (tmp_path / "My_Clip.mp4").write_bytes(b"\x00" * 2048)
        detector = NamedFileDetector("My 🎬 Clip!!.mp4", tmp_path, clock=clock)

        path = await detector.wait()

        assert path.name == "My_Clip.mp4"
        assert clock.now == 2.0

    @pytest.mark.asyncio
    async def test_waits_for_growing_file(self, tmp_path, clock):
        target = tmp_path / "export.mp4"
        target.write_bytes(b"\x00" * 2048)

        def grow(now):
            if now <= 4:
                with open(target, "ab") as f:
                    f.write(b"\x00" * 1024)

        clock.on_sleep = grow
        path = await NamedFileDetector("export.mp4", tmp_path, clock=clock).wait()

        assert path == target
        assert clock.now == 6.0

    @pytest.mark.asyncio
    async def test_small_and_unrelated_files_time_out(self, tmp_path, clock):
        (tmp_path / "export.mp4").write_bytes(b"\x00" * 500)
        (tmp_path / "other.mp4").write_bytes(b"\x00" * 5000)

        with pytest.raises(DownloadNotFound):
            await NamedFileDetector("export.mp4", tmp_path, clock=clock).wait()

        assert clock.now == 900.0

    @pytest.mark.asyncio
    async def test_earlier_export_with_same_name_ignored(self, tmp_path, clock):
        (tmp_path / "export.mp4").write_bytes(b"\x00" * 5000)
        snapshot = NamedFileDetector.take_snapshot(tmp_path)
        detector = NamedFileDetector("export.mp4", tmp_path, snapshot=snapshot,
                                     policy=PollPolicy(2.0, 20.0), clock=clock)

        with pytest.raises(DownloadNotFound):
            await detector.wait()

    @pytest.mark.asyncio
    async def test_rewritten_file_with_same_name_accepted(self, tmp_path, clock):
        target = tmp_path / "export.mp4"
        target.write_bytes(b"\x00" * 5000)
        snapshot = NamedFileDetector.take_snapshot(tmp_path)
        target.write_bytes(b"\x00" * 8000)

        path = await NamedFileDetector("export.mp4", tmp_path, snapshot=snapshot, clock=clock).wait()

        assert path == target
        assert clock.now == 2.0


class TestDirectoryDiffDetector:

    @pytest.mark.asyncio
    async def test_new_file_needs_three_stable_checks(self, tmp_path, clock):
        (tmp_path / "old.mp4").write_bytes(b"\x00" * 5000)
        snapshot = DirectoryDiffDetector.take_snapshot(tmp_path)
        (tmp_path / "fresh.mp4").write_bytes(b"\x00" * 5000)

        path = await DirectoryDiffDetector(snapshot, tmp_path, clock=clock).wait()

        assert path.name == "fresh.mp4"
        assert clock.now == 6.0

    @pytest.mark.asyncio
    async def test_only_preexisting_files_time_out(self, tmp_path, clock):
        (tmp_path / "old.mp4").write_bytes(b"\x00" * 5000)
        snapshot = DirectoryDiffDetector.take_snapshot(tmp_path)

        with pytest.raises(DownloadNotFound):
            await DirectoryDiffDetector(snapshot, tmp_path, policy=PollPolicy(2.0, 20.0), clock=clock).wait()

    def test_snapshot_of_missing_dir_is_empty(self, tmp_path):
        assert DirectoryDiffDetector.take_snapshot(tmp_path / "missing") == {}
