from __future__ import annotations

import unittest
from datetime import datetime

from harvester.download_queue import (
    DownloadQueue,
    create_session_folder_name,
    derive_extension,
    ensure_unique,
    prepare_queue,
    transform_to_original_url,
)
from harvester.models import CollectedItem

SESSION = "harvest-session/2024-05-01_13-02-09"


def item(url: str, kind: str = "image", group_id: int = 1) -> CollectedItem:
    return CollectedItem(url=url, kind=kind, container_id=group_id - 1, group_id=group_id)


class TransformUrlTests(unittest.TestCase):
    def test_strips_cdn_resize_segment(self) -> None:
        url = "imagine-public.x.ai/cdn-cgi/image/width=500,fit=scale-down,format=auto/imagine-public/images/X.png"
        self.assertEqual("imagine-public.x.ai/imagine-public/images/X.png", transform_to_original_url(url))

    def test_strips_cdn_resize_segment_with_scheme(self) -> None:
        url = "https://imagine-public.x.ai/cdn-cgi/image/width=500,fit=scale-down,format=auto/imagine-public/images/ID.png"
        self.assertEqual(
            "https://imagine-public.x.ai/imagine-public/images/ID.png",
            transform_to_original_url(url),
        )

    def test_swaps_preview_filename_and_keeps_query(self) -> None:
        url = "assets.grok.com/users/u1/generated/abc/preview_image.jpg?cache=1"
        self.assertEqual(
            "assets.grok.com/users/u1/generated/abc/image.png?cache=1",
            transform_to_original_url(url),
        )

    def test_unknown_urls_pass_through(self) -> None:
        for url in ("", "https://example.com/a/preview_image.jpg", "https://assets.grok.com/x/video.mp4"):
            self.assertEqual(url, transform_to_original_url(url))


class NamingTests(unittest.TestCase):
    def test_derive_extension_from_path(self) -> None:
        self.assertEqual(".png", derive_extension("image", "https://assets.grok.com/a/image.png?cache=1"))
        self.assertEqual(".mp4", derive_extension("video", "https://assets.grok.com/a/GENERATED_VIDEO.MP4"))

    def test_derive_extension_defaults_by_kind(self) -> None:
        self.assertEqual(".mp4", derive_extension("video", "https://assets.grok.com/a/stream"))
        self.assertEqual(".png", derive_extension("image", "https://assets.grok.com/a/"))
        self.assertEqual(".bin", derive_extension("other", "https://assets.grok.com/a/blob"))

    def test_ensure_unique_appends_counter_before_extension(self) -> None:
        used = {"3-image.png", "3-image-2.png"}
        self.assertEqual("3-image-3.png", ensure_unique("3-Image.PNG".lower(), used))
        self.assertEqual("4-image.png", ensure_unique("4-image.png", used))
        self.assertEqual("notes-2", ensure_unique("notes", {"notes"}))

    def test_session_folder_name(self) -> None:
        self.assertEqual(SESSION, create_session_folder_name(datetime(2024, 5, 1, 13, 2, 9)))
        self.assertEqual(
            "custom/2024-12-31_23-59-59",
            create_session_folder_name(datetime(2024, 12, 31, 23, 59, 59), root="custom"),
        )


class PrepareQueueTests(unittest.TestCase):
    def test_collision_gets_numeric_suffix(self) -> None:
        queue = prepare_queue(
            [
                item("https://assets.grok.com/generated/a/preview_image.jpg", group_id=3),
                item("https://assets.grok.com/generated/b/preview_image.jpg", group_id=3),
            ],
            SESSION,
        )
        self.assertEqual(["3-image.png", "3-image-2.png"], [entry.label for entry in queue])
        self.assertEqual(f"{SESSION}/3-image-2.png", queue[1].filename)

    def test_urls_upgraded_and_kinds_normalized(self) -> None:
        queue = prepare_queue(
            [
                item("https://assets.grok.com/generated/a/preview_image.jpg?cache=1", group_id=1),
                item("https://assets.grok.com/generated/a/generated_video.mp4", kind="video", group_id=1),
                item("https://assets.grok.com/generated/c/blob", kind="audio", group_id=2),
            ],
            SESSION,
        )
        self.assertEqual("https://assets.grok.com/generated/a/image.png?cache=1", queue[0].url)
        self.assertEqual(["1-image.png", "1-video.mp4", "2-other.bin"], [entry.label for entry in queue])
        self.assertEqual([1, 1, 2], [entry.group_id for entry in queue])

    def test_filenames_distinct_and_prefixed(self) -> None:
        items = [
            item(f"https://assets.grok.com/generated/{n}/IMAGE.PNG", group_id=(n % 3) + 1)
            for n in range(12)
        ]
        queue = prepare_queue(items, SESSION)
        names = [entry.filename.lower() for entry in queue]
        self.assertEqual(len(names), len(set(names)))
        self.assertTrue(all(entry.filename.startswith(SESSION + "/") for entry in queue))


class DownloadQueueTests(unittest.TestCase):
    def test_cursor_only_moves_forward(self) -> None:
        entries = prepare_queue(
            [item("https://assets.grok.com/generated/a/x.png", group_id=n) for n in (1, 2)],
            SESSION,
        )
        queue = DownloadQueue(entries)
        self.assertEqual(entries[0], queue.current())
        queue.advance()
        self.assertEqual(1, queue.index)
        queue.advance()
        self.assertTrue(queue.exhausted)
        self.assertIsNone(queue.current())
        queue.advance()
        self.assertEqual(2, queue.index)
        self.assertEqual(2, len(queue))


if __name__ == "__main__":
    unittest.main()
