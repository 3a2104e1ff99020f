"""
Download queue construction: original-resolution URLs, file naming and the FIFO cursor
"""
import re
from datetime import datetime
from typing import Iterable, List, Optional, Set
from urllib.parse import urlparse

from .models import CollectedItem, QueueItem
from .settings import DEFAULT_SESSION_ROOT

_CDN_RESIZE_SEGMENT = re.compile(r'/cdn-cgi/image/[^/]+/')
_EXTENSION = re.compile(r'\.[a-z0-9]{2,5}$', re.IGNORECASE)

DEFAULT_EXTENSIONS = {
    'video': '.mp4',
    'image': '.png',
}


def transform_to_original_url(url: str) -> str:
    """Rewrite known preview/thumbnail URLs to their full-resolution source.

    - imagine-public.x.ai: drop the /cdn-cgi/image/<options>/ resizing segment
    - assets.grok.com: swap preview_image.jpg for image.png

    Anything else is returned unchanged.
    """
    if not url:
        return url

    if 'imagine-public.x.ai' in url and '/cdn-cgi/image/' in url:
        return _CDN_RESIZE_SEGMENT.sub('/', url, count=1)

    if 'assets.grok.com' in url and '/preview_image.jpg' in url:
        return url.replace('/preview_image.jpg', '/image.png', 1)

    return url


def normalize_kind(kind: Optional[str]) -> str:
    if kind in ('video', 'image'):
        return kind
    return 'other'


def derive_extension(kind: str, url: str) -> str:
    """Use the extension of the last URL path segment, else a per-kind default"""
    try:
        path = urlparse(url).path if url else ''
    except ValueError:
        path = ''
    segments = [segment for segment in path.split('/') if segment]
    if segments:
        match = _EXTENSION.search(segments[-1])
        if match:
            return match.group(0).lower()
    return DEFAULT_EXTENSIONS.get(kind, '.bin')


def ensure_unique(filename: str, used_names: Set[str]) -> str:
    """Return filename, or the first free "<stem>-N<ext>" (N >= 2) variant.

    used_names holds lower-cased names; the caller records the result.
    """
    if filename.lower() not in used_names:
        return filename
    dot_index = filename.rfind('.')
    if dot_index > 0:
        stem, extension = filename[:dot_index], filename[dot_index:]
    else:
        stem, extension = filename, ''
    counter = 2
    candidate = f"{stem}-{counter}{extension}"
    while candidate.lower() in used_names:
        counter += 1
        candidate = f"{stem}-{counter}{extension}"
    return candidate


def create_session_folder_name(now: Optional[datetime] = None, root: str = DEFAULT_SESSION_ROOT) -> str:
    """Folder for one run, e.g. harvest-session/2024-05-01_13-02-09"""
    now = now or datetime.now()
    return f"{root}/{now.strftime('%Y-%m-%d_%H-%M-%S')}"


def prepare_queue(items: Iterable[CollectedItem], session_folder: str) -> List[QueueItem]:
    """Build one queue entry per collected media file.

    File numbering follows the item's group so names match their position on
    the page; names are unique (case-insensitively) within the session.
    """
    used_names: Set[str] = set()
    queue: List[QueueItem] = []
    for item in items:
        kind = normalize_kind(item.kind)
        original_url = transform_to_original_url(item.url)
        extension = derive_extension(kind, original_url)
        unique_name = ensure_unique(f"{item.group_id}-{kind}{extension}", used_names)
        used_names.add(unique_name.lower())
        queue.append(QueueItem(
            url=original_url,
            kind=kind,
            filename=f"{session_folder}/{unique_name}",
            label=unique_name,
            group_id=item.group_id,
        ))
    return queue


class DownloadQueue:
    """In-memory FIFO of queue items with a forward-only cursor."""

    def __init__(self, items: Optional[Iterable[QueueItem]] = None):
        self._queue: List[QueueItem] = list(items or [])
        self._index = 0

    # Queue operations ---------------------------------------------------
    def __len__(self) -> int:
        return len(self._queue)

    @property
    def index(self) -> int:
        return self._index

    @property
    def exhausted(self) -> bool:
        return self._index >= len(self._queue)

    def current(self) -> Optional[QueueItem]:
        if self.exhausted:
            return None
        return self._queue[self._index]

    def advance(self) -> None:
        if not self.exhausted:
            self._index += 1
