"""
File-backed storage for uploaded datasets and generated timetable snapshots.

Files are keyed by name. Two backends share one interface:
``DirectoryStore`` writes to the uploads folder, ``MemoryStore`` keeps
everything in a dict (used by the test-suite).
"""
import io
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from spreadsheet_processor import ALLOWED_EXTENSIONS, EXCEL_EXTENSIONS, get_extension

logger = logging.getLogger(__name__)

TIMETABLE_PREFIX = 'timetable_'
TIMETABLE_SUFFIX = '.json'


class NotFoundError(LookupError):
    """Raised when a named file is not in the store."""

    def __init__(self, name):
        super().__init__(f'File not found: {name}')
        self.name = name


@dataclass(frozen=True)
class FileInfo:
    name: str
    size: int
    modified: datetime

    @property
    def type(self) -> str:
        return get_extension(self.name).lstrip('.').upper()

    def to_dict(self):
        return {
            'name': self.name,
            'size': self.size,
            'uploadDate': self.modified.isoformat(),
            'type': self.type,
        }


class DirectoryStore:
    def __init__(self, root: str):
        self.root = root

    def _ensure_root(self):
        if not os.path.isdir(self.root):
            os.makedirs(self.root, exist_ok=True)
            logger.info('Created uploads directory %s', self.root)

    def path(self, name: str) -> str:
        return os.path.join(self.root, name)

    def names(self) -> List[str]:
        self._ensure_root()
        return [n for n in os.listdir(self.root) if os.path.isfile(self.path(n))]

    def exists(self, name: str) -> bool:
        return os.path.isfile(self.path(name))

    def read(self, name: str) -> bytes:
        with open(self.path(name), 'rb') as f:
            return f.read()

    def write(self, name: str, data: bytes) -> None:
        self._ensure_root()
        with open(self.path(name), 'wb') as f:
            f.write(data)

    def delete(self, name: str) -> None:
        os.remove(self.path(name))

    def stat(self, name: str) -> FileInfo:
        st = os.stat(self.path(name))
        return FileInfo(name=name, size=st.st_size, modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc))


class MemoryStore:
    def __init__(self):
        self._files: Dict[str, bytes] = {}
        self._mtimes: Dict[str, float] = {}

    def path(self, name: str) -> str:
        return f'memory://{name}'

    def names(self) -> List[str]:
        return list(self._files)

    def exists(self, name: str) -> bool:
        return name in self._files

    def read(self, name: str) -> bytes:
        return self._files[name]

    def write(self, name: str, data: bytes) -> None:
        self._files[name] = bytes(data)
        self._mtimes[name] = time.time()

    def delete(self, name: str) -> None:
        del self._files[name]
        self._mtimes.pop(name, None)

    def stat(self, name: str) -> FileInfo:
        return FileInfo(
            name=name,
            size=len(self._files[name]),
            modified=datetime.fromtimestamp(self._mtimes[name], tz=timezone.utc),
        )


def is_timetable_name(name: str) -> bool:
    return name.startswith(TIMETABLE_PREFIX) and name.endswith(TIMETABLE_SUFFIX)


class _FileStore:
    def __init__(self):
        self.backend = None

    def init_app(self, app, backend=None):
        if backend is None:
            backend = DirectoryStore(app.config.get('UPLOAD_FOLDER', 'uploads'))
        self.backend = backend
        app.extensions['file_store'] = self

    def path(self, name: str) -> str:
        return self.backend.path(name)

    def exists(self, name: str) -> bool:
        return self.backend.exists(name)

    def list(self) -> List[FileInfo]:
        """Every stored file with an allowed spreadsheet extension."""
        names = sorted(n for n in self.backend.names() if get_extension(n) in ALLOWED_EXTENSIONS)
        return [self.backend.stat(n) for n in names]

    def spreadsheets(self) -> List[str]:
        """Excel uploads, excluding anything that looks like a generated snapshot."""
        return sorted(
            n for n in self.backend.names()
            if get_extension(n) in EXCEL_EXTENSIONS and not n.startswith(TIMETABLE_PREFIX)
        )

    def read(self, name: str) -> bytes:
        if not self.backend.exists(name):
            raise NotFoundError(name)
        return self.backend.read(name)

    def open(self, name: str) -> io.BytesIO:
        return io.BytesIO(self.read(name))

    def write(self, name: str, data: bytes) -> None:
        self.backend.write(name, data)

    def delete(self, name: str) -> None:
        if not self.backend.exists(name):
            raise NotFoundError(name)
        self.backend.delete(name)

    def read_json(self, name: str):
        return json.loads(self.read(name).decode('utf-8'))

    def write_json(self, name: str, payload) -> None:
        self.write(name, json.dumps(payload, indent=2).encode('utf-8'))

    def list_timetables(self, branch: Optional[str] = None, division: Optional[str] = None) -> List[str]:
        """
        Names of stored timetable snapshots.

        A filter token matches when it appears in the filename or in the
        snapshot's own branch/division field, compared case-insensitively.
        """
        names = sorted(n for n in self.backend.names() if is_timetable_name(n))
        if not branch and not division:
            return names

        matched = []
        for name in names:
            content = None
            ok = True
            for field, token in (('branch', branch), ('division', division)):
                if not token:
                    continue
                token = str(token).lower()
                if token in name.lower():
                    continue
                if content is None:
                    content = self._safe_json(name)
                if token not in str(content.get(field, '')).lower():
                    ok = False
                    break
            if ok:
                matched.append(name)
        return matched

    def _safe_json(self, name: str) -> dict:
        try:
            data = self.read_json(name)
        except (ValueError, OSError) as exc:
            logger.warning('Could not read timetable file %s: %s', name, exc)
            return {}
        return data if isinstance(data, dict) else {}


store = _FileStore()
