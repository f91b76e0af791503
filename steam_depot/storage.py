"""
Session and download marker persistence

Both record types are small JSON files written atomically (temp file + rename)
so a crash mid-write never leaves a half-written canonical file.
"""

import logging
from pathlib import Path
from typing import List, Optional

from steam_depot import constants, utils
from steam_depot.models import DownloadMarker, Session


class SessionStore:
    """
    Stores one ``session-<username>.json`` file per account in a directory.

    Sessions are replaced wholesale, never edited in place.
    """

    def __init__(self, session_dir):
        """
        Initialize the session store.

        Args:
            session_dir: Directory holding session files (created on first save)
        """
        self.session_dir = Path(session_dir)
        self.logger = logging.getLogger("steam_depot.storage")

    def path_for(self, username: str) -> Path:
        return self.session_dir / constants.SESSION_FILE_TEMPLATE.format(username=username)

    def _session_files(self) -> List[Path]:
        if not self.session_dir.is_dir():
            return []
        return sorted(self.session_dir.glob(constants.SESSION_FILE_GLOB))

    def has_saved_session(self) -> bool:
        """
        Check whether any session file exists.

        Only existence is checked; an expired token is discovered on login.
        """
        return bool(self._session_files())

    def load(self) -> Optional[Session]:
        """
        Load the first saved session.

        Returns:
            The session, or None if there is none or it cannot be parsed
        """
        files = self._session_files()
        if not files:
            return None

        path = files[0]
        try:
            session = Session.from_json(utils.read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Ignoring unreadable session file {path}: {e}")
            return None

        self.logger.debug(f"Loaded session for {session.username} from {path}")
        return session

    def save(self, session: Session) -> Path:
        """Atomically write a session, replacing any previous one for the user."""
        path = self.path_for(session.username)
        utils.atomic_write_json(path, session.to_json())
        self.logger.info(f"Session saved for {session.username}")
        return path

    def delete(self, username: str) -> bool:
        """Remove a user's session file. Returns True if one was removed."""
        path = self.path_for(username)
        if not path.exists():
            return False
        path.unlink()
        self.logger.info(f"Session removed for {username}")
        return True


class MarkerStore:
    """
    Stores ``.download-manifest-<appId>`` markers in a depot target directory.
    """

    def __init__(self, target_dir):
        self.target_dir = Path(target_dir)
        self.logger = logging.getLogger("steam_depot.storage")

    def path_for(self, app_id: int) -> Path:
        return self.target_dir / constants.MARKER_FILE_TEMPLATE.format(app_id=app_id)

    def load(self, app_id: int) -> Optional[DownloadMarker]:
        """
        Load the marker for an app.

        A corrupted marker is treated as absent so the download proceeds.
        """
        path = self.path_for(app_id)
        if not path.exists():
            return None

        try:
            return DownloadMarker.from_json(utils.read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Ignoring invalid download marker {path}: {e}")
            return None

    def save(self, marker: DownloadMarker) -> Path:
        """Atomically write a marker."""
        path = self.path_for(marker.app_id)
        utils.atomic_write_json(path, marker.to_json())
        self.logger.info(f"Download marker saved (manifest: {marker.manifest_id})")
        return path

    def is_current(self, app_id: int, manifest_id: int) -> bool:
        """Check whether the directory already materializes ``manifest_id``."""
        marker = self.load(app_id)
        return marker is not None and marker.manifest_id == manifest_id

