"""Mount PST archives through Outlook and expose their folder trees."""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator

from .errors import ArchiveMountError

logger = logging.getLogger(__name__)

OL_MSG_FORMAT = 3


def _same_file(left: str | os.PathLike, right: str | os.PathLike) -> bool:
    return os.path.normcase(os.path.abspath(str(left))) == os.path.normcase(
        os.path.abspath(str(right))
    )


def _iter_collection(collection: Any) -> Iterator[Any]:
    """Walk a 1-based COM collection without materialising it."""
    count = int(getattr(collection, "Count", 0) or 0)
    for index in range(1, count + 1):
        yield collection.Item(index)


def _to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime(value.year, value.month, value.day, value.hour, value.minute, value.second)
    except (AttributeError, TypeError, ValueError):
        return None


class OutlookAttachment:
    def __init__(self, com_attachment: Any) -> None:
        self._com = com_attachment
        self.filename: str = str(getattr(com_attachment, "FileName", "") or "")

    def save_as(self, path: Path) -> None:
        self._com.SaveAsFile(str(path))


class OutlookItem:
    def __init__(self, com_item: Any) -> None:
        self._com = com_item
        self.subject: str = str(getattr(com_item, "Subject", "") or "")
        self.received = _to_datetime(
            getattr(com_item, "ReceivedTime", None) or getattr(com_item, "CreationTime", None)
        )

    def attachments(self) -> Iterator[OutlookAttachment]:
        collection = getattr(self._com, "Attachments", None)
        if collection is None:
            return
        for com_attachment in _iter_collection(collection):
            yield OutlookAttachment(com_attachment)

    def save_as_message(self, path: Path) -> None:
        self._com.SaveAs(str(path), OL_MSG_FORMAT)


class OutlookFolder:
    def __init__(self, com_folder: Any) -> None:
        self._com = com_folder
        self.name: str = str(getattr(com_folder, "Name", "") or "")

    def items(self) -> Iterator[OutlookItem]:
        for com_item in _iter_collection(self._com.Items):
            yield OutlookItem(com_item)

    def child_folders(self) -> Iterator["OutlookFolder"]:
        for com_folder in _iter_collection(self._com.Folders):
            yield OutlookFolder(com_folder)


def _dispatch_outlook() -> Any:
    import pythoncom
    import win32com.client

    pythoncom.CoInitialize()
    return win32com.client.Dispatch("Outlook.Application")


class OutlookSession:
    """Own the Outlook MAPI namespace and the archive mounted in it.

    Only one archive is mounted at a time; a stale store backed by the same
    file is removed before mounting.
    """

    def __init__(
        self,
        settle_seconds: float = 10.0,
        quit_on_close: bool = False,
        dispatch: Callable[[], Any] = _dispatch_outlook,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settle_seconds = settle_seconds
        self.quit_on_close = quit_on_close
        self._dispatch = dispatch
        self._sleep = sleep
        self._application = None
        self._namespace = None
        self.mounted_path: Path | None = None

    @property
    def namespace(self) -> Any:
        if self._namespace is None:
            logger.debug("Connecting to Outlook")
            self._application = self._dispatch()
            self._namespace = self._application.GetNamespace("MAPI")
        return self._namespace

    def _stores_for(self, archive_path: Path) -> list[Any]:
        return [
            store
            for store in _iter_collection(self.namespace.Stores)
            if getattr(store, "FilePath", None) and _same_file(store.FilePath, archive_path)
        ]

    def mount(self, archive_path: Path) -> OutlookFolder:
        if self.mounted_path is not None:
            raise ArchiveMountError(
                f"Cannot mount {archive_path.name}: {self.mounted_path.name} is still mounted"
            )
        if not archive_path.exists():
            raise ArchiveMountError(f"Archive {archive_path} does not exist")

        stale = self._stores_for(archive_path)
        for store in stale:
            logger.info("Removing stale mount of %s", archive_path.name)
            self.namespace.RemoveStore(store.GetRootFolder())
        if stale:
            self._sleep(self.settle_seconds)

        logger.info("Mounting %s", archive_path.name)
        self.namespace.AddStore(str(archive_path))
        self._sleep(self.settle_seconds)

        stores = self._stores_for(archive_path)
        if not stores:
            raise ArchiveMountError(f"Outlook did not expose a store for {archive_path.name}")
        self.mounted_path = archive_path
        return OutlookFolder(stores[0].GetRootFolder())

    def unmount(self) -> None:
        if self.mounted_path is None:
            return
        archive_path = self.mounted_path
        errors: list[Exception] = []
        try:
            for store in self._stores_for(archive_path):
                logger.info("Unmounting %s", archive_path.name)
                try:
                    self.namespace.RemoveStore(store.GetRootFolder())
                except Exception as exc:
                    errors.append(exc)
            self._sleep(self.settle_seconds)
        finally:
            self.mounted_path = None
        if errors:
            raise ArchiveMountError(f"Could not unmount {archive_path.name}: {errors[0]}") from errors[0]

    @contextmanager
    def mounted(self, archive_path: Path) -> Iterator[OutlookFolder]:
        root = self.mount(archive_path)
        try:
            yield root
        except BaseException:
            # keep the body's error; a cleanup failure is only logged
            try:
                self.unmount()
            except Exception:
                logger.exception("Failed to unmount %s after an error", archive_path.name)
            raise
        self.unmount()

    def close(self) -> None:
        """Unmount and optionally quit Outlook. Failures are logged, never raised."""
        mounted_name = self.mounted_path.name if self.mounted_path is not None else None
        try:
            self.unmount()
        except Exception:
            logger.exception("Failed to unmount %s while closing Outlook", mounted_name)
        if self.quit_on_close and self._application is not None:
            logger.info("Closing Outlook")
            try:
                self._application.Quit()
            except Exception:
                logger.exception("Outlook did not quit cleanly")
        self._application = None
        self._namespace = None
