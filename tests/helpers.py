from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass
class FakeAttachment:
    filename: str
    payload: bytes = b"data"
    fail: bool = False
    saved_to: list[Path] = field(default_factory=list)

    def save_as(self, path: Path) -> None:
        if self.fail:
            raise OSError("disk full")
        self.saved_to.append(path)
        path.write_bytes(self.payload)


@dataclass
class FakeItem:
    subject: str
    received: datetime | None
    files: list[FakeAttachment] = field(default_factory=list)
    attachment_calls: int = 0
    broken: bool = False

    def attachments(self):
        self.attachment_calls += 1
        if self.broken:
            raise OSError("item cannot be opened")
        yield from self.files

    def save_as_message(self, path: Path) -> None:
        path.write_text(self.subject)


@dataclass
class FakeFolder:
    name: str
    entries: list[FakeItem] = field(default_factory=list)
    children: list["FakeFolder"] = field(default_factory=list)
    visits: int = 0

    def items(self):
        self.visits += 1
        yield from self.entries

    def child_folders(self):
        yield from self.children


class FakeComplianceClient:
    """In-memory stand-in for the compliance admin API."""

    def __init__(self) -> None:
        self.searches: dict[str, dict] = {}
        self.search_statuses: dict[str, list] = {}
        self.exports: dict[str, list] = {}
        self.calls: list[tuple] = []

    def list_searches(self):
        self.calls.append(("list",))
        return list(self.searches.values())

    def get_search(self, name):
        self.calls.append(("get_search", name))
        queue = self.search_statuses.get(name)
        if queue:
            status = queue.pop(0)
            if isinstance(status, Exception):
                raise status
            self.searches[name]["Status"] = status
        return self.searches.get(name)

    def create_search(self, name, query, mailbox):
        self.calls.append(("create", name, query, mailbox))
        self.searches[name] = {"Name": name, "ContentMatchQuery": query, "Status": "NotStarted"}
        return self.searches[name]

    def start_search(self, name):
        self.calls.append(("start", name))

    def remove_search(self, name):
        self.calls.append(("remove", name))
        self.searches.pop(name, None)

    def create_export(self, search_name):
        self.calls.append(("export", search_name))
        return {"Name": f"{search_name}_Export"}

    def get_export(self, export_name):
        self.calls.append(("get_export", export_name))
        queue = self.exports.get(export_name) or []
        if len(queue) > 1:
            row = queue.pop(0)
        elif queue:
            row = queue[0]
        else:
            return None
        if isinstance(row, Exception):
            raise row
        return row


class ComCollection:
    """1-based collection like the ones Outlook's object model returns."""

    def __init__(self, entries) -> None:
        self.entries = entries

    @property
    def Count(self) -> int:
        return len(self.entries)

    def Item(self, index: int):
        return self.entries[index - 1]


class ComFolder:
    def __init__(self, name: str, items=(), folders=()) -> None:
        self.Name = name
        self.Items = ComCollection(list(items))
        self.Folders = ComCollection(list(folders))


class ComStore:
    def __init__(self, file_path: str, root: ComFolder) -> None:
        self.FilePath = file_path
        self.root = root

    def GetRootFolder(self) -> ComFolder:
        return self.root


class FakeNamespace:
    def __init__(self, roots: dict[str, ComFolder] | None = None, fail_remove: bool = False) -> None:
        self.roots = roots or {}
        self.stores: list[ComStore] = []
        self.added: list[str] = []
        self.removed: list[str] = []
        self.fail_remove = fail_remove

    @property
    def Stores(self) -> ComCollection:
        return ComCollection(list(self.stores))

    def AddStore(self, path: str) -> None:
        self.added.append(path)
        root = self.roots.get(path) or ComFolder("Top of Personal Folders")
        self.stores.append(ComStore(path, root))

    def RemoveStore(self, folder: ComFolder) -> None:
        if self.fail_remove:
            raise OSError("store is busy")
        for store in list(self.stores):
            if store.root is folder:
                self.removed.append(store.FilePath)
                self.stores.remove(store)


class FakeOutlookApplication:
    def __init__(self, namespace: FakeNamespace, fail_quit: bool = False) -> None:
        self.namespace = namespace
        self.quit_calls = 0
        self.fail_quit = fail_quit

    def GetNamespace(self, name: str) -> FakeNamespace:
        assert name == "MAPI"
        return self.namespace

    def Quit(self) -> None:
        self.quit_calls += 1
        if self.fail_quit:
            raise OSError("RPC server unavailable")


class ComAttachment:
    def __init__(self, name: str, fail: bool = False) -> None:
        self.FileName = name
        self.fail = fail

    def SaveAsFile(self, path: str) -> None:
        if self.fail:
            raise OSError("access denied")
        Path(path).write_text(self.FileName)


class ComMail:
    def __init__(self, subject: str, received: datetime, attachments=()) -> None:
        self.Subject = subject
        self.ReceivedTime = received
        self.Attachments = ComCollection(list(attachments))


class FakeProcess:
    """Pretends to download ``produces`` into -dest over a few liveness checks."""

    def __init__(
        self,
        command,
        produces: list[str],
        ticks: int = 2,
        returncode: int = 0,
        ignores_terminate: bool = False,
    ) -> None:
        self.command = command
        self.produces = produces
        self.ticks = ticks
        self._final = returncode
        self.returncode = None
        self.dest = Path(command[command.index("-dest") + 1])
        self.ignores_terminate = ignores_terminate
        self.signals: list[str] = []

    def poll(self):
        if self.ticks > 0:
            for name in self.produces:
                with (self.dest / name).open("ab") as handle:
                    handle.write(b"x" * 10)
            self.ticks -= 1
            return None
        self.returncode = self._final
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("terminate")
        if not self.ignores_terminate:
            self.ticks = 0
            self._final = -15

    def kill(self) -> None:
        self.signals.append("kill")
        self.ticks = 0
        self._final = -9

    def wait(self, timeout=None):
        if self.ticks > 0:
            raise subprocess.TimeoutExpired(self.command, timeout)
        return self.poll()
