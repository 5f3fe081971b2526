"""Run the external export transfer tool and collect the archives it writes."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable

from .errors import PreconditionError, TransferError
from .models import DownloadedArchive, TransferDescriptor
from .polling import PollPolicy, poll_until
from .utils import grant_full_access, human_size

logger = logging.getLogger(__name__)


class TransferLauncher:
    """Spawn the download tool, watch it until it exits, then tidy its output."""

    def __init__(
        self,
        tool_path: Path,
        archive_extension: str = ".pst",
        policy: PollPolicy | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        terminate_grace: float = 10.0,
    ) -> None:
        self.tool_path = Path(tool_path)
        self.archive_extension = archive_extension.lower()
        self.policy = policy or PollPolicy()
        self._popen = popen
        self.terminate_grace = terminate_grace

    def find_archives(self, dest_dir: Path) -> list[Path]:
        if not dest_dir.exists():
            return []
        return sorted(
            path
            for path in dest_dir.rglob("*")
            if path.is_file() and path.suffix.lower() == self.archive_extension
        )

    def build_command(self, job_name: str, descriptor: TransferDescriptor, dest_dir: Path) -> list[str]:
        return [
            str(self.tool_path),
            "-name",
            job_name,
            "-source",
            descriptor.location_uri,
            "-key",
            descriptor.credential_token,
            "-dest",
            str(dest_dir),
            "-trace",
            "true",
        ]

    def download(
        self, job_name: str, descriptor: TransferDescriptor, dest_dir: Path
    ) -> list[DownloadedArchive]:
        if not self.tool_path.exists():
            raise PreconditionError(f"Transfer tool not found at {self.tool_path}")

        dest_dir.mkdir(parents=True, exist_ok=True)
        leftovers = self.find_archives(dest_dir)
        if leftovers:
            raise PreconditionError(
                f"{dest_dir} already contains {len(leftovers)} archive(s) "
                f"(e.g. {leftovers[0].name}); clean the directory before downloading"
            )
        grant_full_access(dest_dir)

        logger.info("Starting transfer of '%s' into %s", job_name, dest_dir)
        process = self._popen(
            self.build_command(job_name, descriptor, dest_dir),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

        def finished() -> int | None:
            returncode = process.poll()
            if returncode is None:
                self._log_progress(dest_dir)
            return returncode

        try:
            returncode = poll_until(finished, self.policy, f"transfer of '{job_name}'")
        finally:
            if process.poll() is None:
                self._stop(process, job_name)

        if returncode:
            logger.warning("Transfer tool exited with code %s for '%s'", returncode, job_name)
        else:
            logger.info("Transfer tool finished for '%s'", job_name)

        archives = [self._prefix_with_job(path, job_name) for path in self.find_archives(dest_dir)]
        grant_full_access(dest_dir)
        if not archives:
            raise TransferError(f"Transfer of '{job_name}' produced no {self.archive_extension} files in {dest_dir}")
        return archives

    def _log_progress(self, dest_dir: Path) -> None:
        for partial in self.find_archives(dest_dir):
            try:
                size = partial.stat().st_size
            except OSError:
                continue
            logger.info("Downloading %s: %s", partial.name, human_size(size))

    def _stop(self, process: subprocess.Popen, job_name: str) -> None:
        """Terminate a tool that is still running, killing it if it lingers."""
        logger.warning("Stopping transfer tool for '%s'", job_name)
        process.terminate()
        try:
            process.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning("Transfer tool did not exit after %ss; killing it", self.terminate_grace)
            process.kill()
            process.wait()

    def collect_existing(self, dest_dir: Path, job_name: str) -> list[DownloadedArchive]:
        """Archives already on disk from an earlier run, renamed like fresh downloads."""
        return [self._prefix_with_job(path, job_name) for path in self.find_archives(dest_dir)]

    @staticmethod
    def _prefix_with_job(path: Path, job_name: str) -> DownloadedArchive:
        prefix = f"{job_name}-"
        if not path.name.startswith(prefix):
            target = path.with_name(prefix + path.name)
            logger.info("Renaming %s -> %s", path.name, target.name)
            path = path.rename(target)
        return DownloadedArchive(path=path, size=path.stat().st_size)
