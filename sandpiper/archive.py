"""ArchiveBuilder — zip the sandbox project and hand it back base64-encoded.

Runs entirely over the provider command contract:
    zip -r /tmp/project.zip . -x <excludes>   (in the project directory)
    wc -c < /tmp/project.zip                  (size, for logging)
    base64 -w 0 /tmp/project.zip              (payload)
"""

from __future__ import annotations

import shlex

from pydantic import BaseModel

from sandpiper.config import settings
from sandpiper.errors import ProviderCommandError
from sandpiper.providers.base import SandboxProvider
from sandpiper.utils import get_logger

logger = get_logger("archive")

ARCHIVE_PATH = "/tmp/project.zip"


class ArchiveResult(BaseModel):
    data_url: str
    file_name: str
    size: int = 0


class ArchiveBuilder:
    def __init__(self, excludes: list[str] | None = None, file_name: str | None = None) -> None:
        self.excludes = excludes if excludes is not None else settings.archive_excludes
        self.file_name = file_name or settings.archive_file_name

    async def build(self, provider: SandboxProvider) -> ArchiveResult:
        logger.info("creating_project_archive")
        exclude_args = " ".join(shlex.quote(p) for p in self.excludes)
        zip_cmd = f"rm -f {ARCHIVE_PATH} && zip -r {ARCHIVE_PATH} ."
        if exclude_args:
            zip_cmd += f" -x {exclude_args}"

        zipped = await provider.run_command("sh", ["-c", zip_cmd])
        if not zipped.ok:
            logger.error("archive_zip_failed", stderr=zipped.stderr[:300])
            raise ProviderCommandError(
                f"Failed to create zip: {zipped.stderr.strip()}",
                exit_code=zipped.exit_code,
                stderr=zipped.stderr,
            )

        size_result = await provider.run_command("sh", ["-c", f"wc -c < {ARCHIVE_PATH}"])
        try:
            size = int(size_result.stdout.strip() or 0)
        except ValueError:
            size = 0
        logger.info("project_archive_created", size=size)

        encoded = await provider.run_command("base64", ["-w", "0", ARCHIVE_PATH])
        if not encoded.ok:
            logger.error("archive_read_failed", stderr=encoded.stderr[:300])
            raise ProviderCommandError(
                f"Failed to read zip file: {encoded.stderr.strip()}",
                exit_code=encoded.exit_code,
                stderr=encoded.stderr,
            )

        payload = "".join(encoded.stdout.split())
        return ArchiveResult(
            data_url=f"data:application/zip;base64,{payload}",
            file_name=self.file_name,
            size=size,
        )
