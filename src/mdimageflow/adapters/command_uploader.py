import asyncio
import shlex
from pathlib import Path

from ..core.model import UploadResult
from ..core.ports import Uploader


class CommandUploader(Uploader):
    """Upload by running an external command.

    The image path is appended as the last argument; the last non-empty line
    the command prints on stdout is taken as the remote URL.
    """

    def __init__(self, command: str, timeout: float = 60.0):
        self.argv = shlex.split(command)
        self.name = Path(self.argv[0]).name if self.argv else "command"
        self.timeout = timeout

    async def upload(self, path: Path) -> UploadResult:
        if not self.argv:
            return UploadResult(success=False, provider=self.name, error="No upload command")

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv,
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return UploadResult(success=False, provider=self.name, error=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return UploadResult(success=False, provider=self.name, error="Upload timed out")

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            return UploadResult(success=False, provider=self.name, error=message)

        lines = [ln.strip() for ln in stdout.decode(errors="replace").splitlines() if ln.strip()]
        if not lines:
            return UploadResult(success=False, provider=self.name, error="Command printed no URL")
        return UploadResult(success=True, provider=self.name, url=lines[-1])
