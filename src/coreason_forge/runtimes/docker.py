import asyncio
import io
import posixpath
import shlex
import tarfile
import time

import docker
from docker.errors import DockerException
from docker.models.containers import Container
from loguru import logger

from coreason_forge.models import CommandResult
from coreason_forge.runtime import SandboxRuntime


class DockerRuntime(SandboxRuntime):
    """
    Docker-based implementation of the SandboxRuntime.

    Runs a long-lived container with the preview port published on an
    ephemeral host port. Intended for local development without E2B.
    """

    def __init__(
        self,
        image: str = "node:20-slim",
        cpu_limit: float = 1.0,
        mem_limit: str = "1g",
        work_dir: str = "/home/user/app",
        exposed_ports: tuple[int, ...] = (5173,),
        timeout: float = 300.0,
    ):
        self.client = docker.from_env()
        self.image = image
        self.cpu_limit = cpu_limit
        self.mem_limit = mem_limit
        self.work_dir = work_dir
        self.exposed_ports = exposed_ports
        self.timeout = timeout
        self.container: Container | None = None
        self.host_ports: dict[int, str] = {}

    def _require_container(self) -> Container:
        if not self.container:
            raise RuntimeError("Sandbox not started")
        return self.container

    async def start(self) -> None:
        """
        Boot the environment.
        """
        logger.info(f"Starting Docker sandbox with image {self.image}")
        try:
            self.container = await asyncio.to_thread(
                self.client.containers.run,
                self.image,
                command="tail -f /dev/null",
                detach=True,
                mem_limit=self.mem_limit,
                nano_cpus=int(self.cpu_limit * 1e9),
                remove=True,
                ports={f"{port}/tcp": None for port in self.exposed_ports},
                working_dir=self.work_dir,
            )
            # Ensure working directory exists
            await asyncio.to_thread(self.container.exec_run, ["mkdir", "-p", self.work_dir])
            # Host ports are assigned by the daemon once the container runs
            await asyncio.to_thread(self.container.reload)
            self.host_ports = self._published_ports(self.container)

            logger.info(f"Docker sandbox started: {self.container.short_id}")
        except DockerException as e:
            logger.error(f"Failed to start Docker sandbox: {e}")
            self.container = None
            raise

    @property
    def sandbox_id(self) -> str:
        return str(self._require_container().short_id)

    def _published_ports(self, container: Container) -> dict[int, str]:
        published: dict[int, str] = {}
        for port in self.exposed_ports:
            bindings = (container.ports or {}).get(f"{port}/tcp") or []
            if bindings:
                published[port] = bindings[0]["HostPort"]
        return published

    def host_url(self, port: int) -> str:
        container = self._require_container()
        if port not in self.host_ports:
            raise RuntimeError(f"Port {port} is not published by container {container.short_id}")
        return f"http://localhost:{self.host_ports[port]}"

    async def write_file(self, path: str, content: str) -> None:
        container = self._require_container()
        data = content.encode("utf-8")

        tar_stream = io.BytesIO()
        with tarfile.open(fileobj=tar_stream, mode="w") as tar:
            info = tarfile.TarInfo(name=posixpath.basename(path))
            info.size = len(data)
            info.mtime = int(time.time())
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
        tar_stream.seek(0)

        parent_dir = posixpath.dirname(path) or "/"
        ok = await asyncio.to_thread(container.put_archive, parent_dir, tar_stream.getvalue())
        if ok is False:
            raise RuntimeError(f"Docker refused archive upload to {parent_dir}")

    async def make_directory(self, path: str) -> None:
        container = self._require_container()
        exit_code, output = await asyncio.to_thread(container.exec_run, ["mkdir", "-p", path])
        if exit_code != 0:
            raise RuntimeError(f"mkdir failed for {path}: {output.decode('utf-8', errors='replace')}")

    async def read_file(self, path: str) -> str:
        container = self._require_container()
        bits, _stat = await asyncio.to_thread(container.get_archive, path)

        tar_stream = io.BytesIO()
        for chunk in bits:
            tar_stream.write(chunk)
        tar_stream.seek(0)

        with tarfile.open(fileobj=tar_stream, mode="r") as tar:
            member = tar.next()
            if member is None:
                raise FileNotFoundError(f"Remote file not found in archive: {path}")
            f = tar.extractfile(member)
            if f is None:
                raise FileNotFoundError(f"Remote path is not a regular file: {path}")
            return f.read().decode("utf-8")

    async def list_files(self, path: str, exclude_dirs: set[str]) -> list[str]:
        container = self._require_container()
        cmd = ["find", path]
        for name in sorted(exclude_dirs):
            cmd.extend(["-name", name, "-prune", "-o"])
        cmd.extend(["-type", "f", "-print"])

        exit_code, output = await asyncio.to_thread(container.exec_run, cmd)
        if exit_code != 0:
            stderr = output.decode("utf-8") if output else "Unknown error"
            logger.warning(f"Failed to list files at {path}: {stderr}")
            raise RuntimeError(f"Failed to list files at {path}")

        lines = output.decode("utf-8").splitlines()
        return sorted(posixpath.relpath(line.strip(), path) for line in lines if line.strip())

    async def run_command(
        self, command: str, cwd: str | None = None, background: bool = False, timeout: float | None = None
    ) -> CommandResult:
        container = self._require_container()
        workdir = cwd or self.work_dir
        logger.info(f"Running command in sandbox {container.short_id}: {command}", background=background)

        if background:
            # nohup keeps the process alive after exec_run returns
            wrapped = f"nohup sh -c {shlex.quote(command)} > /tmp/forge-bg.log 2>&1 &"
            await asyncio.to_thread(container.exec_run, ["sh", "-c", wrapped], workdir=workdir, detach=True)
            return CommandResult(background=True)

        limit = timeout or self.timeout
        try:
            exit_code, output = await asyncio.wait_for(
                asyncio.to_thread(container.exec_run, ["sh", "-c", command], workdir=workdir, demux=True),
                timeout=limit,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Command exceeded {limit} seconds limit: {command}") from e

        stdout_bytes, stderr_bytes = output if output else (None, None)
        return CommandResult(
            stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
            exit_code=exit_code,
        )

    async def terminate(self) -> None:
        """
        Kill and cleanup the sandbox environment.
        """
        if self.container:
            logger.info(f"Terminating Docker sandbox: {self.container.short_id}")
            try:
                await asyncio.to_thread(self.container.kill)
            except DockerException as e:
                logger.warning(f"Error terminating Docker sandbox: {e}")
            finally:
                self.container = None
                self.host_ports = {}
        else:
            logger.warning("Attempted to terminate non-existent Docker sandbox")
