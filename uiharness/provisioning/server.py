"""
Application server provisioning.

Starts the application under test (or attaches to an externally started one),
waits for it to become reachable with bounded polling, and tears the process
tree down again after the session.
"""

import asyncio
import os
import re
import time
from datetime import datetime, timezone
from typing import Optional

import aiohttp
import psutil

from ..core.config import Config
from ..core.exceptions import ProvisioningError
from ..core.logging_config import get_logger, log_performance
from .models import ServerHandle


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("._")[:120] or "session"


class ServerProvisioner:
    """
    Starts and stops application server instances for test sessions.

    In managed mode (``app_command`` configured) the provisioner spawns the
    application itself and owns the process. Otherwise it only verifies that
    the configured address becomes reachable. Binding does not negotiate
    dynamic ports; the execution coordinator guarantees that only one session
    uses the address at a time.
    """

    def __init__(self, config: Config):
        self.config = config
        self.logger = get_logger("ui_harness.server")

    async def start(self, session_name: str) -> ServerHandle:
        """
        Start the application and block until it is ready.

        Args:
            session_name: Name of the test session the server belongs to

        Returns:
            Handle to the ready server

        Raises:
            ProvisioningError: if the server cannot be started or does not
                become ready within the configured bounds
        """
        handle = ServerHandle(
            session_name=session_name,
            host=self.config.app_host,
            port=self.config.app_port,
            managed=self.config.manages_server,
        )
        logger = self.logger.bind(test_name=session_name)
        start_time = time.monotonic()

        try:
            if handle.managed:
                await self._spawn(handle)
            await self._wait_until_ready(handle)
        except BaseException:
            # Leave nothing behind for a server that never became ready
            await self.stop(handle)
            raise

        log_performance(
            logger,
            "server_start",
            time.monotonic() - start_time,
            address=handle.address,
            managed=handle.managed,
            pid=handle.pid,
        )
        return handle

    async def _spawn(self, handle: ServerHandle) -> None:
        """Launch the configured application command."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        handle.log_path = (
            self.config.get_server_log_dir()
            / f"{_safe_name(handle.session_name)}-{timestamp}.log"
        )

        env = dict(os.environ)
        env.update(self.config.app_env)
        env.setdefault("HOST", handle.host)
        env.setdefault("PORT", str(handle.port))

        self.logger.info(
            f"Starting application server on {handle.address}",
            extra={
                "test_name": handle.session_name,
                "metadata": {
                    "command": self.config.app_command,
                    "log_path": str(handle.log_path),
                },
            },
        )

        try:
            with open(handle.log_path, "wb") as log_file:
                handle.process = await asyncio.create_subprocess_exec(
                    *self.config.app_command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=asyncio.subprocess.STDOUT,
                    env=env,
                    start_new_session=True,
                )
        except OSError as e:
            raise ProvisioningError(
                f"Could not launch application command {self.config.app_command}: {e}",
                address=handle.address,
            ) from e

        handle.pid = handle.process.pid

    async def _wait_until_ready(self, handle: ServerHandle) -> None:
        """Poll the readiness signal until success, timeout or attempt limit."""
        timeout = self.config.server_startup_timeout
        deadline = time.monotonic() + timeout
        interval = self.config.server_poll_interval
        attempts = 0

        async with aiohttp.ClientSession() as http:
            while True:
                attempts += 1

                if handle.managed and not handle.is_running:
                    exit_code = handle.process.returncode if handle.process else None
                    raise ProvisioningError(
                        f"Application server exited with code {exit_code} before "
                        f"becoming ready. Log tail:\n{handle.read_log_tail()}",
                        address=handle.address,
                        attempts=attempts,
                        exit_code=exit_code,
                    )

                remaining = deadline - time.monotonic()
                probe_timeout = max(0.05, min(1.0, remaining))
                if await self._probe(http, handle, probe_timeout):
                    handle.ready = True
                    self.logger.info(
                        f"Application server ready at {handle.base_url}",
                        extra={
                            "test_name": handle.session_name,
                            "metadata": {"attempts": attempts},
                        },
                    )
                    return

                remaining = deadline - time.monotonic()
                if attempts >= self.config.server_max_attempts or remaining <= 0:
                    raise ProvisioningError(
                        f"Application server at {handle.address} was not ready "
                        f"after {attempts} attempts ({timeout:.1f}s timeout)",
                        address=handle.address,
                        attempts=attempts,
                    )

                await asyncio.sleep(min(interval, remaining))
                interval = min(
                    interval * self.config.server_poll_backoff,
                    self.config.server_poll_max_interval,
                )

    async def _probe(
        self, http: aiohttp.ClientSession, handle: ServerHandle, timeout: float
    ) -> bool:
        """Single readiness check: health endpoint if configured, else TCP connect."""
        if self.config.app_health_path:
            url = handle.base_url + self.config.app_health_path
            try:
                async with http.get(
                    url, timeout=aiohttp.ClientTimeout(total=timeout)
                ) as response:
                    ready = response.status < 500
                    self.logger.debug(
                        f"Health probe {url} -> {response.status}",
                        extra={"test_name": handle.session_name},
                    )
                    return ready
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self.logger.debug(
                    f"Health probe {url} failed: {e!r}",
                    extra={"test_name": handle.session_name},
                )
                return False

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(handle.host, handle.port), timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.logger.debug(
                f"TCP probe {handle.address} failed: {e!r}",
                extra={"test_name": handle.session_name},
            )
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def stop(self, handle: Optional[ServerHandle]) -> None:
        """
        Stop a server and release its address.

        Idempotent: stopping an already stopped or never started handle is a
        no-op. Attached (unmanaged) servers are left running.
        """
        if handle is None:
            return
        if handle.stopped:
            self.logger.debug(
                "Server already stopped", extra={"test_name": handle.session_name}
            )
            return

        if handle.managed and handle.process is not None:
            await self._terminate_tree(handle)

        handle.stopped = True
        handle.ready = False
        handle.stop_count += 1
        self.logger.info(
            f"Application server stopped ({handle.address})",
            extra={"test_name": handle.session_name},
        )

    async def _terminate_tree(self, handle: ServerHandle) -> None:
        """Terminate the server process and every descendant it spawned."""
        process = handle.process
        timeout = self.config.server_stop_timeout

        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.Error:
            children = []

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass

        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass

        try:
            await asyncio.wait_for(process.wait(), timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Server pid {process.pid} ignored SIGTERM, killing",
                extra={"test_name": handle.session_name},
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        if children:
            _, alive = await asyncio.to_thread(
                psutil.wait_procs, children, timeout=timeout
            )
            for child in alive:
                try:
                    child.kill()
                except psutil.NoSuchProcess:
                    pass
            if alive:
                await asyncio.to_thread(psutil.wait_procs, alive, timeout=timeout)
