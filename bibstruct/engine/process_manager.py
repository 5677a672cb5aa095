"""Local GROBID server lifecycle: download, build, launch, health-check, stop.

One manager instance owns one server process. ``start()`` is guarded by a
lock so concurrent callers share a single launch.
"""
import atexit
import logging
import os
import stat
import subprocess
import tempfile
import threading
import time
import zipfile
from pathlib import Path
from typing import Callable, Optional

import requests

from ..exceptions import ConfigurationError, StructureEngineFailure

logger = logging.getLogger(__name__)

GROBID_SOURCE_URL = "https://github.com/kermitt2/grobid/archive/refs/tags/{version}.zip"
HEALTH_CHECK_INTERVAL = 1.0
HEALTH_CHECK_TIMEOUT = 2.0
LOG_TAIL_LINES = 20
PDFALTO_BINARIES = ("pdfalto", "pdfalto_server")
BUILD_LOG_KEYWORDS = ("BUILD", "FAILED", "SUCCESS", "Download", "Task :")


class GrobidProcessManager:
    """Owns a locally built GROBID server process.

    Args:
        config: Configuration (``grobid_url``, ``grobid_version``,
            ``grobid_install_dir`` and ``grobid_startup_timeout`` are read)
        session: HTTP session used for health checks and the source download
        sleep: Sleep function used between health checks
    """

    def __init__(
        self,
        config,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.session = session or requests.Session()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._running = False
        self._atexit_registered = False

    @property
    def server_url(self) -> str:
        return self.config.grobid_url.rstrip("/")

    @property
    def install_dir(self) -> Path:
        return Path(self.config.grobid_install_dir).expanduser()

    @property
    def source_dir(self) -> Path:
        return self.install_dir / f"grobid-{self.config.grobid_version}"

    @property
    def onejar(self) -> Path:
        version = self.config.grobid_version
        return self.source_dir / "grobid-service" / "build" / "libs" / f"grobid-service-{version}-onejar.jar"

    @property
    def grobid_home(self) -> Path:
        return self.source_dir / "grobid-home"

    @property
    def log_file(self) -> Path:
        return self.install_dir / "grobid.log"

    @property
    def is_running(self) -> bool:
        return self._running

    def is_healthy(self) -> bool:
        """Probe ``/api/isalive`` with a short timeout."""
        try:
            response = self.session.get(f"{self.server_url}/api/isalive", timeout=HEALTH_CHECK_TIMEOUT)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def start(self) -> bool:
        """Start the server if it is not already healthy.

        Returns:
            True when the server answers health checks
        """
        with self._lock:
            if self.is_healthy():
                logger.info("GROBID server already running")
                self._running = True
                return True

            if not self._atexit_registered:
                atexit.register(self.stop)
                self._atexit_registered = True

            try:
                self.ensure_built()
                logger.info(f"Starting GROBID server at {self.server_url}...")
                self._launch()
                started = self._wait_for_healthy()
            except (StructureEngineFailure, ConfigurationError, OSError) as e:
                logger.error(f"Failed to start GROBID: {e}")
                self._stop_process()
                return False

            if started:
                logger.info("✓ GROBID server started")
                self._running = True
            else:
                logger.error("GROBID server failed to start within timeout")
                self._stop_process()
            return started

    def stop(self) -> None:
        """Terminate the server process and wait for it to exit."""
        with self._lock:
            self._stop_process()

    def _stop_process(self) -> None:
        if self._process is None:
            return
        logger.info("Stopping GROBID server...")
        self._process.terminate()
        try:
            self._process.wait(timeout=30)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait()
        self._process = None
        self._running = False
        logger.info("GROBID server stopped")

    def ensure_built(self) -> None:
        """Download and build GROBID unless the service jar already exists.

        Raises:
            StructureEngineFailure: If download, extraction or build fails
        """
        if self.onejar.exists():
            logger.info(f"GROBID already built at: {self.source_dir}")
            self._make_pdfalto_executable()
            return

        url = GROBID_SOURCE_URL.format(version=self.config.grobid_version)
        logger.info(f"Downloading GROBID source from: {url} (this may take a few minutes)")
        self.install_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="grobid-source-") as tmp:
            archive = Path(tmp) / "grobid.zip"
            self._download(url, archive)
            logger.info("Extracting GROBID source...")
            try:
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(self.install_dir)
            except zipfile.BadZipFile as e:
                raise StructureEngineFailure(f"Downloaded GROBID archive is invalid: {e}") from e

        if not self.source_dir.exists():
            raise StructureEngineFailure(f"Source directory not found after extraction: {self.source_dir}")

        logger.info("Building GROBID with Gradle (this may take 5-10 minutes)...")
        self._build()

        if not self.onejar.exists():
            raise StructureEngineFailure(f"OneJar not found after build. Expected: {self.onejar}")
        self._make_pdfalto_executable()
        logger.info("✓ GROBID build complete")

    def _download(self, url: str, destination: Path) -> None:
        try:
            with self.session.get(url, stream=True, timeout=30, allow_redirects=True) as response:
                response.raise_for_status()
                with open(destination, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=1024 * 1024):
                        fh.write(chunk)
        except requests.exceptions.RequestException as e:
            raise StructureEngineFailure(f"Failed to download from {url}: {e}") from e

        if destination.stat().st_size < 1024:
            raise StructureEngineFailure("Downloaded file is invalid or empty")

    def _build(self) -> None:
        wrapper = self.source_dir / ("gradlew.bat" if os.name == "nt" else "gradlew")
        if not wrapper.exists():
            raise StructureEngineFailure(f"Gradle wrapper not found: {wrapper}")
        if os.name != "nt":
            wrapper.chmod(wrapper.stat().st_mode | stat.S_IEXEC)

        cmd = [str(wrapper), ":grobid-service:shadowJar", "-x", "test"]
        logger.info(f"Running: {' '.join(cmd)}")
        process = subprocess.Popen(
            cmd,
            cwd=self.source_dir,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        for line in process.stdout:
            if any(keyword in line for keyword in BUILD_LOG_KEYWORDS):
                logger.info(f"[GROBID build] {line.rstrip()}")
        exit_code = process.wait()
        if exit_code != 0:
            raise StructureEngineFailure(f"Gradle build failed with exit code: {exit_code}")

    def _make_pdfalto_executable(self) -> None:
        bin_dir = self.grobid_home / "pdfalto" / "lin-64"
        if not bin_dir.exists():
            logger.warning(f"pdfalto binary directory not found: {bin_dir}")
            return
        for name in PDFALTO_BINARIES:
            binary = bin_dir / name
            if not binary.exists():
                logger.warning(f"Binary not found: {binary}")
                continue
            mode = binary.stat().st_mode
            if not mode & stat.S_IEXEC:
                binary.chmod(mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
                logger.info(f"Made {name} executable")

    def _launch(self) -> None:
        config_file = self.grobid_home / "config" / "grobid.yaml"
        for required in (self.onejar, self.grobid_home, config_file):
            if not required.exists():
                raise ConfigurationError(f"GROBID file not found: {required}")

        env = dict(os.environ, GROBID_HOME=str(self.grobid_home))
        cmd = ["java", "-Xmx1g", "-Xms256m", "-jar", str(self.onejar), "server", str(config_file)]
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "ab") as log:
            self._process = subprocess.Popen(
                cmd,
                cwd=self.source_dir,
                env=env,
                stdout=log,
                stderr=subprocess.STDOUT,
            )

    def _wait_for_healthy(self) -> bool:
        deadline = time.monotonic() + self.config.grobid_startup_timeout
        while time.monotonic() < deadline:
            if self.is_healthy():
                return True
            if self._process is not None and self._process.poll() is not None:
                logger.error("GROBID process died unexpectedly")
                self._log_tail()
                return False
            self._sleep(HEALTH_CHECK_INTERVAL)
        return False

    def _log_tail(self) -> None:
        if not self.log_file.exists():
            return
        lines = self.log_file.read_text(encoding="utf-8", errors="replace").splitlines()
        logger.error("Last GROBID log lines:")
        for line in lines[-LOG_TAIL_LINES:]:
            logger.error(f"  {line}")
