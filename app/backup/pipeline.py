"""
Dump-and-compress pipeline.

Runs two external programs wired stage to stage:

    dump producer (pg_dumpall) --stdout/stdin--> compressor (gzip) --> .tmp artifact

The dump output never passes through this process, so memory use is bounded
by the OS pipe buffer regardless of database size. The temporary artifact is
published (renamed to its final name) only after both stages exit with
status zero.
"""

import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .store import BackupStore, StorageError


logger = logging.getLogger(__name__)

DUMP_FLAGS = ['--clean', '--if-exists']


class PipelineError(Exception):
    """Raised when the pipeline cannot be configured."""
    pass


@dataclass(frozen=True)
class ConnectionParams:
    """
    How the dump producer reaches the database.

    url mode passes the connection URL as an argument; host mode passes user
    and host as arguments and the password through PGPASSWORD only.
    """

    connection_type: str
    url: Optional[str] = None
    username: Optional[str] = None
    host: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config) -> 'ConnectionParams':
        """
        Build connection parameters from the Flask config mapping.

        Raises:
            PipelineError: If required settings for the connection type are missing
        """
        connection_type = config.get('DB_CONNECTION_TYPE', 'host')

        if connection_type == 'url':
            if not config.get('DB_URL'):
                raise PipelineError("DB_URL is required when DB_CONNECTION_TYPE is 'url'")
            return cls(connection_type='url', url=config['DB_URL'])

        if connection_type == 'host':
            if not config.get('DB_USERNAME') or not config.get('DB_HOSTNAME'):
                raise PipelineError(
                    "DB_USERNAME and DB_HOSTNAME are required when DB_CONNECTION_TYPE is 'host'"
                )
            return cls(
                connection_type='host',
                username=config['DB_USERNAME'],
                host=config['DB_HOSTNAME'],
                password=config.get('DB_PASSWORD')
            )

        raise PipelineError(f"Invalid connection type: {connection_type}")

    @property
    def is_url(self) -> bool:
        return self.connection_type == 'url'

    def dump_arguments(self) -> List[str]:
        if self.is_url:
            return [self.url] + DUMP_FLAGS
        return ['-U', self.username, '-h', self.host] + DUMP_FLAGS

    def dump_environment(self) -> Dict[str, str]:
        """Environment for the dump process only; nothing else is inherited."""
        env = {'PATH': os.environ.get('PATH', os.defpath)}
        if not self.is_url and self.password:
            env['PGPASSWORD'] = self.password
        return env


@dataclass
class StageResult:
    name: str
    returncode: Optional[int] = None
    stderr: str = ''

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


@dataclass
class PipelineResult:
    """Outcome of one pipeline run. Consumed for logging, never persisted."""

    success: bool
    producer: StageResult
    compressor: StageResult
    artifact: Optional[Path] = None
    error: Optional[str] = None


class Stage:
    """One external program in the pipeline."""

    def __init__(self, name: str, argv: List[str], env: Optional[Dict[str, str]] = None):
        self.name = name
        self.argv = list(argv)
        self.env = env

    def spawn(self, stdin, stdout) -> subprocess.Popen:
        """
        Start the program.

        Raises:
            OSError: If the executable cannot be started
        """
        return subprocess.Popen(
            self.argv,
            stdin=stdin,
            stdout=stdout,
            stderr=subprocess.PIPE,
            env=self.env
        )

    def __repr__(self):
        return f'<Stage {self.name} argv0={self.argv[0] if self.argv else None}>'


class _StderrCollector(threading.Thread):
    """Drains a stage's stderr so a chatty stage never blocks on a full pipe."""

    def __init__(self, stream):
        super().__init__(daemon=True)
        self.stream = stream
        self.chunks = []

    def run(self):
        try:
            for chunk in iter(lambda: self.stream.read(4096), b''):
                self.chunks.append(chunk)
        finally:
            self.stream.close()

    @property
    def text(self) -> str:
        return b''.join(self.chunks).decode('utf-8', errors='replace')


class DumpPipeline:
    """
    Streams a database dump through a compressor into a new backup artifact.
    """

    def __init__(
        self,
        store: BackupStore,
        connection: ConnectionParams,
        dump_command: List[str] = None,
        compress_command: List[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the pipeline.

        Args:
            store: BackupStore owning the backups folder
            connection: Database connection parameters
            dump_command: Producer argv prefix (default: pg_dumpall)
            compress_command: Compressor argv (default: gzip)
            timeout: Seconds before both stages are killed (None waits forever)
        """
        self.store = store
        self.connection = connection
        self.dump_command = list(dump_command or ['pg_dumpall'])
        self.compress_command = list(compress_command or ['gzip'])
        self.timeout = timeout

    def build_producer(self) -> Stage:
        return Stage(
            'dump',
            self.dump_command + self.connection.dump_arguments(),
            env=self.connection.dump_environment()
        )

    def build_compressor(self) -> Stage:
        return Stage('compress', self.compress_command)

    def run(self) -> PipelineResult:
        """
        Run the pipeline once.

        Never raises for run-time failures; they are reported in the result.
        A failed run leaves its .tmp artifact for the retention sweep.
        """
        producer_stage = self.build_producer()
        compressor_stage = self.build_compressor()
        producer_result = StageResult(producer_stage.name)
        compressor_result = StageResult(compressor_stage.name)

        def failed(message: str) -> PipelineResult:
            logger.error(f"Backup failed: {message}")
            return PipelineResult(False, producer_result, compressor_result, error=message)

        temp_path = self.store.new_temp_path()
        logger.debug(f"Writing backup to {temp_path.name}")

        try:
            destination = self.store.open_for_write(temp_path)
        except StorageError as e:
            return failed(str(e))

        with destination:
            try:
                producer = producer_stage.spawn(stdin=subprocess.DEVNULL, stdout=subprocess.PIPE)
            except OSError as e:
                return failed(f"could not spawn {producer_stage.name} process: {e}")

            try:
                compressor = compressor_stage.spawn(stdin=producer.stdout, stdout=destination)
            except OSError as e:
                producer.kill()
                producer.wait()
                producer.stderr.close()
                return failed(f"could not spawn {compressor_stage.name} process: {e}")
            finally:
                # The compressor holds the only read end now; the producer
                # gets SIGPIPE if the compressor dies early.
                producer.stdout.close()

            collectors = {
                producer_stage.name: _StderrCollector(producer.stderr),
                compressor_stage.name: _StderrCollector(compressor.stderr)
            }
            for collector in collectors.values():
                collector.start()

            try:
                producer_code, compressor_code = self._wait(producer, compressor)
            except subprocess.TimeoutExpired:
                for process in (compressor, producer):
                    process.kill()
                    process.wait()
                producer_code, compressor_code = None, None
            finally:
                for collector in collectors.values():
                    collector.join(timeout=5)

            producer_result.returncode = producer_code
            producer_result.stderr = collectors[producer_stage.name].text
            compressor_result.returncode = compressor_code
            compressor_result.stderr = collectors[compressor_stage.name].text

            if producer_code is None and compressor_code is None:
                return failed(f"timed out after {self.timeout} seconds")

            if producer_code != 0:
                logger.error(f"Backup failed with code {producer_code}")
                if producer_result.stderr:
                    logger.error(producer_result.stderr)
                return failed(f"{producer_stage.name} exited with code {producer_code}")

            if compressor_code != 0:
                logger.error(f"Compression failed with code {compressor_code}")
                if compressor_result.stderr:
                    logger.error(compressor_result.stderr)
                return failed(f"{compressor_stage.name} exited with code {compressor_code}")

            if producer_result.stderr:
                logger.debug(f"{producer_stage.name} logs\n{producer_result.stderr}")

            try:
                destination.flush()
                os.fsync(destination.fileno())
            except OSError as e:
                return failed(f"could not flush {temp_path.name}: {e}")

        try:
            final_path = self.store.publish(temp_path)
        except StorageError as e:
            return failed(str(e))

        logger.info(f"Backup written to {final_path.name}")
        return PipelineResult(True, producer_result, compressor_result, artifact=final_path)

    def _wait(self, producer: subprocess.Popen, compressor: subprocess.Popen):
        """
        Wait for both stages to exit.

        Returns:
            (producer exit code, compressor exit code)

        Raises:
            subprocess.TimeoutExpired: If the deadline passes first
        """
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        def remaining():
            if deadline is None:
                return None
            return max(deadline - time.monotonic(), 0)

        compressor_code = compressor.wait(timeout=remaining())
        producer_at_compressor_exit = producer.poll()
        producer_code = producer.wait(timeout=remaining())

        if compressor_code == 0 and producer_at_compressor_exit not in (None, 0):
            logger.error(
                f"Compression exited with code 0 but dump exited with {producer_at_compressor_exit}"
            )

        return producer_code, compressor_code
