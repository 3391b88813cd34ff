import codecs
import logging
import re
import shlex
import subprocess
import threading
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..core.errors import ExternalProcessError
from ..progress import ProgressSink
from ..settings import CellposeSettings

log = logging.getLogger("cellpose_detector")

# A percentage between 0 and 100 followed by '%'. Skips a bare 0% (or 0.0%) and
# anything with decimals after 100, so 100.0% is not reported.
PERCENTAGE_PATTERN = re.compile(r"\b(?<!\.)(?!0+(?:\.0+)?%)((?:\d|[1-9]\d|100)(?:(?<!100)\.\d+)?)%")


def parse_percentage(line: str) -> Optional[float]:
    """First percentage in `line`, in percent units, or None."""
    m = PERCENTAGE_PATTERN.search(line)
    if m is None:
        return None
    try:
        return float(m.group(1))
    except ValueError:
        return None


def forward_line(progress: ProgressSink, line: str) -> None:
    progress.log(line + "\n")
    percent = parse_percentage(line)
    if percent is not None:
        progress.set_progress(percent / 100.0)


class LogTailer:
    """Polls a text file for appended lines on a background thread.

    Reading starts at the file's size when the tailer is created, so only
    lines written afterwards are reported. A file that does not exist yet is
    read from its start once it appears; a file that shrinks or is replaced
    is re-read from the start. On `stop()` complete lines still pending are
    delivered and a trailing partial line is dropped.
    """

    def __init__(self, path: Path, on_line: Callable[[str], None], interval: float = 0.2):
        self.path = Path(path)
        self.interval = float(interval)
        self._on_line = on_line
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._identity, self._position = self._stat()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def _stat(self) -> Tuple[Optional[Tuple[int, int]], int]:
        try:
            st = self.path.stat()
        except OSError:
            return None, 0
        return (st.st_dev, st.st_ino), st.st_size

    def start(self) -> "LogTailer":
        self._thread = threading.Thread(target=self._run, name="cellpose-log-tailer", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll()
        self.poll()

    def poll(self) -> None:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return
        except OSError as e:
            log.debug("Cannot stat %s: %s", self.path, e)
            return

        size, identity = st.st_size, (st.st_dev, st.st_ino)
        # cellpose deletes and recreates its log at startup
        replaced = self._identity is not None and identity != self._identity
        self._identity = identity
        if replaced or size < self._position:
            self._position = 0
            self._pending = ""
            self._decoder.reset()
        if size == self._position:
            return

        try:
            with open(self.path, "rb") as f:
                f.seek(self._position)
                chunk = f.read(size - self._position)
        except OSError as e:
            log.debug("Cannot read %s: %s", self.path, e)
            return
        self._position += len(chunk)

        text = self._pending + self._decoder.decode(chunk)
        *lines, self._pending = text.split("\n")
        for line in lines:
            self._emit(line.rstrip("\r"))

    def _emit(self, line: str) -> None:
        try:
            self._on_line(line)
        except Exception:
            log.debug("Log line handler failed on %r", line, exc_info=True)


def run_cellpose(
    settings: CellposeSettings,
    data_dir: Path,
    progress: ProgressSink,
    *,
    log_file: Path,
    poll_interval: float = 0.2,
) -> None:
    """Run cellpose on every image in `data_dir` and wait for it to finish.

    Cellpose's own log file is tailed meanwhile and each line goes to
    `progress`, along with any percentage found in it. Raises
    ExternalProcessError if the process cannot be started or exits non-zero.
    """
    cmd: List[str] = settings.to_cmd_line(data_dir)
    progress.set_status("Running Cellpose")
    progress.log("Running Cellpose with args:\n")
    progress.log(shlex.join(cmd))
    progress.log("\n")
    log.debug("Tailing cellpose log %s every %.3fs", log_file, poll_interval)

    tailer = LogTailer(log_file, partial(forward_line, progress), poll_interval).start()
    try:
        proc = subprocess.Popen(cmd)
        returncode = proc.wait()
    except (OSError, subprocess.SubprocessError) as e:
        raise ExternalProcessError(f"Problem running Cellpose:\n{e}") from e
    finally:
        tailer.stop()
        progress.set_status("")

    if returncode != 0:
        raise ExternalProcessError(f"Problem running Cellpose:\nprocess exited with code {returncode}")
