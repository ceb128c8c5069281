import json
import sys
from pathlib import Path

import pytest

from media_relay.config import Settings
from media_relay.types import SinkKind

FAKE_YTDLP = r'''
import json
import os
import sys
import time

args = sys.argv[1:]

args_file = os.environ.get("FAKE_ARGS_FILE")
if args_file:
    with open(args_file, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(args) + "\n")

pid_file = os.environ.get("FAKE_PID_FILE")
if pid_file:
    with open(pid_file, "w", encoding="utf-8") as handle:
        handle.write(str(os.getpid()))

time.sleep(float(os.environ.get("FAKE_PRE_SLEEP", "0")))

sys.stderr.buffer.write(os.environ.get("FAKE_STDERR", "").encode("utf-8"))
sys.stderr.flush()

exit_code = int(os.environ.get("FAKE_EXIT", "0"))
if "--simulate" in args:
    sys.exit(exit_code)

payload = os.environ.get("FAKE_PAYLOAD", "").encode() * int(os.environ.get("FAKE_REPEAT", "1"))
output = args[args.index("-o") + 1]
if output == "-":
    sys.stdout.buffer.write(payload)
    sys.stdout.flush()
elif os.environ.get("FAKE_WRITE_FILE", "1") == "1":
    ext = "mp3" if "-x" in args else "mp4"
    with open(output.replace("%(ext)s", ext), "wb") as handle:
        handle.write(payload)

time.sleep(float(os.environ.get("FAKE_SLEEP", "0")))
sys.exit(exit_code)
'''


class FakeExtractor:
    def __init__(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        self.monkeypatch = monkeypatch
        self.script = root / "fake_ytdlp.py"
        self.script.write_text(FAKE_YTDLP, encoding="utf-8")
        self.pid_file = root / "fake_ytdlp.pid"
        self.args_file = root / "fake_ytdlp.args"
        monkeypatch.setenv("FAKE_PID_FILE", str(self.pid_file))
        monkeypatch.setenv("FAKE_ARGS_FILE", str(self.args_file))

    def behave(
        self,
        *,
        payload: str = "",
        repeat: int = 1,
        stderr: str = "",
        exit_code: int = 0,
        pre_sleep: float = 0.0,
        sleep: float = 0.0,
        write_file: bool = True,
    ) -> None:
        self.monkeypatch.setenv("FAKE_PAYLOAD", payload)
        self.monkeypatch.setenv("FAKE_REPEAT", str(repeat))
        self.monkeypatch.setenv("FAKE_STDERR", stderr)
        self.monkeypatch.setenv("FAKE_EXIT", str(exit_code))
        self.monkeypatch.setenv("FAKE_PRE_SLEEP", str(pre_sleep))
        self.monkeypatch.setenv("FAKE_SLEEP", str(sleep))
        self.monkeypatch.setenv("FAKE_WRITE_FILE", "1" if write_file else "0")

    @property
    def spawned(self) -> bool:
        return self.pid_file.exists()

    @property
    def invocations(self) -> list[list[str]]:
        if not self.args_file.exists():
            return []
        lines = self.args_file.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]


@pytest.fixture
def fake_ytdlp(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> FakeExtractor:
    extractor = FakeExtractor(monkeypatch, tmp_path)
    extractor.behave()
    return extractor


@pytest.fixture
def settings(tmp_path: Path, fake_ytdlp: FakeExtractor) -> Settings:
    return Settings(
        host="127.0.0.1",
        port=10000,
        download_path="/api/download",
        health_path="/healthz",
        mcp_path="/mcp",
        ytdlp_command=[sys.executable, str(fake_ytdlp.script)],
        temp_dir=tmp_path / "relay-tmp",
        sink_kind=SinkKind.BUFFERED,
        timeout_seconds=10.0,
        kill_grace_seconds=2.0,
        disconnect_poll_seconds=0.05,
        preflight=False,
        preflight_timeout_seconds=10.0,
        chunk_size=4,
        diagnostic_limit=1024,
        detail_limit=200,
        auth_failure_status=500,
        cors_origins=["*"],
        filename_prefix="test",
        log_level="DEBUG",
    )

