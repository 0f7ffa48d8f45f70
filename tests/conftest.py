"""
Shared fixtures.

Instead of a real encoder the tests run ``fake_ffmpeg``: a small script that
honours the same command line and decides what to do from the "media" it is
given. Inputs are text files of ``key=value`` lines:

    duration=10     write ceil(10 / hls_time) segments and a VOD playlist
    noisy=N         print N progress lines to stderr first
    sleep=S         hang for S seconds before doing anything else
    selfkill=1      die from SIGKILL
    fail_after=1    write segments and a partial playlist, then exit 1

Anything without ``duration`` is rejected the way ffmpeg rejects non-media.
"""
import sys
import threading
import time

import pytest

from transcoder.controller import JobController, reset_controller
from transcoder.layout import OutputLayout

FAKE_FFMPEG_BODY = r'''
import math, os, signal, sys, time

args = sys.argv[1:]
if "-version" in args:
    print("ffmpeg version 6.1-fake Copyright (c) the test suite")
    sys.exit(0)

def opt(name, default=None):
    return args[args.index(name) + 1] if name in args else default

src = opt("-i")
playlist = args[-1]
pattern = opt("-hls_segment_filename")
hls_time = float(opt("-hls_time", "6"))

try:
    with open(src, "rb") as f:
        text = f.read().decode("ascii", "replace")
except OSError as e:
    sys.stderr.write(f"{src}: {e}\n")
    sys.exit(1)

fields = dict(line.split("=", 1) for line in text.splitlines() if "=" in line)

for i in range(int(fields.get("noisy", 0))):
    sys.stderr.write(f"frame={i:6d} fps=25.0 q=28.0 size={i:8d}kB time=00:00:00.00 bitrate=N/A\n")
sys.stderr.flush()

if "sleep" in fields:
    time.sleep(float(fields["sleep"]))
if fields.get("selfkill"):
    os.kill(os.getpid(), signal.SIGKILL)
if "duration" not in fields:
    sys.stderr.write(f"{src}: Invalid data found when processing input\n")
    sys.exit(1)

duration = float(fields["duration"])
lines = [
    "#EXTM3U",
    "#EXT-X-VERSION:3",
    f"#EXT-X-TARGETDURATION:{math.ceil(hls_time)}",
    "#EXT-X-MEDIA-SEQUENCE:0",
    "#EXT-X-PLAYLIST-TYPE:VOD",
]

def write_playlist(extra=()):
    with open(playlist, "w") as f:
        f.write("\n".join(lines + list(extra)) + "\n")

for i in range(math.ceil(duration / hls_time)):
    segment = pattern % i
    with open(segment, "wb") as f:
        f.write(b"\x47" * 188)
    lines += [f"#EXTINF:{min(hls_time, duration - i * hls_time):.6f},", os.path.basename(segment)]
    write_playlist()

if fields.get("fail_after"):
    sys.stderr.write("Conversion failed!\n")
    sys.exit(1)

write_playlist(["#EXT-X-ENDLIST"])
'''


@pytest.fixture
def fake_ffmpeg(tmp_path):
    path = tmp_path / "bin" / "ffmpeg"
    path.parent.mkdir()
    path.write_text(f"#!{sys.executable}\n{FAKE_FFMPEG_BODY}")
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def make_input(tmp_path):
    """Write a staged input file; ``make_input("duration=10")``."""
    staged = tmp_path / "staged"
    staged.mkdir()
    counter = iter(range(10_000))

    def _make(content: str = "duration=10", name: str | None = None):
        path = staged / (name or f"input_{next(counter)}.mp4")
        path.write_text(content)
        return path

    return _make


@pytest.fixture
def layout(tmp_path):
    return OutputLayout(tmp_path / "hls")


@pytest.fixture
def controller(layout, fake_ffmpeg):
    return JobController(layout, ffmpeg_bin=fake_ffmpeg, max_concurrent_jobs=4, queue_timeout=30)


@pytest.fixture
def hls_settings(settings, tmp_path, fake_ffmpeg):
    settings.STAGING_ROOT = tmp_path / "uploads"
    settings.HLS_ROOT = tmp_path / "uploads" / "hls"
    settings.FFMPEG_BIN = fake_ffmpeg
    settings.HLS_S3_MIRROR = False
    settings.HLS_MAX_CONCURRENT_JOBS = 4
    settings.HLS_QUEUE_TIMEOUT_SECONDS = 30
    settings.HLS_JOB_TIMEOUT_SECONDS = 30
    return settings


@pytest.fixture(autouse=True)
def _fresh_controller():
    reset_controller()
    yield
    reset_controller()


def wait_for(predicate, timeout: float = 10.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def run_in_thread(fn, *args, **kwargs):
    """Start ``fn`` on a thread; returns (thread, box) where box[0] is the return value."""
    box = []
    thread = threading.Thread(target=lambda: box.append(fn(*args, **kwargs)), daemon=True)
    thread.start()
    return thread, box
