"""Local stand-in for ffmpeg/ffprobe used by integration tests and demos.

Accepts the same argv the ffmpeg adapter builds. Leading ``--duration``,
``--steps``, ``--step-delay`` and ``--fail-with`` options tune its behavior.
In probe mode (``-show_format`` present) it prints ffprobe-style JSON.
Otherwise it writes ffmpeg ``-progress`` blocks to stdout and copies the
input file to the output path.
"""

from __future__ import annotations

import json
import shutil
import sys
import time
from pathlib import Path

_OWN_OPTIONS = {"--duration", "--steps", "--step-delay", "--fail-with"}


def main(argv: list[str] | None = None) -> int:
    """Run a deterministic fake encode or probe."""

    args = list(sys.argv[1:] if argv is None else argv)
    options: dict[str, str] = {}
    while args and args[0] in _OWN_OPTIONS:
        if len(args) < 2:  # noqa: PLR2004
            print(f"Missing value for {args[0]}", file=sys.stderr)
            return 2
        options[args[0]] = args[1]
        args = args[2:]

    duration = float(options.get("--duration", "10"))
    if "-show_format" in args:
        print(json.dumps({"format": {"duration": f"{duration:.6f}"}}))
        return 0

    fail_with = options.get("--fail-with")
    if fail_with:
        print(fail_with, file=sys.stderr)
        return 1

    if "-i" not in args or args.index("-i") + 1 >= len(args):
        print("No input file given", file=sys.stderr)
        return 2
    source = Path(args[args.index("-i") + 1])
    output = Path(args[-1])
    steps = max(1, int(options.get("--steps", "4")))
    step_delay = float(options.get("--step-delay", "0"))

    for step in range(1, steps + 1):
        if step_delay > 0:
            time.sleep(step_delay)
        seconds = duration * step / steps
        minutes, secs = divmod(seconds, 60)
        hours, minutes = divmod(minutes, 60)
        state = "end" if step == steps else "continue"
        print(f"bitrate={1500.0 + step:.1f}kbits/s")
        print(f"out_time={int(hours):02d}:{int(minutes):02d}:{secs:09.6f}")
        print(f"progress={state}", flush=True)

    output.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
