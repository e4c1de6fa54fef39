#!/usr/bin/env python3
"""
Run Separation - Split an audio file into background/foreground and percussive/harmonic parts

Writes four WAV files next to the input (or into --output-dir):
<stem>_background.wav, <stem>_foreground.wav, <stem>_percussive.wav,
<stem>_harmonic.wav

Ctrl-C cancels the running separation; partially written files are kept.
"""

import sys
import json
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from logging_config import get_logger, set_verbose
from separation_engine import (
    SeparationError,
    SeparationPipeline,
    SeparatorConfig,
    UnsupportedFormatError,
)

logger = get_logger()


def build_config(args) -> SeparatorConfig:
    return SeparatorConfig(
        hop_size=args.hop_size,
        slice_length=args.slice_length,
        harmonic_window_ms=args.harmonic_window,
        percussive_window_hz=args.percussive_window,
        k=args.k,
        similarity_bandwidth=args.bandwidth,
        enable_background_foreground=args.only != "harmonic-percussive",
        enable_harmonic_percussive=args.only != "background-foreground",
        max_workers=args.workers,
    )


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="Background/foreground and harmonic/percussive source separation"
    )
    parser.add_argument("input_file", help="Input audio file")
    parser.add_argument("--output-dir", "-o", help="Output directory (default: next to input)")
    parser.add_argument("--hop-size", type=int, default=512, help="Frame advance in samples (512)")
    parser.add_argument("--slice-length", type=int, default=2048, help="Frame length in samples (2048)")
    parser.add_argument("--harmonic-window", type=int, default=325,
                        help="Harmonic median window in ms, 20-1000 (325)")
    parser.add_argument("--percussive-window", type=int, default=1292,
                        help="Percussive median window in Hz, 20-5000 (1292)")
    parser.add_argument("-k", type=int, default=10, help="Mask steepness, 5-50 (10)")
    parser.add_argument("--bandwidth", type=int, default=None,
                        help="Self-similarity band in frames (default: tempo-derived)")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: CPU count)")
    parser.add_argument("--only", choices=["background-foreground", "harmonic-percussive"],
                        help="Run a single separation")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    if args.verbose:
        set_verbose(True)

    input_path = Path(args.input_file)
    if not input_path.exists():
        print(f"Error: Not found: {input_path}")
        return 1

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 2
    pipeline = SeparationPipeline(config)

    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(pipeline.process, input_path, args.output_dir)
        try:
            while not future.done():
                wait([future], timeout=0.5)
        except KeyboardInterrupt:
            pipeline.cancel()

        try:
            result = future.result()
        except (UnsupportedFormatError, ValueError) as e:
            print(f"Error: {e}")
            return 2
        except SeparationError as e:
            logger.error(f"Separation failed: {e}")
            return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Status: {result.status.value}")
        for name, path in result.output_files.items():
            print(f"  {name:<11} {path}")
    return 0 if result.success else 130


if __name__ == "__main__":
    sys.exit(main())
