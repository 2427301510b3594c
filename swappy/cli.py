from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Optional

import cv2  # type: ignore
from rich.console import Console

from .core.errors import AnalysisError, InvalidInputError
from .ingest.audio_analysis import decode_audio, detect_transients, waveform_envelope
from .ingest.thumbnails import image_dimensions, placeholder_thumbnail, render_thumbnail

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="Swappy media developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg and OpenCV")

    subparsers = parser.add_subparsers(dest="command")

    thumbs_parser = subparsers.add_parser("thumbs", help="Render a 320x180 thumbnail for a video file")
    thumbs_parser.add_argument("--file", required=True, help="Path to the source video")
    thumbs_parser.add_argument("--out", required=True, help="Where to write the JPEG")
    thumbs_parser.add_argument("--timestamp", type=float, default=1.0, help="Seek position in seconds (default 1.0)")
    thumbs_parser.set_defaults(func=_cmd_thumbs)

    analyze_parser = subparsers.add_parser("analyze", help="Detect transients and print the report JSON")
    analyze_parser.add_argument("--file", required=True, help="Path to the source audio")
    analyze_parser.add_argument("--sensitivity", type=float, default=0.5, help="Marker density in [0, 1] (default 0.5)")
    analyze_parser.add_argument("--window-size", type=int, default=1024, help="FFT window size (default 1024)")
    analyze_parser.set_defaults(func=_cmd_analyze)

    waveform_parser = subparsers.add_parser("waveform", help="Print the downsampled waveform envelope")
    waveform_parser.add_argument("--file", required=True, help="Path to the source audio")
    waveform_parser.add_argument("--points", type=int, default=512, help="Envelope resolution (default 512)")
    waveform_parser.set_defaults(func=_cmd_waveform)
    return parser


def _require_file(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.exists():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _cmd_thumbs(args: argparse.Namespace) -> None:
    """Render a thumbnail, falling back to the placeholder like the service does.

    Args:
        args: The command-line arguments.
    """
    media_path = _require_file(args.file)
    payload = render_thumbnail(media_path, timestamp_s=args.timestamp)
    placeholder = payload is None
    if placeholder:
        payload = placeholder_thumbnail()

    out_path = Path(args.out).expanduser().resolve()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(payload)

    width, height = image_dimensions(payload)
    console.print_json(data={"path": str(out_path), "width_px": width, "height_px": height, "placeholder": placeholder})


def _cmd_analyze(args: argparse.Namespace) -> None:
    """Detect transients and print the report.

    Args:
        args: The command-line arguments.
    """
    media_path = _require_file(args.file)
    try:
        audio = decode_audio(media_path)
        report = detect_transients(audio, args.sensitivity, window_size=args.window_size)
    except (AnalysisError, InvalidInputError) as exc:
        console.print(f"[red]Analysis failed:[/] {exc.message}")
        sys.exit(3)
    console.print_json(data=report.to_dict())


def _cmd_waveform(args: argparse.Namespace) -> None:
    """Print the waveform envelope.

    Args:
        args: The command-line arguments.
    """
    media_path = _require_file(args.file)
    try:
        audio = decode_audio(media_path)
        points = waveform_envelope(audio, args.points)
    except (AnalysisError, InvalidInputError) as exc:
        console.print(f"[red]Analysis failed:[/] {exc.message}")
        sys.exit(3)
    console.print_json(data={"duration": round(audio.duration, 6), "sample_rate": audio.sample_rate, "points": points})


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    results = {
        "ffmpeg": shutil.which("ffmpeg") is not None,
        "OpenCV": bool(getattr(cv2, "__version__", "")),
    }

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not results["OpenCV"]:
        console.print("[red]OpenCV is required for thumbnails. Consult pyproject.toml.[/]")
        sys.exit(1)
    if not results["ffmpeg"]:
        console.print("[yellow]ffmpeg missing: only PCM WAV audio can be analysed.[/]")
        return
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
