import os
import sys
import time
import threading
import argparse

try:
    from rich.console import Console
    from rich.table import Table
    from rich.panel import Panel
    from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn
    from rich import box
except ImportError:
    print("Error: The 'rich' library is required for the CLI but not installed.", file=sys.stderr)
    print("Please install it with: pip install slicer[cli]", file=sys.stderr)
    sys.exit(1)

from slicerlib import __version__
from slicerlib.audio import format_duration
from slicerlib.config import ConfigError, default_config, load_preset, merge_configs, save_preset
from slicerlib.dsp import percent_to_hz, pitch_to_speed
from slicerlib.errors import SlicerError
from slicerlib.events import PLAYBACK_FINISHED
from slicerlib.session import Session

console = Console()


def positive_int(value):
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return ivalue


def position(value):
    fvalue = float(value)
    if not (0.0 <= fvalue < 1.0):
        raise argparse.ArgumentTypeError("must be in [0, 1)")
    return fvalue


def percent(value):
    fvalue = float(value)
    if not (0.0 <= fvalue <= 100.0):
        raise argparse.ArgumentTypeError("must be between 0 and 100")
    return fvalue


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Slicer: cut a recording into regions and export them",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--version", action="version",
                        version=f"slicer {__version__}")

    parser.add_argument("file", type=str,
                        help="Audio file to open (.wav, .flac, .ogg, .aif, .aiff)")

    # Regions
    parser.add_argument("--slice", type=position, action="append", default=[],
                        metavar="POS",
                        help="Add a breakpoint at normalized position POS (repeatable)")
    parser.add_argument("--segment", type=positive_int, default=None, metavar="N",
                        help="Split the whole clip into N equal regions before slicing")

    # Effects
    parser.add_argument("--preset", type=str, default=None,
                        help="JSON preset with effects/export settings")
    parser.add_argument("--save_preset", type=str, default=None, metavar="PATH",
                        help="Write the effective settings to a JSON preset")
    parser.add_argument("--speed", type=float, default=None,
                        help="Playback-rate multiplier (overrides --semitones/--cents)")
    parser.add_argument("--semitones", type=float, default=0.0,
                        help="Pitch offset in semitones (changes speed)")
    parser.add_argument("--cents", type=float, default=0.0,
                        help="Pitch offset in cents (changes speed)")
    parser.add_argument("--highpass", type=float, default=None,
                        help="High-pass cutoff (Hz)")
    parser.add_argument("--lowpass", type=float, default=None,
                        help="Low-pass cutoff (Hz)")
    parser.add_argument("--highpass_pct", type=percent, default=None,
                        help="High-pass cutoff as 0-100%% of the 20 Hz-20 kHz range")
    parser.add_argument("--lowpass_pct", type=percent, default=None,
                        help="Low-pass cutoff as 0-100%% of the 20 Hz-20 kHz range")
    parser.add_argument("--threshold", type=float, default=None,
                        help="Compression threshold (dB)")
    parser.add_argument("--gain", type=float, default=None,
                        help="Output gain (dB)")
    parser.add_argument("--loop", action="store_true",
                        help="Loop the region when auditioning with --play")

    # Actions
    parser.add_argument("-x", "--export", type=int, action="append", default=[],
                        metavar="INDEX",
                        help="Export region INDEX (repeatable)")
    parser.add_argument("--export_all", action="store_true",
                        help="Export every region")
    parser.add_argument("--play", type=int, default=None, metavar="INDEX",
                        help="Audition region INDEX (Ctrl+C stops)")
    parser.add_argument("--output_folder", type=str, default=None,
                        help="Folder for exported files (default: exports)")
    parser.add_argument("--wav_subtype", type=str, default=None,
                        choices=["PCM_16", "PCM_24", "PCM_32"],
                        help="WAV sample format (default: PCM_16)")

    if len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args()

    if args.highpass is not None and args.highpass_pct is not None:
        parser.error("--highpass and --highpass_pct are mutually exclusive")
    if args.lowpass is not None and args.lowpass_pct is not None:
        parser.error("--lowpass and --lowpass_pct are mutually exclusive")

    return args


def build_config(args):
    """Defaults, then the preset, then explicitly given flags."""
    config = default_config()
    if args.preset:
        config = merge_configs(config, load_preset(args.preset))

    overrides = {}
    if args.speed is not None:
        overrides["speed"] = args.speed
    elif args.semitones or args.cents:
        overrides["speed"] = pitch_to_speed(args.semitones, args.cents)
    if args.highpass is not None:
        overrides["highpass_hz"] = args.highpass
    elif args.highpass_pct is not None:
        overrides["highpass_hz"] = 0.0 if args.highpass_pct == 0 else percent_to_hz(args.highpass_pct)
    if args.lowpass is not None:
        overrides["lowpass_hz"] = args.lowpass
    elif args.lowpass_pct is not None:
        overrides["lowpass_hz"] = None if args.lowpass_pct == 100 else percent_to_hz(args.lowpass_pct)
    if args.threshold is not None:
        overrides["compression_threshold_db"] = args.threshold
    if args.gain is not None:
        overrides["gain_db"] = args.gain
    if args.loop:
        overrides["loop"] = True
    if args.output_folder is not None:
        overrides["output_folder"] = args.output_folder
    if args.wav_subtype is not None:
        overrides["wav_subtype"] = args.wav_subtype
    return merge_configs(config, overrides)


# ---------------------------------------------------------------------------
# Rich console rendering (CLI-only, not in the library)
# ---------------------------------------------------------------------------

def print_regions(session, exported):
    clip = session.clip
    table = Table(box=box.ROUNDED, title="Regions", title_justify="left")
    table.add_column("#", justify="right", style="bold cyan")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Length", justify="right", style="dim")
    table.add_column("Export", style="green")

    for i, region in enumerate(session.regions()):
        start = int(round(region.start * clip.frames))
        end = int(round(region.end * clip.frames))
        table.add_row(
            str(i),
            format_duration(start, clip.samplerate),
            format_duration(end, clip.samplerate),
            format_duration(end - start, clip.samplerate),
            exported.get(i, ""),
        )
    console.print(table)


def audition(session, index):
    finished = threading.Event()
    unsubscribe = session.event_bus.subscribe(
        PLAYBACK_FINISHED, lambda **data: finished.set())
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>5.1f}%"),
        console=console,
    ) as progress:
        task_id = progress.add_task(f"[cyan]Playing region {index}...", total=100)
        try:
            session.play(index)
            while not finished.wait(0.05):
                progress.update(task_id, completed=session.progress() * 100)
            progress.update(task_id, completed=100)
        except KeyboardInterrupt:
            session.stop()
            # let the release ramp drain before the stream closes
            time.sleep(0.05)
        finally:
            unsubscribe()


def run():
    args = parse_arguments()

    if not os.path.isfile(args.file):
        console.print(f"[bold red]Error:[/] File '{args.file}' not found.")
        return 1

    try:
        config = build_config(args)
        session = Session(config)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 1

    with session:
        try:
            clip = session.load_file(args.file)
        except SlicerError as e:
            console.print(f"[bold red]Error:[/] {e}")
            return 1

        info = session.info()
        effects = session.effects
        lowpass_label = "off" if effects.lowpass_hz is None else f"{effects.lowpass_hz:.0f} Hz"
        highpass_label = "off" if effects.highpass_hz == 0 else f"{effects.highpass_hz:.0f} Hz"
        console.print(Panel.fit(
            f"[bold]{clip.name}[/]\n"
            f"Format: [cyan]{info['format']}[/] | [cyan]{clip.samplerate} Hz[/] | "
            f"Duration: [cyan]{info['duration_fmt']}[/]\n"
            f"Speed: [cyan]{effects.speed:g}x[/] | High-pass: [cyan]{highpass_label}[/] | "
            f"Low-pass: [cyan]{lowpass_label}[/]\n"
            f"Threshold: [cyan]{effects.compression_threshold_db:g} dB[/] | "
            f"Gain: [cyan]{effects.gain_db:+g} dB[/]",
            title="Clip"
        ))

        if args.segment:
            session.segment(0, args.segment)
        for pos in args.slice:
            session.slice(pos)

        if args.save_preset:
            save_preset(session.config | effects.to_dict(), args.save_preset,
                        description=f"Saved from {clip.name}")
            console.print(f"[dim]Preset saved to: {args.save_preset}[/]")

        targets = list(range(len(session.regions()))) if args.export_all else args.export
        exported = {}
        out_dir = session.config["output_folder"]
        for index in targets:
            try:
                path = session.export_to(out_dir, index)
            except SlicerError as e:
                console.print(f"[bold red]Error:[/] region {index}: {e}")
                continue
            exported[index] = os.path.basename(path)

        print_regions(session, exported)
        if exported:
            console.print(f"\n[dim]Exported to: {out_dir}[/]")

        if args.play is not None:
            try:
                audition(session, args.play)
            except SlicerError as e:
                console.print(f"[bold red]Error:[/] {e}")
                return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
