#!/usr/bin/env python3
"""
Visit Scribe - CLI Main Entry Point
visit-scribe コマンド
"""

import argparse

from colorama import Fore, Style  # type: ignore[import-untyped]
from colorama import init as colorama_init

from visit_scribe.infrastructure.audio import MicrophoneAudioSource

from .controller import CLIController


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visit-scribe",
        description="Record a clinical visit, transcribe it in overlapping segments "
        "and draft a structured clinical note",
    )

    audio = parser.add_argument_group("audio input")
    audio.add_argument(
        "-l",
        "--list-devices",
        action="store_true",
        help="print audio input devices and exit",
    )
    audio.add_argument(
        "-d", "--device", type=int, metavar="ID", help="input device ID (see --list-devices)"
    )
    audio.add_argument(
        "-f",
        "--file",
        metavar="PATH",
        help="transcribe an audio file (wav/flac/ogg) instead of the microphone",
    )

    visit = parser.add_argument_group("visit")
    visit.add_argument(
        "-s", "--session-id", metavar="ID", help="session ID (default: derived from start time)"
    )
    visit.add_argument(
        "--patient-name", metavar="NAME", help="patient name, given to the note as context"
    )
    visit.add_argument(
        "--visit-reason", metavar="TEXT", help="reason for visit, given to the note as context"
    )
    visit.add_argument(
        "--no-note",
        action="store_true",
        help="do not draft a clinical note even when note.enabled is set",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def print_audio_devices() -> None:
    """--list-devices の出力"""
    print(f"\n{Fore.CYAN}Audio input devices:{Style.RESET_ALL}\n")
    for device in MicrophoneAudioSource.list_devices():
        marker = f" {Fore.GREEN}*default*{Style.RESET_ALL}" if device.is_default else ""
        channels = f"{device.max_input_channels}ch"
        print(f"  {device.id:>3}  {device.name} ({channels}){marker}")
    print()


def main() -> None:
    args = parse_args()
    colorama_init(autoreset=True)

    if args.list_devices:
        print_audio_devices()
        return

    CLIController(
        device_id=args.device,
        file_path=args.file,
        session_id=args.session_id,
        patient_name=args.patient_name,
        visit_reason=args.visit_reason,
        generate_note=not args.no_note,
    ).run()


if __name__ == "__main__":
    main()
