#!/usr/bin/env python3
"""
Main entry point for the focus coaching system.
Replays recorded detection frames through a focus session, or starts the
HTTP server.
"""

import argparse
import json
import logging
import sys
import time
from typing import Any, Dict, Iterator, Optional

from focuscoach.coaching.orchestrator import create_orchestrator
from focuscoach.coaching.speech import ChimeTone, FileAudioPlayer, NullAudioPlayer, PygameAudioPlayer
from focuscoach.core.accumulator import EvaluationResult
from focuscoach.core.scheduler import InlineExecutor, Scheduler, VirtualScheduler
from focuscoach.session import FocusSession
from focuscoach.utils.config import Config
from focuscoach.utils.logger import logger

DEFAULT_FRAME_INTERVAL = 0.2  # 5 Hz detector cadence


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Focus score and voice coaching system")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON configuration file (default: $FOCUSCOACH_CONFIG)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose output")

    subparsers = parser.add_subparsers(dest="command")

    replay = subparsers.add_parser("replay", help="Replay a JSONL file of detection frames")
    replay.add_argument("frames", type=str, help="JSONL file, one detection frame per line")
    replay.add_argument("--realtime", action="store_true",
                        help="Replay at wall clock speed instead of virtual time")
    replay.add_argument("--session-id", type=str, default="",
                        help="Session ID for tracking (optional)")
    replay.add_argument("--no-coaching", action="store_true",
                        help="Disable voice nudges")
    replay.add_argument("--silent", action="store_true",
                        help="No chime output and no local speech")
    replay.add_argument("--audio-dir", type=str, default="",
                        help="Write nudge audio clips to this directory instead of playing them")
    replay.add_argument("--save", type=str, default="",
                        help="Write the session summary to this JSON file")

    serve = subparsers.add_parser("serve", help="Run the coaching HTTP server")
    serve.add_argument("--host", type=str, default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)

    return parser.parse_args(argv)


def read_frames(path: str) -> Iterator[Dict[str, Any]]:
    """Yield frame dicts from a JSONL file; blank and malformed lines are skipped."""
    with open(path, 'r') as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except ValueError as e:
                logger.warning(f"Skipping malformed frame on line {line_number}: {e}")


def frame_time(frame: Dict[str, Any], previous: Optional[float]) -> float:
    """Frame timestamp in seconds; frames without one follow the previous at 5 Hz."""
    timestamp = frame.get('timestamp')
    if timestamp is None:
        return (previous or 0.0) + DEFAULT_FRAME_INTERVAL
    timestamp = float(timestamp)
    return timestamp / 1000.0 if timestamp > 1e11 else timestamp


def print_status(session: FocusSession, result: EvaluationResult, verbose: bool = False):
    """Print status information."""
    status = session.status()
    elapsed = status['time'] - (session.recorder.started_at or status['time'])
    if verbose:
        print(f"t={elapsed:6.1f}s | Score: {status['session_score']:3d} | "
              f"Instant avg: {result.mean_instant:5.1f} | Alignment: {status['alignment_score']:3d} | "
              f"Calibrated: {status['is_calibrated']} ({status['calibration_progress']:.0f}%) | "
              f"Chimes: {status['chime_count']}")
    elif int(round(elapsed)) % 10 == 0:
        print(f"t={elapsed:6.1f}s | Score: {status['session_score']:3d} | Chimes: {status['chime_count']}")


def print_summary(summary) -> None:
    print("\n" + "=" * 60)
    print("SESSION SUMMARY")
    print("=" * 60)
    print(f"Session ID: {summary.session_id}")
    print(f"Duration: {summary.duration_sec:.1f} seconds")
    if summary.paused_duration_sec:
        print(f"Paused: {summary.paused_duration_sec:.1f} seconds")
    print(f"Final Score: {summary.final_score}")
    print(f"Average Score: {summary.average_score}")
    print(f"Focused: {summary.focused_percentage}%")
    print(f"Peak Score: {summary.peak_score}")
    print(f"Longest Focus Streak: {summary.longest_focus_streak_sec:.0f} seconds")
    print(f"Distractions: {summary.distraction_count}")
    print(f"Nudges: {summary.nudge_count}")
    print("=" * 60)


def build_session(args, cfg: Config, scheduler: Scheduler) -> FocusSession:
    orchestrator = None
    if not args.no_coaching:
        if args.audio_dir:
            player = FileAudioPlayer(args.audio_dir)
        elif args.realtime and not args.silent:
            player = PygameAudioPlayer()
        else:
            player = NullAudioPlayer()
        orchestrator = create_orchestrator(
            scheduler, cfg, player=player,
            use_local_speech=args.realtime and not args.silent,
            # Virtual time cannot wait for worker threads
            executor=None if args.realtime else InlineExecutor(),
        )

    tone = ChimeTone() if args.realtime and not args.silent else None

    def chime(count: int) -> None:
        print(f"  * chime ({count})")
        if tone is not None:
            tone(count)

    session = FocusSession(cfg, scheduler, orchestrator=orchestrator,
                           chime_alert=None if args.silent else chime,
                           session_id=args.session_id or None)
    session.accumulator.add_listener(lambda result: print_status(session, result, args.verbose))
    if orchestrator is not None:
        orchestrator.add_listener(
            lambda event: print(f"  >> Nudge [{event.tier.value}] \"{event.text}\" (audio: {event.audio_source})"))
    return session


def replay(args, cfg: Config) -> int:
    """Feed every frame of the file through one session."""
    frames = read_frames(args.frames)
    try:
        first = next(frames)
    except StopIteration:
        print(f"No frames in {args.frames}")
        return 1
    except OSError as e:
        print(f"✗ Could not read {args.frames}: {e}")
        return 1

    first_time = frame_time(first, None)
    if args.realtime:
        scheduler = Scheduler()
    else:
        scheduler = VirtualScheduler(start=first_time)
    session = build_session(args, cfg, scheduler)

    print("=" * 60)
    print("Focus Session Replay")
    print("=" * 60)
    print(f"Frames: {args.frames}")
    print(f"Mode: {'realtime' if args.realtime else 'virtual time'}")
    print(f"Coaching: {'off' if args.no_coaching else 'on'}")
    print("=" * 60)

    session.start()
    wall_start = time.time()
    previous = first_time

    def feed(frame: Dict[str, Any], when: float) -> None:
        if args.realtime:
            target = wall_start + (when - first_time)
            while time.time() < target:
                scheduler.run_pending()
                time.sleep(min(0.01, max(0.0, target - time.time())))
            scheduler.run_pending()
        else:
            scheduler.advance_to(when)
        session.process_frame(frame)

    try:
        feed(first, first_time)
        for frame in frames:
            when = max(previous, frame_time(frame, previous))
            feed(frame, when)
            previous = when

        # Let the last evaluation tick and any nudge in flight finish
        if args.realtime:
            deadline = time.time() + cfg.accumulator.eval_interval_sec
            while time.time() < deadline:
                scheduler.run_pending()
                time.sleep(0.01)
        else:
            scheduler.advance(cfg.accumulator.eval_interval_sec)
    except KeyboardInterrupt:
        print("\nReplay interrupted by user")
    finally:
        summary = session.end()
        if session.orchestrator is not None:
            session.orchestrator.shutdown()

    if summary is not None:
        print_summary(summary)
        if args.save:
            session_file = session.recorder.save_session_data(args.save)
            if session_file:
                print(f"Session data saved: {session_file}")
    return 0


def serve(args, cfg: Config) -> int:
    from web_server import run_server
    run_server(host=args.host, port=args.port, cfg=cfg)
    return 0


def main(argv=None):
    """Main function."""
    args = parse_arguments(argv)

    # Enable verbose logging if requested
    logging.getLogger("focuscoach").setLevel(logging.DEBUG if args.verbose else logging.INFO)
    if args.verbose:
        for handler in logging.getLogger("focuscoach").handlers:
            handler.setLevel(logging.INFO)

    cfg = Config(args.config)
    if not cfg.validate_config():
        print("⚠️ Warning: configuration has problems, see log for details. Continuing.")
    if args.verbose:
        logger.log_system_info()

    if args.command == "replay":
        return replay(args, cfg)
    if args.command == "serve":
        return serve(args, cfg)

    print("Nothing to do: choose a command (replay, serve). Use --help for details.")
    return 2


if __name__ == "__main__":
    sys.exit(main())
