import argparse
import getpass
import json
import sys
from pathlib import Path

from attendance_client.api import AttendanceApiClient
from attendance_client.camera import StillCamera
from attendance_client.channel import DetectionChannel
from attendance_client.config import get_settings
from attendance_client.credentials import CredentialStore
from attendance_client.exceptions import (
    AttendanceError,
    ConfirmationError,
    PreconditionNotMet,
    RequestTimeout,
    SessionExpired,
)
from attendance_client.kiosk import AttendanceKiosk
from attendance_client.logger import setup_logger
from attendance_client.matcher import RosterMatcher, find_best_match
from attendance_client.session import SessionState
from attendance_client.transport import WebSocketTransport


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Face Recognition Attendance Client")

    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Log in to the attendance server")
    login.add_argument("--username", required=True, help="Account username")
    login.add_argument("--password", default=None, help="Account password (prompted if omitted)")

    subparsers.add_parser("logout", help="Forget the stored session")

    roster = subparsers.add_parser("roster", help="List registered employees")
    roster.add_argument("--limit", type=int, default=100, help="Max rows to print")

    mark = subparsers.add_parser("mark", help="Capture a photo and mark attendance")
    mark.add_argument("--camera", type=int, default=settings.camera_index, help="Camera index")
    mark.add_argument(
        "--threshold",
        type=float,
        default=settings.match_threshold,
        help="Maximum Euclidean distance accepted as a match",
    )
    mark.add_argument("--extractor", default=settings.extractor_url, help="Extractor WebSocket URL")
    mark.add_argument("--yes", action="store_true", help="Confirm a match without prompting")

    match = subparsers.add_parser("match", help="Match a saved descriptor against the roster")
    match.add_argument("descriptor", type=Path, help="JSON file holding a descriptor array")
    match.add_argument(
        "--threshold",
        type=float,
        default=settings.match_threshold,
        help="Maximum Euclidean distance accepted as a match",
    )

    return parser


def _mark(args, api: AttendanceApiClient) -> int:
    settings = get_settings()
    channel = DetectionChannel()
    transport = WebSocketTransport(args.extractor, channel, reconnect_seconds=settings.extractor_reconnect_seconds)
    camera = StillCamera(camera_index=args.camera, jpeg_quality=settings.jpeg_quality)
    kiosk = AttendanceKiosk(api=api, channel=channel, camera=camera, matcher=RosterMatcher(threshold=args.threshold))
    kiosk.add_status_listener(lambda status: print(f"[status] {status}"))

    transport.start()
    try:
        kiosk.load_roster()
        if not channel.wait_ready(settings.extractor_ready_timeout_seconds):
            print(f"Error: extractor at {args.extractor} did not load its models in time.")
            return 1

        with camera:
            while True:
                kiosk.mark()
                snapshot = kiosk.wait_until_settled()

                if snapshot.state is SessionState.MATCHED and snapshot.match is not None:
                    match = snapshot.match
                    print(f"Matched {match.identity.name} ({match.confidence_percent:.1f}% confidence)")
                    while args.yes or input("Confirm attendance? [y/N] ").strip().lower() == "y":
                        try:
                            record = kiosk.confirm()
                        except (ConfirmationError, RequestTimeout) as exc:
                            print(f"Error: {exc}")
                            if args.yes:
                                return 1
                            continue
                        print(f"Attendance Marked! {record.name} {record.date} at {record.time}")
                        return 0
                    kiosk.retake()

                if input("Retake? [y/N] ").strip().lower() != "y":
                    return 1
    finally:
        transport.stop()


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")
    settings = get_settings()
    api = AttendanceApiClient(settings, CredentialStore(settings.credentials_db_path))

    try:
        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            user = api.login(args.username, password)
            print(f"Logged in as {user.name or user.username}.")
            return 0

        if args.command == "logout":
            api.logout()
            print("Logged out.")
            return 0

        if not api.is_authenticated:
            print("Not logged in. Run: run.py login --username <name>")
            return 1

        if args.command == "roster":
            roster = api.fetch_roster()
            if roster.is_empty:
                print("No employees registered.")
                return 0

            print(f"{'Employee ID':<16} {'Samples':<8} {'Name'}")
            print("-" * 52)
            for identity in roster.identities[: args.limit]:
                print(f"{identity.identity_id:<16} {len(identity.embeddings):<8} {identity.name}")
            return 0

        if args.command == "mark":
            return _mark(args, api)

        if args.command == "match":
            descriptor = json.loads(args.descriptor.read_text(encoding="utf-8"))
            roster = api.fetch_roster()
            result = find_best_match(descriptor, roster, threshold=args.threshold)
            if result is None:
                print("Face not recognized.")
                return 1
            print(
                f"{result.identity.name} ({result.identity.identity_id}) "
                f"distance={result.distance:.4f} confidence={result.confidence_percent:.1f}%"
            )
            return 0

    except SessionExpired as exc:
        logger.warning("Session expired: %s", exc)
        print("Session expired. Please login again.")
        return 1
    except PreconditionNotMet as exc:
        print(f"Not ready: {exc}")
        return 1
    except AttendanceError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
