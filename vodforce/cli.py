import argparse
import asyncio
import logging
import signal
import sys

from tqdm import tqdm

from vodforce import __version__, clips, hints, vods
from vodforce.config import SearchConfig
from vodforce.errors import HintUnavailable, VodforceError
from vodforce.models import Aborted, Found, ReturnURL, normalize_login
from vodforce.timestamps import format_timestamp

logger = logging.getLogger("vodforce")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2
EXIT_ABORTED = 130

GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


def setup_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s.%(msecs)03d %(levelname)s %(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    logging.getLogger("asyncio").setLevel(logging.CRITICAL)
    logging.getLogger("aiohttp").setLevel(logging.CRITICAL)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser():
    parser = argparse.ArgumentParser(prog="vodforce", description="Finds VOD playlists and clips on Twitch.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-t", "--threads", type=int, help="Maximum number of requests in flight")
    parser.add_argument("-s", "--simple", action="store_true", help="Provide minimal output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show more info")
    parser.add_argument("-c", "--cdnfile", help="Import more CDN hosts via a config file (TXT/JSON/TOML)")
    parser.add_argument("-p", "--progressbar", action="store_true", help="Force the progress bar on")
    parser.add_argument("-m", "--mode", choices=["exact", "bruteforce"],
                        help="Preferred processing mode for StreamsCharts links")
    parser.add_argument("--config", dest="settings", help="Settings JSON file overriding the packaged defaults")
    parser.add_argument("--retries", type=int, help="Retries per request after a transient failure")
    parser.add_argument("--timeout", type=float, help="Timeout per request in seconds")

    subparsers = parser.add_subparsers(dest="command", required=True)

    exact = subparsers.add_parser("exact", help="Build the playlist URL from a known timestamp and check it")
    exact.add_argument("username", help="Streamer's username")
    exact.add_argument("id", help="VOD/broadcast ID")
    exact.add_argument("stamp", help='Unix time or a UTC date like "2020-11-12 20:02:13" or RFC 3339')

    bruteforce = subparsers.add_parser("bruteforce", help="Search a range of timestamps for a working playlist URL")
    bruteforce.add_argument("username", help="Streamer's username")
    bruteforce.add_argument("id", help="VOD/broadcast ID")
    bruteforce.add_argument("start", metavar="from", help="First timestamp")
    bruteforce.add_argument("end", metavar="to", help="Last timestamp")
    bruteforce.add_argument("--hint", action="append", default=[], help="Timestamp to try first (repeatable)")

    link = subparsers.add_parser("link", help="Get the playlist from a TwitchTracker/StreamsCharts URL")
    link.add_argument("url", help="TwitchTracker/StreamsCharts stream URL")

    live = subparsers.add_parser("live", help="Get the playlist of a currently running stream")
    live.add_argument("username", help="Streamer's username")

    clip = subparsers.add_parser("clip", help="Get the VOD playlist a clip was cut from")
    clip.add_argument("clip", help="Clip URL (twitch.tv/<user>/clip/<slug> or clips.twitch.tv/<slug>) or slug")

    clipforce = subparsers.add_parser("clipforce", help="Search a range of offsets for clips of a VOD")
    clipforce.add_argument("id", help="VOD/broadcast ID")
    clipforce.add_argument("start", type=int, help="First offset in seconds")
    clipforce.add_argument("end", type=int, help="Last offset in seconds")
    clipforce.add_argument("--formats", nargs="+", choices=["default", "vod", "index"],
                           help="Clip URL formats to check")
    clipforce.add_argument("--stride", type=int, help="Seconds between checked offsets")

    fix = subparsers.add_parser("fix", help="Turn an unplayable unmuted VOD playlist into a playable muted one")
    fix.add_argument("url", help="Twitch VOD playlist URL (twitch.tv and cloudfront.net only)")
    fix.add_argument("-o", "--output", help="Output path (default is the current folder)")

    return parser


class ProgressBar:
    def __init__(self, enabled, desc, unit):
        self.enabled = enabled
        self.desc = desc
        self.unit = unit
        self.bar = None

    def __call__(self, done, total):
        if not self.enabled:
            return
        if self.bar is None:
            self.bar = tqdm(total=total, desc=self.desc, unit=self.unit, leave=False, colour="blue")
        self.bar.update(done - self.bar.n)

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def info(text, simple):
    if simple:
        print(text)
    else:
        logger.info(text)


class Runner:
    def __init__(self, args, config):
        self.args = args
        self.config = config
        self.cancel = asyncio.Event()
        self.show_progress = not args.simple and (args.progressbar or config.use_progress_bar)

    def progress(self, desc, unit):
        return ProgressBar(self.show_progress, desc, unit)

    async def search(self, login, video_id, start, end=None, search_hints=()):
        bar = self.progress("Searching", "ts")
        try:
            if end is None:
                return await vods.exact(login, video_id, start, self.config, cancel=self.cancel, on_progress=bar)
            return await vods.bruteforce(login, video_id, start, end, self.config, hints=search_hints,
                                         cancel=self.cancel, on_progress=bar)
        finally:
            bar.close()

    async def search_around(self, login, video_id, timestamp):
        """The tracker timestamp is tried first, then the seconds around it."""
        window = hints.BRUTEFORCE_WINDOW
        return await self.search(login, video_id, max(timestamp - window, 0), timestamp + window,
                                 search_hints=[timestamp])

    async def report_vod(self, login, video_id, result):
        simple = self.args.simple
        if isinstance(result, Found):
            valid_urls = await vods.check_availability(login, video_id, result.value, self.config)
            if not simple:
                logger.info("Got the URL for %s. Here are the valid URLs:", format_timestamp(result.value))
            for return_url in valid_urls or [ReturnURL(result.url)]:
                if simple:
                    print(return_url.url)
                elif return_url.muted:
                    logger.info("%s✓ %s%s (muted segments, try the fix command)", GREEN, return_url.url, RESET)
                else:
                    logger.info("%s✓ %s%s", GREEN, return_url.url, RESET)
            return EXIT_OK
        if isinstance(result, Aborted):
            if not simple:
                logger.warning("%s✖ Search aborted at %.1f%%: %s%s", RED, result.progress * 100, result.reason, RESET)
            return EXIT_ABORTED
        if not simple:
            logger.info("%s✖ Couldn't find anything :(%s", RED, RESET)
            if result.degraded:
                logger.warning("%d requests kept failing and were counted as misses, "
                               "you might be getting throttled", result.degraded)
        return EXIT_NOT_FOUND

    def report_clips(self, result):
        simple = self.args.simple
        if result.found:
            if not simple:
                logger.info("%sGot %d clip(s)!%s Here are the URLs:", GREEN, len(result.found), RESET)
            for found in result.found:
                info(found.url, simple)
        elif not simple:
            logger.info("%s✖ Couldn't find anything :(%s", RED, RESET)
        if not simple and result.degraded:
            logger.warning("%d requests kept failing and were counted as misses", result.degraded)
        if not result.complete:
            if not simple:
                logger.warning("Scan aborted at %.1f%%: %s", result.progress * 100, result.reason)
            return EXIT_ABORTED
        return EXIT_OK

    async def run(self):
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.cancel.set)
        except (NotImplementedError, RuntimeError):
            pass

        args = self.args
        command = args.command

        if command == "exact":
            result = await self.search(args.username, args.id, args.stamp)
            return await self.report_vod(normalize_login(args.username), args.id, result)

        if command == "bruteforce":
            result = await self.search(args.username, args.id, args.start, args.end, search_hints=args.hint)
            return await self.report_vod(normalize_login(args.username), args.id, result)

        if command == "link":
            hint = await asyncio.to_thread(hints.tracker_hint, args.url, args.mode)
            if hint.exact and args.mode == "exact":
                result = await self.search(hint.login, hint.video_id, hint.start)
            elif hint.exact:
                result = await self.search_around(hint.login, hint.video_id, hint.start)
            else:
                result = await self.search(hint.login, hint.video_id, hint.start, hint.end)
            return await self.report_vod(hint.login, hint.video_id, result)

        if command == "live":
            stream = await asyncio.to_thread(hints.live_hint, args.username)
            if stream is None:
                logger.error("%s is not live right now", args.username)
                return EXIT_NOT_FOUND
            video_id, started = stream
            result = await self.search(args.username, video_id, started)
            return await self.report_vod(normalize_login(args.username), video_id, result)

        if command == "clip":
            source = await asyncio.to_thread(hints.clip_hint, args.clip)
            if source is None:
                logger.error("Couldn't get the info from the clip")
                return EXIT_NOT_FOUND
            login, video_id = source
            hint = await asyncio.to_thread(hints.twitchtracker_hint, f"https://twitchtracker.com/{login}/streams/{video_id}")
            result = await self.search_around(login, video_id, hint.start)
            return await self.report_vod(login, video_id, result)

        if command == "clipforce":
            bar = self.progress("Clips", "offset")
            try:
                result = await clips.clipforce(args.id, args.start, args.end, self.config,
                                               cancel=self.cancel, on_progress=bar)
            finally:
                bar.close()
            return self.report_clips(result)

        if command == "fix":
            path = await asyncio.to_thread(vods.fix, args.url, self.config, args.output)
            if args.simple:
                print(path)
            return EXIT_OK

        raise ValueError(f"Unknown command {command}")


def load_config(args):
    overrides = {
        "threads": args.threads,
        "retries": args.retries,
        "timeout": args.timeout,
        "clip_formats": tuple(args.formats) if getattr(args, "formats", None) else None,
        "clip_stride": getattr(args, "stride", None),
    }
    return SearchConfig.load(settings_path=args.settings, cdn_file=args.cdnfile, **overrides)


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args)
        exit_code = asyncio.run(Runner(args, config).run())
    except HintUnavailable as e:
        logger.error("Couldn't get a timestamp: %s", e)
        exit_code = EXIT_ERROR
    except VodforceError as e:
        logger.error("%s", e)
        exit_code = EXIT_ERROR
    except KeyboardInterrupt:
        print("\n\nExiting...")
        exit_code = EXIT_ABORTED
    sys.exit(exit_code)
