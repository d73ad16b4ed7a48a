import asyncio
import logging
import os
import time
from urllib.parse import urlparse

import aiohttp
import requests

from vodforce.engine import SearchEngine, prioritize
from vodforce.errors import InvalidInput, PlaylistUnavailable
from vodforce.hashing import build_vod_url
from vodforce.hosts import default_hosts
from vodforce.models import Candidate, Hit, Resolution, ReturnURL, TransientFailure, VodTarget
from vodforce.playlist import fix_playlist, is_media_playlist, is_muted, segment_count
from vodforce.timestamps import parse_timestamp
from vodforce.verifier import open_session, verifier_for

logger = logging.getLogger(__name__)


def host_candidates(timestamp, hosts):
    return [Candidate(timestamp, host) for host in hosts]


def make_vod_probe(target, hosts, verifier, quality="chunked"):
    async def probe(timestamp, halted):
        resolution = Resolution(timestamp)
        for candidate in host_candidates(timestamp, hosts):
            if halted():
                return None
            url = build_vod_url(target.login, target.video_id, candidate.value, candidate.host, quality)
            outcome = await verifier.verify_with_retry(url, timestamp, halted)
            if isinstance(outcome, Hit):
                resolution.hits.append(outcome)
                return resolution
            if isinstance(outcome, TransientFailure):
                resolution.degraded += 1
        return resolution

    return probe


async def search_vod(target, config, hints=(), verifier=None, cancel=None, on_progress=None):
    hosts = config.hosts or default_hosts()
    order, seeds = prioritize(target.start, target.end, hints)
    logger.debug("Checking %d timestamps on %d hosts (%d hinted)", len(order), len(hosts), seeds)

    async with verifier_for(config, verifier) as active_verifier:
        engine = SearchEngine(config.threads, cancel=cancel, on_progress=on_progress)
        probe = make_vod_probe(target, hosts, active_verifier, config.quality)
        return await engine.run(order, probe, stop_at_first=True, seeds=seeds)


async def exact(login, video_id, timestamp, config, verifier=None, cancel=None, on_progress=None):
    target = VodTarget.exact(login, video_id, parse_timestamp(timestamp))
    return await search_vod(target, config, verifier=verifier, cancel=cancel, on_progress=on_progress)


async def bruteforce(login, video_id, start, end, config, hints=(), verifier=None, cancel=None, on_progress=None):
    target = VodTarget.range(login, video_id, parse_timestamp(start), parse_timestamp(end))
    parsed_hints = [parse_timestamp(hint) for hint in hints]
    return await search_vod(target, config, hints=parsed_hints, verifier=verifier,
                            cancel=cancel, on_progress=on_progress)


async def fetch_playlist(session, url, timeout):
    try:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            if response.status != 200:
                return None
            body = await response.text(errors="replace")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug("Couldn't fetch %s - %s", url, e)
        return None
    return body if is_media_playlist(body) else None


async def check_availability(login, video_id, timestamp, config, session=None):
    """Every host serving the playlist for a confirmed timestamp, in host order."""
    target = VodTarget.exact(login, video_id, timestamp)
    hosts = config.hosts or default_hosts()
    urls = [build_vod_url(target.login, target.video_id, target.start, host, config.quality) for host in hosts]

    async def gather_bodies(active_session):
        return await asyncio.gather(*(fetch_playlist(active_session, url, config.timeout) for url in urls))

    if session is None:
        async with open_session(config) as own_session:
            bodies = await gather_bodies(own_session)
    else:
        bodies = await gather_bodies(session)

    return [ReturnURL(url, is_muted(body)) for url, body in zip(urls, bodies) if body is not None]


def download_m3u8_text(m3u8_link, max_retries=5, timeout=30):
    attempt = 0
    while True:
        try:
            response = requests.get(m3u8_link, timeout=timeout)
            response.raise_for_status()
            return response.text
        except requests.exceptions.RequestException as e:
            attempt += 1
            if attempt >= max_retries:
                raise
            logger.debug("Retrying playlist download (%d/%d) - %s", attempt, max_retries, e)
            time.sleep(1)


def default_fix_output(url):
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    name = segments[0] if segments else "playlist"
    return f"muted_{name}.m3u8"


def fix(url, config, output=None):
    """Download a VOD playlist and write a playable copy with muted segments."""
    host = urlparse(url).netloc
    if not (host.endswith("twitch.tv") or host.endswith("cloudfront.net")):
        raise InvalidInput("Only twitch.tv and cloudfront.net URLs are supported")

    try:
        text = download_m3u8_text(url, timeout=config.timeout)
    except requests.exceptions.RequestException as e:
        raise PlaylistUnavailable(f"Couldn't download {url}: {e}") from e
    if not is_media_playlist(text):
        raise InvalidInput(f"{url} didn't return a media playlist")

    path = output or default_fix_output(url)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as playlist_file:
        playlist_file.write(fix_playlist(text, url))
    logger.info("Fixed playlist with %d segments written to %s", segment_count(text), os.path.normpath(path))
    return path
