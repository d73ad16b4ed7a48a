"""Unverified timestamp sources: tracker sites and the public Twitch GQL API.

Nothing returned here is trusted. The timestamps only decide where the search
starts (exact mode) or which window it covers (bruteforce mode).
"""

import json
import logging
import os
import random
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from vodforce.errors import HintUnavailable, InvalidInput
from vodforce.hosts import get_package_directory, read_text_file
from vodforce.models import normalize_login, validate_video_id
from vodforce.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

GQL_ENDPOINT = "https://gql.twitch.tv/gql"
GQL_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"
CURL_UA = "curl/7.54.0"
BRUTEFORCE_WINDOW = 60


@dataclass(frozen=True)
class TrackerHint:
    login: str
    video_id: int
    start: int
    end: Optional[int] = None
    exact: bool = True


def return_user_agent():
    try:
        user_agents = [ua for ua in read_text_file(os.path.join(get_package_directory(), "lib", "user_agents.txt")) if ua]
    except OSError:
        user_agents = []
    return {"user-agent": random.choice(user_agents) if user_agents else CURL_UA}


def parse_tracker_url(url):
    if not url.startswith(("https://", "http://")):
        url = "https://" + url
    parsed = urlparse(url)
    domain = parsed.netloc.lower().removeprefix("www.")
    segments = [segment for segment in parsed.path.split("/") if segment]

    if domain == "twitchtracker.com":
        if len(segments) == 3 and segments[1] == "streams":
            return normalize_login(segments[0]), validate_video_id(segments[2]), "twitchtracker"
        raise InvalidInput("Not a valid TwitchTracker VOD URL")
    if domain == "streamscharts.com":
        if len(segments) == 4 and segments[0] == "channels" and segments[2] == "streams":
            return normalize_login(segments[1]), validate_video_id(segments[3]), "streamscharts"
        raise InvalidInput("Not a valid StreamsCharts VOD URL")
    raise InvalidInput("Only twitchtracker.com and streamscharts.com URLs are supported")


def fetch_html(url, timeout=10):
    try:
        response = requests.get(url, headers=return_user_agent(), timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise HintUnavailable(f"Couldn't load {url}: {e}") from e
    return BeautifulSoup(response.content, "html.parser")


def parse_twitchtracker_timestamp(bs):
    element = bs.select_one(".stream-timestamp-dt")
    if element is None:
        raise HintUnavailable("TwitchTracker page has no stream timestamp")
    return parse_timestamp(element.get_text(strip=True))


def twitchtracker_hint(url):
    login, video_id, _ = parse_tracker_url(url)
    start = parse_twitchtracker_timestamp(fetch_html(url))
    return TrackerHint(login, video_id, start)


def parse_streamscharts_exact(bs):
    element = bs.select_one("div > div[data-requests]")
    if element is None:
        raise HintUnavailable("StreamsCharts page has no clip data")
    try:
        payloads = json.loads(element["data-requests"])
        return parse_timestamp(payloads[0]["started_at"]), parse_timestamp(payloads[-1]["ended_at"])
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise HintUnavailable(f"Couldn't read the StreamsCharts clip data: {e}") from e


def parse_streamscharts_window(bs):
    element = bs.find("time")
    if element is None or not element.get("datetime"):
        raise HintUnavailable("StreamsCharts page has no stream date")
    started = parse_timestamp(element["datetime"])
    return max(started - BRUTEFORCE_WINDOW, 0), started + BRUTEFORCE_WINDOW


def streamscharts_hint(url, mode=None):
    """``mode`` is "exact", "bruteforce" or None (exact, falling back to a window)."""
    login, video_id, _ = parse_tracker_url(url)
    bs = fetch_html(url)

    if mode != "bruteforce":
        try:
            start, end = parse_streamscharts_exact(bs)
            logger.info("Found exact timestamps for the stream. Started at %d and ended at %d.", start, end)
            return TrackerHint(login, video_id, start, end, exact=True)
        except HintUnavailable:
            if mode == "exact":
                raise
            logger.info("Bruteforcing for timestamps...")

    start, end = parse_streamscharts_window(bs)
    logger.info("Found approximate timestamps for the stream. Searching %d to %d.", start, end)
    return TrackerHint(login, video_id, start, end, exact=False)


def tracker_hint(url, mode=None):
    _, _, site = parse_tracker_url(url)
    if site == "twitchtracker":
        return twitchtracker_hint(url)
    return streamscharts_hint(url, mode)


def gql_query(query, variables, timeout=30):
    try:
        response = requests.post(
            GQL_ENDPOINT,
            json={"query": query, "variables": variables},
            headers={"Client-ID": GQL_CLIENT_ID},
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        raise HintUnavailable(f"Twitch GQL request failed: {e}") from e
    if data.get("errors"):
        raise HintUnavailable(f"Twitch GQL returned errors: {data['errors']}")
    return data.get("data") or {}


def live_hint(login):
    """Video id and start time of the stream ``login`` is running right now."""
    login = normalize_login(login)
    data = gql_query("query($login:String){user(login: $login){stream{id createdAt}}}", {"login": login})
    stream = (data.get("user") or {}).get("stream")
    if not stream:
        return None
    return validate_video_id(stream["id"]), parse_timestamp(stream["createdAt"])


def extract_slug(clip):
    clip = clip.strip()
    if not clip.startswith(("https://", "http://")):
        if "/" in clip or "." in clip:
            raise InvalidInput("Only twitch.tv clip URLs are supported")
        return clip

    parsed = urlparse(clip)
    domain = parsed.netloc.lower()
    segments = [segment for segment in parsed.path.split("/") if segment]
    if domain in ("twitch.tv", "www.twitch.tv", "m.twitch.tv"):
        if len(segments) > 2 and segments[1] == "clip":
            return segments[2]
        raise InvalidInput("Not a clip URL")
    if domain == "clips.twitch.tv" and segments:
        return segments[0]
    raise InvalidInput("Only twitch.tv URLs are supported")


def clip_hint(clip):
    """Broadcaster login and VOD id a clip was cut from."""
    slug = extract_slug(clip)
    data = gql_query("query($slug:ID!){clip(slug: $slug){broadcaster{login}broadcast{id}}}", {"slug": slug})
    clip_data = data.get("clip")
    if not clip_data or not clip_data.get("broadcast"):
        return None
    return normalize_login(clip_data["broadcaster"]["login"]), validate_video_id(clip_data["broadcast"]["id"])
