import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from tests.conftest import HOSTS, FakeVerifier
from vodforce import vods
from vodforce.errors import InvalidInput, PlaylistUnavailable
from vodforce.hashing import build_vod_url
from vodforce.models import Aborted, ExhaustedNoMatch, Found, ReturnURL

LOGIN = "destiny"
VIDEO_ID = 39700667438
TRUE_START = 1605781794
PLAYLIST = "#EXTM3U\n#EXT-X-TARGETDURATION:10\n#EXTINF:10.000,\n0.ts\n"


def url_for(timestamp, host=HOSTS[0]):
    return build_vod_url(LOGIN, VIDEO_ID, timestamp, host)


async def test_exact_found(config):
    verifier = FakeVerifier(hits={url_for(TRUE_START, HOSTS[1])})
    result = await vods.exact(LOGIN, VIDEO_ID, TRUE_START, config, verifier=verifier)
    assert result == Found(url_for(TRUE_START, HOSTS[1]), TRUE_START)
    assert len(verifier.calls) == 2


async def test_exact_hit_skips_remaining_hosts(config):
    verifier = FakeVerifier(hits={url_for(TRUE_START, HOSTS[0])})
    await vods.exact(LOGIN, VIDEO_ID, str(TRUE_START), config, verifier=verifier)
    assert verifier.calls == [(url_for(TRUE_START, HOSTS[0]), TRUE_START)]


async def test_exact_accepts_date_strings(config):
    verifier = FakeVerifier(hits={url_for(TRUE_START)})
    result = await vods.exact(LOGIN, VIDEO_ID, "2020-11-19 10:29:54", config, verifier=verifier)
    assert result.value == TRUE_START


async def test_bruteforce_prefers_priority_over_arrival(config):
    late_match = TRUE_START + 56
    verifier = FakeVerifier(
        hits={url_for(TRUE_START, HOSTS[1]), url_for(late_match)},
        delays={url_for(TRUE_START, HOSTS[1]): 0.05},
    )
    result = await vods.bruteforce(LOGIN, VIDEO_ID, TRUE_START - 100, TRUE_START + 100, config, verifier=verifier)
    assert result == Found(url_for(TRUE_START, HOSTS[1]), TRUE_START)
    assert late_match in verifier.values


async def test_bruteforce_is_deterministic_under_jitter(config):
    rng = random.Random(7)
    hits = {url_for(TRUE_START), url_for(TRUE_START + 3, HOSTS[1]), url_for(TRUE_START + 40)}
    results = set()
    for _ in range(5):
        delays = {url_for(t, host): rng.random() / 500 for t in range(TRUE_START - 20, TRUE_START + 41)
                  for host in HOSTS}
        verifier = FakeVerifier(hits=hits, delays=delays)
        result = await vods.bruteforce(LOGIN, VIDEO_ID, TRUE_START - 20, TRUE_START + 40, config,
                                       verifier=verifier)
        results.add(result)
    assert results == {Found(url_for(TRUE_START), TRUE_START)}


async def test_bruteforce_exhausts_every_candidate(config):
    verifier = FakeVerifier()
    start, end = TRUE_START - 10, TRUE_START + 10
    result = await vods.bruteforce(LOGIN, VIDEO_ID, start, end, config, verifier=verifier)
    assert result == ExhaustedNoMatch(0)
    assert len(verifier.calls) == (end - start + 1) * len(HOSTS)
    assert {url for url, _ in verifier.calls} == {url_for(t, host) for t in range(start, end + 1) for host in HOSTS}


async def test_hint_confirms_within_one_round_of_hosts(config):
    verifier = FakeVerifier(hits={url_for(TRUE_START, HOSTS[1])})
    result = await vods.bruteforce(LOGIN, VIDEO_ID, TRUE_START - 100, TRUE_START + 100,
                                   config.with_overrides(threads=50), hints=[TRUE_START], verifier=verifier)
    assert result.value == TRUE_START
    assert len(verifier.calls) <= len(HOSTS)


async def test_stale_hint_still_finds_the_match(config):
    verifier = FakeVerifier(hits={url_for(TRUE_START)})
    result = await vods.bruteforce(LOGIN, VIDEO_ID, TRUE_START - 30, TRUE_START + 30, config,
                                   hints=[TRUE_START + 20], verifier=verifier)
    assert result.value == TRUE_START


async def test_out_of_range_hints_are_never_probed(config):
    verifier = FakeVerifier()
    start, end = TRUE_START - 5, TRUE_START + 5
    await vods.bruteforce(LOGIN, VIDEO_ID, start, end, config, hints=[start - 1000, end + 1], verifier=verifier)
    assert all(start <= value <= end for value in verifier.values)


async def test_transient_failures_are_reported_as_degraded(config):
    verifier = FakeVerifier(transient={url_for(TRUE_START, host) for host in HOSTS})
    result = await vods.exact(LOGIN, VIDEO_ID, TRUE_START, config, verifier=verifier)
    assert result == ExhaustedNoMatch(degraded=2)


async def test_cancel_mid_search_aborts(config):
    cancel = asyncio.Event()

    def interrupt(verifier):
        if len(verifier.calls) == 20:
            cancel.set()

    verifier = FakeVerifier(on_call=interrupt)
    result = await vods.bruteforce(LOGIN, VIDEO_ID, TRUE_START - 100, TRUE_START + 100, config,
                                   verifier=verifier, cancel=cancel)
    assert isinstance(result, Aborted)
    assert result.progress < 1.0
    assert len(verifier.calls) < 201 * len(HOSTS)


async def test_progress_is_reported(config):
    updates = []
    await vods.bruteforce(LOGIN, VIDEO_ID, TRUE_START, TRUE_START + 4, config, verifier=FakeVerifier(),
                          on_progress=lambda done, total: updates.append((done, total)))
    assert updates[-1] == (5, 5)


@pytest.mark.parametrize("login, start, end", [("bad name", 1, 2), (LOGIN, 10, 5), (LOGIN, "soon", 5)])
async def test_invalid_input_fails_before_any_request(config, login, start, end):
    verifier = FakeVerifier()
    with pytest.raises(InvalidInput):
        await vods.bruteforce(login, VIDEO_ID, start, end, config, verifier=verifier)
    assert verifier.calls == []


def fake_session(bodies):
    """``bodies`` maps URL to (status, text)."""

    def get(url, timeout=None):
        status, text = bodies.get(url, (404, ""))
        response = MagicMock()
        response.status = status
        response.text = AsyncMock(return_value=text)
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        return context

    session = MagicMock()
    session.get.side_effect = get
    return session


async def test_check_availability(config):
    muted = PLAYLIST + "#EXTINF:10.000,\n1-unmuted.ts\n"
    session = fake_session({
        url_for(TRUE_START, HOSTS[0]): (200, PLAYLIST),
        url_for(TRUE_START, HOSTS[1]): (200, muted),
    })
    urls = await vods.check_availability(LOGIN, VIDEO_ID, TRUE_START, config, session=session)
    assert urls == [ReturnURL(url_for(TRUE_START, HOSTS[0])), ReturnURL(url_for(TRUE_START, HOSTS[1]), True)]


async def test_check_availability_skips_bad_bodies(config):
    session = fake_session({url_for(TRUE_START, HOSTS[0]): (200, "<html>blocked</html>")})
    assert await vods.check_availability(LOGIN, VIDEO_ID, TRUE_START, config, session=session) == []


def test_default_fix_output():
    assert vods.default_fix_output(url_for(TRUE_START)) == \
        f"muted_{url_for(TRUE_START).split('/')[3]}.m3u8"


def test_fix_writes_a_muted_playlist(config, tmp_path, monkeypatch):
    text = "#EXTM3U\n#EXT-X-TARGETDURATION:10\n#EXTINF:10.000,\n0.ts\n#EXTINF:10.000,\n1-unmuted.ts\n"
    monkeypatch.setattr(vods, "download_m3u8_text", lambda url, timeout=30: text)
    output = tmp_path / "out" / "fixed.m3u8"

    path = vods.fix(url_for(TRUE_START), config, str(output))

    assert path == str(output)
    base = url_for(TRUE_START).rsplit("/", 1)[0]
    lines = output.read_text(encoding="utf-8").splitlines()
    assert f"{base}/0.ts" in lines
    assert f"{base}/1-muted.ts" in lines


def test_fix_rejects_other_hosts(config):
    with pytest.raises(InvalidInput):
        vods.fix("https://example.com/index-dvr.m3u8", config)


def test_fix_wraps_download_errors(config, monkeypatch):
    def fail(url, timeout=30):
        raise requests.exceptions.ConnectionError("down")

    monkeypatch.setattr(vods, "download_m3u8_text", fail)
    with pytest.raises(PlaylistUnavailable):
        vods.fix(url_for(TRUE_START), config)


def test_fix_rejects_non_playlists(config, monkeypatch):
    monkeypatch.setattr(vods, "download_m3u8_text", lambda url, timeout=30: "<html></html>")
    with pytest.raises(InvalidInput):
        vods.fix(url_for(TRUE_START), config)


def test_download_m3u8_text_retries(monkeypatch):
    response = MagicMock()
    response.text = PLAYLIST
    get = MagicMock(side_effect=[requests.exceptions.Timeout("slow"), response])
    monkeypatch.setattr(vods.requests, "get", get)
    monkeypatch.setattr(vods.time, "sleep", lambda seconds: None)

    assert vods.download_m3u8_text("https://vod-secure.twitch.tv/x/chunked/index-dvr.m3u8") == PLAYLIST
    assert get.call_count == 2


def test_download_m3u8_text_gives_up(monkeypatch):
    monkeypatch.setattr(vods.requests, "get", MagicMock(side_effect=requests.exceptions.ConnectionError("down")))
    monkeypatch.setattr(vods.time, "sleep", lambda seconds: None)
    with pytest.raises(requests.exceptions.ConnectionError):
        vods.download_m3u8_text("https://vod-secure.twitch.tv/x/chunked/index-dvr.m3u8", max_retries=3)


def test_fix_logs_the_segment_count(config, tmp_path, monkeypatch, caplog):
    text = "#EXTM3U\n#EXT-X-TARGETDURATION:10\n#EXTINF:10.000,\n0.ts\n#EXTINF:10.000,\n1-unmuted.ts\n"
    monkeypatch.setattr(vods, "download_m3u8_text", lambda url, timeout=30: text)
    caplog.set_level("INFO", logger="vodforce.vods")

    vods.fix(url_for(TRUE_START), config, str(tmp_path / "fixed.m3u8"))

    assert "with 2 segments" in caplog.text
