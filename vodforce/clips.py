import logging

from vodforce.engine import SearchEngine
from vodforce.models import ClipTarget, Hit, Resolution, TransientFailure
from vodforce.verifier import verifier_for

logger = logging.getLogger(__name__)

CLIP_HOST = "clips-media-assets2.twitch.tv"

CLIP_URL_FORMATS = {
    "default": "https://{host}/{video_id}-offset-{offset}.mp4",
    "vod": "https://{host}/vod-{video_id}-offset-{offset}.mp4",
    "index": "https://{host}/{video_id}-index-{offset:010}.mp4",
}


def build_clip_url(video_id, offset, clip_format="default", host=CLIP_HOST):
    return CLIP_URL_FORMATS[clip_format].format(host=host, video_id=video_id, offset=offset)


def clip_urls(video_id, offset, clip_formats=("default",)):
    return [build_clip_url(video_id, offset, clip_format) for clip_format in clip_formats]


def make_clip_probe(target, verifier, clip_formats):
    # several clips can share an offset, so every format is checked
    async def probe(offset, halted):
        resolution = Resolution(offset)
        for url in clip_urls(target.video_id, offset, clip_formats):
            if halted():
                if not resolution.hits:
                    return None
                resolution.complete = False
                return resolution
            outcome = await verifier.verify_with_retry(url, offset, halted)
            if isinstance(outcome, Hit):
                resolution.hits.append(outcome)
            elif isinstance(outcome, TransientFailure):
                resolution.degraded += 1
        return resolution

    return probe


async def clipforce(video_id, start, end, config, verifier=None, cancel=None, on_progress=None):
    """Collect every clip of ``video_id`` between ``start`` and ``end`` seconds."""
    target = ClipTarget.create(video_id, start, end, config.clip_stride)
    offsets = list(target.offsets())
    logger.debug("Checking %d offsets for VOD %d (%s)", len(offsets), target.video_id, ", ".join(config.clip_formats))

    async with verifier_for(config, verifier, method="HEAD", validate=None) as active_verifier:
        engine = SearchEngine(config.threads, cancel=cancel, on_progress=on_progress)
        probe = make_clip_probe(target, active_verifier, config.clip_formats)
        return await engine.run(offsets, probe, stop_at_first=False)
