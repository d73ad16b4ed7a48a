import hashlib

HASH_LENGTH = 20
DEFAULT_QUALITY = "chunked"


def vod_hash(login: str, video_id: int, timestamp: int) -> str:
    return hashlib.sha1(f"{login}_{video_id}_{timestamp}".encode("utf-8")).hexdigest()[:HASH_LENGTH]


def vod_path(login: str, video_id: int, timestamp: int) -> str:
    return f"{vod_hash(login, video_id, timestamp)}_{login}_{video_id}_{timestamp}"


def build_vod_url(login: str, video_id: int, timestamp: int, host: str, quality: str = DEFAULT_QUALITY) -> str:
    return f"https://{host}/{vod_path(login, video_id, timestamp)}/{quality}/index-dvr.m3u8"
