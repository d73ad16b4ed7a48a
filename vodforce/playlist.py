MEDIA_TAGS = ("#EXT-X-TARGETDURATION", "#EXTINF")


def is_media_playlist(text):
    if not text:
        return False
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or not lines[0].startswith("#EXTM3U"):
        return False
    if any(line.startswith("#EXT-X-STREAM-INF") for line in lines):
        return False
    return any(line.startswith(MEDIA_TAGS) for line in lines)


def is_muted(text):
    return "-unmuted" in (text or "")


def playlist_base(playlist_url):
    return playlist_url.rsplit("/", 1)[0] + "/"


def ensure_absolute_uri(uri: str, base_link: str) -> str:
    uri = uri.strip()
    if uri.startswith("http://") or uri.startswith("https://"):
        return uri
    return f"{base_link}{uri}"


def rewrite_map_line(line, base_link):
    prefix, uri_part = line.split("URI=", 1)
    if uri_part.startswith('"'):
        end_quote = uri_part.find('"', 1)
        raw_uri = uri_part[1:end_quote]
        rest = uri_part[end_quote + 1:]
        return f'{prefix}URI="{ensure_absolute_uri(raw_uri, base_link)}"{rest}'
    raw_uri = uri_part.strip().split(",")[0]
    return f'#EXT-X-MAP:URI="{ensure_absolute_uri(raw_uri, base_link)}"'


def fix_playlist(text, playlist_url):
    """Point every segment at the CDN and swap unmuted segments for muted ones."""
    base_link = playlist_base(playlist_url)
    fixed = []
    for line in text.splitlines():
        if line.startswith("#"):
            if line.startswith("#EXT-X-MAP") and "URI=" in line:
                line = rewrite_map_line(line, base_link)
            fixed.append(line)
            continue

        segment_uri = line.strip()
        if not segment_uri:
            fixed.append(line)
            continue

        if "-unmuted" in segment_uri:
            segment_uri = segment_uri.replace("-unmuted", "-muted")
        fixed.append(ensure_absolute_uri(segment_uri, base_link))
    return "\n".join(fixed) + "\n"


def segment_count(text):
    return sum(1 for line in text.splitlines() if line.startswith("#EXTINF"))
