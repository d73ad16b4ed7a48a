import json
import logging
import os
import tomllib

logger = logging.getLogger(__name__)


def get_package_directory():
    return os.path.dirname(os.path.realpath(__file__))


def read_text_file(text_file_path):
    lines = []
    with open(text_file_path, "r", encoding="utf-8") as text_file:
        for line in text_file:
            lines.append(line.rstrip())
    return lines


def normalize_host(host):
    host = host.strip().lower()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host.strip("/")


def dedupe_hosts(hosts):
    seen = set()
    ordered = []
    for host in hosts:
        host = normalize_host(host)
        if host and not host.startswith("#") and host not in seen:
            seen.add(host)
            ordered.append(host)
    return tuple(ordered)


def default_hosts():
    return dedupe_hosts(read_text_file(os.path.join(get_package_directory(), "lib", "domains.txt")))


def read_cdn_file(cdn_file_path):
    _, extension = os.path.splitext(cdn_file_path)
    extension = extension.lower()

    if extension == ".json":
        with open(cdn_file_path, "r", encoding="utf-8") as cdn_file:
            return json.load(cdn_file)["cdns"]
    if extension == ".toml":
        with open(cdn_file_path, "rb") as cdn_file:
            return tomllib.load(cdn_file)["cdns"]
    if extension in ("", ".txt"):
        return read_text_file(cdn_file_path)
    raise ValueError("the CDN list must be a text, JSON or TOML file")


def compile_cdn_list(cdn_file_path=None, base_hosts=None):
    """Packaged hosts first, then any extra hosts from ``cdn_file_path``."""
    hosts = default_hosts() if base_hosts is None else dedupe_hosts(base_hosts)
    if not cdn_file_path:
        return hosts

    try:
        extra_hosts = read_cdn_file(cdn_file_path)
    except (OSError, ValueError, KeyError, TypeError, tomllib.TOMLDecodeError) as e:
        logger.warning("Couldn't use the CDN list file %s - %s", cdn_file_path, e)
        return hosts

    compiled = dedupe_hosts(list(hosts) + [str(host) for host in extra_hosts])
    logger.debug("Compiled the CDN list - initial length: %d, new length: %d", len(hosts), len(compiled))
    return compiled
