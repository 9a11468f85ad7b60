"""Image reference parsing.

Two surface forms are understood: ``docker://[host]/path[#tag]`` URLs and
plain ``name[:tag]`` references.
"""
import collections
import urllib.parse

from image_metadata_resolver.config import DEFAULT_TAG


ImageReference = collections.namedtuple('ImageReference', ['repository_name', 'tag'])

DOCKER_SCHEME = 'docker'


def parse_docker_url(url, default_tag=DEFAULT_TAG) -> ImageReference:
    """Parse a ``docker://`` URL.

    The fragment is the tag. A present host is kept as the registry part of the
    repository name, otherwise the leading slash of the path is dropped.
    """
    if isinstance(url, str):
        try:
            parts = urllib.parse.urlsplit(url)
        except ValueError:
            # unbalanced brackets in the host
            parts = urllib.parse.SplitResult('', '', url, '', '')
    else:
        parts = url

    tag = parts.fragment or default_tag or DEFAULT_TAG

    host = parts.netloc.rpartition('@')[2]
    if host:
        repository_name = host + parts.path
    else:
        repository_name = parts.path[1:] if parts.path.startswith('/') else parts.path

    return ImageReference(repository_name, tag)


def parse_docker_ref(docker_ref, default_tag=DEFAULT_TAG) -> ImageReference:
    """Parse a ``name[:tag]`` reference.

    Text after the last colon is a tag unless it contains a slash, in which
    case the colon separates a registry host from its port.
    """
    repository_name, sep, tag = docker_ref.rpartition(':')
    if not sep or '/' in tag:
        repository_name, tag = docker_ref, ''

    return ImageReference(repository_name, tag or default_tag or DEFAULT_TAG)


def parse_reference(value, default_tag=DEFAULT_TAG) -> ImageReference:
    """Parse either reference form."""
    if isinstance(value, str) and not value.startswith(f'{DOCKER_SCHEME}://'):
        return parse_docker_ref(value, default_tag)
    return parse_docker_url(value, default_tag)


__all__ = ['ImageReference', 'parse_docker_url', 'parse_docker_ref', 'parse_reference']
