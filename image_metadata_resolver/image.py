import collections
import json

from image_metadata_resolver.errors import MalformedMetadataError


_ImageMetadata = collections.namedtuple(
    '_ImageMetadata',
    ['id', 'parent', 'created', 'author', 'architecture', 'os',
     'config', 'container_config', 'size', 'raw'],
)


class ImageMetadata(_ImageMetadata):
    """Image record as published by the registry."""

    __slots__ = ()

    @classmethod
    def from_json(cls, raw_json, size=-1) -> 'ImageMetadata':
        try:
            data = json.loads(raw_json)
        except ValueError as exc:
            raise MalformedMetadataError(f'Image JSON can not be decoded: {exc}') from exc

        if not isinstance(data, dict):
            raise MalformedMetadataError('Image JSON must be an object')
        if not isinstance(data.get('id'), str) or not data['id']:
            raise MalformedMetadataError('Image JSON has no id')

        config = data.get('config')
        if config is None:
            config = {}
        container_config = data.get('container_config')
        if container_config is None:
            container_config = {}
        if not isinstance(config, dict) or not isinstance(container_config, dict):
            raise MalformedMetadataError(f'Image {data["id"]} has malformed config')

        if size is None or size < 0:
            size = data.get('Size', -1)

        return cls(
            id=data['id'],
            parent=data.get('parent'),
            created=data.get('created'),
            author=data.get('author'),
            architecture=data.get('architecture'),
            os=data.get('os'),
            config=config,
            container_config=container_config,
            size=size,
            raw=data,
        )


__all__ = ['ImageMetadata']
