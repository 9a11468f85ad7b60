from .config import RegistryConfig
from .image import ImageMetadata
from .reference import ImageReference, parse_docker_ref, parse_docker_url, parse_reference
from .resolver import MetadataResolver, fetch_metadata, fetch_reference
from .result import ExecutionMetadata, execution_metadata_from_image, save_metadata


__all__ = [
    'RegistryConfig',
    'ImageMetadata',
    'ImageReference', 'parse_docker_ref', 'parse_docker_url', 'parse_reference',
    'MetadataResolver', 'fetch_metadata', 'fetch_reference',
    'ExecutionMetadata', 'execution_metadata_from_image', 'save_metadata',
]
