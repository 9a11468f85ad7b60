"""Persist execution metadata for the stager."""
import collections
import json
import logging
import os
import tempfile

from image_metadata_resolver.image import ImageMetadata


logger = logging.getLogger(__name__)

RESULT_FIELD = 'execution_metadata'
DIRECTORY_MODE = 0o755
FILE_MODE = 0o644

ExecutionMetadata = collections.namedtuple(
    'ExecutionMetadata', ['cmd', 'entrypoint', 'workdir'], defaults=[None, None, None],
)


def execution_metadata_to_dict(metadata: ExecutionMetadata) -> dict:
    """JSON form of execution metadata, empty fields left out."""
    return {field: value for field, value in metadata._asdict().items() if value}


def execution_metadata_from_image(image: ImageMetadata) -> ExecutionMetadata:
    config = image.config or {}
    return ExecutionMetadata(
        cmd=config.get('Cmd'),
        entrypoint=config.get('Entrypoint'),
        workdir=config.get('WorkingDir'),
    )


def save_metadata(filename, metadata):
    """Write ``metadata`` wrapped in the result envelope to ``filename``.

    The payload is encoded to a JSON string first and that string is the
    value of the single envelope field. The file is replaced atomically.
    """
    if isinstance(metadata, ExecutionMetadata):
        metadata = execution_metadata_to_dict(metadata)

    directory = os.path.dirname(os.path.abspath(filename))
    os.makedirs(directory, mode=DIRECTORY_MODE, exist_ok=True)

    execution_metadata_json = json.dumps(metadata, sort_keys=True, separators=(',', ':'))
    result = json.dumps({RESULT_FIELD: execution_metadata_json}, sort_keys=True) + '\n'

    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix='.tmp-', suffix='.json')
    try:
        with os.fdopen(fd, 'w') as result_file:
            result_file.write(result)
        os.chmod(tmp_name, FILE_MODE)
        os.replace(tmp_name, filename)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info('Saved execution metadata to %s', filename)


__all__ = ['ExecutionMetadata', 'execution_metadata_from_image', 'execution_metadata_to_dict', 'save_metadata']
