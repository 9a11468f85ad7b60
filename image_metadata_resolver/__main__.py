import asyncio
import logging
import sys

import image_metadata_resolver.arguments
import image_metadata_resolver.config
import image_metadata_resolver.reference
import image_metadata_resolver.resolver
import image_metadata_resolver.result
from image_metadata_resolver.errors import ResolverError
from image_metadata_resolver.registry.session import Credential


logger = logging.getLogger('image_metadata_resolver')


async def build(args) -> int:
    config = image_metadata_resolver.config.config_from_args(args)
    credential = Credential.from_auth_file(args.docker_auth_file)

    if args.docker_image_url:
        reference = image_metadata_resolver.reference.parse_docker_url(args.docker_image_url, config.default_tag)
    else:
        reference = image_metadata_resolver.reference.parse_docker_ref(args.docker_ref, config.default_tag)

    logger.info('Fetching metadata for %s:%s', reference.repository_name, reference.tag)
    img = await image_metadata_resolver.resolver.fetch_metadata(
        reference.repository_name, reference.tag, config, credential,
    )

    image_metadata_resolver.result.save_metadata(
        args.output_metadata_json_filename,
        image_metadata_resolver.result.execution_metadata_from_image(img),
    )
    return 0


def main(argv=None) -> int:

    args = image_metadata_resolver.arguments.arg_parser.parse_args(argv)
    logging.basicConfig(level=args.log_level)

    try:
        return asyncio.run(build(args))
    except (ResolverError, OSError) as exc:
        logger.error('Failed to fetch image metadata: %s', exc)
        return 1


if __name__ == '__main__':
    sys.exit(main())
