import argparse


arg_parser = argparse.ArgumentParser(
    prog='image_metadata_resolver',
    description='Resolve a Docker image reference and save its execution metadata',
)

source = arg_parser.add_mutually_exclusive_group(required=True)
source.add_argument('--docker-ref', help='Image reference in name[:tag] form')
source.add_argument('--docker-image-url', help='Image URL in docker://[host]/path[#tag] form')

arg_parser.add_argument('--output-metadata-json-filename', required=True,
                        help='Where to write the resulting execution metadata JSON')

arg_parser.add_argument('--config-file', help='A YAML file with registry configuration')
arg_parser.add_argument('--docker-auth-file', help='A path file containing '
                                                   'Docker username and access token/password')

arg_parser.add_argument('--index-server-address', help='Default registry index URL')
arg_parser.add_argument('--insecure-registry',
                        help='Talk to given registry host over plain HTTP',
                        action='append', default=[])
arg_parser.add_argument('--request-timeout', help='Total timeout for a single registry request, seconds',
                        type=float, default=None)
arg_parser.add_argument('--no-insecure-fallback', help='Never fall back from HTTPS to HTTP',
                        action='store_true')
arg_parser.add_argument('--log-level', help='Logging level', default='INFO', type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])


__all__ = ['arg_parser']
