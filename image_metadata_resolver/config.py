"""Registry client configuration."""
import collections
import logging
import os

import yaml

from image_metadata_resolver.errors import ConfigError


logger = logging.getLogger(__name__)

INDEX_SERVER_ADDRESS = 'https://index.docker.io/v1/'
DEFAULT_TAG = 'latest'
CONFIG_ENV_VAR = 'IMAGE_METADATA_RESOLVER_CONFIG'

RegistryConfig = collections.namedtuple(
    'RegistryConfig',
    ['index_server_address', 'default_tag', 'insecure_registries',
     'allow_insecure_fallback', 'request_timeout', 'user_agent'],
    defaults=[INDEX_SERVER_ADDRESS, DEFAULT_TAG, (), True, 30.0, 'image-metadata-resolver'],
)


def load_config(path, base=None) -> RegistryConfig:
    """Read configuration overrides from a YAML mapping on top of ``base``."""

    config = base or RegistryConfig()
    try:
        with open(path, 'r') as fl:
            data = yaml.load(fl, Loader=yaml.SafeLoader) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f'Can not read configuration file {path}: {exc}') from exc

    if not isinstance(data, dict):
        raise ConfigError(f'Configuration file {path} must contain a mapping')

    unknown = set(data) - set(RegistryConfig._fields)
    if unknown:
        raise ConfigError(f'Unknown configuration keys in {path}: {", ".join(sorted(unknown))}')

    if 'default_tag' in data:
        if not isinstance(data['default_tag'], str) or not data['default_tag']:
            raise ConfigError(f'default_tag in {path} must be a non-empty string')

    if 'insecure_registries' in data:
        registries = data['insecure_registries'] or ()
        if isinstance(registries, str):
            registries = (registries,)
        if not isinstance(registries, (list, tuple)) or not all(isinstance(r, str) for r in registries):
            raise ConfigError(f'insecure_registries in {path} must be a list of hosts')
        data['insecure_registries'] = tuple(registries)

    if 'request_timeout' in data:
        try:
            data['request_timeout'] = float(data['request_timeout'])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f'request_timeout in {path} must be a number: {exc}') from exc

    logger.info('Loaded configuration file %s', path)
    return config._replace(**data)


def config_from_args(args) -> RegistryConfig:
    """Build configuration from parsed command line arguments.

    The YAML file named by ``--config-file`` (or the environment) is applied
    first, explicit flags win over it.
    """
    config = RegistryConfig()

    config_file = args.config_file or os.environ.get(CONFIG_ENV_VAR)
    if config_file:
        config = load_config(config_file, config)

    overrides = {}
    if args.index_server_address:
        overrides['index_server_address'] = args.index_server_address
    if args.insecure_registry:
        overrides['insecure_registries'] = tuple(config.insecure_registries) + tuple(args.insecure_registry)
    if args.request_timeout is not None:
        overrides['request_timeout'] = args.request_timeout
    if args.no_insecure_fallback:
        overrides['allow_insecure_fallback'] = False

    return config._replace(**overrides)


__all__ = ['RegistryConfig', 'load_config', 'config_from_args', 'INDEX_SERVER_ADDRESS', 'DEFAULT_TAG']
