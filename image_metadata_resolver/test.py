import asyncio
import json
import os
import stat
import tempfile
import unittest
import urllib.parse
from unittest import mock

import multidict
import yaml
from aiohttp import test_utils, web

from image_metadata_resolver import errors
from image_metadata_resolver.__main__ import main
from image_metadata_resolver.arguments import arg_parser
from image_metadata_resolver.config import RegistryConfig, config_from_args, load_config
from image_metadata_resolver.image import ImageMetadata
from image_metadata_resolver.reference import parse_docker_ref, parse_docker_url, parse_reference
from image_metadata_resolver.registry import locator, session, transport
from image_metadata_resolver.resolver import MetadataResolver, fetch_metadata
from image_metadata_resolver.result import ExecutionMetadata, execution_metadata_from_image, save_metadata


test_dir = os.path.join(os.path.dirname(__file__), 'test/')


def _testfile(path):
    """Return location of text fixture file."""
    return os.path.join(test_dir, path)


def _registry(name):
    """Returns fake registry routes sourced from registry YAML."""
    with open(_testfile('registries/{}.yaml'.format(name))) as fl:
        return yaml.load(fl, Loader=yaml.SafeLoader)


class FakeTransport(transport.Transport):
    """Serves canned responses keyed by URL, records every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    async def request(self, method, url, headers=None):
        self.requests.append((method, url, dict(headers or {})))
        route = self.routes.get(url)
        if route is None:
            return transport.TransportResponse(404, multidict.CIMultiDict(), b'')
        if 'error' in route:
            raise errors.TransportError(f'{method} {url} failed: {route["error"]}')

        headers = multidict.CIMultiDict()
        for name, values in (route.get('headers') or {}).items():
            for value in (values if isinstance(values, list) else [values]):
                headers.add(name, str(value))
        return transport.TransportResponse(route.get('status', 200), headers, route.get('body', '').encode())

    def requested_urls(self):
        return [url for _, url, _ in self.requests]


class FakeSession(session.Session):

    def __init__(self, mirrors, tags, images):
        self.mirrors = mirrors
        self.tags = tags
        self.images = images
        self.image_requests = []

    async def get_repository_data(self, repository_name):
        endpoints = tuple(locator.RegistryEndpoint(mirror, True) for mirror in self.mirrors)
        return session.RepositoryData(endpoints, ('token',))

    async def get_remote_tags(self, endpoints, repository_name, tokens):
        return dict(self.tags)

    async def get_remote_image_json(self, image_id, endpoint, tokens):
        self.image_requests.append(endpoint.host_address)
        result = self.images[endpoint.host_address]
        if isinstance(result, Exception):
            raise result
        return result, len(result)


def _image_json(image_id, **extra):
    return json.dumps(dict(id=image_id, **extra)).encode()


class ReferenceParserTest(unittest.TestCase):

    def test_docker_ref_with_tag(self):
        for ref, expected in [
            ('ubuntu:14.04', ('ubuntu', '14.04')),
            ('samalba/hipache:v1.2', ('samalba/hipache', 'v1.2')),
            ('localhost:5000/foo/bar:baz', ('localhost:5000/foo/bar', 'baz')),
            ('quay.io/calico/node:v3.14.0-0.dev-55-g785f8b2', ('quay.io/calico/node', 'v3.14.0-0.dev-55-g785f8b2')),
        ]:
            with self.subTest(ref=ref):
                self.assertTupleEqual(expected, parse_docker_ref(ref))

    def test_docker_ref_without_tag(self):
        for ref, expected in [
            ('ubuntu', ('ubuntu', 'latest')),
            ('ubuntu:', ('ubuntu', 'latest')),
            ('localhost:5000/foo/bar', ('localhost:5000/foo/bar', 'latest')),
        ]:
            with self.subTest(ref=ref):
                self.assertTupleEqual(expected, parse_docker_ref(ref))

    def test_docker_ref_single_component_port_is_tag(self):
        self.assertTupleEqual(('localhost', '5000'), parse_docker_ref('localhost:5000'))

    def test_docker_url_with_host_and_fragment(self):
        reference = parse_docker_url('docker://example.com/foo/bar#v2')
        self.assertEqual('example.com/foo/bar', reference.repository_name)
        self.assertEqual('v2', reference.tag)

    def test_docker_url_without_host(self):
        self.assertTupleEqual(('foo', 'latest'), parse_docker_url('docker:///foo'))
        self.assertTupleEqual(('foo/bar', 'latest'), parse_docker_url('docker:///foo/bar#'))

    def test_docker_url_keeps_port(self):
        self.assertTupleEqual(('localhost:5000/foo', '1.0'), parse_docker_url('docker://localhost:5000/foo#1.0'))

    def test_docker_url_from_split_result(self):
        parts = urllib.parse.urlsplit('docker://example.com/foo/bar#v2')
        self.assertTupleEqual(('example.com/foo/bar', 'v2'), parse_docker_url(parts))

    def test_docker_url_malformed_host(self):
        reference = parse_docker_url('docker://[oops/foo')
        self.assertTrue(reference.repository_name)
        self.assertEqual('latest', reference.tag)

    def test_custom_default_tag(self):
        self.assertEqual('stable', parse_docker_ref('ubuntu', default_tag='stable').tag)
        self.assertEqual('stable', parse_docker_url('docker:///ubuntu', default_tag='stable').tag)

    def test_empty_default_tag_falls_back_to_latest(self):
        for default_tag in ('', None):
            with self.subTest(default_tag=default_tag):
                self.assertEqual('latest', parse_docker_ref('ubuntu', default_tag=default_tag).tag)
                self.assertEqual('latest', parse_docker_url('docker:///ubuntu', default_tag=default_tag).tag)
                self.assertEqual('latest', parse_reference('ubuntu:', default_tag=default_tag).tag)

    def test_docker_url_drops_userinfo(self):
        self.assertTupleEqual(('example.com/foo', 'v1'), parse_docker_url('docker://user:pw@example.com/foo#v1'))
        self.assertTupleEqual(('localhost:5000/foo', 'latest'), parse_docker_url('docker://user@localhost:5000/foo'))

    def test_parse_reference_dispatch(self):
        self.assertTupleEqual(('example.com/foo', 'v2'), parse_reference('docker://example.com/foo#v2'))
        self.assertTupleEqual(('example.com/foo', 'v2'), parse_reference('example.com/foo:v2'))


class RegistryLocatorTest(unittest.TestCase):

    def test_default_index(self):
        for name in ('ubuntu', 'samalba/hipache', 'docker.io/samalba/hipache', 'index.docker.io/ubuntu'):
            with self.subTest(name=name):
                hostname, _ = locator.resolve_repository_name(name)
                self.assertEqual('https://index.docker.io/v1/', hostname)

        self.assertTupleEqual(('https://index.docker.io/v1/', 'samalba/hipache'),
                              locator.resolve_repository_name('samalba/hipache'))

    def test_configured_index(self):
        config = RegistryConfig(index_server_address='https://index.example.com/v1/')
        self.assertTupleEqual(('https://index.example.com/v1/', 'ubuntu'),
                              locator.resolve_repository_name('ubuntu', config))

    def test_private_registry(self):
        for name, expected in [
            ('localhost/foo/bar', ('localhost', 'foo/bar')),
            ('localhost:5000/foo', ('localhost:5000', 'foo')),
            ('registry.example.com/team/app', ('registry.example.com', 'team/app')),
        ]:
            with self.subTest(name=name):
                self.assertTupleEqual(expected, locator.resolve_repository_name(name))

    def test_invalid_names(self):
        for name in ('', 'docker://ubuntu', 'Ubuntu', 'a/foo', '-ab/foo', 'ab--cd/foo',
                     'samalba/Hipache', 'example.com/foo//bar', 'foo@sha256'):
            with self.subTest(name=name):
                with self.assertRaises(errors.InvalidReferenceError):
                    locator.resolve_repository_name(name)

    def test_expand_bare_host(self):
        self.assertTupleEqual(('https://registry.example.com:5000/v1/', True),
                              locator.expand_and_verify('registry.example.com:5000'))

    def test_expand_insecure_host(self):
        config = RegistryConfig(insecure_registries=('localhost:5000',))
        self.assertTupleEqual(('http://localhost:5000/v1/', False),
                              locator.expand_and_verify('localhost:5000', config))

    def test_expand_url(self):
        self.assertTupleEqual(('https://index.docker.io/v1/', True),
                              locator.expand_and_verify('https://index.docker.io/v1/'))
        self.assertTupleEqual(('http://127.0.0.1:8080/v1/', False),
                              locator.expand_and_verify('http://127.0.0.1:8080'))
        self.assertTupleEqual(('https://example.com/registry/', True),
                              locator.expand_and_verify('https://example.com/registry'))
        self.assertTupleEqual(('https://[::1]:5000/v1/', True), locator.expand_and_verify('[::1]:5000'))

    def test_expand_invalid_host(self):
        for host in ('', 'bad host', 'example.com:0', 'example.com:99999', 'example.com:abc',
                     'https://', '-example.com', 'example..com'):
            with self.subTest(host=host):
                with self.assertRaises(errors.UnreachableRegistryError):
                    locator.expand_and_verify(host)


class CredentialTest(unittest.TestCase):

    def test_empty_credential(self):
        self.assertIsNone(session.Credential().authorization_header())

    def test_basic_auth(self):
        self.assertEqual('Basic dXNlcjpwYXNz', session.Credential('user', 'pass').authorization_header())
        self.assertNotIn('pass', repr(session.Credential('user', 'pass')))

    def test_auth_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            auth_file = os.path.join(tmp, 'auth')
            with open(auth_file, 'w') as fl:
                fl.write('user:pass\n')
            self.assertEqual('Basic dXNlcjpwYXNz',
                             session.Credential.from_auth_file(auth_file).authorization_header())
            self.assertIsNone(session.Credential.from_auth_file(os.path.join(tmp, 'missing'))
                              .authorization_header())


class RegistrySessionTest(unittest.IsolatedAsyncioTestCase):

    index = locator.RegistryEndpoint('https://index.docker.io/v1/', True)

    async def _session(self, routes, endpoint=None, credential=None, allow_insecure_fallback=True):
        self.transport = FakeTransport(routes)
        return await session.RegistrySession.create(
            credential, self.transport, endpoint or self.index, allow_insecure_fallback)

    async def test_repository_data(self):
        registry_session = await self._session(_registry('busybox'))
        repo_data = await registry_session.get_repository_data('busybox')

        self.assertListEqual(
            ['https://mirror-a.example.com/v1/', 'https://mirror-b.example.com/v1/',
             'https://mirror-c.example.com/v1/'],
            [endpoint.host_address for endpoint in repo_data.endpoints],
        )
        self.assertTrue(all(endpoint.is_secure for endpoint in repo_data.endpoints))
        self.assertTupleEqual(('signature=c0ffee,repository="library/busybox",access=read',), repo_data.tokens)
        self.assertSetEqual({'e72ac664f4f0', '2d8e5b282c81'}, set(repo_data.images))
        self.assertDictEqual({}, dict(repo_data.tags))

        # the index is trusted, no ping
        method, url, headers = self.transport.requests[0]
        self.assertEqual('https://index.docker.io/v1/repositories/busybox/images', url)
        self.assertEqual('true', headers['X-Docker-Token'])
        self.assertNotIn('Authorization', headers)

    async def test_repository_not_found(self):
        registry_session = await self._session(_registry('busybox'))
        with self.assertRaises(errors.RepositoryNotFoundError):
            await registry_session.get_repository_data('ghost')

    async def test_repository_login_required(self):
        registry_session = await self._session(_registry('busybox'))
        with self.assertRaises(errors.AuthenticationError):
            await registry_session.get_repository_data('secret')

    async def test_remote_tags_skip_unreachable_mirror(self):
        registry_session = await self._session(_registry('busybox'))
        repo_data = await registry_session.get_repository_data('busybox')
        tags = await registry_session.get_remote_tags(repo_data.endpoints, 'busybox', repo_data.tokens)

        self.assertDictEqual({'latest': 'e72ac664f4f0', 'ubuntu-14.04': '2d8e5b282c81'}, tags)
        self.assertListEqual(
            ['https://index.docker.io/v1/repositories/busybox/images',
             'https://mirror-a.example.com/v1/repositories/library/busybox/tags',
             'https://mirror-b.example.com/v1/repositories/library/busybox/tags'],
            self.transport.requested_urls(),
        )
        self.assertEqual('Token signature=c0ffee,repository="library/busybox",access=read',
                         self.transport.requests[-1][2]['Authorization'])

    async def test_remote_tags_no_mirror(self):
        registry_session = await self._session(_registry('busybox'))
        endpoints = (locator.RegistryEndpoint('https://mirror-a.example.com/v1/', True),)
        with self.assertRaises(errors.TagListUnavailableError):
            await registry_session.get_remote_tags(endpoints, 'busybox', ())

    async def test_remote_tags_repository_not_found(self):
        registry_session = await self._session(_registry('busybox'))
        endpoints = (locator.RegistryEndpoint('https://mirror-c.example.com/v1/', True),)
        with self.assertRaises(errors.RepositoryNotFoundError):
            await registry_session.get_remote_tags(endpoints, 'busybox', ())

    async def test_remote_image_json(self):
        registry_session = await self._session(_registry('busybox'))
        mirror = locator.RegistryEndpoint('https://mirror-c.example.com/v1/', True)
        raw_json, size = await registry_session.get_remote_image_json('e72ac664f4f0', mirror, ('t1', 't2'))

        self.assertEqual('e72ac664f4f0', json.loads(raw_json)['id'])
        self.assertEqual(2433303, size)
        self.assertEqual('Token t1,t2', self.transport.requests[-1][2]['Authorization'])

    async def test_remote_image_json_http_error(self):
        registry_session = await self._session(_registry('busybox'))
        mirror = locator.RegistryEndpoint('https://mirror-a.example.com/v1/', True)
        with self.assertRaises(errors.TransportError) as ctx:
            await registry_session.get_remote_image_json('e72ac664f4f0', mirror, ())
        self.assertEqual(500, ctx.exception.status)

    async def test_private_registry_basic_auth(self):
        endpoint = locator.RegistryEndpoint('https://registry.example.com:5000/v1/', True)
        registry_session = await self._session(_registry('private'), endpoint, session.Credential('user', 'pass'))
        self.assertTrue(registry_session.use_basic_auth)

        repo_data = await registry_session.get_repository_data('team/app')
        self.assertListEqual(['https://registry.example.com:5000/v1/'],
                             [endpoint.host_address for endpoint in repo_data.endpoints])
        await registry_session.get_remote_tags(repo_data.endpoints, 'team/app', repo_data.tokens)

        self.assertEqual('https://registry.example.com:5000/v1/_ping', self.transport.requests[0][1])
        for _, _, headers in self.transport.requests[1:]:
            self.assertEqual('Basic dXNlcjpwYXNz', headers['Authorization'])

    async def test_private_registry_rejects_credential(self):
        endpoint = locator.RegistryEndpoint('https://registry.example.com:5000/v1/', True)
        routes = {'https://registry.example.com:5000/v1/_ping': {'status': 401}}
        with self.assertRaises(errors.AuthenticationError):
            await self._session(routes, endpoint)

    async def test_insecure_fallback(self):
        endpoint = locator.RegistryEndpoint('https://legacy.example.com/v1/', True)
        registry_session = await self._session(_registry('insecure'), endpoint, session.Credential('user', 'pass'))

        self.assertTupleEqual(('http://legacy.example.com/v1/', False), registry_session.endpoint)
        self.assertFalse(registry_session.use_basic_auth)

        repo_data = await registry_session.get_repository_data('ops/tools')
        self.assertListEqual(['http://legacy.example.com/v1/'],
                             [endpoint.host_address for endpoint in repo_data.endpoints])
        self.assertDictEqual({}, dict(repo_data.images))

        # no credential in cleartext
        for _, url, headers in self.transport.requests:
            self.assertNotIn('Authorization', headers, url)

        with self.assertRaises(errors.TagListUnavailableError):
            await registry_session.get_remote_tags(repo_data.endpoints, 'ops/tools', repo_data.tokens)

    async def test_insecure_fallback_disabled(self):
        endpoint = locator.RegistryEndpoint('https://legacy.example.com/v1/', True)
        with self.assertRaises(errors.TransportError):
            await self._session(_registry('insecure'), endpoint, allow_insecure_fallback=False)
        self.assertListEqual(['https://legacy.example.com/v1/_ping'], self.transport.requested_urls())


class ImageMetadataTest(unittest.TestCase):

    def test_from_json(self):
        image = ImageMetadata.from_json(_image_json('abc', parent='def', config={'Cmd': ['ls']}, Size=12), -1)
        self.assertEqual('abc', image.id)
        self.assertEqual('def', image.parent)
        self.assertDictEqual({'Cmd': ['ls']}, image.config)
        self.assertEqual(12, image.size)

    def test_registry_size_wins(self):
        self.assertEqual(99, ImageMetadata.from_json(_image_json('abc', Size=12), 99).size)

    def test_malformed(self):
        for raw in (b'{', b'[]', b'{"parent": "abc"}', b'{"id": ""}', b'{"id": "abc", "config": []}', b'\xff'):
            with self.subTest(raw=raw):
                with self.assertRaises(errors.MalformedMetadataError):
                    ImageMetadata.from_json(raw)


class MetadataResolverTest(unittest.IsolatedAsyncioTestCase):

    mirrors = ['https://a.example.com/v1/', 'https://b.example.com/v1/', 'https://c.example.com/v1/']

    def _resolver(self, fake_session):
        self.session_factory = mock.AsyncMock(return_value=fake_session)
        return MetadataResolver(RegistryConfig(), FakeTransport({}), session_factory=self.session_factory)

    async def test_first_successful_mirror_wins(self):
        fake_session = FakeSession(self.mirrors, {'latest': 'abc'}, {
            self.mirrors[0]: errors.TransportError('a is down'),
            self.mirrors[1]: errors.TransportError('b is down'),
            self.mirrors[2]: _image_json('abc', config={'Cmd': ['from-c']}),
        })
        image = await self._resolver(fake_session).fetch_metadata('ubuntu', 'latest')

        self.assertEqual('abc', image.id)
        self.assertListEqual(['from-c'], image.config['Cmd'])
        self.assertListEqual(self.mirrors, fake_session.image_requests)

    async def test_stop_after_first_success(self):
        fake_session = FakeSession(self.mirrors, {'latest': 'abc'}, {
            self.mirrors[0]: errors.TransportError('a is down'),
            self.mirrors[1]: _image_json('abc'),
            self.mirrors[2]: _image_json('abc'),
        })
        await self._resolver(fake_session).fetch_metadata('ubuntu', 'latest')
        self.assertListEqual(self.mirrors[:2], fake_session.image_requests)

    async def test_all_mirrors_failed(self):
        last_error = errors.TransportError('c is down')
        fake_session = FakeSession(self.mirrors, {'latest': 'abc'}, {
            self.mirrors[0]: errors.TransportError('a is down'),
            self.mirrors[1]: errors.TransportError('b is down', status=503),
            self.mirrors[2]: last_error,
        })
        with self.assertRaises(errors.AllEndpointsFailedError) as ctx:
            await self._resolver(fake_session).fetch_metadata('ubuntu', 'latest')

        self.assertIs(last_error, ctx.exception.last_error)
        self.assertEqual('ubuntu', ctx.exception.repository)
        self.assertEqual('latest', ctx.exception.tag)
        self.assertIn('c is down', str(ctx.exception))
        self.assertListEqual(self.mirrors, fake_session.image_requests)

    async def test_no_mirrors(self):
        fake_session = FakeSession([], {'latest': 'abc'}, {})
        with self.assertRaises(errors.AllEndpointsFailedError) as ctx:
            await self._resolver(fake_session).fetch_metadata('ubuntu', 'latest')
        self.assertIsNone(ctx.exception.last_error)

    async def test_unknown_tag(self):
        fake_session = FakeSession(self.mirrors, {'latest': 'abc'}, {})
        with self.assertRaises(errors.UnknownTagError) as ctx:
            await self._resolver(fake_session).fetch_metadata('ubuntu', '14.04')

        self.assertEqual('unknown tag: ubuntu:14.04', str(ctx.exception))
        self.assertListEqual([], fake_session.image_requests)

    async def test_malformed_metadata_is_terminal(self):
        fake_session = FakeSession(self.mirrors, {'latest': 'abc'}, {
            self.mirrors[0]: b'{"id": ',
            self.mirrors[1]: _image_json('abc'),
        })
        with self.assertRaises(errors.MalformedMetadataError):
            await self._resolver(fake_session).fetch_metadata('ubuntu', 'latest')
        self.assertListEqual(self.mirrors[:1], fake_session.image_requests)

    async def test_invalid_reference_stops_before_session(self):
        resolver = self._resolver(FakeSession(self.mirrors, {}, {}))
        with self.assertRaises(errors.InvalidReferenceError):
            await resolver.fetch_metadata('Not/Valid', 'latest')
        with self.assertRaises(errors.UnreachableRegistryError):
            await resolver.fetch_metadata('bad..host.com/foo/bar', 'latest')
        self.assertFalse(self.session_factory.called)

    async def test_session_arguments(self):
        resolver = self._resolver(FakeSession(self.mirrors, {'latest': 'abc'},
                                              {self.mirrors[0]: _image_json('abc')}))
        await resolver.fetch_metadata('localhost:5000/foo/bar', 'latest')

        credential, used_transport, endpoint, allow_insecure_fallback = self.session_factory.call_args.args
        self.assertIsNone(credential.authorization_header())
        self.assertIs(resolver.transport, used_transport)
        self.assertTupleEqual(('https://localhost:5000/v1/', True), endpoint)
        self.assertTrue(allow_insecure_fallback)
        self.assertIs(resolver.config, self.session_factory.call_args.kwargs['config'])

    async def test_session_failure_propagates(self):
        resolver = MetadataResolver(RegistryConfig(), FakeTransport({}),
                                    session_factory=mock.AsyncMock(side_effect=errors.AuthenticationError('no')))
        with self.assertRaises(errors.AuthenticationError):
            await resolver.fetch_metadata('localhost:5000/foo/bar', 'latest')

    async def test_registry_session_fallback(self):
        fake_transport = FakeTransport(_registry('busybox'))
        resolver = MetadataResolver(RegistryConfig(), fake_transport)
        image = await resolver.fetch_metadata('busybox', 'latest')

        self.assertEqual('e72ac664f4f0', image.id)
        self.assertEqual(2433303, image.size)
        self.assertListEqual(
            ['https://mirror-a.example.com/v1/images/e72ac664f4f0/json',
             'https://mirror-b.example.com/v1/images/e72ac664f4f0/json',
             'https://mirror-c.example.com/v1/images/e72ac664f4f0/json'],
            fake_transport.requested_urls()[-3:],
        )

    async def test_registry_session_unknown_tag(self):
        fake_transport = FakeTransport(_registry('busybox'))
        resolver = MetadataResolver(RegistryConfig(), fake_transport)
        with self.assertRaises(errors.UnknownTagError):
            await resolver.fetch_metadata('docker.io/busybox', 'musl')
        self.assertFalse(any('/images/' in url for url in fake_transport.requested_urls()))


class AiohttpTransportTest(unittest.IsolatedAsyncioTestCase):

    IMAGE_ID = 'e72ac664f4f0'

    async def asyncSetUp(self):
        self.received = {}

        async def images(request):
            self.received['images'] = request.headers.get('X-Docker-Token')
            return web.json_response([{'id': self.IMAGE_ID}], headers={'X-Docker-Token': 'signature=f00d'})

        async def tags(request):
            self.received['tags'] = request.headers.get('Authorization')
            return web.json_response({'latest': self.IMAGE_ID})

        async def image_json(request):
            self.received['user_agent'] = request.headers.get('User-Agent')
            image = {'id': request.match_info['image_id'], 'config': {'Cmd': ['sh']}}
            return web.Response(text=json.dumps(image), headers={'X-Docker-Size': '1024'})

        async def slow(request):
            await asyncio.sleep(0.5)
            return web.Response(text='late')

        async def endpoints(request):
            response = web.Response(text='[]')
            response.headers.add('X-Docker-Endpoints', 'a.example.com')
            response.headers.add('X-Docker-Endpoints', 'b.example.com')
            return response

        application = web.Application()
        application.router.add_get('/v1/repositories/busybox/images', images)
        application.router.add_get('/v1/repositories/library/busybox/tags', tags)
        application.router.add_get('/v1/images/{image_id}/json', image_json)
        application.router.add_get('/slow', slow)
        application.router.add_get('/endpoints', endpoints)

        self._server = test_utils.TestServer(application)
        await self._server.start_server()

    async def asyncTearDown(self):
        await self._server.close()

    async def test_fetch_metadata(self):
        config = RegistryConfig(index_server_address=str(self._server.make_url('/v1/')))
        image = await fetch_metadata('busybox', 'latest', config)

        self.assertEqual(self.IMAGE_ID, image.id)
        self.assertEqual(1024, image.size)
        self.assertDictEqual(
            {'images': 'true', 'tags': 'Token signature=f00d', 'user_agent': 'image-metadata-resolver'},
            self.received,
        )

    async def test_timeout(self):
        async with transport.AiohttpTransport(RegistryConfig(request_timeout=0.05)) as aiohttp_transport:
            with self.assertRaises(errors.TransportError):
                await aiohttp_transport.request('GET', str(self._server.make_url('/slow')))

    async def test_repeated_headers(self):
        async with transport.AiohttpTransport() as aiohttp_transport:
            response = await aiohttp_transport.request('GET', str(self._server.make_url('/endpoints')))
        self.assertListEqual(['a.example.com', 'b.example.com'], response.headers.getall('X-Docker-Endpoints'))


class ResultWriterTest(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def _read(self, filename):
        with open(filename, 'rb') as fl:
            return fl.read()

    def test_creates_parent_directories(self):
        filename = os.path.join(self._tmp.name, 'staging', 'result', 'result.json')
        save_metadata(filename, ExecutionMetadata(cmd=['/bin/app'], workdir='/srv'))

        self.assertTrue(os.path.isdir(os.path.dirname(filename)))
        self.assertEqual(b'{"execution_metadata": "{\\"cmd\\":[\\"/bin/app\\"],\\"workdir\\":\\"/srv\\"}"}\n',
                         self._read(filename))
        self.assertListEqual(['result.json'], os.listdir(os.path.dirname(filename)))

    def test_directory_mode(self):
        old_umask = os.umask(0o022)
        self.addCleanup(os.umask, old_umask)

        filename = os.path.join(self._tmp.name, 'staging', 'result', 'result.json')
        save_metadata(filename, {})

        for directory in (os.path.join(self._tmp.name, 'staging'), os.path.dirname(filename)):
            self.assertEqual(0o755, stat.S_IMODE(os.stat(directory).st_mode), directory)
        self.assertEqual(0o644, stat.S_IMODE(os.stat(filename).st_mode))

    def test_double_encoding(self):
        filename = os.path.join(self._tmp.name, 'result.json')
        save_metadata(filename, {'entrypoint': ['/init'], 'cmd': ['serve']})

        envelope = json.loads(self._read(filename))
        self.assertListEqual(['execution_metadata'], list(envelope))
        self.assertDictEqual({'cmd': ['serve'], 'entrypoint': ['/init']}, json.loads(envelope['execution_metadata']))

    def test_overwrite_is_deterministic(self):
        filename = os.path.join(self._tmp.name, 'result.json')
        save_metadata(filename, {'b': 1, 'a': {'z': 2, 'y': 3}})
        first = self._read(filename)
        save_metadata(filename, {'a': {'y': 3, 'z': 2}, 'b': 1})
        self.assertEqual(first, self._read(filename))

    def test_unwritable_directory(self):
        blocker = os.path.join(self._tmp.name, 'file')
        with open(blocker, 'w') as fl:
            fl.write('')
        with self.assertRaises(OSError):
            save_metadata(os.path.join(blocker, 'result.json'), {})

    def test_execution_metadata_from_image(self):
        image = ImageMetadata.from_json(_image_json(
            'abc', config={'Cmd': ['serve'], 'Entrypoint': None, 'WorkingDir': '/srv'}))
        metadata = execution_metadata_from_image(image)
        self.assertTupleEqual((['serve'], None, '/srv'), metadata)


class ConfigTest(unittest.TestCase):

    def test_load_config(self):
        config = load_config(_testfile('config.yaml'))
        self.assertEqual('https://index.example.com/v1/', config.index_server_address)
        self.assertTupleEqual(('localhost:5000',), config.insecure_registries)
        self.assertEqual(5.0, config.request_timeout)
        self.assertEqual('latest', config.default_tag)

    def test_unknown_keys(self):
        with self.assertRaises(errors.ConfigError):
            load_config(_testfile('bad_config.yaml'))

    def test_flags_override_file(self):
        args = arg_parser.parse_args([
            '--docker-ref', 'ubuntu', '--output-metadata-json-filename', 'out.json',
            '--config-file', _testfile('config.yaml'), '--insecure-registry', 'registry.local',
            '--request-timeout', '1.5', '--no-insecure-fallback',
        ])
        config = config_from_args(args)
        self.assertEqual('https://index.example.com/v1/', config.index_server_address)
        self.assertTupleEqual(('localhost:5000', 'registry.local'), config.insecure_registries)
        self.assertEqual(1.5, config.request_timeout)
        self.assertFalse(config.allow_insecure_fallback)

    def test_config_from_environment(self):
        args = arg_parser.parse_args(['--docker-ref', 'ubuntu', '--output-metadata-json-filename', 'out.json'])
        with mock.patch.dict(os.environ, {'IMAGE_METADATA_RESOLVER_CONFIG': _testfile('config.yaml')}):
            config = config_from_args(args)
        self.assertEqual('https://index.example.com/v1/', config.index_server_address)

    def test_empty_default_tag(self):
        with self.assertRaises(errors.ConfigError):
            load_config(_testfile('empty_tag_config.yaml'))

    def test_scalar_insecure_registry(self):
        config = load_config(_testfile('scalar_registry_config.yaml'))
        self.assertTupleEqual(('localhost:5000',), config.insecure_registries)
        self.assertEqual(2.5, config.request_timeout)
        self.assertFalse(locator.expand_and_verify('localhost:5000', config).is_secure)

    def test_bad_timeout(self):
        with self.assertRaises(errors.ConfigError):
            load_config(_testfile('bad_timeout_config.yaml'))

    def test_unreadable_file(self):
        for name in ('broken_config.yaml', 'missing_config.yaml'):
            with self.subTest(name=name):
                with self.assertRaises(errors.ConfigError):
                    load_config(_testfile(name))


class BuilderMainTest(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.output = os.path.join(self._tmp.name, 'out', 'result.json')

    def test_docker_image_url(self):
        image = ImageMetadata.from_json(_image_json('abc', config={'Cmd': ['serve'], 'Entrypoint': ['/init']}))
        with mock.patch('image_metadata_resolver.resolver.fetch_metadata',
                        mock.AsyncMock(return_value=image)) as fetch:
            status = main(['--docker-image-url', 'docker://example.com/foo/bar#v2',
                           '--output-metadata-json-filename', self.output])

        self.assertEqual(0, status)
        repository_name, tag, config, credential = fetch.call_args.args
        self.assertEqual(('example.com/foo/bar', 'v2'), (repository_name, tag))
        with open(self.output) as fl:
            envelope = json.load(fl)
        self.assertDictEqual({'cmd': ['serve'], 'entrypoint': ['/init']},
                             json.loads(envelope['execution_metadata']))

    def test_failure_exit_code(self):
        with mock.patch('image_metadata_resolver.resolver.fetch_metadata',
                        mock.AsyncMock(side_effect=errors.UnknownTagError('ubuntu', 'nope'))):
            status = main(['--docker-ref', 'ubuntu:nope', '--output-metadata-json-filename', self.output])

        self.assertEqual(1, status)
        self.assertFalse(os.path.exists(self.output))

    def test_config_failure_exit_code(self):
        status = main(['--docker-ref', 'ubuntu', '--output-metadata-json-filename', self.output,
                       '--config-file', _testfile('broken_config.yaml')])
        self.assertEqual(1, status)
        self.assertFalse(os.path.exists(self.output))

    def test_unwritable_output_exit_code(self):
        blocker = os.path.join(self._tmp.name, 'file')
        with open(blocker, 'w') as fl:
            fl.write('')
        image = ImageMetadata.from_json(_image_json('abc'))
        with mock.patch('image_metadata_resolver.resolver.fetch_metadata', mock.AsyncMock(return_value=image)):
            status = main(['--docker-ref', 'ubuntu', '--output-metadata-json-filename',
                           os.path.join(blocker, 'result.json')])
        self.assertEqual(1, status)

    def test_invalid_log_level(self):
        with mock.patch('sys.stderr'):
            with self.assertRaises(SystemExit) as ctx:
                main(['--docker-ref', 'ubuntu', '--output-metadata-json-filename', self.output,
                      '--log-level', 'chatty'])
        self.assertEqual(2, ctx.exception.code)


if __name__ == '__main__':
    unittest.main()
