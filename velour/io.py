# encoding: utf-8
"""
velour.io

URL helpers, response mapping and the two HTTP transports (tornado and requests).
"""

import re
import socket
import logging
import urllib.parse
from urllib.parse import urlsplit, urlunsplit

from tornado import httpclient, httputil, locks, queues
from tornado.ioloop import IOLoop

from .atoms import Status
from .exceptions import TransportError, MalformedResponse, error_for_status
from .config import defaults, json
from . import __version__ as VERSION

_logger = logging.getLogger('velour')
def log(*msg):
    _logger.info(" ".join([str(s) for s in msg]))


def denormalize_url(url, creds):
    if not creds:
        return url
    parts = urlsplit(url)
    netloc = '%s:%s@%s'%(quote(creds[0]), quote(creds[1]), parts.netloc)
    parts = list(parts)
    parts[1] = netloc
    return urlunsplit(tuple(parts))


def normalize_url(url):
    """Extract authentication credentials from the given URL and prepend the default host if omitted. """
    if url is None:
        url = '%s:%i'%(defaults.host, defaults.port)

    elif not url.startswith('http'):
        if '.' in url or ':' in url:
            # presume this is a domain name
            url = 'http://%s' % url
        else:
            # presume this is a subdir under the default server address
            url = "%s:%i/%s"%(defaults.host.rstrip('/'), defaults.port, url.lstrip('/'))

    parts = urlsplit(url)
    if '@' in parts.netloc:
        creds, netloc = parts.netloc.rsplit('@', 1)
        user, _, password = creds.partition(':')
        credentials = (urllib.parse.unquote(user), urllib.parse.unquote(password))
        parts = list(parts)
        parts[1] = netloc
    else:
        parts = list(parts)
        credentials = None

    if ':' not in parts[1] and defaults.port!=80 and parts[0]=='http':
        parts[1] += ':%i'%defaults.port
    elif parts[1].endswith(':80'):
        parts[1] = parts[1][:-3]

    return urlunsplit(tuple(parts)).rstrip('/'), credentials


def quote(string, safe=''):
    return urllib.parse.quote(string, safe)


def urlencode(data):
    if isinstance(data, dict):
        data = data.items()
    return urllib.parse.urlencode(list(data))


def urljoin(base, *path, **query):
    """Assemble a uri based on a base, any number of path segments, and query
    string parameters.

    >>> urljoin('http://example.org', '_all_dbs')
    'http://example.org/_all_dbs'

    A trailing slash on the uri base is handled gracefully:

    >>> urljoin('http://example.org/', '_all_dbs')
    'http://example.org/_all_dbs'

    And multiple positional arguments become path parts:

    >>> urljoin('http://example.org/', 'foo', 'bar')
    'http://example.org/foo/bar'

    All slashes within a path part are escaped:

    >>> urljoin('http://example.org/', 'foo/bar')
    'http://example.org/foo%2Fbar'
    >>> urljoin('http://example.org/', 'foo', '/bar/')
    'http://example.org/foo/%2Fbar%2F'
    """
    if base and base.endswith('/'):
        base = base[:-1]
    retval = [base]

    # build the path
    path = '/'.join([''] + [quote(s) for s in path])
    if path:
        retval.append(path)

    # build the query string
    params = []
    for name, value in query.items():
        if type(value) in (list, tuple):
            params.extend([(name, i) for i in value if i is not None])
        elif value is not None:
            if value is True:
                value = 'true'
            elif value is False:
                value = 'false'
            params.append((name, value))
    if params:
        retval.extend(['?', urlencode(params)])

    return ''.join(retval)


def doc_path(doc_id):
    """Split an id that starts with a reserved segment, e.g. _design/foo, so
    that the / that follows the 1st segment does not get escaped."""
    if not doc_id:
        raise ValueError('document ID cannot be empty')
    if doc_id.startswith(('_design/', '_local/')):
        return doc_id.split('/', 1)
    return [doc_id]


def validate_response(code, headers, body):
    """Turn a completed exchange into `(data, status)` or raise the HTTPError
    matching its status code."""
    status = Status(code, headers=headers)

    data = body
    if isinstance(data, bytes):
        m = re.search(r'charset=([^; ]+)', headers.get('Content-Type', '') or '')
        try:
            data = data.decode(m.group(1) if m else 'utf-8')
        except (UnicodeDecodeError, LookupError) as e:
            if status.ok:
                raise MalformedResponse('undecodable response body: %s' % e)
            data = repr(body)

    if status.ok:
        return data, status

    # try to get info out of the response then pass it along (as a dict if possible)
    detail = data
    if data:
        try:
            detail = json.decode(data)
        except ValueError:
            pass
    error = reason = None
    if isinstance(detail, dict):
        error, reason = detail.get('error'), detail.get('reason')
    raise error_for_status(code)(code, error=error, reason=reason, detail=detail)


class Resource(object):
    def __init__(self, url, headers=None, auth=None, io=None):
        self.url, credentials = normalize_url(url)
        self.credentials = auth if auth else credentials
        self.headers = headers or {}
        self.io = io or IO.default()

    def __call__(self, *path):
        obj = type(self)(urljoin(self.url, *path), auth=self.credentials, io=self.io)
        obj.headers = self.headers.copy()
        return obj

    def __repr__(self):
        return '<%s %r>' % (type(self).__name__, self.url)

    @property
    def auth_url(self):
        return denormalize_url(self.url, self.credentials)

    def url_for(self, path=None, query=None):
        url = urljoin(self.url, *path) if path else self.url
        if query:
            url = '%s?%s' % (url, query)
        return url

    async def delete(self, path=None, headers=None, query=None):
        return await self._request('DELETE', path, headers=headers, query=query)

    async def get(self, path=None, headers=None, query=None, timeout=None):
        return await self._request('GET', path, headers=headers, query=query, timeout=timeout)

    async def head(self, path=None, headers=None, query=None):
        return await self._request('HEAD', path, headers=headers, query=query)

    async def post(self, path=None, body=None, headers=None, query=None, timeout=None):
        return await self._request('POST', path, body=body, headers=headers, query=query, timeout=timeout)

    async def put(self, path=None, body=None, headers=None, query=None):
        return await self._request('PUT', path, body=body, headers=headers, query=query)

    async def delete_json(self, path=None, headers=None, query=None):
        return await self._request_json('DELETE', path, headers=headers, query=query)

    async def get_json(self, path=None, headers=None, query=None, timeout=None):
        return await self._request_json('GET', path, headers=headers, query=query, timeout=timeout)

    async def post_json(self, path=None, body=None, headers=None, query=None, timeout=None):
        return await self._request_json('POST', path, body=body, headers=headers, query=query, timeout=timeout)

    async def put_json(self, path=None, body=None, headers=None, query=None):
        return await self._request_json('PUT', path, body=body, headers=headers, query=query)

    def _prepare(self, method, path=None, body=None, headers=None, query=None):
        all_headers = self.headers.copy()
        all_headers.update(headers or {})
        all_headers.setdefault('Accept', 'application/json')
        all_headers['User-Agent'] = 'Velour/%s' % VERSION

        # anything that isn't already a string gets json encoded
        if body is not None and not isinstance(body, (str, bytes)):
            body = json.encode(body)
            all_headers.setdefault('Content-Type', 'application/json')
        if isinstance(body, str):
            body = body.encode('utf-8')
        if body is None and method in ('POST', 'PUT'):
            body = b''

        if isinstance(path, str):
            path = [path]
        return dict(method=method.upper(), url=self.url_for(path, query), data=body,
                    headers=all_headers, auth=self.credentials)

    async def _request(self, method, path=None, body=None, headers=None, query=None, timeout=None):
        req = self._prepare(method, path, body=body, headers=headers, query=query)
        code, resp_headers, content = await self.io.fetch(timeout=timeout, **req)
        data, status = validate_response(code, resp_headers, content)
        return data

    async def _request_json(self, method, path=None, body=None, headers=None, query=None, timeout=None):
        data = await self._request(method, path, body=body, headers=headers, query=query, timeout=timeout)
        try:
            return json.decode(data)
        except (TypeError, ValueError) as e:
            raise MalformedResponse('expected a json body from %s %s: %s' % (method, self.url_for(path), e))

    def stream(self, method, path=None, body=None, headers=None, query=None):
        """Open a streamed exchange; see `IO.stream`"""
        req = self._prepare(method, path, body=body, headers=headers, query=query)
        return self.io.stream(**req)


class IO(object):
    """The http client handle shared by every Couch/Database/Resource that
    was built from it. It owns no sockets itself; pooling happens in the
    underlying client.

    Args:
        client: a TornadoClient or RequestsClient. If omitted, one is picked
        according to `defaults.http.client` on first use.
    """
    _default = None

    def __init__(self, client=None):
        self._client = client

    @classmethod
    def default(cls):
        if cls._default is None:
            cls._default = cls()
        return cls._default

    @property
    def client(self):
        if self._client is None:
            if defaults.http.client == 'requests':
                self._client = RequestsClient()
            else:
                self._client = TornadoClient()
        return self._client

    async def fetch(self, method, url, data=None, headers=None, auth=None, timeout=None):
        """Perform one exchange, returning `(code, headers, body)`. A `timeout`
        (seconds) overrides `defaults.http.timeout` for this request."""
        resp = await self.client.fetch(method, url, data=data, headers=headers, auth=auth, timeout=timeout)
        log("✓ %4s %s"%(method, url))
        return resp

    def stream(self, method, url, data=None, headers=None, auth=None):
        """Return a stream object for an exchange whose body should be consumed
        incrementally. Nothing is sent until its `start()` is awaited."""
        log("⌁ %4s %s"%(method, url))
        return self.client.stream(method, url, data=data, headers=headers, auth=auth)


class TornadoClient(object):
    """Transport built on tornado's AsyncHTTPClient.

    Plain requests go through the IOLoop's shared client (and its connection
    pool); each stream gets a private instance so a long-lived feed never
    occupies one of the shared client's slots.
    """
    def __init__(self):
        httpclient.AsyncHTTPClient.configure(None, max_clients=defaults.http.max_clients)

    def request(self, method, url, data=None, headers=None, auth=None, **opts):
        req = dict(method=method, url=url, headers=headers, allow_nonstandard_methods=True,
                   connect_timeout=defaults.http.connect_timeout,
                   request_timeout=defaults.http.timeout)
        if auth:
            req['auth_username'], req['auth_password'] = auth
        if data is not None:
            req['body'] = data
        req.update(opts)
        return httpclient.HTTPRequest(**req)

    async def fetch(self, method, url, data=None, headers=None, auth=None, timeout=None):
        client = httpclient.AsyncHTTPClient()
        opts = {'request_timeout':timeout} if timeout else {}
        try:
            resp = await client.fetch(self.request(method, url, data, headers, auth, **opts), raise_error=False)
        except (socket.error, httpclient.HTTPClientError) as e:
            raise TransportError('%s %s failed: %s' % (method, url, e), cause=e)
        return resp.code, resp.headers, resp.body

    def stream(self, method, url, data=None, headers=None, auth=None):
        return TornadoStream(self, method, url, data=data, headers=headers, auth=auth)


class TornadoStream(object):
    """One streamed response read through tornado's streaming_callback.

    Chunks are queued as they arrive and handed out by `read()`.
    """
    def __init__(self, transport, method, url, data=None, headers=None, auth=None):
        self.method, self.url = method, url
        self.code = None
        self.headers = httputil.HTTPHeaders()
        self.closed = False
        self._transport = transport
        self._request = transport.request(method, url, data, headers, auth,
                                          header_callback=self._on_header,
                                          streaming_callback=self._on_chunk,
                                          request_timeout=defaults.http.feed_timeout)
        self._chunks = queues.Queue()
        self._ready = locks.Event()
        self._client = None
        self._error = None

    def _on_header(self, line):
        if self.code is None:
            if line.startswith('HTTP/'):
                self.code = httputil.parse_response_start_line(line.strip()).code
            return
        if line.strip():
            self.headers.parse_line(line)
        elif 100 <= self.code < 200:
            # a 1xx interim response; the real status line follows
            self.code = None
            self.headers = httputil.HTTPHeaders()
        else:
            self._ready.set()

    def _on_chunk(self, chunk):
        if self.closed:
            raise TransportError('stream closed by client')
        self._chunks.put_nowait(chunk)

    def _on_done(self, future):
        exc = future.exception()
        if exc is not None and not self.closed:
            self._error = TransportError('%s %s failed: %s' % (self.method, self.url, exc), cause=exc)
        self._chunks.put_nowait(None)
        self._ready.set()
        if self._client is not None:
            self._client.close()
            self._client = None

    async def start(self):
        """Send the request and wait for the response headers."""
        self._client = httpclient.AsyncHTTPClient(force_instance=True)
        self._client.fetch(self._request, raise_error=False).add_done_callback(self._on_done)
        await self._ready.wait()
        if self.code is None:
            await self.read()
            raise TransportError("%s %s closed before a status line arrived" % (self.method, self.url))
        return self.code

    async def read(self):
        """The next chunk of the body, or None once it has ended."""
        if self._error is not None:
            raise self._error
        chunk = await self._chunks.get()
        if chunk is None:
            self._chunks.put_nowait(None)
            if self._error is not None:
                raise self._error
        return chunk

    def close(self):
        # tornado has no way to abort a fetch in flight; the next chunk that
        # arrives (a heartbeat at the latest) raises in _on_chunk and drops it
        self.closed = True


class RequestsClient(object):
    """Transport built on a requests.Session, whose blocking calls run on the
    IOLoop's executor so callers still just await them."""
    def __init__(self, session=None):
        import requests
        self._requests = requests
        self.session = session or requests.Session()
        adapter = requests.adapters.HTTPAdapter(pool_maxsize=defaults.http.max_clients)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

    def _send(self, method, url, data=None, headers=None, auth=None, stream=False, timeout=None):
        try:
            return self.session.request(method, url, data=data, headers=headers, auth=auth, stream=stream,
                                        timeout=(defaults.http.connect_timeout, timeout or defaults.http.timeout))
        except self._requests.RequestException as e:
            raise TransportError('%s %s failed: %s' % (method, url, e), cause=e)

    async def fetch(self, method, url, data=None, headers=None, auth=None, timeout=None):
        resp = await IOLoop.current().run_in_executor(
            None, lambda: self._send(method, url, data, headers, auth, timeout=timeout))
        return resp.status_code, resp.headers, resp.content

    def stream(self, method, url, data=None, headers=None, auth=None):
        return RequestsStream(self, method, url, data=data, headers=headers, auth=auth)


class RequestsStream(object):
    """One streamed response read via requests' iter_content."""
    def __init__(self, transport, method, url, data=None, headers=None, auth=None):
        self.method, self.url = method, url
        self.code = None
        self.headers = {}
        self.closed = False
        self._transport = transport
        self._args = (method, url, data, headers, auth)
        self._resp = None
        self._chunks = None

    async def start(self):
        self._resp = await IOLoop.current().run_in_executor(
            None, lambda: self._transport._send(*self._args, stream=True, timeout=defaults.http.feed_timeout))
        self.code, self.headers = self._resp.status_code, self._resp.headers
        self._chunks = self._resp.iter_content(chunk_size=None)
        return self.code

    def _next(self):
        try:
            return next(self._chunks, None)
        except self._transport._requests.RequestException as e:
            raise TransportError('%s %s failed: %s' % (self.method, self.url, e), cause=e)

    async def read(self):
        if self.closed:
            return None
        chunk = await IOLoop.current().run_in_executor(None, self._next)
        if chunk is None:
            self.close()
        return chunk

    def close(self):
        if not self.closed and self._resp is not None:
            self._resp.close()
        self.closed = True
