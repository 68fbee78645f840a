# encoding: utf-8
"""
velour.changes

Reading a database's `_changes` feed: framing a (possibly endless) response
body into ChangeRecords and handing them out batch by batch as they arrive.
"""

from collections import deque

from .atoms import ChangeRecord, ChangesBatch
from .config import json
from .exceptions import MalformedResponse, TransportError
from .io import validate_response
from .params import FEEDS, STREAMING_FEEDS


class ChangesParser(object):
    """Incremental decoder for one `_changes` response body.

    Feed bytes in with `push()` as they are received and call `close()` when
    the body ends. Both return a (possibly empty) list of ChangesBatch.

    How the body is framed depends on the feed mode it was requested with:

    * ``normal``/``longpoll``: a single json object, decoded once the body is
      complete into a terminal batch (with `last_seq` and `pending`).
    * ``continuous``: one json object per line. Every chunk that completes at
      least one record produces a partial batch of those records. Blank lines
      are heartbeats. A chunk's trailing text without a newline stays buffered
      unless it already decodes as a whole record, in which case it joins that
      chunk's batch. A line carrying `last_seq` ends the feed, and the batch
      for that chunk is terminal.
    * ``eventsource``: the same, but records arrive on ``data:`` lines of a
      Server-Sent-Events stream.

    Chunks of a single byte or less are buffered but never produce a batch.
    Any record that fails to decode raises MalformedResponse and the parser
    should be considered dead.
    """
    def __init__(self, feed='normal'):
        if feed not in FEEDS:
            raise ValueError('unknown feed mode %r' % feed)
        self.feed = feed
        self.closed = False
        self._buf = bytearray()

    @property
    def streaming(self):
        return self.feed in STREAMING_FEEDS

    def push(self, chunk):
        """Add a chunk of the body, returning any batches it completed."""
        if self.closed:
            return []
        self._buf.extend(chunk)
        if not self.streaming or len(chunk) <= 1:
            return []
        lines = self._buf.split(b'\n')
        tail = lines.pop()
        if self._complete(tail):
            # the chunk ended on a whole record that just lacks its newline
            lines.append(tail)
            tail = bytearray()
        self._buf = tail
        return self._frame(lines)

    def close(self):
        """Signal the end of the body, returning whatever was still buffered."""
        if self.closed:
            return []
        rest, self._buf = self._buf, bytearray()
        if self.streaming:
            batches = self._frame(rest.split(b'\n'))
        else:
            batches = [ChangesBatch.decode(self._decode(self._text(rest)))]
        self.closed = True
        return batches

    def _frame(self, lines):
        records = []
        for line in lines:
            payload = self._payload(line)
            if payload is None:
                continue
            obj = self._decode(payload)
            if 'last_seq' in obj:
                self.closed = True
                self._buf = bytearray()
                last = dict(results=records, last_seq=obj['last_seq'])
                if 'pending' in obj:
                    last['pending'] = obj['pending']
                return [ChangesBatch(last)]
            records.append(ChangeRecord.decode(obj))
        return [ChangesBatch.partial(records)] if records else []

    def _payload(self, line):
        text = self._text(line).strip()
        if not text:
            return None
        if self.feed == 'eventsource':
            # only data: lines carry records; id:, event:, retry: and comments don't
            if not text.startswith('data:'):
                return None
            return text[5:].strip() or None
        return text

    def _complete(self, raw):
        try:
            payload = self._payload(raw)
            return payload is not None and isinstance(json.decode(payload), dict)
        except ValueError:
            return False

    def _text(self, raw):
        try:
            return bytes(raw).decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedResponse('changes feed is not valid utf-8: %s' % e)

    def _decode(self, text):
        try:
            obj = json.decode(text)
        except ValueError as e:
            raise MalformedResponse('undecodable changes feed entry %r: %s' % (text[:80], e))
        if not isinstance(obj, dict):
            raise MalformedResponse('expected a json object in the changes feed, got %s' % type(obj).__name__)
        return obj


class ChangesFeed(object):
    """Async iterator over the ChangesBatches of one `_changes` request.

    The request is sent when iteration begins. A `normal` or `longpoll` feed
    yields exactly one terminal batch; a `continuous` or `eventsource` feed
    keeps yielding partial batches until the server closes it (a terminal
    batch, if it sent `last_seq`), the connection drops, or `stop()` is
    called. There is no reconnection; to pick up where a feed left off, start
    a new one with ``since=feed.seq``.

        async with db.changes_feed(since='now', include_docs=True) as feed:
            async for batch in feed:
                for change in batch.results:
                    print(change.id, change.revs)

    Attributes:
        seq: the most recent sequence token seen (initially the `since` option)

        listening (bool): whether the connection is currently open
    """
    def __init__(self, database, params, body=None):
        self.params = params
        self.feed = params.feed or 'normal'
        self.seq = params.since
        self.listening = False
        self._resource = database.resource
        self._method = 'GET' if body is None else 'POST'
        self._body = body
        self._parser = ChangesParser(self.feed)
        self._pending = deque()
        self._stream = None
        self._done = False

    def __repr__(self):
        return '<%s %s %r>' % (type(self).__name__, self.feed, self.url)

    @property
    def url(self):
        return self._resource.url_for(['_changes'], self.params.query())

    def __aiter__(self):
        return self

    async def __anext__(self):
        while not self._pending:
            if self._done:
                raise StopAsyncIteration
            await self._fill()
        batch = self._pending.popleft()
        if batch.terminal:
            self.seq = batch.last_seq
        elif batch.results:
            self.seq = batch.results[-1].seq
        return batch

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.stop()

    async def listen(self):
        """Open the connection. Iterating does this implicitly."""
        if self._stream is not None or self._done:
            return
        self._stream = self._resource.stream(self._method, '_changes', body=self._body,
                                             query=self.params.query())
        self.listening = True
        try:
            code = await self._stream.start()
            if not 200 <= code < 300:
                body = bytearray()
                chunk = await self._stream.read()
                while chunk is not None:
                    body.extend(chunk)
                    chunk = await self._stream.read()
                validate_response(code, self._stream.headers, bytes(body))
        except Exception:
            self.stop()
            raise

    def stop(self):
        """Close the connection to the server. Batches already decoded are
        still handed out; nothing further is read."""
        self._done = True
        self.listening = False
        if self._stream is not None:
            self._stream.close()

    async def _fill(self):
        if self._stream is None:
            await self.listen()
            if self._done:
                return
        try:
            chunk = await self._stream.read()
            if chunk is None:
                batches = self._parser.close()
            else:
                batches = self._parser.push(chunk)
        except (TransportError, MalformedResponse):
            self.stop()
            raise
        self._pending.extend(batches)
        if chunk is None or self._parser.closed:
            self.stop()
