#!/usr/bin/env python
# encoding: utf-8
"""
velour.tests.testutil

An in-memory stand-in for a CouchDB node, served by tornado.web so the
client can be exercised over real HTTP without a running couch.
"""

import base64
import json
import uuid

from tornado import gen, web
from tornado.iostream import StreamClosedError
from tornado.testing import AsyncHTTPTestCase

from velour import Couch, IO
from velour.io import TornadoClient, RequestsClient


ERRORS = {400:'bad_request', 401:'unauthorized', 404:'not_found', 409:'conflict',
          412:'file_exists', 500:'internal_server_error'}


class Failure(web.HTTPError):
    def __init__(self, code, error=None, reason=None):
        super(Failure, self).__init__(code)
        self.error = error or ERRORS.get(code, 'unknown_error')
        self.why = reason or self.error


class FakeDatabase(object):
    def __init__(self, name, partitioned=False):
        self.name = name
        self.partitioned = partitioned
        self.docs = {}      # id -> list of revisions, oldest first
        self.seq = 0
        self.purge_seq = 0
        self.indexes = []

    def current(self, doc_id):
        history = self.docs.get(doc_id)
        return history[-1] if history else None

    def live_docs(self):
        return dict((i, h[-1]) for i, h in self.docs.items() if not h[-1].get('_deleted'))

    def write(self, doc_id, body, rev=None):
        current = self.current(doc_id)
        if current is not None:
            if current.get('_deleted') and rev is None:
                pass
            elif rev != current['_rev']:
                raise Failure(409, 'conflict', 'Document update conflict.')
        elif rev is not None:
            raise Failure(409, 'conflict', 'Document update conflict.')

        generation = int(current['_rev'].split('-')[0]) + 1 if current else 1
        self.seq += 1
        doc = dict(body)
        doc.update(_id=doc_id, _rev='%d-%s' % (generation, uuid.uuid4().hex), _seq=self.seq)
        self.docs.setdefault(doc_id, []).append(doc)
        return doc

    def store(self, doc):
        """Keep a doc with its given _rev (new_edits=false)"""
        self.seq += 1
        doc = dict(doc, _seq=self.seq)
        self.docs.setdefault(doc['_id'], []).append(doc)
        return doc

    def info(self):
        return {'db_name':self.name, 'doc_count':len(self.live_docs()),
                'doc_del_count':len(self.docs) - len(self.live_docs()),
                'update_seq':seq_token(self.seq), 'purge_seq':str(self.purge_seq),
                'sizes':{'file':0, 'external':0, 'active':0},
                'props':{'partitioned':True} if self.partitioned else {},
                'cluster':{'q':2, 'n':1, 'w':1, 'r':1}, 'instance_start_time':'0'}

    def changes(self, since=0, doc_ids=None, selector=None, include_docs=False):
        records = []
        for doc_id, history in self.docs.items():
            doc = history[-1]
            if doc['_seq'] <= since:
                continue
            if doc_ids is not None and doc_id not in doc_ids:
                continue
            if selector is not None and not matches(doc, selector):
                continue
            record = {'seq':seq_token(doc['_seq']), 'id':doc_id, 'changes':[{'rev':doc['_rev']}]}
            if doc.get('_deleted'):
                record['deleted'] = True
            if include_docs:
                record['doc'] = public(doc)
            records.append((doc['_seq'], record))
        return [r for _, r in sorted(records, key=lambda pair: pair[0])]


def seq_token(n):
    return '%d-g1AAAAB' % n

def parse_seq(token, current):
    if token is None:
        return 0
    if token == 'now':
        return current
    return int(str(token).split('-')[0])

def public(doc):
    return dict((k, v) for k, v in doc.items() if k != '_seq')

def matches(doc, selector):
    for field, cond in selector.items():
        if isinstance(cond, dict):
            for op, value in cond.items():
                if op == '$eq' and doc.get(field) != value:
                    return False
                if op == '$gt' and not (field in doc and doc[field] > value):
                    return False
                if op == '$lt' and not (field in doc and doc[field] < value):
                    return False
        elif doc.get(field) != cond:
            return False
    return True


class FakeCouch(object):
    """The node's state, shared by every handler.

    Attributes:
        requests: every request received, as dicts of method/path/query/body/headers

        credentials: when set, a (user, password) pair every request must present

        feed_chunks: when set, streaming _changes requests get exactly these
        byte strings, each flushed as its own chunk, and then the body ends
    """
    def __init__(self, credentials=None):
        self.dbs = {}
        self.requests = []
        self.credentials = credentials
        self.feed_chunks = None

    def db(self, name):
        if name not in self.dbs:
            raise Failure(404, 'not_found', 'Database does not exist.')
        return self.dbs[name]

    def last(self, method=None):
        for req in reversed(self.requests):
            if method is None or req['method'] == method:
                return req


class FakeHandler(web.RequestHandler):
    def initialize(self, couch):
        self.couch = couch

    def prepare(self):
        body = None
        if self.request.body:
            body = json.loads(self.request.body.decode('utf-8'))
        self.couch.requests.append(dict(method=self.request.method, path=self.request.path,
                                        query=self.request.query, body=body,
                                        headers=dict(self.request.headers)))
        self.body = body
        if self.couch.credentials:
            expected = 'Basic ' + base64.b64encode(('%s:%s' % self.couch.credentials).encode('utf-8')).decode('ascii')
            if self.request.headers.get('Authorization') != expected:
                raise Failure(401, 'unauthorized', 'Name or password is incorrect.')

    def flag(self, name):
        return self.get_query_argument(name, 'false') == 'true'

    def reply(self, obj, status=200):
        self.set_status(status)
        self.set_header('Content-Type', 'application/json')
        self.finish(json.dumps(obj))

    def write_error(self, status_code, **kwargs):
        exc = kwargs.get('exc_info', (None, None, None))[1]
        if isinstance(exc, Failure):
            payload = {'error':exc.error, 'reason':exc.why}
        else:
            payload = {'error':ERRORS.get(status_code, 'unknown_error'), 'reason':self._reason}
        self.set_header('Content-Type', 'application/json')
        self.finish(json.dumps(payload))

    def log_exception(self, typ, value, tb):
        if not isinstance(value, Failure):
            super(FakeHandler, self).log_exception(typ, value, tb)


class RootHandler(FakeHandler):
    def get(self):
        self.reply({'couchdb':'Welcome', 'version':'3.3.3', 'git_sha':'40afbcfc7',
                    'uuid':'fake0000node', 'features':['access-ready', 'partitioned'],
                    'vendor':{'name':'The Apache Software Foundation'}})

    def head(self):
        self.set_status(200)


class AllDbsHandler(FakeHandler):
    def get(self):
        self.reply(sorted(self.couch.dbs))


class DatabaseHandler(FakeHandler):
    def head(self, name):
        self.couch.db(name)
        self.set_status(200)

    def get(self, name):
        self.reply(self.couch.db(name).info())

    def put(self, name):
        if name in self.couch.dbs:
            raise Failure(412, 'file_exists', 'The database could not be created, the file already exists.')
        if not name[:1].isalpha() or name != name.lower():
            raise Failure(400, 'illegal_database_name', 'Name: %r. Only lowercase characters are allowed.' % name)
        self.couch.dbs[name] = FakeDatabase(name, partitioned=self.flag('partitioned'))
        self.reply({'ok':True}, 201)

    def delete(self, name):
        self.couch.db(name)
        del self.couch.dbs[name]
        self.reply({'ok':True})


class DocumentHandler(FakeHandler):
    def head(self, name, doc_id):
        self.get(name, doc_id)

    def get(self, name, doc_id):
        db = self.couch.db(name)
        history = db.docs.get(doc_id)
        rev = self.get_query_argument('rev', None)
        if not history:
            raise Failure(404, 'not_found', 'missing')
        doc = history[-1]
        if rev is not None:
            found = [d for d in history if d['_rev'] == rev]
            if not found:
                raise Failure(404, 'not_found', 'missing')
            doc = found[0]
        elif doc.get('_deleted') and not self.flag('deleted'):
            raise Failure(404, 'not_found', 'deleted')

        out = public(doc)
        if self.flag('revs'):
            revs = [d['_rev'] for d in reversed(history)]
            out['_revisions'] = {'start':len(revs), 'ids':[r.split('-', 1)[1] for r in revs]}
        if self.flag('meta') or self.flag('revs_info'):
            out['_revs_info'] = [{'rev':d['_rev'], 'status':'deleted' if d.get('_deleted') else 'available'}
                                 for d in reversed(history)]
        self.reply(out)

    def put(self, name, doc_id):
        db = self.couch.db(name)
        if not isinstance(self.body, dict):
            raise Failure(400, 'bad_request', 'Document must be a JSON object')
        body = dict((k, v) for k, v in self.body.items() if k not in ('_id', '_rev'))
        doc = db.write(doc_id, body, self.get_query_argument('rev', None))
        self.reply({'ok':True, 'id':doc_id, 'rev':doc['_rev']}, 201)

    def delete(self, name, doc_id):
        db = self.couch.db(name)
        if not db.current(doc_id) or db.current(doc_id).get('_deleted'):
            raise Failure(404, 'not_found', 'missing')
        doc = db.write(doc_id, {'_deleted':True}, self.get_query_argument('rev', None))
        self.reply({'ok':True, 'id':doc_id, 'rev':doc['_rev']})


class AllDocsHandler(FakeHandler):
    def post(self, name):
        db = self.couch.db(name)
        opts = self.body or {}
        docs = db.live_docs()
        ids = opts['keys'] if 'keys' in opts else sorted(docs)
        if opts.get('descending'):
            ids = list(reversed(ids))
        ids = ids[opts.get('skip', 0):]
        if 'limit' in opts:
            ids = ids[:opts['limit']]
        rows = []
        for doc_id in ids:
            if doc_id not in docs:
                rows.append({'key':doc_id, 'error':'not_found'})
                continue
            row = {'id':doc_id, 'key':doc_id, 'value':{'rev':docs[doc_id]['_rev']}}
            if opts.get('include_docs'):
                row['doc'] = public(docs[doc_id])
            rows.append(row)
        self.reply({'total_rows':len(docs), 'offset':opts.get('skip', 0), 'rows':rows})


class BulkDocsHandler(FakeHandler):
    def post(self, name):
        db = self.couch.db(name)
        new_edits = self.body.get('new_edits', True)
        results = []
        for doc in self.body['docs']:
            doc_id = doc.get('_id') or uuid.uuid4().hex
            if not new_edits:
                db.store(doc)
                continue
            body = dict((k, v) for k, v in doc.items() if k not in ('_id', '_rev'))
            try:
                written = db.write(doc_id, body, doc.get('_rev'))
            except Failure as e:
                results.append({'id':doc_id, 'error':e.error, 'reason':e.why})
            else:
                results.append({'ok':True, 'id':doc_id, 'rev':written['_rev']})
        self.reply(results, 201)


class BulkGetHandler(FakeHandler):
    def post(self, name):
        db = self.couch.db(name)
        results = []
        for ref in self.body['docs']:
            history = db.docs.get(ref['id']) or []
            wanted = [d for d in history if d['_rev'] == ref['rev']] if 'rev' in ref else history[-1:]
            if wanted:
                item = {'ok':public(wanted[0])}
            else:
                item = {'error':{'id':ref['id'], 'rev':ref.get('rev', 'undefined'),
                                 'error':'not_found', 'reason':'missing'}}
            results.append({'id':ref['id'], 'docs':[item]})
        self.reply({'results':results})


class FindHandler(FakeHandler):
    def post(self, name):
        db = self.couch.db(name)
        query = self.body
        docs = [public(d) for _, d in sorted(db.live_docs().items()) if matches(d, query.get('selector', {}))]
        docs = docs[query.get('skip', 0):]
        if 'limit' in query:
            docs = docs[:query['limit']]
        if 'fields' in query:
            docs = [dict((f, d[f]) for f in query['fields'] if f in d) for d in docs]
        result = {'docs':docs, 'bookmark':'nil'}
        if query.get('execution_stats'):
            result['execution_stats'] = {'total_docs_examined':len(db.live_docs())}
        self.reply(result)


class IndexHandler(FakeHandler):
    def get(self, name):
        db = self.couch.db(name)
        indexes = [{'ddoc':None, 'name':'_all_docs', 'type':'special', 'def':{'fields':[{'_id':'asc'}]}}]
        indexes.extend(db.indexes)
        self.reply({'total_rows':len(indexes), 'indexes':indexes})

    def post(self, name):
        db = self.couch.db(name)
        fields = (self.body.get('index') or {}).get('fields')
        if not fields:
            raise Failure(400, 'bad_request', 'Missing required key: fields')
        ddoc = '_design/' + self.body.get('ddoc', uuid.uuid4().hex)
        index_name = self.body.get('name', uuid.uuid4().hex)
        for index in db.indexes:
            if index['ddoc'] == ddoc and index['name'] == index_name:
                self.reply({'result':'exists', 'id':ddoc, 'name':index_name})
                return
        db.indexes.append({'ddoc':ddoc, 'name':index_name, 'type':self.body.get('type', 'json'),
                           'def':{'fields':[{f:'asc'} for f in fields]}})
        self.reply({'result':'created', 'id':ddoc, 'name':index_name})


class IndexItemHandler(FakeHandler):
    def delete(self, name, ddoc, index_name):
        db = self.couch.db(name)
        for index in db.indexes:
            if index['ddoc'] == '_design/' + ddoc and index['name'] == index_name:
                db.indexes.remove(index)
                self.reply({'ok':True})
                return
        raise Failure(404, 'not_found', 'Index not found')


class PurgeHandler(FakeHandler):
    def post(self, name):
        db = self.couch.db(name)
        purged = {}
        for doc_id, revs in self.body.items():
            history = db.docs.get(doc_id, [])
            purged[doc_id] = [d['_rev'] for d in history if d['_rev'] in revs]
            remaining = [d for d in history if d['_rev'] not in revs]
            if remaining:
                db.docs[doc_id] = remaining
            else:
                db.docs.pop(doc_id, None)
        db.purge_seq += 1
        self.reply({'purge_seq':str(db.purge_seq), 'purged':purged}, 201)


class ChangesHandler(FakeHandler):
    def initialize(self, couch):
        super(ChangesHandler, self).initialize(couch)
        self.gone = False

    def on_connection_close(self):
        self.gone = True

    async def get(self, name):
        await self.changes(name)

    async def post(self, name):
        await self.changes(name)

    def _records(self, db, since):
        filter_name = self.get_query_argument('filter', None)
        doc_ids = selector = None
        if filter_name == '_doc_ids':
            doc_ids = (self.body or {}).get('doc_ids', [])
        elif filter_name == '_selector':
            selector = (self.body or {}).get('selector', {})
        records = db.changes(since, doc_ids=doc_ids, selector=selector, include_docs=self.flag('include_docs'))
        limit = self.get_query_argument('limit', None)
        return records[:int(limit)] if limit is not None else records

    async def changes(self, name):
        db = self.couch.db(name)
        feed = self.get_query_argument('feed', 'normal')
        since = parse_seq(self.get_query_argument('since', None), db.seq)

        if feed in ('normal', 'longpoll'):
            records = self._records(db, since)
            if feed == 'longpoll' and not records:
                for _ in range(int(self.get_query_argument('timeout', '500')) // 10):
                    await gen.sleep(0.01)
                    records = self._records(db, since)
                    if records:
                        break
            last_seq = records[-1]['seq'] if records else seq_token(since or db.seq)
            self.reply({'results':records, 'last_seq':last_seq, 'pending':0})
            return

        self.set_header('Content-Type', 'text/event-stream' if feed == 'eventsource' else 'application/json')
        if self.couch.feed_chunks is not None:
            for chunk in self.couch.feed_chunks:
                if not await self.send(chunk):
                    return
            self.finish()
            return

        # a live feed: report what's new every tick, heartbeat in between
        timeout = self.get_query_argument('timeout', None)
        ticks = int(timeout) // 20 if timeout is not None else 500
        for _ in range(ticks):
            records = self._records(db, since)
            if records:
                since = parse_seq(records[-1]['seq'], db.seq)
                if not await self.send(b''.join(self.frame(feed, r) for r in records)):
                    return
            elif not await self.send(b'\n'):
                return
            await gen.sleep(0.02)
        if not self.gone:
            self.finish(json.dumps({'last_seq':seq_token(since), 'pending':0}).encode('utf-8') + b'\n')

    def frame(self, feed, record):
        line = json.dumps(record)
        if feed == 'eventsource':
            return ('data: %s\nid: %s\n\n' % (line, record['seq'])).encode('utf-8')
        return (line + '\n').encode('utf-8')

    async def send(self, chunk):
        if self.gone:
            return False
        self.write(chunk)
        try:
            await self.flush()
        except StreamClosedError:
            self.gone = True
            return False
        await gen.sleep(0.01)
        return True


def make_app(couch):
    args = dict(couch=couch)
    db = r'/([^/_][^/]*)'
    return web.Application([
        (r'/', RootHandler, args),
        (r'/_all_dbs', AllDbsHandler, args),
        (db + r'/_all_docs', AllDocsHandler, args),
        (db + r'/_bulk_docs', BulkDocsHandler, args),
        (db + r'/_bulk_get', BulkGetHandler, args),
        (db + r'/_find', FindHandler, args),
        (db + r'/_index', IndexHandler, args),
        (db + r'/_index/([^/]+)/json/([^/]+)', IndexItemHandler, args),
        (db + r'/_purge', PurgeHandler, args),
        (db + r'/_changes', ChangesHandler, args),
        (db + r'/((?:_design|_local)/[^/]+)', DocumentHandler, args),
        (db + r'/([^/]+)', DocumentHandler, args),
        (db + r'/?', DatabaseHandler, args),
    ])


class CouchTestCase(AsyncHTTPTestCase):
    """Runs a FakeCouch on a local port and points a Couch at it.

    Subclasses pick the transport with `transport` ('tornado' or 'requests').
    """
    transport = 'tornado'
    credentials = None

    def get_app(self):
        self.couch = FakeCouch(credentials=self.credentials)
        return make_app(self.couch)

    def setUp(self):
        super(CouchTestCase, self).setUp()
        if self.transport == 'requests':
            self.io = IO(RequestsClient())
        else:
            self.io = IO(TornadoClient())
        self.server = Couch(self.get_url('/'), auth=self.credentials, io=self.io)

    def tearDown(self):
        if self.transport == 'requests':
            self.io.client.session.close()
        super(CouchTestCase, self).tearDown()

    def add_db(self, name='testdb', **docs):
        """Seed the fake node directly, bypassing the client."""
        db = FakeDatabase(name)
        self.couch.dbs[name] = db
        for doc_id, body in sorted(docs.items()):
            db.write(doc_id, body)
        return db
