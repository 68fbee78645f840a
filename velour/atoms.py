# encoding: utf-8
"""
velour.atoms

Dict-flavored value types: the attribute dict that decoded json lands in,
plus the typed records each operation hands back.
"""

from .exceptions import MalformedResponse

seq_types = (str, int)  # couchdb 1.x used integers, 2.x+ opaque strings


class adict(dict):
    """A dict whose keys can also be read and written as attributes."""
    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError:
            raise AttributeError(name)


class Document(adict):
    """A couchdb document. `id` and `rev` are shorthands for `_id` and `_rev`."""
    def __repr__(self):
        return '<%s %r@%r %r>' % (type(self).__name__, self.id, self.rev,
                                  dict((k, v) for k, v in self.items() if k not in ('_id', '_rev')))

    @property
    def id(self):
        return self.get('_id')

    @property
    def rev(self):
        return self.get('_rev')


class Status(adict):
    """HTTP status of a completed request."""
    def __init__(self, code, headers=None):
        super(Status, self).__init__(code=code, headers=headers or {}, ok=200 <= code < 300)


class Record(adict):
    """Base for decoded response bodies.

    Subclasses list the keys they can't do without in `_required` as
    ``(name, types)`` pairs. `decode` checks those and raises MalformedResponse
    when the server sent something else.
    """
    _required = ()

    @classmethod
    def decode(cls, data):
        if not isinstance(data, dict):
            raise MalformedResponse('expected a json object for %s, got %s' % (cls.__name__, type(data).__name__))
        for name, kinds in cls._required:
            if name not in data:
                raise MalformedResponse('%s is missing %r' % (cls.__name__, name))
            if not isinstance(data[name], kinds) or (isinstance(data[name], bool) and bool not in _flatten(kinds)):
                raise MalformedResponse('%s.%s has unexpected type %s' % (cls.__name__, name, type(data[name]).__name__))
        return cls(data)

    def to_json(self, pretty=False):
        from .config import json
        if pretty:
            return json.encode(self, indent=2, sort_keys=True)
        return json.encode(self)

    def __repr__(self):
        return '<%s %s>' % (type(self).__name__, dict.__repr__(self))

def _flatten(kinds):
    return kinds if isinstance(kinds, tuple) else (kinds,)


class NodeInfo(Record):
    """The welcome object at the root of a couchdb node."""
    _required = (('couchdb', str), ('version', str))

    @property
    def vendor_name(self):
        return (self.get('vendor') or {}).get('name')

    @property
    def features(self):
        return self.get('features', [])


class DatabaseInfo(Record):
    """Response to GET /{db}: doc counts, sizes, update_seq and cluster settings."""
    _required = (('db_name', str), ('doc_count', int))

    @property
    def partitioned(self):
        return bool((self.get('props') or {}).get('partitioned'))


class OperationResult(Record):
    _required = (('ok', bool),)


class DocResult(Record):
    """{ok, id, rev} as returned by a single-document write."""
    _required = (('id', str), ('rev', str))


class AllDocs(Record):
    _required = (('rows', list),)

    @property
    def docs(self):
        """The included documents (when include_docs was requested)"""
        return [row['doc'] for row in self.rows if row.get('doc') is not None]


class BulkResult(Record):
    """Outcome for one doc of a _bulk_docs request. Either a success carrying
    the new `rev`, or a failure carrying `error` and `reason`."""
    _required = (('id', str),)

    @property
    def ok(self):
        return 'error' not in self


class BulkResults(list):
    """The per-document outcomes of a _bulk_docs request, in submission order.

    A batch where only some docs were written is still a successful request;
    inspect each entry (or use `succeeded` / `failed`).
    """
    @classmethod
    def decode(cls, data):
        if not isinstance(data, list):
            raise MalformedResponse('expected a json array of bulk results, got %s' % type(data).__name__)
        return cls(BulkResult.decode(item) for item in data)

    to_json = Record.to_json

    @property
    def succeeded(self):
        return [r for r in self if r.ok]

    @property
    def failed(self):
        return [r for r in self if not r.ok]


class BulkGetResult(Record):
    """Response to _bulk_get. Each entry of `results` is ``{id, docs:[...]}``
    where every item of docs is either ``{ok:doc}`` or ``{error:{id, rev, error, reason}}``.
    """
    _required = (('results', list),)

    @property
    def docs(self):
        """Every document that was found, flattened across results"""
        found = []
        for result in self.results:
            for item in result.get('docs', []):
                if 'ok' in item:
                    found.append(item['ok'])
        return found

    @property
    def errors(self):
        missing = []
        for result in self.results:
            for item in result.get('docs', []):
                if 'error' in item:
                    missing.append(item['error'])
        return missing


class FindResult(Record):
    """Response to a mango query: docs plus the paging bookmark, any warning
    and (if requested) execution_stats."""
    _required = (('docs', list),)


class IndexResult(Record):
    """{result:'created'|'exists', id:ddoc, name}"""
    _required = (('result', str), ('id', str), ('name', str))


class IndexList(Record):
    _required = (('indexes', list),)


class PurgeResult(Record):
    _required = (('purged', dict),)


class ChangeRecord(Record):
    """One entry of a changes feed.

    Attributes:
        seq: sequence token of this change

        id (str): ID of the changed document

        changes (list): leaf revisions, each a dict with a single `rev` key

        deleted (bool): true if the change was a deletion

        doc (dict): the document body when include_docs was requested
    """
    _required = (('seq', seq_types), ('id', str), ('changes', list))

    @classmethod
    def decode(cls, data):
        record = super(ChangeRecord, cls).decode(data)
        for leaf in record.changes:
            if not isinstance(leaf, dict) or not isinstance(leaf.get('rev'), str):
                raise MalformedResponse('ChangeRecord.changes entries need a rev string')
        return record

    @property
    def deleted(self):
        return bool(self.get('deleted', False))

    @property
    def doc(self):
        return self.get('doc')

    @property
    def revs(self):
        return [leaf['rev'] for leaf in self.changes]


class ChangesBatch(Record):
    """A group of ChangeRecords read from one _changes response.

    The terminal form (`normal`/`longpoll` feeds, or the closing line of a
    `continuous` one) carries `last_seq` and `pending`. The partial form, one
    per chunk of a streaming feed, has neither.
    """
    _required = (('results', list),)

    @classmethod
    def decode(cls, data):
        batch = super(ChangesBatch, cls).decode(data)
        if 'last_seq' not in batch:
            raise MalformedResponse('ChangesBatch is missing %r' % 'last_seq')
        batch['results'] = [ChangeRecord.decode(r) for r in batch.results]
        return batch

    @classmethod
    def partial(cls, results):
        return cls(results=list(results))

    @property
    def terminal(self):
        return 'last_seq' in self

    @property
    def last_seq(self):
        return self.get('last_seq')

    @property
    def pending(self):
        return self.get('pending')
