# encoding: utf-8
"""
velour.params

Request options. Each class is an immutable bundle of settings with a fixed
table of the names it understands; only the options that were actually
passed get sent, so an empty bundle adds nothing to the request while an
explicit ``limit=0`` or ``include_docs=False`` still reaches the server.
"""

from urllib.parse import urlencode

from .config import json

FEEDS = ('normal', 'longpoll', 'continuous', 'eventsource')
STREAMING_FEEDS = ('continuous', 'eventsource')
STYLES = ('main_only', 'all_docs')
INDEX_TYPES = ('json', 'text')

seq = (str, int)
anything = (object,)


class Params(object):
    """Base class for option bundles.

    Subclasses define `_fields`, an ordered sequence of ``(name, types)``
    pairs, and optionally `_choices` mapping a name to its allowed values.

        >>> p = ChangesParams(feed='continuous', include_docs=True)
        >>> p.query()
        'feed=continuous&include_docs=true'
        >>> p.replace(limit=0).query()
        'feed=continuous&limit=0&include_docs=true'
        >>> ChangesParams().query()
        ''
    """
    _fields = ()
    _choices = {}
    __slots__ = ('_values',)

    def __init__(self, **options):
        kinds = dict(self._fields)
        values = {}
        for name, value in options.items():
            if name not in kinds:
                raise TypeError('%s got an unexpected option %r' % (type(self).__name__, name))
            values[name] = self._check(name, value, kinds[name])
        object.__setattr__(self, '_values', values)

    @classmethod
    def coerce(cls, params=None, **options):
        """Accept either a ready-made bundle, a plain dict, or keyword options
        (which are layered on top of any bundle that was passed)."""
        if params is None:
            return cls(**options)
        if isinstance(params, dict):
            merged = dict(params)
            merged.update(options)
            return cls(**merged)
        if not isinstance(params, cls):
            raise TypeError('expected %s, got %s' % (cls.__name__, type(params).__name__))
        return params.replace(**options) if options else params

    def _check(self, name, value, kinds):
        if not isinstance(kinds, tuple):
            kinds = (kinds,)
        if isinstance(value, bool) and bool not in kinds and object not in kinds:
            raise TypeError('%s.%s expects %s, got bool' % (type(self).__name__, name, _names(kinds)))
        if not isinstance(value, kinds):
            raise TypeError('%s.%s expects %s, got %s' % (type(self).__name__, name, _names(kinds), type(value).__name__))
        allowed = self._choices.get(name)
        if allowed and value not in allowed:
            raise ValueError('%s.%s must be one of %s' % (type(self).__name__, name, ', '.join(allowed)))
        return value

    def __getattr__(self, name):
        if name in dict(self._fields):
            return self._values.get(name)
        raise AttributeError(name)

    def __setattr__(self, name, value):
        raise AttributeError('%s is immutable, use replace()' % type(self).__name__)

    def __delattr__(self, name):
        raise AttributeError('%s is immutable, use replace()' % type(self).__name__)

    def __contains__(self, name):
        return name in self._values

    def __eq__(self, other):
        return type(other) is type(self) and other._values == self._values

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((type(self).__name__, json.encode(self._values, sort_keys=True)))

    def __repr__(self):
        return '%s(%s)' % (type(self).__name__, ', '.join('%s=%r' % kv for kv in self.items()))

    def replace(self, **options):
        """Return a copy with the given options added or overridden."""
        merged = dict(self._values)
        merged.update(options)
        return type(self)(**merged)

    def items(self):
        """The options that were set, in table order."""
        return [(name, self._values[name]) for name, _ in self._fields if name in self._values]

    def query(self):
        """Render as a url query string (without the leading ``?``)."""
        return urlencode([(name, encode_value(value)) for name, value in self.items()])

    def body(self):
        """Render as a dict suitable for a json request body."""
        return dict(self.items())

def _names(kinds):
    return '/'.join(k.__name__ for k in kinds)

def encode_value(value):
    if value is True:
        return 'true'
    if value is False:
        return 'false'
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    return json.encode(value)


class GetDocumentParams(Params):
    """Query options for fetching a single document."""
    __slots__ = ()
    _fields = (
        ('attachments', bool),
        ('att_encoding_info', bool),
        ('atts_since', list),
        ('conflicts', bool),
        ('deleted_conflicts', bool),
        ('latest', bool),
        ('local_seq', bool),
        ('meta', bool),
        ('open_revs', (list, str)),
        ('rev', str),
        ('revs', bool),
        ('revs_info', bool),
        ('deleted', bool),
    )


class AllDocsParams(Params):
    """Options for _all_docs. These travel in the json body of a POST, so
    keys can be any json value."""
    __slots__ = ()
    _fields = (
        ('conflicts', bool),
        ('descending', bool),
        ('endkey', anything),
        ('end_key', anything),
        ('endkey_docid', str),
        ('end_key_doc_id', str),
        ('group', bool),
        ('group_level', int),
        ('include_docs', bool),
        ('inclusive_end', bool),
        ('key', anything),
        ('keys', list),
        ('limit', int),
        ('reduce', bool),
        ('skip', int),
        ('sorted', bool),
        ('stable', bool),
        ('startkey', anything),
        ('start_key', anything),
        ('startkey_docid', str),
        ('start_key_doc_id', str),
        ('update_seq', bool),
        ('attachments', bool),
        ('att_encoding_info', bool),
    )


class ChangesParams(Params):
    """Query options for the _changes feed.

    Kwargs:
        since: only report changes after this sequence token (or ``'now'``)

        feed (str): ``normal`` (default), ``longpoll``, ``continuous`` or ``eventsource``

        filter (str): a design doc filter (``ddoc/name``) or one of the builtins
        ``_doc_ids``, ``_selector``, ``_design``, ``_view``

        heartbeat (int or bool): milliseconds between keepalive newlines on streaming
        feeds, or True for the server's default interval

        timeout (int): milliseconds to wait for a change before the server closes the feed

        limit (int): maximum number of changes to report

        include_docs (bool): attach each changed doc to its record

        style (str): ``main_only`` or ``all_docs``
    """
    __slots__ = ()
    _fields = (
        ('filter', str),
        ('since', seq),
        ('feed', str),
        ('heartbeat', (int, bool)),
        ('timeout', int),
        ('limit', int),
        ('include_docs', bool),
        ('attachments', bool),
        ('att_encoding_info', bool),
        ('conflicts', bool),
        ('descending', bool),
        ('style', str),
        ('view', str),
        ('seq_interval', int),
        ('last_event_id', str),
    )
    _choices = {'feed':FEEDS, 'style':STYLES}

    @property
    def streaming(self):
        return self._values.get('feed') in STREAMING_FEEDS


class MangoQuery(Params):
    """A declarative `_find` query.

        >>> MangoQuery(selector={'year': {'$gt': 2010}}, fields=['_id', 'year'], limit=2).body()
        {'selector': {'year': {'$gt': 2010}}, 'fields': ['_id', 'year'], 'limit': 2}
    """
    __slots__ = ()
    _fields = (
        ('selector', dict),
        ('sort', list),
        ('fields', list),
        ('limit', int),
        ('skip', int),
        ('use_index', (str, list)),
        ('conflicts', bool),
        ('r', int),
        ('bookmark', str),
        ('update', bool),
        ('stable', bool),
        ('execution_stats', bool),
    )

    def body(self):
        content = super(MangoQuery, self).body()
        content.setdefault('selector', {})
        return content


class IndexDefinition(Params):
    """A mango index to be created with `Database.create_index`."""
    __slots__ = ()
    _fields = (
        ('fields', list),
        ('partial_filter_selector', dict),
        ('ddoc', str),
        ('name', str),
        ('type', str),
        ('partitioned', bool),
    )
    _choices = {'type':INDEX_TYPES}

    def body(self):
        content = super(IndexDefinition, self).body()
        index = {}
        for name in ('fields', 'partial_filter_selector'):
            if name in content:
                index[name] = content.pop(name)
        content['index'] = index
        return content
