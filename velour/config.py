# encoding: utf-8
"""
velour.config

Process-wide defaults and the JSON codec every module shares. There is no
rcfile; callers tune behaviour by mutating `defaults` before issuing requests.
"""

from .atoms import adict, Document

defaults = adict({
            # node address used when a url is omitted or is just a database name
            "host":"http://127.0.0.1",
            "port":5984,

            # wrappers for decoded json (documents and every other object)
            "types":adict({
                "doc":Document,
                "dict":adict
            }),

            # transport tuning, timeouts in seconds
            "http":adict({
                "client":"tornado",       # or "requests"
                "max_clients":10,
                "timeout":60,
                "connect_timeout":20,
                "feed_timeout":60*60,     # streamed _changes connections
            })
         })

try:
    import simplejson as _json
except ImportError:
    import json as _json

class json(object):
    """Thin namespace over simplejson (or the stdlib module when it is absent)."""

    @classmethod
    def decode(cls, string, **opts):
        """Parse a JSON document, wrapping every object in `defaults.types.dict`.

        Args:
            string (str): the JSON text

        Raises:
            ValueError: if the text is not valid JSON
        """
        return _json.loads(string, object_hook=defaults.types.dict, **opts)

    @classmethod
    def encode(cls, obj, **opts):
        """Serialize a value to JSON text. NaN and Infinity are refused rather
        than emitted as invalid JSON, and non-ascii characters are kept as-is.
        """
        return _json.dumps(obj, allow_nan=False, ensure_ascii=False, **opts)
