# encoding: utf-8
"""
Velour | asynchronous couchdb upholstery

Copyright (C) 2012 Samizdat Drafting Co.
A derivative of http://code.google.com/p/couchdb-python by Christopher Lenz

All rights reserved.
BSD Licensed (see LICENSE file for details)
"""

__title__ = 'velour'
__version__ = '0.1.0'
__author__ = 'Christian Swinehart'
__license__ = 'BSD'
__copyright__ = 'Copyright 2012 Samizdat Drafting Co.'

__all__ = ['Couch', 'Database', 'Document', 'ChangesFeed', 'ChangesParser', 'IO',
           'GetDocumentParams', 'AllDocsParams', 'ChangesParams', 'MangoQuery', 'IndexDefinition',
           'HTTPError', 'Conflict', 'NotFound', 'PreconditionFailed', 'ServerError', 'Unauthorized',
           'TransportError', 'MalformedResponse', 'defaults']

from .config import defaults
from .atoms import Document
from .io import IO
from .couchdb import Couch, Database
from .changes import ChangesFeed, ChangesParser
from .params import GetDocumentParams, AllDocsParams, ChangesParams, MangoQuery, IndexDefinition
from .exceptions import HTTPError, PreconditionFailed, ServerError, NotFound, Unauthorized, \
                        Conflict, TransportError, MalformedResponse
