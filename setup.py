#!/usr/bin/env python
from setuptools import setup
import codecs
import re

VERSION=re.search(r"__version__ = '([^']+)'", codecs.open('velour/__init__.py', encoding='utf-8').read()).group(1)
README=codecs.open('README.rst', encoding='utf-8').read()
setup(
    name='velour',
    version=VERSION,
    author='Christian Swinehart',
    author_email='drafting@samizdat.cc',
    packages=['velour', 'velour.tests'],
    license='BSD',
    description='An asynchronous CouchDB client library with a streaming changes feed',
    long_description=README,
    python_requires='>=3.7',
    install_requires=[
        'tornado>=6.0',
        'requests>=2.20',
        'simplejson',
    ],
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Database :: Front-Ends',
        'Topic :: Software Development :: Libraries :: Python Modules',
    ]
)
