"""A setuptools based setup module.

See:
https://packaging.python.org/en/latest/distributing.html
https://github.com/pypa/sampleproject
"""

# Always prefer setuptools over distutils
from setuptools import setup, find_packages
# To use a consistent encoding
from codecs import open
import os

version = '0.9.0'

here = os.path.abspath(os.path.dirname(__file__))

# Get the long description from the README file
with open(os.path.join(here, 'README.rst'), encoding='utf-8') as f:
    long_description = f.read()

dependencies = ['lxml>=4.9',
                'aiohttp>=3.9',
                'multidict>=6.0']

setup(
    name='exchws',
    version=version,
    description='asynchronous request core of a client for mailbox web services (SOAP over http)',
    long_description=long_description,
    url='https://github.com/exchws/exchws',
    author='exchws developers',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        'Development Status :: 4 - Beta',

        'Intended Audience :: Developers',
        'Topic :: Software Development',
        'Topic :: Communications :: Email',

        'License :: OSI Approved :: MIT License',

        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],

    keywords='SOAP EWS mailbox asyncio',

    package_dir={'': 'src'},
    packages=find_packages(where='src', include=['exchws', 'exchws.*']),
    python_requires='>=3.10',

    # List run-time dependencies here.  These will be installed by pip when
    # your project is installed.
    install_requires=dependencies,
    # $ pip install -e .[test]
    extras_require={
        'test': ['pytest', 'hypothesis'],
    },
)
