#!/usr/bin/env python

import os
import re
from setuptools import setup

version_file = os.path.join('bory', '_version.py')
with open(version_file, 'rb') as f:
    version_data = f.read().strip().decode('ascii')

version_re = re.compile(r'((?:\d+)\.(?:\d+)\.(?:\d+))')
version = version_re.search(version_data).group(0)

tests_require = [
    'pytest',
    'pytest-cov',
    'pytest-timeout',
    'PyYAML'
]

setup(name='bory',
      version=version,
      description='Request body parsing middleware: JSON, urlencoded, text and raw bodies',
      author='Daniel Röhers Moura',
      url='https://github.com/danielrohers/bory',
      license='MIT',
      platforms='any',
      zip_safe=False,
      tests_require=tests_require,
      extras_require={
          'test': tests_require,
          'dev': tests_require + ['invoke', 'nox'],
          'fuzz': ['atheris'],
      },
      packages=[
          'bory',
      ],
      python_requires='>=3.8',
      classifiers=[
        'Development Status :: 5 - Production/Stable',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware',
        'Topic :: Software Development :: Libraries :: Python Modules'
      ],
     )
